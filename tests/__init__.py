"""
goalstake test suite.

- challenge/: lifecycle engine, factory and challenge rules
- rewards/: tier rules, pool operations and distribution
- ledger/: claim settlement and intent relay
- persistence/: in-memory and SQLAlchemy state stores
"""
