from .memory import InMemoryStateStore
from .sqlalchemy_store import SqlAlchemyStateStore
from .store import DEFAULT_AUTHORITY, StateStore

__all__ = ["DEFAULT_AUTHORITY", "InMemoryStateStore", "SqlAlchemyStateStore", "StateStore"]
