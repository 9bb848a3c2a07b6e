"""
Shared test fixtures and configuration for the goalstake test suite.
"""

import pytest
from unittest.mock import Mock

from goalstake.domains.challenge.engine import ChallengeEngine
from goalstake.domains.challenge.factory import ChallengeFactory
from goalstake.domains.ledger.custodian import IntentRelay, RecordingCustodian
from goalstake.domains.ledger.settlement import ClaimSettlement
from goalstake.domains.rewards.engine import RewardDistributionEngine
from goalstake.infrastructure.config.settings import ChallengeRulesConfig
from goalstake.infrastructure.persistence import InMemoryStateStore, SqlAlchemyStateStore

from tests.builders import (
    ADMIN,
    CREATOR,
    DISTRIBUTOR,
    FACTORY_PARAMS,
    INSTANCE_PARAMS,
    ctx,
)


@pytest.fixture
def store():
    """Fresh in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def sql_store():
    """SQLAlchemy state store on an in-memory SQLite database."""
    sql_store = SqlAlchemyStateStore("sqlite://")
    sql_store.create_all()
    yield sql_store
    sql_store.drop_all()
    sql_store.dispose()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request):
    """Each test using this runs once per store implementation."""
    if request.param == "memory":
        yield InMemoryStateStore()
        return
    sql_store = SqlAlchemyStateStore("sqlite://")
    sql_store.create_all()
    yield sql_store
    sql_store.dispose()


@pytest.fixture
def event_bus():
    """Mock event bus; assert on event_bus.emit calls."""
    return Mock()


@pytest.fixture
def rules():
    return ChallengeRulesConfig()


@pytest.fixture
def settlement(store):
    return ClaimSettlement(store)


@pytest.fixture
def factory(store, rules, event_bus):
    factory = ChallengeFactory(store, rules=rules, event_bus=event_bus)
    factory.install(ADMIN, max_challenges=1000)
    return factory


@pytest.fixture
def engine(store, rules, event_bus, settlement):
    return ChallengeEngine(store, rules=rules, event_bus=event_bus, settlement=settlement)


@pytest.fixture
def rewards(store, event_bus, settlement):
    rewards = RewardDistributionEngine(store, event_bus=event_bus, settlement=settlement)
    rewards.install(DISTRIBUTOR)
    return rewards


@pytest.fixture
def custodian():
    return RecordingCustodian()


@pytest.fixture
def relay(store, custodian):
    return IntentRelay(store, custodian)


@pytest.fixture
def created_challenge(factory):
    """Challenge id of an UNINITIALIZED challenge owned by CREATOR."""
    return factory.create_challenge(ctx(CREATOR), "Run 10k", **FACTORY_PARAMS)


@pytest.fixture
def active_challenge(engine, created_challenge, event_bus):
    """
    Challenge id of an ACTIVE challenge.

    goal 10000, min contribution 100, max participants 50, duration 30,
    penalty rate 5, window [0, 30).
    """
    engine.initialize(ctx(CREATOR, 0), created_challenge, **INSTANCE_PARAMS)
    event_bus.reset_mock()
    return created_challenge


@pytest.fixture
def funded_pool(rewards, event_bus):
    """Challenge id 7 with a 1000 pool split 100% across ranks 1..3."""
    rewards.initialize_pool(ctx(DISTRIBUTOR), 7, 1000, [{"percentage": 100, "min_rank": 1, "max_rank": 3}])
    event_bus.reset_mock()
    return 7


# Custom pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test spanning several engines"
    )
    config.addinivalue_line(
        "markers", "persistence: mark test as exercising a state store implementation"
    )
    config.addinivalue_line(
        "markers", "security: mark test as an authorization test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
