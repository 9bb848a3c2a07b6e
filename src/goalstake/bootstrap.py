"""
Application wiring.

Builds the store, engines and relay from settings and seeds the authority
records on first start.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .core.event_bus import EventBus
from .domains.challenge.engine import ChallengeEngine
from .domains.challenge.factory import ChallengeFactory
from .domains.ledger.custodian import CustodianGateway, IntentRelay, RecordingCustodian
from .domains.ledger.settlement import ClaimSettlement
from .domains.rewards.engine import RewardDistributionEngine
from .infrastructure.config.settings import AppSettings, DatabaseConfig, get_settings
from .infrastructure.logging.structured_logger import configure_logging
from .infrastructure.persistence import InMemoryStateStore, SqlAlchemyStateStore, StateStore

logger = structlog.get_logger(__name__)


@dataclass
class Platform:
    """Everything a caller needs to drive the system."""

    settings: AppSettings
    store: StateStore
    event_bus: EventBus
    factory: ChallengeFactory
    challenges: ChallengeEngine
    rewards: RewardDistributionEngine
    relay: IntentRelay


def build_store(config: DatabaseConfig) -> StateStore:
    if config.is_memory:
        return InMemoryStateStore()

    store = SqlAlchemyStateStore(config.url, echo=config.echo)
    store.create_all()
    return store


def create_platform(
    settings: Optional[AppSettings] = None,
    store: Optional[StateStore] = None,
    gateway: Optional[CustodianGateway] = None,
    event_bus: Optional[EventBus] = None,
) -> Platform:
    """
    Assemble a ready-to-use platform.

    Authority records are seeded from settings only when absent, so
    restarting against an existing database keeps transferred admins.
    """
    settings = settings or get_settings()
    configure_logging(settings.logging)

    store = store or build_store(settings.database)
    event_bus = event_bus or EventBus()
    settlement = ClaimSettlement(store)

    factory = ChallengeFactory(store, rules=settings.rules, event_bus=event_bus)
    challenges = ChallengeEngine(store, rules=settings.rules, event_bus=event_bus, settlement=settlement)
    rewards = RewardDistributionEngine(store, event_bus=event_bus, settlement=settlement)

    factory.install(settings.authority.factory_admin, settings.authority.max_challenges)
    rewards.install(settings.authority.distributor)

    relay = IntentRelay(store, gateway or RecordingCustodian())

    logger.info(
        "Platform ready",
        store=type(store).__name__,
        factory_admin=factory.get_state().admin,
        distributor=rewards.get_distributor().distributor,
    )
    return Platform(
        settings=settings,
        store=store,
        event_bus=event_bus,
        factory=factory,
        challenges=challenges,
        rewards=rewards,
        relay=relay,
    )
