"""State store interface.

Four logical tables (challenges + participants, pools, user rewards +
distribution log, ledger intents) plus the authority records, all behind
repositories. ``transaction()`` makes a block of reads and writes
all-or-nothing; every public engine operation runs inside exactly one.
"""

from abc import ABC, abstractmethod
from typing import ContextManager, Tuple

from ...domains.challenge.model import ChallengeName, ChallengeRecord, FactoryState, ParticipantRecord
from ...domains.ledger.intents import LedgerIntent
from ...domains.rewards.model import ChallengePool, DistributionLogEntry, DistributorState, UserReward
from ...shared.kernel.repository import AppendOnlyLog, Outbox, Repository

DEFAULT_AUTHORITY = "default"


class StateStore(ABC):
    """Durable state behind the engines."""

    challenges: Repository[int, ChallengeRecord]
    participants: Repository[Tuple[int, str], ParticipantRecord]
    challenge_names: Repository[str, ChallengeName]
    factory_state: Repository[str, FactoryState]
    distributor_state: Repository[str, DistributorState]
    pools: Repository[int, ChallengePool]
    user_rewards: Repository[str, UserReward]
    distribution_log: AppendOnlyLog[DistributionLogEntry]
    intents: Outbox[LedgerIntent]

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """
        Run a block atomically.

        Writes inside the block become visible together when it exits
        normally and are discarded if it raises. A nested call joins the
        enclosing transaction.
        """
        pass
