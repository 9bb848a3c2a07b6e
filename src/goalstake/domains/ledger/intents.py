"""
Ledger intents.

The engines never move value themselves. Each decision that should move
value is recorded as an intent in the store's outbox, in the same
transaction as the state change that caused it. A relay later hands the
intents to the external custodian.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class IntentKind(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    PENALTY = "PENALTY"


@dataclass
class LedgerIntent:
    """One instruction for the custodian."""

    kind: IntentKind
    amount: int
    identity: str
    challenge_id: Optional[int]  # None for pool-level reward claims
    block_height: int
    sequence: Optional[int] = None
    dispatched: bool = False

    @classmethod
    def deposit(cls, amount: int, identity: str, challenge_id: int, block_height: int) -> "LedgerIntent":
        return cls(IntentKind.DEPOSIT, amount, identity, challenge_id, block_height)

    @classmethod
    def withdraw(
        cls, amount: int, identity: str, challenge_id: Optional[int], block_height: int
    ) -> "LedgerIntent":
        return cls(IntentKind.WITHDRAW, amount, identity, challenge_id, block_height)

    @classmethod
    def penalty(cls, amount: int, identity: str, challenge_id: int, block_height: int) -> "LedgerIntent":
        return cls(IntentKind.PENALTY, amount, identity, challenge_id, block_height)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data
