"""
Custodian gateway and intent relay.

The custodian is the external system that actually moves value. The relay
reads pending intents from the outbox in sequence order and hands each one
to the gateway, marking it dispatched once the gateway accepts it.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import structlog

from ...infrastructure.persistence.store import StateStore
from .intents import IntentKind, LedgerIntent

logger = structlog.get_logger(__name__)


class CustodianGateway(ABC):
    """Interface to the external ledger. Calls are fire-and-forget instructions."""

    @abstractmethod
    def deposit(self, amount: int, identity: str, challenge_id: Optional[int]) -> None:
        pass

    @abstractmethod
    def withdraw(self, amount: int, identity: str, challenge_id: Optional[int]) -> None:
        pass

    @abstractmethod
    def penalty(self, amount: int, identity: str, challenge_id: Optional[int]) -> None:
        pass


class RecordingCustodian(CustodianGateway):
    """In-process gateway that keeps every instruction it receives."""

    def __init__(self):
        self.deposits: List[LedgerIntent] = []
        self.withdrawals: List[LedgerIntent] = []
        self.penalties: List[LedgerIntent] = []

    def deposit(self, amount: int, identity: str, challenge_id: Optional[int]) -> None:
        self.deposits.append(LedgerIntent(IntentKind.DEPOSIT, amount, identity, challenge_id, 0))

    def withdraw(self, amount: int, identity: str, challenge_id: Optional[int]) -> None:
        self.withdrawals.append(LedgerIntent(IntentKind.WITHDRAW, amount, identity, challenge_id, 0))

    def penalty(self, amount: int, identity: str, challenge_id: Optional[int]) -> None:
        self.penalties.append(LedgerIntent(IntentKind.PENALTY, amount, identity, challenge_id, 0))

    def total_withdrawn(self, identity: str) -> int:
        return sum(w.amount for w in self.withdrawals if w.identity == identity)


class IntentRelay:
    """
    Delivers outbox intents to a custodian.

    Delivery is at-least-once: an intent is marked dispatched only after the
    gateway returns. A gateway error stops the batch and leaves that intent
    pending for the next run.
    """

    def __init__(self, store: StateStore, gateway: CustodianGateway):
        self.store = store
        self.gateway = gateway

    def relay(self, limit: Optional[int] = None) -> int:
        """
        Dispatch pending intents in sequence order.

        Returns:
            Number of intents dispatched
        """
        with self.store.transaction():
            pending = self.store.intents.pending(limit)

        dispatched = 0
        for intent in pending:
            try:
                self._dispatch(intent)
            except Exception:
                logger.error(
                    "Custodian rejected intent; will retry",
                    intent_sequence=intent.sequence,
                    kind=intent.kind.value,
                    identity=intent.identity,
                    amount=intent.amount,
                    exc_info=True,
                )
                break

            with self.store.transaction():
                self.store.intents.mark_dispatched(intent.sequence)
            dispatched += 1

        if pending:
            logger.info("Ledger intents relayed", dispatched=dispatched, pending=len(pending) - dispatched)
        return dispatched

    def _dispatch(self, intent: LedgerIntent) -> None:
        if intent.kind is IntentKind.DEPOSIT:
            self.gateway.deposit(intent.amount, intent.identity, intent.challenge_id)
        elif intent.kind is IntentKind.WITHDRAW:
            self.gateway.withdraw(intent.amount, intent.identity, intent.challenge_id)
        else:
            self.gateway.penalty(intent.amount, intent.identity, intent.challenge_id)
