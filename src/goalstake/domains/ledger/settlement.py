"""
Claim settlement.

Both claim paths (the per-challenge completion reward and the pooled
reward balance) end here. Flipping the claim marker and recording the
withdrawal intent happen in one store transaction, so a balance is paid at
most once: a second claim sees the flag set or the balance at zero.
"""

from dataclasses import replace

import structlog

from ...infrastructure.persistence.store import StateStore
from ..challenge.model import ParticipantRecord
from ..rewards.model import UserReward
from .intents import LedgerIntent

logger = structlog.get_logger(__name__)


class ClaimSettlement:
    """Atomic claim-marker + withdrawal-intent writer."""

    def __init__(self, store: StateStore):
        self.store = store

    def settle_participant(self, participant: ParticipantRecord, amount: int, block_height: int) -> LedgerIntent:
        """
        Mark a participant's completion reward as claimed and record the payout.

        Raises:
            ConcurrencyError: if the participant record changed since it was read
        """
        with self.store.transaction():
            self.store.participants.save(
                participant.key,
                replace(participant, claimed=True),
                participant.version,
            )
            intent = self.store.intents.append(
                LedgerIntent.withdraw(amount, participant.identity, participant.challenge_id, block_height)
            )

        logger.debug(
            "Participant claim settled",
            challenge_id=participant.challenge_id,
            identity=participant.identity,
            amount=amount,
            intent_sequence=intent.sequence,
        )
        return intent

    def settle_balance(self, reward: UserReward, block_height: int) -> LedgerIntent:
        """
        Zero an accrued reward balance and record one withdrawal for all of it.

        Raises:
            ConcurrencyError: if the balance changed since it was read
        """
        amount = reward.amount
        with self.store.transaction():
            self.store.user_rewards.save(
                reward.identity,
                replace(reward, amount=0, total_claimed=reward.total_claimed + amount),
                reward.version,
            )
            intent = self.store.intents.append(LedgerIntent.withdraw(amount, reward.identity, None, block_height))

        logger.debug(
            "Reward balance settled",
            identity=reward.identity,
            amount=amount,
            intent_sequence=intent.sequence,
        )
        return intent
