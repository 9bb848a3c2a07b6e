"""
Challenge Engine - Lifecycle Controller

Owns every transition of challenge and participant records:

    UNINITIALIZED --initialize--> ACTIVE --end_challenge--> CLOSED

ACTIVE self-loops on join, progress submission and extension votes. CLOSED is
terminal.

Each public operation:
1. Opens one store transaction
2. Loads records and runs every check (first failure raises, nothing written)
3. Writes through compare-and-set, plus any ledger intent, in that transaction
4. After commit, logs one line and emits one domain event
"""

from dataclasses import replace
from typing import Dict, List, Optional

import structlog

from ...core.event_bus import EventBus
from ...infrastructure.common.context import CallContext
from ...infrastructure.config.settings import ChallengeRulesConfig
from ...infrastructure.logging.structured_logger import log_rejections
from ...infrastructure.persistence.store import StateStore
from ...shared.exceptions import (
    AlreadyClaimedError,
    AlreadyExistsError,
    ErrorCode,
    InsufficientFundsError,
    InvalidFieldError,
    LimitExceededError,
    NotAuthorizedError,
    NotFoundError,
    StateConflictError,
)
from ...shared.utils.amounts import checked_add, is_amount, require_amount
from ..ledger.intents import LedgerIntent
from ..ledger.settlement import ClaimSettlement
from .enums import ChallengeState
from .model import ChallengeRecord, ParticipantRecord
from .rules import ChallengeParameters, ChallengeRules

logger = structlog.get_logger(__name__)


class ChallengeEngine:
    """
    Challenge lifecycle controller.

    All time comparisons use ctx.block_height. No wall clock is read.
    """

    def __init__(
        self,
        store: StateStore,
        rules: Optional[ChallengeRulesConfig] = None,
        event_bus: Optional[EventBus] = None,
        settlement: Optional[ClaimSettlement] = None,
    ):
        self.store = store
        self.rules = rules or ChallengeRulesConfig()
        self.event_bus = event_bus
        self.settlement = settlement or ClaimSettlement(store)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def initialize(
        self,
        ctx: CallContext,
        challenge_id: int,
        goal: int,
        duration: int,
        min_contribution: int,
        max_participants: int,
        challenge_type: str,
        penalty_rate: int,
        voting_threshold: int,
        location: str,
        currency: str,
    ) -> ChallengeRecord:
        """
        Configure a freshly created challenge and open it for entries.

        Only the creator may initialize, and only once. Fields are validated
        in declared order. The window runs from the current height to
        height + duration; the end time is never recomputed.

        Raises:
            NotFoundError: CHALLENGE_NOT_FOUND
            NotAuthorizedError: caller is not the creator
            StateConflictError: ALREADY_INITIALIZED
            InvalidFieldError: first failing field
        """
        params = ChallengeParameters(
            goal=goal,
            duration=duration,
            min_contribution=min_contribution,
            max_participants=max_participants,
            challenge_type=challenge_type,
            penalty_rate=penalty_rate,
            voting_threshold=voting_threshold,
            location=location,
            currency=currency,
        )

        with log_rejections(logger, "initialize", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                self._require_creator(challenge, ctx)
                if not challenge.state.can_transition_to(ChallengeState.ACTIVE):
                    raise StateConflictError(
                        f"Challenge {challenge_id} is already initialized",
                        ErrorCode.ALREADY_INITIALIZED,
                        context={"state": challenge.state.value},
                    )

                ChallengeRules.validate_parameters(
                    params,
                    allowed_types=self.rules.instance_challenge_types,
                    allowed_currencies=self.rules.instance_currencies,
                    max_participants=self.rules.max_participants,
                    max_location_length=self.rules.max_location_length,
                )
                end_time = checked_add(ctx.block_height, duration, "end_time")

                challenge = self.store.challenges.save(
                    challenge_id,
                    replace(
                        challenge,
                        state=ChallengeState.ACTIVE,
                        goal=goal,
                        duration=duration,
                        min_contribution=min_contribution,
                        max_participants=max_participants,
                        challenge_type=challenge_type,
                        penalty_rate=penalty_rate,
                        voting_threshold=voting_threshold,
                        location=location,
                        currency=currency,
                        start_time=ctx.block_height,
                        end_time=end_time,
                    ),
                    challenge.version,
                )

        logger.info(
            "Challenge initialized",
            challenge_id=challenge_id,
            start_time=challenge.start_time,
            end_time=challenge.end_time,
            **ctx.to_log_fields(),
        )
        self._emit("CHALLENGE_INITIALIZED", {
            "challenge_id": challenge_id,
            "creator": challenge.creator,
            "goal": challenge.goal,
            "start_time": challenge.start_time,
            "end_time": challenge.end_time,
            "currency": challenge.currency,
        })
        return challenge

    def join_challenge(self, ctx: CallContext, challenge_id: int, contribution: int) -> ParticipantRecord:
        """
        Enter the caller into an active challenge with a one-time contribution.

        Records a deposit intent for the contribution in the same transaction
        as the new participant.

        Raises:
            NotFoundError: CHALLENGE_NOT_FOUND
            StateConflictError: CHALLENGE_NOT_ACTIVE, CHALLENGE_ENDED
            AlreadyExistsError: ALREADY_JOINED
            InvalidFieldError: INVALID_AMOUNT
            InsufficientFundsError: INSUFFICIENT_CONTRIBUTION
            LimitExceededError: MAX_PARTICIPANTS_EXCEEDED
        """
        identity = ctx.caller

        with log_rejections(logger, "join_challenge", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                self._require_open(challenge, ctx.block_height)

                if self.store.participants.get((challenge_id, identity)) is not None:
                    raise AlreadyExistsError(
                        f"{identity} already joined challenge {challenge_id}",
                        ErrorCode.ALREADY_JOINED,
                    )

                require_amount(contribution, "contribution")
                if contribution < challenge.min_contribution:
                    raise InsufficientFundsError(
                        f"Contribution {contribution} is below the minimum {challenge.min_contribution}",
                        ErrorCode.INSUFFICIENT_CONTRIBUTION,
                        context={"contribution": contribution, "min_contribution": challenge.min_contribution},
                    )

                if challenge.participant_count >= challenge.max_participants:
                    raise LimitExceededError(
                        f"Challenge {challenge_id} is full",
                        ErrorCode.MAX_PARTICIPANTS_EXCEEDED,
                        context={"max_participants": challenge.max_participants},
                    )

                join_index = challenge.participant_count
                # Bumping the challenge serializes concurrent joins on it
                self.store.challenges.save(
                    challenge_id,
                    replace(challenge, participant_count=join_index + 1),
                    challenge.version,
                )
                intent = self.store.intents.append(
                    LedgerIntent.deposit(contribution, identity, challenge_id, ctx.block_height)
                )
                participant = self.store.participants.save(
                    (challenge_id, identity),
                    ParticipantRecord(
                        challenge_id=challenge_id,
                        identity=identity,
                        contribution=contribution,
                        join_index=join_index,
                        joined_at=ctx.block_height,
                    ),
                    None,
                )

        logger.info(
            "Participant joined",
            challenge_id=challenge_id,
            contribution=contribution,
            participant_count=join_index + 1,
            intent_sequence=intent.sequence,
            **ctx.to_log_fields(),
        )
        self._emit("PARTICIPANT_JOINED", {
            "challenge_id": challenge_id,
            "identity": identity,
            "contribution": contribution,
            "block_height": ctx.block_height,
        })
        return participant

    def submit_progress(
        self,
        ctx: CallContext,
        challenge_id: int,
        value: int,
        participant: Optional[str] = None,
    ) -> ParticipantRecord:
        """
        Record a participant's progress.

        Participants report for themselves. The challenge's oracle may report
        on behalf of any participant by naming them. Progress never decreases
        and completion never reverts.

        Raises:
            NotFoundError: CHALLENGE_NOT_FOUND, NOT_JOINED
            NotAuthorizedError: reporting for someone else without being the oracle
            StateConflictError: CHALLENGE_NOT_ACTIVE, CHALLENGE_ENDED
            InvalidFieldError: INVALID_PROGRESS
        """
        identity = participant or ctx.caller

        with log_rejections(
            logger, "submit_progress", challenge_id=challenge_id, participant=identity, **ctx.to_log_fields()
        ):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                if identity != ctx.caller and (challenge.oracle is None or ctx.caller != challenge.oracle):
                    raise NotAuthorizedError(
                        f"{ctx.caller} may not report progress for {identity}",
                        context={"participant": identity},
                    )

                record = self._load_participant(challenge_id, identity)
                self._require_open(challenge, ctx.block_height)

                if not is_amount(value) or value < record.progress:
                    raise InvalidFieldError(
                        f"Progress {value!r} is invalid; stored progress is {record.progress}",
                        ErrorCode.INVALID_PROGRESS,
                        field="value",
                        context={"stored_progress": record.progress},
                    )

                newly_completed = not record.completed and ChallengeRules.is_goal_reached(value, challenge.goal)
                record = self.store.participants.save(
                    record.key,
                    replace(record, progress=value, completed=record.completed or newly_completed),
                    record.version,
                )

        logger.info(
            "Progress submitted",
            challenge_id=challenge_id,
            participant=identity,
            progress=value,
            completed=record.completed,
            **ctx.to_log_fields(),
        )
        self._emit("PROGRESS_SUBMITTED", {
            "challenge_id": challenge_id,
            "identity": identity,
            "progress": value,
            "reported_by": ctx.caller,
        })
        if newly_completed:
            self._emit("PARTICIPANT_COMPLETED", {
                "challenge_id": challenge_id,
                "identity": identity,
                "progress": value,
                "goal": challenge.goal,
            })
        return record

    def vote_on_extension(self, ctx: CallContext, challenge_id: int, vote: bool) -> ParticipantRecord:
        """
        Record or overwrite the caller's extension vote.

        Votes are data only; nothing here tallies them against the voting
        threshold.
        """
        with log_rejections(logger, "vote_on_extension", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                record = self._load_participant(challenge_id, ctx.caller)
                self._require_active(challenge)

                record = self.store.participants.save(
                    record.key,
                    replace(record, extension_vote=bool(vote)),
                    record.version,
                )

        logger.info("Extension vote recorded", challenge_id=challenge_id, vote=record.extension_vote, **ctx.to_log_fields())
        self._emit("EXTENSION_VOTED", {
            "challenge_id": challenge_id,
            "identity": ctx.caller,
            "vote": record.extension_vote,
        })
        return record

    def end_challenge(self, ctx: CallContext, challenge_id: int) -> ChallengeRecord:
        """
        Close an active challenge once its end time is reached.

        Raises:
            NotFoundError: CHALLENGE_NOT_FOUND
            NotAuthorizedError: caller is not the creator
            StateConflictError: CHALLENGE_NOT_ACTIVE (already closed or never
                initialized), INVALID_END_TIME (window still open)
        """
        with log_rejections(logger, "end_challenge", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                self._require_creator(challenge, ctx)
                if not challenge.state.can_transition_to(ChallengeState.CLOSED):
                    raise StateConflictError(
                        f"Challenge {challenge_id} is not active",
                        ErrorCode.CHALLENGE_NOT_ACTIVE,
                        context={"state": challenge.state.value},
                    )

                if ctx.block_height < challenge.end_time:
                    raise StateConflictError(
                        f"Challenge {challenge_id} cannot end before height {challenge.end_time}",
                        ErrorCode.INVALID_END_TIME,
                        context={"end_time": challenge.end_time},
                    )

                challenge = self.store.challenges.save(
                    challenge_id,
                    replace(challenge, state=ChallengeState.CLOSED, closed_at=ctx.block_height),
                    challenge.version,
                )

        logger.info(
            "Challenge ended",
            challenge_id=challenge_id,
            participant_count=challenge.participant_count,
            **ctx.to_log_fields(),
        )
        self._emit("CHALLENGE_ENDED", {
            "challenge_id": challenge_id,
            "closed_at": challenge.closed_at,
            "participant_count": challenge.participant_count,
        })
        return challenge

    def apply_penalty(self, ctx: CallContext, challenge_id: int, identity: str) -> int:
        """
        Charge a participant who did not complete the goal.

        penalty = floor(contribution * penalty_rate / 100). A penalty intent
        is recorded when the amount is positive. The participant record is
        left untouched.

        Returns:
            The penalty amount

        Raises:
            NotFoundError: CHALLENGE_NOT_FOUND, NOT_JOINED
            NotAuthorizedError: caller is not the creator
            StateConflictError: INVALID_STATUS (participant completed)
        """
        with log_rejections(
            logger, "apply_penalty", challenge_id=challenge_id, participant=identity, **ctx.to_log_fields()
        ):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                self._require_creator(challenge, ctx)
                record = self._load_participant(challenge_id, identity)

                if record.completed:
                    raise StateConflictError(
                        f"{identity} completed challenge {challenge_id} and cannot be penalized",
                        ErrorCode.INVALID_STATUS,
                    )

                penalty = ChallengeRules.compute_penalty(record.contribution, challenge.penalty_rate)
                intent = None
                if penalty > 0:
                    intent = self.store.intents.append(
                        LedgerIntent.penalty(penalty, identity, challenge_id, ctx.block_height)
                    )

        logger.info(
            "Penalty applied",
            challenge_id=challenge_id,
            participant=identity,
            penalty=penalty,
            intent_sequence=intent.sequence if intent else None,
            **ctx.to_log_fields(),
        )
        self._emit("PENALTY_APPLIED", {
            "challenge_id": challenge_id,
            "identity": identity,
            "penalty": penalty,
        })
        return penalty

    def claim_reward(self, ctx: CallContext, challenge_id: int) -> int:
        """
        Pay the flat completion reward to a completer of a closed challenge.

        Returns:
            The amount paid

        Raises:
            NotFoundError: CHALLENGE_NOT_FOUND, NOT_JOINED
            StateConflictError: CHALLENGE_STILL_ACTIVE, INVALID_STATUS (not completed)
            AlreadyClaimedError: REWARD_ALREADY_CLAIMED
            InsufficientFundsError: NO_REWARDS_AVAILABLE
        """
        with log_rejections(logger, "claim_reward", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                record = self._load_participant(challenge_id, ctx.caller)

                if challenge.state is not ChallengeState.CLOSED:
                    raise StateConflictError(
                        f"Challenge {challenge_id} has not ended",
                        ErrorCode.CHALLENGE_STILL_ACTIVE,
                    )
                if not record.completed:
                    raise StateConflictError(
                        f"{ctx.caller} did not complete challenge {challenge_id}",
                        ErrorCode.INVALID_STATUS,
                    )
                if record.claimed:
                    raise AlreadyClaimedError(f"{ctx.caller} already claimed challenge {challenge_id}")

                reward = self.rules.completion_reward
                if reward <= 0:
                    raise InsufficientFundsError("No completion reward is configured", ErrorCode.NO_REWARDS_AVAILABLE)

                intent = self.settlement.settle_participant(record, reward, ctx.block_height)

        logger.info(
            "Completion reward claimed",
            challenge_id=challenge_id,
            amount=reward,
            intent_sequence=intent.sequence,
            **ctx.to_log_fields(),
        )
        self._emit("REWARD_CLAIMED", {
            "challenge_id": challenge_id,
            "identity": ctx.caller,
            "amount": reward,
        })
        return reward

    def set_oracle(self, ctx: CallContext, challenge_id: int, oracle: str) -> ChallengeRecord:
        """Delegate progress reporting for this challenge to an oracle identity (creator only)."""
        with log_rejections(logger, "set_oracle", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                challenge = self._load_challenge(challenge_id)
                self._require_creator(challenge, ctx)
                ChallengeRules.validate_identity(oracle, "oracle")

                challenge = self.store.challenges.save(
                    challenge_id,
                    replace(challenge, oracle=oracle),
                    challenge.version,
                )

        logger.info("Oracle set", challenge_id=challenge_id, oracle=oracle, **ctx.to_log_fields())
        self._emit("ORACLE_SET", {"challenge_id": challenge_id, "oracle": oracle})
        return challenge

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_challenge(self, challenge_id: int) -> Optional[ChallengeRecord]:
        with self.store.transaction():
            return self.store.challenges.get(challenge_id)

    def get_participant(self, challenge_id: int, identity: str) -> Optional[ParticipantRecord]:
        with self.store.transaction():
            return self.store.participants.get((challenge_id, identity))

    def list_participants(self, challenge_id: int) -> List[ParticipantRecord]:
        """Participants of a challenge in join order."""
        with self.store.transaction():
            records = self.store.participants.find_by(challenge_id=challenge_id)
        return sorted(records, key=lambda p: p.join_index)

    def list_completers(self, challenge_id: int) -> List[str]:
        """
        Identities that reached the goal, in join order.

        This is the roster handed to the distribution engine's register_winners.
        """
        return [p.identity for p in self.list_participants(challenge_id) if p.completed]

    def get_extension_votes(self, challenge_id: int) -> Dict[str, bool]:
        return {
            p.identity: p.extension_vote
            for p in self.list_participants(challenge_id)
            if p.extension_vote is not None
        }

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _load_challenge(self, challenge_id: int) -> ChallengeRecord:
        challenge = self.store.challenges.get(challenge_id)
        if challenge is None:
            raise NotFoundError(f"Challenge {challenge_id} not found", ErrorCode.CHALLENGE_NOT_FOUND)
        return challenge

    def _load_participant(self, challenge_id: int, identity: str) -> ParticipantRecord:
        record = self.store.participants.get((challenge_id, identity))
        if record is None:
            raise NotFoundError(
                f"{identity} has not joined challenge {challenge_id}",
                ErrorCode.NOT_JOINED,
                context={"participant": identity},
            )
        return record

    @staticmethod
    def _require_creator(challenge: ChallengeRecord, ctx: CallContext) -> None:
        if ctx.caller != challenge.creator:
            raise NotAuthorizedError(
                f"Only the creator of challenge {challenge.challenge_id} may do this",
                context={"creator": challenge.creator},
            )

    @staticmethod
    def _require_active(challenge: ChallengeRecord) -> None:
        if not challenge.is_active:
            raise StateConflictError(
                f"Challenge {challenge.challenge_id} is not active",
                ErrorCode.CHALLENGE_NOT_ACTIVE,
                context={"state": challenge.state.value},
            )

    @classmethod
    def _require_open(cls, challenge: ChallengeRecord, block_height: int) -> None:
        """Active and before the end time."""
        cls._require_active(challenge)
        if not challenge.accepts_entries_at(block_height):
            raise StateConflictError(
                f"Challenge {challenge.challenge_id} ended at height {challenge.end_time}",
                ErrorCode.CHALLENGE_ENDED,
                context={"end_time": challenge.end_time},
            )

    def _emit(self, event_type: str, payload: Dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_type, payload)
