"""
Reward Distribution Engine

Splits a closed pool among ranked winners by percentage tiers and credits
the results to the user reward ledger, exactly once per pool.

Pool lifecycle:
    initialize_pool    -> is_active=True  (balance may be adjusted)
    register_winners   -> is_active=False (roster recorded, balance locked)
    distribute_rewards -> is_distributed=True (terminal)

Only the distributor authority may change pools. Anyone may claim their own
accrued balance.
"""

from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog

from ...core.event_bus import EventBus
from ...infrastructure.common.context import CallContext
from ...infrastructure.logging.structured_logger import log_rejections
from ...infrastructure.persistence.store import DEFAULT_AUTHORITY, StateStore
from ...shared.exceptions import (
    AlreadyExistsError,
    ApplicationError,
    ErrorCode,
    InsufficientFundsError,
    NotAuthorizedError,
    NotFoundError,
    StateConflictError,
)
from ...shared.utils.amounts import checked_add, require_amount
from ..challenge.rules import ChallengeRules
from ..ledger.settlement import ClaimSettlement
from .model import (
    ChallengePool,
    DistributionLogEntry,
    DistributionSummary,
    DistributorState,
    RewardTier,
    UserReward,
)
from .rules import RewardRules

logger = structlog.get_logger(__name__)

TierInput = Union[RewardTier, Mapping[str, Any]]


class RewardDistributionEngine:
    """Pool bookkeeping, tiered distribution and pooled reward claims."""

    def __init__(
        self,
        store: StateStore,
        event_bus: Optional[EventBus] = None,
        settlement: Optional[ClaimSettlement] = None,
        authority_id: str = DEFAULT_AUTHORITY,
    ):
        self.store = store
        self.event_bus = event_bus
        self.settlement = settlement or ClaimSettlement(store)
        self.authority_id = authority_id

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def install(self, distributor: str) -> DistributorState:
        """Seed the distributor authority. Does nothing if it already exists."""
        ChallengeRules.validate_identity(distributor, "distributor")
        with self.store.transaction():
            existing = self.store.distributor_state.get(self.authority_id)
            if existing is not None:
                return existing
            state = self.store.distributor_state.save(
                self.authority_id,
                DistributorState(distributor=distributor, authority_id=self.authority_id),
                None,
            )

        logger.info("Reward distributor installed", distributor=distributor)
        return state

    def set_distributor(self, ctx: CallContext, new_distributor: str) -> DistributorState:
        with log_rejections(logger, "set_distributor", **ctx.to_log_fields()):
            with self.store.transaction():
                state = self._require_distributor(ctx)
                ChallengeRules.validate_identity(new_distributor, "new_distributor")
                state = self.store.distributor_state.save(
                    self.authority_id,
                    replace(state, distributor=new_distributor),
                    state.version,
                )

        logger.info("Distributor changed", new_distributor=new_distributor, **ctx.to_log_fields())
        self._emit("DISTRIBUTOR_CHANGED", {"previous": ctx.caller, "distributor": new_distributor})
        return state

    # ------------------------------------------------------------------
    # Pool operations
    # ------------------------------------------------------------------

    def initialize_pool(
        self,
        ctx: CallContext,
        challenge_id: int,
        initial_balance: int,
        tiers: Sequence[TierInput],
    ) -> ChallengePool:
        """
        Create the reward pool of a challenge.

        Tier percentages may sum to less than 100; the residual stays in
        the pool.

        Raises:
            NotAuthorizedError: caller is not the distributor
            AlreadyExistsError: POOL_EXISTS
            PercentageInvalidError: EMPTY_REWARD_TIERS, PERCENT_SUM_EXCEEDS_100,
                INVALID_PERCENTAGE, INVALID_TIER_RANGE
            InvalidFieldError: INVALID_AMOUNT
        """
        with log_rejections(logger, "initialize_pool", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                self._require_distributor(ctx)
                if self.store.pools.get(challenge_id) is not None:
                    raise AlreadyExistsError(
                        f"Pool for challenge {challenge_id} already exists",
                        ErrorCode.POOL_EXISTS,
                    )
                reward_tiers = RewardRules.coerce_tiers(tiers)
                RewardRules.validate_tiers(reward_tiers)
                require_amount(initial_balance, "initial_balance")

                pool = self.store.pools.save(
                    challenge_id,
                    ChallengePool(
                        challenge_id=challenge_id,
                        pool_balance=initial_balance,
                        reward_tiers=reward_tiers,
                        created_at=ctx.block_height,
                    ),
                    None,
                )

        logger.info(
            "Reward pool initialized",
            challenge_id=challenge_id,
            pool_balance=initial_balance,
            tier_count=len(reward_tiers),
            **ctx.to_log_fields(),
        )
        self._emit("POOL_INITIALIZED", {
            "challenge_id": challenge_id,
            "pool_balance": initial_balance,
            "reward_tiers": [t.to_dict() for t in reward_tiers],
        })
        return pool

    def register_winners(self, ctx: CallContext, challenge_id: int, winners: Sequence[str]) -> ChallengePool:
        """
        Record the ranked winner roster and close the pool to balance changes.

        List position (1-based) is the rank used for tier matching. The
        roster may be replaced until the pool is distributed.

        Raises:
            NotAuthorizedError: caller is not the distributor
            NotFoundError: POOL_NOT_FOUND
            StateConflictError: DISTRIBUTION_COMPLETED
            InvalidFieldError: NO_WINNERS, INVALID_IDENTITY
        """
        with log_rejections(logger, "register_winners", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                self._require_distributor(ctx)
                pool = self._load_pool(challenge_id)
                if pool.is_distributed:
                    raise StateConflictError(
                        f"Pool for challenge {challenge_id} is already distributed",
                        ErrorCode.DISTRIBUTION_COMPLETED,
                    )
                RewardRules.validate_winners(winners)

                roster = list(winners)
                pool = self.store.pools.save(
                    challenge_id,
                    replace(pool, winners=roster, winners_count=len(roster), is_active=False),
                    pool.version,
                )

        logger.info(
            "Winners registered",
            challenge_id=challenge_id,
            winners_count=pool.winners_count,
            **ctx.to_log_fields(),
        )
        self._emit("WINNERS_REGISTERED", {
            "challenge_id": challenge_id,
            "winners": list(pool.winners),
            "winners_count": pool.winners_count,
        })
        return pool

    def distribute_rewards(self, ctx: CallContext, challenge_id: int) -> DistributionSummary:
        """
        Credit every winner's tier share to the user reward ledger.

        Runs once per pool. Each payout is credited and logged in the same
        transaction that latches is_distributed.

        Raises:
            NotAuthorizedError: caller is not the distributor
            NotFoundError: POOL_NOT_FOUND, WINNERS_NOT_REGISTERED
            StateConflictError: POOL_ACTIVE, REWARDS_ALREADY_DISTRIBUTED
            InsufficientFundsError: INSUFFICIENT_POOL
            LimitExceededError: AMOUNT_OVERFLOW on a winner's balance
        """
        with log_rejections(logger, "distribute_rewards", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                authority = self._require_distributor(ctx)
                pool = self._load_pool(challenge_id)
                if pool.winners is None:
                    raise NotFoundError(
                        f"No winners registered for challenge {challenge_id}",
                        ErrorCode.WINNERS_NOT_REGISTERED,
                    )
                if pool.is_active:
                    raise StateConflictError(
                        f"Pool for challenge {challenge_id} is still open",
                        ErrorCode.POOL_ACTIVE,
                    )
                if pool.is_distributed:
                    raise StateConflictError(
                        f"Rewards for challenge {challenge_id} were already distributed",
                        ErrorCode.REWARDS_ALREADY_DISTRIBUTED,
                    )
                if pool.pool_balance <= 0:
                    raise InsufficientFundsError(
                        f"Pool for challenge {challenge_id} is empty",
                        ErrorCode.INSUFFICIENT_POOL,
                    )

                nonce = authority.distribution_nonce
                payouts = RewardRules.allocate(pool.pool_balance, pool.reward_tiers, pool.winners)

                for payout in payouts:
                    self._credit(payout.identity, payout.amount)
                    self.store.distribution_log.append(
                        DistributionLogEntry(
                            distribution_nonce=nonce,
                            challenge_id=challenge_id,
                            recipient=payout.identity,
                            rank=payout.rank,
                            amount=payout.amount,
                            distributor=ctx.caller,
                            block_height=ctx.block_height,
                        )
                    )

                summary = DistributionSummary(
                    challenge_id=challenge_id,
                    distribution_nonce=nonce,
                    pool_balance=pool.pool_balance,
                    payouts=payouts,
                )
                self.store.pools.save(
                    challenge_id,
                    replace(
                        pool,
                        is_distributed=True,
                        total_distributed=summary.total_credited,
                        distributed_at=ctx.block_height,
                    ),
                    pool.version,
                )
                self.store.distributor_state.save(
                    self.authority_id,
                    replace(authority, distribution_nonce=nonce + 1),
                    authority.version,
                )

        logger.info(
            "Rewards distributed",
            challenge_id=challenge_id,
            distribution_nonce=nonce,
            payout_count=len(summary.payouts),
            total_credited=summary.total_credited,
            remainder=summary.remainder,
            **ctx.to_log_fields(),
        )
        self._emit("REWARDS_DISTRIBUTED", {
            "challenge_id": challenge_id,
            "distribution_nonce": nonce,
            "total_credited": summary.total_credited,
            "remainder": summary.remainder,
            "payouts": [
                {"identity": p.identity, "rank": p.rank, "tier_index": p.tier_index, "amount": p.amount}
                for p in summary.payouts
            ],
        })
        return summary

    def update_pool_balance(self, ctx: CallContext, challenge_id: int, amount: int, is_add: bool) -> ChallengePool:
        """
        Add to or subtract from an open pool.

        Additions also raise total_contributed, which is never decreased.

        Raises:
            NotAuthorizedError: caller is not the distributor
            NotFoundError: POOL_NOT_FOUND
            StateConflictError: POOL_LOCKED (winners registered)
            InvalidFieldError: INVALID_AMOUNT
            InsufficientFundsError: INSUFFICIENT_POOL (subtraction below zero)
            LimitExceededError: AMOUNT_OVERFLOW
        """
        with log_rejections(logger, "update_pool_balance", challenge_id=challenge_id, **ctx.to_log_fields()):
            with self.store.transaction():
                self._require_distributor(ctx)
                pool = self._load_pool(challenge_id)
                if not pool.is_active:
                    raise StateConflictError(
                        f"Pool for challenge {challenge_id} is locked",
                        ErrorCode.POOL_LOCKED,
                    )
                require_amount(amount, "amount")

                if is_add:
                    changes = {
                        "pool_balance": checked_add(pool.pool_balance, amount, "pool_balance"),
                        "total_contributed": checked_add(pool.total_contributed, amount, "total_contributed"),
                    }
                else:
                    if amount > pool.pool_balance:
                        raise InsufficientFundsError(
                            f"Cannot remove {amount} from a pool holding {pool.pool_balance}",
                            ErrorCode.INSUFFICIENT_POOL,
                            context={"pool_balance": pool.pool_balance, "amount": amount},
                        )
                    changes = {"pool_balance": pool.pool_balance - amount}

                pool = self.store.pools.save(challenge_id, replace(pool, **changes), pool.version)

        logger.info(
            "Pool balance updated",
            challenge_id=challenge_id,
            amount=amount,
            is_add=is_add,
            pool_balance=pool.pool_balance,
            **ctx.to_log_fields(),
        )
        self._emit("POOL_BALANCE_UPDATED", {
            "challenge_id": challenge_id,
            "amount": amount,
            "is_add": is_add,
            "pool_balance": pool.pool_balance,
            "total_contributed": pool.total_contributed,
        })
        return pool

    def claim_reward(self, ctx: CallContext) -> int:
        """
        Withdraw the caller's whole accrued balance.

        Returns:
            The amount withdrawn

        Raises:
            InsufficientFundsError: NO_REWARDS_AVAILABLE
        """
        with log_rejections(logger, "claim_reward_balance", **ctx.to_log_fields()):
            with self.store.transaction():
                reward = self.store.user_rewards.get(ctx.caller)
                if reward is None or reward.amount <= 0:
                    raise InsufficientFundsError(
                        f"{ctx.caller} has no rewards to claim",
                        ErrorCode.NO_REWARDS_AVAILABLE,
                    )
                amount = reward.amount
                intent = self.settlement.settle_balance(reward, ctx.block_height)

        logger.info("Reward balance claimed", amount=amount, intent_sequence=intent.sequence, **ctx.to_log_fields())
        self._emit("REWARD_BALANCE_CLAIMED", {"identity": ctx.caller, "amount": amount})
        return amount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pool(self, challenge_id: int) -> Optional[ChallengePool]:
        with self.store.transaction():
            return self.store.pools.get(challenge_id)

    def get_user_reward(self, identity: str) -> Optional[UserReward]:
        with self.store.transaction():
            return self.store.user_rewards.get(identity)

    def get_reward_balance(self, identity: str) -> int:
        """Withdrawable balance, 0 when nothing was ever credited."""
        reward = self.get_user_reward(identity)
        return reward.amount if reward is not None else 0

    def get_distributor(self) -> Optional[DistributorState]:
        with self.store.transaction():
            return self.store.distributor_state.get(self.authority_id)

    def get_distribution_log(self, challenge_id: Optional[int] = None) -> List[DistributionLogEntry]:
        """Payout audit entries in sequence order, optionally for one challenge."""
        with self.store.transaction():
            if challenge_id is None:
                return self.store.distribution_log.entries()
            return self.store.distribution_log.entries(challenge_id=challenge_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _credit(self, identity: str, amount: int) -> UserReward:
        current = self.store.user_rewards.get(identity)
        if current is None:
            return self.store.user_rewards.save(
                identity,
                UserReward(identity=identity, amount=amount, total_credited=amount),
                None,
            )
        return self.store.user_rewards.save(
            identity,
            replace(
                current,
                amount=checked_add(current.amount, amount, "reward_balance"),
                total_credited=checked_add(current.total_credited, amount, "total_credited"),
            ),
            current.version,
        )

    def _require_distributor(self, ctx: CallContext) -> DistributorState:
        state = self.store.distributor_state.get(self.authority_id)
        if state is None:
            raise ApplicationError("Reward distributor is not installed")
        if ctx.caller != state.distributor:
            raise NotAuthorizedError("Only the reward distributor may do this")
        return state

    def _load_pool(self, challenge_id: int) -> ChallengePool:
        pool = self.store.pools.get(challenge_id)
        if pool is None:
            raise NotFoundError(f"No reward pool for challenge {challenge_id}", ErrorCode.POOL_NOT_FOUND)
        return pool

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_type, payload)
