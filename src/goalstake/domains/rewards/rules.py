"""
Reward Rules - Pure Business Logic

Tier validation and the rank-tiered allocation algorithm.
No storage access, no side effects.

Allocation, per tier in the order the tiers were supplied:
1. Winners whose 1-based rank lies in [min_rank, max_rank]
2. tier_amount = floor(pool_balance * percentage / 100)
3. per_winner = floor(tier_amount / len(matching winners))

Truncated remainders stay in the pool untracked. Tiers may overlap; a winner
covered by two tiers is paid by both.
"""

from typing import Any, List, Sequence

from ...shared.exceptions import (
    ErrorCode,
    InvalidFieldError,
    InvariantViolationError,
    PercentageInvalidError,
)
from ...shared.utils.amounts import percent_of
from .model import Payout, RewardTier


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class RewardRules:
    """Validation and allocation for rank-tiered reward pools."""

    @staticmethod
    def coerce_tiers(tiers: Any) -> List[RewardTier]:
        """
        Normalise a list of RewardTier objects or tier mappings.

        Raises:
            PercentageInvalidError: INVALID_PERCENTAGE if tiers is not a list or tuple,
                or an entry cannot be read as a tier
        """
        if not isinstance(tiers, (list, tuple)):
            raise PercentageInvalidError(
                f"reward tiers must be a list, got {type(tiers).__name__}",
                ErrorCode.INVALID_PERCENTAGE,
            )
        return [tier if isinstance(tier, RewardTier) else RewardTier.from_dict(tier) for tier in tiers]

    @staticmethod
    def validate_tiers(tiers: Sequence[RewardTier]) -> None:
        """
        Validate a pool's tier list.

        Checked in order: non-empty, percentage sum <= 100, then each tier's
        percentage in [0, 100] and rank range (min_rank >= 1, max_rank > min_rank).
        Sums below 100 are allowed; the residual stays in the pool.

        Raises:
            PercentageInvalidError
        """
        if not tiers:
            raise PercentageInvalidError("at least one reward tier is required", ErrorCode.EMPTY_REWARD_TIERS)

        for index, tier in enumerate(tiers):
            if not (_is_int(tier.percentage) and _is_int(tier.min_rank) and _is_int(tier.max_rank)):
                raise PercentageInvalidError(
                    f"tier {index} fields must be integers",
                    ErrorCode.INVALID_PERCENTAGE,
                    context={"tier_index": index},
                )

        total = sum(tier.percentage for tier in tiers)
        if total > 100:
            raise PercentageInvalidError(
                f"tier percentages sum to {total}, more than 100",
                ErrorCode.PERCENT_SUM_EXCEEDS_100,
                context={"percentage_sum": total},
            )

        for index, tier in enumerate(tiers):
            if not 0 <= tier.percentage <= 100:
                raise PercentageInvalidError(
                    f"tier {index} percentage {tier.percentage} is outside 0..100",
                    ErrorCode.INVALID_PERCENTAGE,
                    context={"tier_index": index},
                )
            if tier.min_rank < 1 or tier.max_rank <= tier.min_rank:
                raise PercentageInvalidError(
                    f"tier {index} rank range {tier.min_rank}..{tier.max_rank} is invalid",
                    ErrorCode.INVALID_TIER_RANGE,
                    context={"tier_index": index},
                )

    @staticmethod
    def validate_winners(winners: Sequence[str]) -> None:
        if not isinstance(winners, (list, tuple)):
            raise InvalidFieldError(
                f"winners must be a list of identities, got {type(winners).__name__}",
                ErrorCode.INVALID_IDENTITY,
                field="winners",
            )
        if not winners:
            raise InvalidFieldError("winner list is empty", ErrorCode.NO_WINNERS, field="winners")
        for position, identity in enumerate(winners, start=1):
            if not (isinstance(identity, str) and identity):
                raise InvalidFieldError(
                    f"winner at rank {position} is not a valid identity",
                    ErrorCode.INVALID_IDENTITY,
                    field="winners",
                    context={"rank": position},
                )

    @staticmethod
    def allocate(pool_balance: int, tiers: Sequence[RewardTier], winners: Sequence[str]) -> List[Payout]:
        """
        Compute every payout for a pool.

        Tiers that match no winner are skipped. The result is ordered by tier,
        then by rank.

        Raises:
            InvariantViolationError: if the payouts would exceed the pool
        """
        payouts: List[Payout] = []

        for tier_index, tier in enumerate(tiers):
            matched = [
                (rank, identity)
                for rank, identity in enumerate(winners, start=1)
                if tier.covers(rank)
            ]
            if not matched:
                continue

            tier_amount = percent_of(pool_balance, tier.percentage)
            per_winner = tier_amount // len(matched)

            for rank, identity in matched:
                payouts.append(Payout(identity=identity, rank=rank, tier_index=tier_index, amount=per_winner))

        total = sum(p.amount for p in payouts)
        if total > pool_balance:
            raise InvariantViolationError(
                f"allocation of {total} exceeds pool balance {pool_balance}",
                context={"pool_balance": pool_balance, "allocated": total},
            )
        return payouts
