"""
Reward distribution records.

ChallengePool, the tier list and the winners roster belong to the
distribution engine. UserReward is shared: only the engine increments it and
only claim settlement zeroes it.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ...shared.exceptions import ErrorCode, PercentageInvalidError


@dataclass(frozen=True)
class RewardTier:
    """Percentage of the pool shared by the winners ranked min_rank..max_rank (inclusive)."""

    percentage: int
    min_rank: int
    max_rank: int

    def covers(self, rank: int) -> bool:
        return self.min_rank <= rank <= self.max_rank

    def to_dict(self) -> Dict[str, int]:
        return {"percentage": self.percentage, "min_rank": self.min_rank, "max_rank": self.max_rank}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RewardTier":
        """
        Build a tier from a mapping with percentage, min_rank and max_rank.

        Raises:
            PercentageInvalidError: INVALID_PERCENTAGE if data is not a mapping or lacks a key
        """
        if not isinstance(data, Mapping):
            raise PercentageInvalidError(
                f"reward tier must be a mapping, got {type(data).__name__}",
                ErrorCode.INVALID_PERCENTAGE,
            )
        missing = [key for key in ("percentage", "min_rank", "max_rank") if key not in data]
        if missing:
            raise PercentageInvalidError(
                f"reward tier is missing {', '.join(missing)}",
                ErrorCode.INVALID_PERCENTAGE,
                context={"missing": missing},
            )
        return cls(
            percentage=data["percentage"],
            min_rank=data["min_rank"],
            max_rank=data["max_rank"],
        )


@dataclass
class ChallengePool:
    """Reward pool of one challenge."""

    challenge_id: int
    pool_balance: int
    reward_tiers: List[RewardTier]
    total_contributed: int = 0
    total_distributed: int = 0
    winners_count: int = 0
    winners: Optional[List[str]] = None  # None until registered; list position + 1 is rank
    is_active: bool = True
    is_distributed: bool = False
    created_at: int = 0
    distributed_at: Optional[int] = None
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reward_tiers"] = [tier.to_dict() for tier in self.reward_tiers]
        data["winners"] = list(self.winners) if self.winners is not None else None
        return data


@dataclass
class UserReward:
    """Withdrawable reward balance of one identity, accumulated across challenges."""

    identity: str
    amount: int = 0
    total_credited: int = 0
    total_claimed: int = 0
    version: int = 0


@dataclass
class DistributionLogEntry:
    """Audit record of one winner payout. Append-only."""

    distribution_nonce: int
    challenge_id: int
    recipient: str
    rank: int
    amount: int
    distributor: str
    block_height: int
    sequence: Optional[int] = None


@dataclass
class DistributorState:
    """Deployment-wide distributor authority record."""

    distributor: str
    distribution_nonce: int = 0
    authority_id: str = "default"
    version: int = 0


@dataclass(frozen=True)
class Payout:
    """One winner's share from one tier."""

    identity: str
    rank: int
    tier_index: int
    amount: int


@dataclass(frozen=True)
class DistributionSummary:
    """Outcome of distributing one pool."""

    challenge_id: int
    distribution_nonce: int
    pool_balance: int
    payouts: List[Payout] = field(default_factory=list)

    @property
    def total_credited(self) -> int:
        return sum(p.amount for p in self.payouts)

    @property
    def remainder(self) -> int:
        """Amount left in the pool by unallocated percentages and floor-division truncation."""
        return self.pool_balance - self.total_credited
