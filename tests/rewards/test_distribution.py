"""
Unit tests for the reward distribution engine.

Pool creation, winner registration, balance updates, distribution and the
pooled balance claim.
"""

from unittest.mock import patch

import pytest

from goalstake.domains.ledger.intents import IntentKind
from goalstake.domains.rewards.model import RewardTier, UserReward
from goalstake.shared.exceptions import (
    AlreadyExistsError,
    ErrorCode,
    InsufficientFundsError,
    InvalidFieldError,
    LimitExceededError,
    NotAuthorizedError,
    NotFoundError,
    PercentageInvalidError,
    StateConflictError,
)
from goalstake.shared.utils.amounts import MAX_AMOUNT

from tests.builders import ALICE, BOB, CAROL, DISTRIBUTOR, MALLORY, ctx

FULL_TIER = [{"percentage": 100, "min_rank": 1, "max_rank": 3}]


class TestInitializePool:

    def test_pool_created_open(self, rewards, event_bus):
        pool = rewards.initialize_pool(ctx(DISTRIBUTOR, 3), 1, 1000, FULL_TIER)

        assert pool.pool_balance == 1000
        assert pool.is_active is True
        assert pool.is_distributed is False
        assert pool.reward_tiers == [RewardTier(100, 1, 3)]
        assert pool.created_at == 3
        assert event_bus.emit.call_args[0][0] == "POOL_INITIALIZED"

    @pytest.mark.security
    def test_only_distributor(self, rewards):
        with pytest.raises(NotAuthorizedError):
            rewards.initialize_pool(ctx(MALLORY), 1, 1000, FULL_TIER)

        assert rewards.get_pool(1) is None

    def test_existing_pool_conflict(self, rewards, funded_pool):
        with pytest.raises(AlreadyExistsError) as exc_info:
            rewards.initialize_pool(ctx(DISTRIBUTOR), funded_pool, 5, FULL_TIER)

        assert exc_info.value.code == ErrorCode.POOL_EXISTS
        assert rewards.get_pool(funded_pool).pool_balance == 1000

    def test_tier_sum_over_100(self, rewards):
        tiers = [{"percentage": 60, "min_rank": 1, "max_rank": 2}, {"percentage": 50, "min_rank": 2, "max_rank": 3}]

        with pytest.raises(PercentageInvalidError) as exc_info:
            rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 1000, tiers)

        assert exc_info.value.code == ErrorCode.PERCENT_SUM_EXCEEDS_100
        assert rewards.get_pool(1) is None

    def test_empty_tiers(self, rewards):
        with pytest.raises(PercentageInvalidError) as exc_info:
            rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 1000, [])

        assert exc_info.value.code == ErrorCode.EMPTY_REWARD_TIERS

    def test_negative_balance(self, rewards):
        with pytest.raises(InvalidFieldError) as exc_info:
            rewards.initialize_pool(ctx(DISTRIBUTOR), 1, -1, FULL_TIER)

        assert exc_info.value.code == ErrorCode.INVALID_AMOUNT

    @pytest.mark.parametrize(
        "tiers",
        [
            [{"percentage": 100, "minRank": 1, "maxRank": 3}],
            [{"percentage": 100, "min_rank": 1}],
            [(100, 1, 3)],
            None,
            {"percentage": 100, "min_rank": 1, "max_rank": 3},
        ],
    )
    def test_malformed_tiers_rejected(self, rewards, tiers):
        """WHEN tiers are not a list of tier mappings with the expected keys
        THEN INVALID_PERCENTAGE and no pool is created
        """
        with pytest.raises(PercentageInvalidError) as exc_info:
            rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 1000, tiers)

        assert exc_info.value.code == ErrorCode.INVALID_PERCENTAGE
        assert rewards.get_pool(1) is None

    @pytest.mark.security
    def test_authorization_checked_before_tier_parsing(self, rewards):
        with pytest.raises(NotAuthorizedError):
            rewards.initialize_pool(ctx(MALLORY), 1, 1000, [{"pct": 100}])

    def test_malformed_tiers_are_logged_as_rejections(self, rewards):
        with patch("goalstake.domains.rewards.engine.logger") as engine_logger:
            with pytest.raises(PercentageInvalidError):
                rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 1000, None)

        engine_logger.warning.assert_called_once()
        assert engine_logger.warning.call_args.kwargs["error_code"] == ErrorCode.INVALID_PERCENTAGE.value


class TestRegisterWinners:

    def test_registration_closes_pool(self, rewards, funded_pool):
        pool = rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB, CAROL])

        assert pool.winners == [ALICE, BOB, CAROL]
        assert pool.winners_count == 3
        assert pool.is_active is False

    def test_roster_can_be_replaced_before_distribution(self, rewards, funded_pool):
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB, CAROL])

        pool = rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [CAROL])

        assert pool.winners == [CAROL]
        assert pool.winners_count == 1

    def test_unknown_pool(self, rewards):
        with pytest.raises(NotFoundError) as exc_info:
            rewards.register_winners(ctx(DISTRIBUTOR), 42, [ALICE])

        assert exc_info.value.code == ErrorCode.POOL_NOT_FOUND

    def test_empty_roster(self, rewards, funded_pool):
        with pytest.raises(InvalidFieldError) as exc_info:
            rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [])

        assert exc_info.value.code == ErrorCode.NO_WINNERS
        assert rewards.get_pool(funded_pool).is_active is True

    def test_after_distribution_rejected(self, rewards, funded_pool):
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE])
        rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)

        with pytest.raises(StateConflictError) as exc_info:
            rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [BOB])

        assert exc_info.value.code == ErrorCode.DISTRIBUTION_COMPLETED
        assert rewards.get_pool(funded_pool).winners == [ALICE]

    def test_string_roster_rejected(self, rewards, funded_pool):
        """WHEN the roster is a bare string
        THEN INVALID_IDENTITY rather than one winner per character
        """
        with pytest.raises(InvalidFieldError) as exc_info:
            rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, "ABC")

        assert exc_info.value.code == ErrorCode.INVALID_IDENTITY
        assert rewards.get_pool(funded_pool).winners is None

    @pytest.mark.security
    def test_only_distributor(self, rewards, funded_pool):
        with pytest.raises(NotAuthorizedError):
            rewards.register_winners(ctx(MALLORY), funded_pool, [MALLORY])


class TestDistributeRewards:
    """The one-time split."""

    def test_three_way_split(self, rewards, funded_pool, event_bus):
        """WHEN 1000 is split 100% among A, B, C on ranks 1..3
        THEN each is credited 333, 999 in total, 1 truncated
        """
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB, CAROL])
        event_bus.reset_mock()

        summary = rewards.distribute_rewards(ctx(DISTRIBUTOR, 50), funded_pool)

        assert [p.amount for p in summary.payouts] == [333, 333, 333]
        assert summary.total_credited == 999
        assert summary.remainder == 1
        for identity in (ALICE, BOB, CAROL):
            assert rewards.get_reward_balance(identity) == 333

        pool = rewards.get_pool(funded_pool)
        assert pool.is_distributed is True
        assert pool.total_distributed == 999
        assert pool.pool_balance == 1000
        assert pool.distributed_at == 50
        assert event_bus.emit.call_args[0][0] == "REWARDS_DISTRIBUTED"

    def test_log_records_each_payout(self, rewards, funded_pool):
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB])
        rewards.distribute_rewards(ctx(DISTRIBUTOR, 50), funded_pool)

        log = rewards.get_distribution_log(funded_pool)

        assert [(e.recipient, e.rank, e.amount) for e in log] == [(ALICE, 1, 500), (BOB, 2, 500)]
        assert all(e.distributor == DISTRIBUTOR and e.block_height == 50 for e in log)
        assert [e.sequence for e in log] == sorted(e.sequence for e in log)

    def test_second_distribution_rejected_without_double_credit(self, rewards, funded_pool):
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB, CAROL])
        rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)

        with pytest.raises(StateConflictError) as exc_info:
            rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)

        assert exc_info.value.code == ErrorCode.REWARDS_ALREADY_DISTRIBUTED
        assert rewards.get_reward_balance(ALICE) == 333
        assert len(rewards.get_distribution_log(funded_pool)) == 3

    def test_nonce_advances_per_distribution(self, rewards, funded_pool):
        rewards.initialize_pool(ctx(DISTRIBUTOR), 8, 10, FULL_TIER)
        for cid in (funded_pool, 8):
            rewards.register_winners(ctx(DISTRIBUTOR), cid, [ALICE])

        first = rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)
        second = rewards.distribute_rewards(ctx(DISTRIBUTOR), 8)

        assert (first.distribution_nonce, second.distribution_nonce) == (0, 1)
        assert rewards.get_distributor().distribution_nonce == 2
        assert rewards.get_reward_balance(ALICE) == 1010

    def test_without_winners(self, rewards, funded_pool):
        with pytest.raises(NotFoundError) as exc_info:
            rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)

        assert exc_info.value.code == ErrorCode.WINNERS_NOT_REGISTERED

    def test_unknown_pool(self, rewards):
        with pytest.raises(NotFoundError) as exc_info:
            rewards.distribute_rewards(ctx(DISTRIBUTOR), 3)

        assert exc_info.value.code == ErrorCode.POOL_NOT_FOUND

    def test_empty_pool(self, rewards):
        rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 0, FULL_TIER)
        rewards.register_winners(ctx(DISTRIBUTOR), 1, [ALICE])

        with pytest.raises(InsufficientFundsError) as exc_info:
            rewards.distribute_rewards(ctx(DISTRIBUTOR), 1)

        assert exc_info.value.code == ErrorCode.INSUFFICIENT_POOL
        assert rewards.get_pool(1).is_distributed is False

    @pytest.mark.security
    def test_only_distributor(self, rewards, funded_pool):
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE])

        with pytest.raises(NotAuthorizedError):
            rewards.distribute_rewards(ctx(ALICE), funded_pool)

        assert rewards.get_reward_balance(ALICE) == 0

    def test_overflowing_credit_rolls_back_everything(self, rewards, store):
        """WHEN one winner's balance would cross the maximum amount
        THEN AMOUNT_OVERFLOW and no winner is credited, no log written
        """
        rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 10, [{"percentage": 100, "min_rank": 1, "max_rank": 2}])
        rewards.register_winners(ctx(DISTRIBUTOR), 1, [ALICE, BOB])
        with store.transaction():
            store.user_rewards.put(BOB, UserReward(BOB, amount=MAX_AMOUNT, total_credited=MAX_AMOUNT))

        with pytest.raises(LimitExceededError) as exc_info:
            rewards.distribute_rewards(ctx(DISTRIBUTOR), 1)

        assert exc_info.value.code == ErrorCode.AMOUNT_OVERFLOW
        assert rewards.get_reward_balance(ALICE) == 0
        assert rewards.get_distribution_log() == []
        assert rewards.get_pool(1).is_distributed is False


class TestUpdatePoolBalance:

    def test_add_raises_balance_and_total_contributed(self, rewards, funded_pool):
        pool = rewards.update_pool_balance(ctx(DISTRIBUTOR), funded_pool, 250, True)

        assert pool.pool_balance == 1250
        assert pool.total_contributed == 250

    def test_subtract_keeps_total_contributed(self, rewards, funded_pool):
        rewards.update_pool_balance(ctx(DISTRIBUTOR), funded_pool, 250, True)

        pool = rewards.update_pool_balance(ctx(DISTRIBUTOR), funded_pool, 400, False)

        assert pool.pool_balance == 850
        assert pool.total_contributed == 250

    def test_subtract_below_zero(self, rewards, funded_pool):
        with pytest.raises(InsufficientFundsError) as exc_info:
            rewards.update_pool_balance(ctx(DISTRIBUTOR), funded_pool, 1001, False)

        assert exc_info.value.code == ErrorCode.INSUFFICIENT_POOL
        assert rewards.get_pool(funded_pool).pool_balance == 1000

    def test_locked_after_registration(self, rewards, funded_pool):
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE])

        with pytest.raises(StateConflictError) as exc_info:
            rewards.update_pool_balance(ctx(DISTRIBUTOR), funded_pool, 10, True)

        assert exc_info.value.code == ErrorCode.POOL_LOCKED

    def test_overflow(self, rewards, funded_pool):
        with pytest.raises(LimitExceededError) as exc_info:
            rewards.update_pool_balance(ctx(DISTRIBUTOR), funded_pool, MAX_AMOUNT, True)

        assert exc_info.value.code == ErrorCode.AMOUNT_OVERFLOW

    @pytest.mark.security
    def test_only_distributor(self, rewards, funded_pool):
        with pytest.raises(NotAuthorizedError):
            rewards.update_pool_balance(ctx(MALLORY), funded_pool, 10, False)


class TestClaimRewardBalance:
    """Pooled balance withdrawal."""

    def test_claim_pays_once(self, rewards, store, funded_pool):
        """WHEN Alice claims her 333 twice
        THEN the first pays 333 with one withdraw intent, the second fails
        """
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB, CAROL])
        rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)

        assert rewards.claim_reward(ctx(ALICE, 60)) == 333

        with pytest.raises(InsufficientFundsError) as exc_info:
            rewards.claim_reward(ctx(ALICE, 61))

        assert exc_info.value.code == ErrorCode.NO_REWARDS_AVAILABLE
        with store.transaction():
            withdrawals = store.intents.entries(lambda i: i.kind == IntentKind.WITHDRAW)
        assert [(w.amount, w.identity, w.challenge_id) for w in withdrawals] == [(333, ALICE, None)]

    def test_totals_track_credited_and_claimed(self, rewards, funded_pool):
        rewards.initialize_pool(ctx(DISTRIBUTOR), 8, 100, FULL_TIER)
        rewards.register_winners(ctx(DISTRIBUTOR), funded_pool, [ALICE, BOB, CAROL])
        rewards.distribute_rewards(ctx(DISTRIBUTOR), funded_pool)
        rewards.claim_reward(ctx(ALICE))
        rewards.register_winners(ctx(DISTRIBUTOR), 8, [ALICE])
        rewards.distribute_rewards(ctx(DISTRIBUTOR), 8)

        reward = rewards.get_user_reward(ALICE)

        assert reward.amount == 100
        assert reward.total_credited == 433
        assert reward.total_claimed == 333

    def test_claim_without_rewards(self, rewards):
        with pytest.raises(InsufficientFundsError) as exc_info:
            rewards.claim_reward(ctx(MALLORY))

        assert exc_info.value.code == ErrorCode.NO_REWARDS_AVAILABLE


class TestDistributorAuthority:

    def test_set_distributor(self, rewards, event_bus):
        rewards.set_distributor(ctx(DISTRIBUTOR), ALICE)

        assert rewards.get_distributor().distributor == ALICE
        with pytest.raises(NotAuthorizedError):
            rewards.initialize_pool(ctx(DISTRIBUTOR), 1, 10, FULL_TIER)
        assert event_bus.emit.call_args_list[0][0][0] == "DISTRIBUTOR_CHANGED"

    @pytest.mark.security
    def test_non_distributor_cannot_take_over(self, rewards):
        with pytest.raises(NotAuthorizedError):
            rewards.set_distributor(ctx(MALLORY), MALLORY)

        assert rewards.get_distributor().distributor == DISTRIBUTOR
