"""
Unit tests for claim settlement and the intent relay.
"""

import pytest

from goalstake.domains.challenge.model import ParticipantRecord
from goalstake.domains.ledger.custodian import IntentRelay, RecordingCustodian
from goalstake.domains.ledger.intents import IntentKind, LedgerIntent
from goalstake.domains.rewards.model import UserReward
from goalstake.shared.exceptions import ConcurrencyError

from tests.builders import ALICE, BOB, CREATOR, DISTRIBUTOR, ctx


class TestClaimSettlement:
    """Flag or balance change and withdrawal intent commit together."""

    def test_settle_balance_zeroes_and_records(self, store, settlement):
        with store.transaction():
            reward = store.user_rewards.save(ALICE, UserReward(ALICE, amount=70, total_credited=70), None)

        intent = settlement.settle_balance(reward, block_height=9)

        with store.transaction():
            stored = store.user_rewards.get(ALICE)
        assert (stored.amount, stored.total_claimed, stored.total_credited) == (0, 70, 70)
        assert (intent.kind, intent.amount, intent.challenge_id, intent.block_height) == (
            IntentKind.WITHDRAW, 70, None, 9
        )

    def test_stale_balance_is_not_paid(self, store, settlement):
        """WHEN settlement is given a balance that changed after it was read
        THEN ConcurrencyError and no withdrawal intent is recorded
        """
        with store.transaction():
            stale = store.user_rewards.save(ALICE, UserReward(ALICE, amount=70, total_credited=70), None)
            store.user_rewards.save(ALICE, UserReward(ALICE, amount=0, total_credited=70, total_claimed=70), 1)

        with pytest.raises(ConcurrencyError):
            settlement.settle_balance(stale, block_height=9)

        with store.transaction():
            assert store.intents.entries() == []

    def test_participant_settlement_rolls_back_with_outer_transaction(self, store, settlement):
        """WHEN the enclosing transaction fails after settlement
        THEN neither the claimed flag nor the intent survives
        """
        with store.transaction():
            participant = store.participants.save(
                (0, ALICE), ParticipantRecord(challenge_id=0, identity=ALICE, contribution=200, completed=True), None
            )

        with pytest.raises(RuntimeError):
            with store.transaction():
                settlement.settle_participant(participant, 100, block_height=31)
                raise RuntimeError("custodian bookkeeping failed")

        with store.transaction():
            assert store.participants.get((0, ALICE)).claimed is False
            assert store.intents.entries() == []


class FlakyCustodian(RecordingCustodian):
    """Rejects the first withdrawal it sees."""

    def __init__(self):
        super().__init__()
        self.failed = False

    def withdraw(self, amount, identity, challenge_id):
        if not self.failed:
            self.failed = True
            raise ConnectionError("custodian unavailable")
        super().withdraw(amount, identity, challenge_id)


class TestIntentRelay:
    """Outbox delivery to the custodian."""

    def test_relay_dispatches_in_sequence_order(self, store, relay, custodian):
        with store.transaction():
            store.intents.append(LedgerIntent.deposit(200, ALICE, 0, 1))
            store.intents.append(LedgerIntent.penalty(10, BOB, 0, 2))
            store.intents.append(LedgerIntent.withdraw(100, ALICE, 0, 3))

        assert relay.relay() == 3

        assert [(d.amount, d.identity) for d in custodian.deposits] == [(200, ALICE)]
        assert [(p.amount, p.identity) for p in custodian.penalties] == [(10, BOB)]
        assert custodian.total_withdrawn(ALICE) == 100
        with store.transaction():
            assert store.intents.pending() == []

    def test_relay_is_not_repeated(self, store, relay, custodian):
        with store.transaction():
            store.intents.append(LedgerIntent.deposit(200, ALICE, 0, 1))

        relay.relay()
        assert relay.relay() == 0
        assert len(custodian.deposits) == 1

    def test_relay_respects_limit(self, store, relay):
        with store.transaction():
            for height in range(5):
                store.intents.append(LedgerIntent.deposit(100, ALICE, 0, height))

        assert relay.relay(limit=2) == 2
        with store.transaction():
            assert len(store.intents.pending()) == 3

    def test_gateway_failure_stops_batch_and_keeps_intent(self, store):
        """WHEN the custodian rejects the second intent
        THEN the first is dispatched, the rest stay pending and the next run delivers them
        """
        custodian = FlakyCustodian()
        relay = IntentRelay(store, custodian)
        with store.transaction():
            store.intents.append(LedgerIntent.deposit(200, ALICE, 0, 1))
            store.intents.append(LedgerIntent.withdraw(100, ALICE, 0, 2))
            store.intents.append(LedgerIntent.deposit(300, BOB, 0, 3))

        assert relay.relay() == 1
        with store.transaction():
            assert [i.sequence for i in store.intents.pending()] == [2, 3]

        assert relay.relay() == 2
        assert custodian.total_withdrawn(ALICE) == 100
        assert [d.identity for d in custodian.deposits] == [ALICE, BOB]

    @pytest.mark.integration
    def test_engine_intents_reach_custodian(self, engine, rewards, relay, custodian, active_challenge):
        """WHEN a participant joins, completes, claims and also claims a pooled reward
        THEN the custodian receives one deposit and two withdrawals
        """
        engine.join_challenge(ctx(ALICE, 1), active_challenge, 200)
        engine.submit_progress(ctx(ALICE, 2), active_challenge, 10000)
        engine.end_challenge(ctx(CREATOR, 30), active_challenge)
        engine.claim_reward(ctx(ALICE, 31), active_challenge)

        rewards.initialize_pool(ctx(DISTRIBUTOR), active_challenge, 200, [{"percentage": 50, "min_rank": 1, "max_rank": 2}])
        rewards.register_winners(ctx(DISTRIBUTOR), active_challenge, engine.list_completers(active_challenge))
        rewards.distribute_rewards(ctx(DISTRIBUTOR), active_challenge)
        rewards.claim_reward(ctx(ALICE, 40))

        assert relay.relay() == 3
        assert [(d.amount, d.challenge_id) for d in custodian.deposits] == [(200, active_challenge)]
        assert [(w.amount, w.challenge_id) for w in custodian.withdrawals] == [(100, active_challenge), (100, None)]
