import pytest

from round_lottery.blockchain.funds import FundsLedger
from round_lottery.lottery.engine import LotteryEngine
from round_lottery.lottery.event_manager import ROUND_REFUNDED, TICKET_PURCHASED, WINNERS_SELECTED
from round_lottery.lottery.exceptions import InvalidQuantity, NotEnded, TransferFailed
from round_lottery.lottery.models import LotteryConfig, ResolutionKind, RoundPhase
from round_lottery.lottery.selector import SequenceDraw
from round_lottery.lottery.settlement import compute_fee, split_prizes
from tests.conftest import (
    ADMIN,
    ALICE,
    BOB,
    CAROL,
    CONTRACT,
    DAVE,
    DURATION,
    INITIAL_BALANCE,
    PRICE,
    START,
    buy,
)


def end_round(chain):
    chain.set_time(START + DURATION + 1)


# ----------------------------------------------------------------------
# Arithmetic
# ----------------------------------------------------------------------
def test_compute_fee_truncates():
    assert compute_fee(6 * PRICE, 500) == 3 * 10**15
    assert compute_fee(39, 500) == 1
    assert compute_fee(19, 500) == 0


@pytest.mark.parametrize(
    "pool, count, expected",
    [
        (7, 1, [7]),
        (101, 2, [60, 41]),
        (101, 3, [50, 30, 21]),
        (38, 3, [19, 11, 8]),
        (1000, 3, [500, 300, 200]),
        (0, 3, [0, 0, 0]),
    ],
)
def test_split_prizes(pool, count, expected):
    shares = split_prizes(pool, count)
    assert shares == expected
    assert sum(shares) == pool


def test_split_prizes_rejects_unknown_winner_count():
    with pytest.raises(ValueError):
        split_prizes(100, 4)


# ----------------------------------------------------------------------
# Payout path
# ----------------------------------------------------------------------
def test_three_winner_settlement(started, chain, funds, recorded_events):
    buy(started, ALICE, 2)
    buy(started, BOB, 3)
    buy(started, CAROL, 1)
    assert started.unique_count() == 3
    pool = started.pool_balance()
    assert pool == 6 * PRICE

    end_round(chain)
    outcome = started.settle(DAVE)

    fee = pool * 500 // 10_000
    after = pool - fee
    assert outcome.kind == ResolutionKind.SETTLED
    assert outcome.fee == fee
    assert outcome.amount == after
    assert outcome.winners == [ALICE, BOB, CAROL]
    assert outcome.prizes == [after * 50 // 100, after * 30 // 100, after - after * 50 // 100 - after * 30 // 100]
    assert fee + sum(outcome.prizes) == pool

    assert funds.balance_of(ADMIN) == fee
    assert funds.balance_of(ALICE) == INITIAL_BALANCE - 2 * PRICE + outcome.prizes[0]
    assert funds.balance_of(BOB) == INITIAL_BALANCE - 3 * PRICE + outcome.prizes[1]
    assert funds.balance_of(CAROL) == INITIAL_BALANCE - PRICE + outcome.prizes[2]
    assert started.pool_balance() == 0

    assert started.phase() == RoundPhase.SETTLED
    assert started.current_round.end_time == 0
    assert started.entry_count() == 0
    assert started.get_round_outcome(1) == outcome

    last = started.last_outcome
    assert last.winners == outcome.winners
    assert last.prizes == outcome.prizes
    assert last.pool_after_fee == after
    assert last.fee == fee
    assert not last.refunded

    settled_events = [e for e in recorded_events if e.name == WINNERS_SELECTED]
    assert len(settled_events) == 1
    assert settled_events[0].args == {
        "roundId": 1,
        "winners": outcome.winners,
        "prizes": outcome.prizes,
        "poolAfterFee": after,
        "fee": fee,
    }


def test_two_participants_split_sixty_forty(started, chain, funds):
    buy(started, ALICE, 1)
    buy(started, BOB, 1)
    end_round(chain)

    outcome = started.settle(ALICE)
    after = 2 * PRICE - compute_fee(2 * PRICE, 500)
    assert sorted(outcome.winners) == sorted([ALICE, BOB])
    assert outcome.prizes == [after * 60 // 100, after - after * 60 // 100]


def test_winner_count_capped_at_three(started, chain):
    for who in (ALICE, BOB, CAROL, DAVE):
        buy(started, who, 1)
    end_round(chain)

    outcome = started.settle(ALICE)
    assert len(outcome.winners) == 3
    assert len(set(outcome.winners)) == 3


def test_indivisible_pool_absorbed_by_last_share(chain):
    config = LotteryConfig(admin=ADMIN, contract_address=CONTRACT, ticket_price=13, round_duration=DURATION)
    funds = FundsLedger({ALICE: 100, BOB: 100, CAROL: 100})
    engine = LotteryEngine(config, chain, funds, draw=SequenceDraw([0, 1, 2]))
    engine.start_round(ADMIN)
    for who in (ALICE, BOB, CAROL):
        engine.buy_tickets(who, 1, 13)
    end_round(chain)

    outcome = engine.settle(ALICE)
    assert outcome.fee == 1
    assert outcome.amount == 38
    assert outcome.prizes == [19, 11, 8]
    assert funds.balance_of(ADMIN) + sum(funds.balance_of(w) for w in (ALICE, BOB, CAROL)) == 300


def test_keccak_draw_picks_distinct_entrants(config, chain, funds):
    engine = LotteryEngine(config, chain, funds)
    engine.start_round(ADMIN)
    buy(engine, ALICE, 5)
    buy(engine, BOB, 1)
    buy(engine, CAROL, 2)
    end_round(chain)

    outcome = engine.settle(DAVE)
    assert sorted(outcome.winners) == sorted([ALICE, BOB, CAROL])
    assert engine.current_round.draw_nonce >= 3


def test_settle_twice_fails(started, chain):
    buy(started, ALICE, 1)
    buy(started, BOB, 1)
    end_round(chain)
    started.settle(ALICE)

    with pytest.raises(NotEnded):
        started.settle(ALICE)
    assert len(started.get_round_history()) == 1


# ----------------------------------------------------------------------
# Refund path
# ----------------------------------------------------------------------
def test_single_participant_is_refunded(started, chain, funds, recorded_events):
    buy(started, ALICE, 4)
    assert funds.balance_of(ALICE) == INITIAL_BALANCE - 4 * PRICE
    end_round(chain)

    outcome = started.settle(BOB)

    assert outcome.kind == ResolutionKind.REFUNDED
    assert outcome.amount == 4 * PRICE
    assert outcome.winners == []
    assert funds.balance_of(ALICE) == INITIAL_BALANCE
    assert funds.balance_of(ADMIN) == 0
    assert started.pool_balance() == 0
    assert started.phase() == RoundPhase.SETTLED
    assert started.get_round_outcome(1).kind == ResolutionKind.REFUNDED

    last = started.last_outcome
    assert last.refunded
    assert last.total_refunded == 4 * PRICE
    assert last.winners == []

    assert [e.name for e in recorded_events][-1] == ROUND_REFUNDED
    assert recorded_events[-1].args == {"roundId": 1, "totalRefunded": 4 * PRICE}


def test_empty_round_is_refunded_with_zero_total(started, chain):
    end_round(chain)
    outcome = started.settle(ALICE)
    assert outcome.kind == ResolutionKind.REFUNDED
    assert outcome.amount == 0


def test_refund_failure_aborts_everything(started, chain, funds, recorded_events):
    buy(started, ALICE, 2)

    def reject(sender, amount):
        raise RuntimeError("no thanks")

    funds.register_receiver(ALICE, reject)
    end_round(chain)
    events_before = len(recorded_events)

    with pytest.raises(TransferFailed):
        started.settle(BOB)

    assert started.phase() == RoundPhase.ENDED
    assert started.pool_balance() == 2 * PRICE
    assert started.entry_count() == 2
    assert started.get_round_history() == []
    assert len(recorded_events) == events_before

    funds.unregister_receiver(ALICE)
    assert started.settle(BOB).kind == ResolutionKind.REFUNDED
    assert funds.balance_of(ALICE) == INITIAL_BALANCE


# ----------------------------------------------------------------------
# All-or-nothing payout
# ----------------------------------------------------------------------
def test_failed_prize_transfer_rolls_back_and_retry_succeeds(started, chain, funds, recorded_events):
    buy(started, ALICE, 2)
    buy(started, BOB, 3)
    buy(started, CAROL, 1)
    end_round(chain)

    attempts = []

    def fail_first(sender, amount):
        attempts.append(amount)
        if len(attempts) == 1:
            raise RuntimeError("sink offline")

    funds.register_receiver(ALICE, fail_first)
    state_before = started.current_round
    events_before = len(recorded_events)

    with pytest.raises(TransferFailed) as excinfo:
        started.settle(DAVE)
    assert excinfo.value.recipient == ALICE

    assert started.phase() == RoundPhase.ENDED
    assert started.current_round == state_before
    assert started.entry_count() == 6
    assert started.pool_balance() == 6 * PRICE
    assert funds.balance_of(ADMIN) == 0
    assert started.get_round_history() == []
    assert len(recorded_events) == events_before

    outcome = started.settle(DAVE)
    assert outcome.kind == ResolutionKind.SETTLED
    assert sorted(outcome.winners) == sorted([ALICE, BOB, CAROL])
    assert funds.balance_of(ADMIN) == outcome.fee
    assert started.pool_balance() == 0
    assert [e.name for e in recorded_events[events_before:]] == [WINNERS_SELECTED]


def test_purchase_events_precede_settlement(started, chain, recorded_events):
    buy(started, ALICE, 1)
    buy(started, BOB, 2)
    end_round(chain)
    started.settle(ALICE)

    names = [e.name for e in recorded_events]
    assert names == [TICKET_PURCHASED, TICKET_PURCHASED, WINNERS_SELECTED]
    assert recorded_events[1].args == {"buyer": BOB, "quantity": 2, "roundId": 1}


# ----------------------------------------------------------------------
# Rounds started over an unsettled predecessor
# ----------------------------------------------------------------------
def test_unsettled_round_funds_carry_into_next_payout(started, chain, funds):
    buy(started, ALICE, 1)
    buy(started, BOB, 1)
    end_round(chain)

    started.start_round(ADMIN)
    assert started.current_round.round_id == 2
    assert started.entry_count() == 0
    assert started.pool_balance() == 2 * PRICE
    assert 1 not in started.archive

    buy(started, CAROL, 1)
    buy(started, DAVE, 1)
    chain.advance(DURATION)
    outcome = started.settle(CAROL)

    assert outcome.round_id == 2
    assert set(outcome.winners) == {CAROL, DAVE}
    assert outcome.fee == compute_fee(4 * PRICE, 500)
    assert outcome.fee + sum(outcome.prizes) == 4 * PRICE
    assert started.pool_balance() == 0
    assert funds.balance_of(ALICE) == funds.balance_of(BOB) == INITIAL_BALANCE - PRICE
    with pytest.raises(KeyError):
        started.get_round_outcome(1)


def test_refund_leaves_carried_surplus_in_pool(started, chain, funds):
    buy(started, ALICE, 1)
    buy(started, BOB, 1)
    end_round(chain)

    started.start_round(ADMIN)
    buy(started, CAROL, 2)
    chain.advance(DURATION)
    refund = started.settle(CAROL)

    assert refund.kind == ResolutionKind.REFUNDED
    assert refund.amount == 2 * PRICE
    assert funds.balance_of(CAROL) == INITIAL_BALANCE
    assert started.pool_balance() == 2 * PRICE

    started.start_round(ADMIN)
    buy(started, ALICE, 1)
    buy(started, DAVE, 1)
    chain.advance(DURATION)
    payout = started.settle(DAVE)
    assert payout.fee + sum(payout.prizes) == 4 * PRICE
    assert started.pool_balance() == 0


def test_committed_calls_leave_no_undo_entries(engine, chain, funds):
    mark = funds.checkpoint()
    for _ in range(5):
        engine.start_round(ADMIN)
        buy(engine, ALICE, 1)
        buy(engine, BOB, 2)
        chain.advance(DURATION)
        engine.settle(CAROL)
    assert funds.checkpoint() == mark

    engine.start_round(ADMIN)
    with pytest.raises(InvalidQuantity):
        buy(engine, ALICE, 0)
    assert funds.checkpoint() == mark
