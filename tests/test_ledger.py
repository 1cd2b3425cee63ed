import random

import pytest

from round_lottery.lottery.exceptions import CapExceeded, InvalidQuantity, PaymentMismatch
from round_lottery.lottery.ledger import EntryLedger
from tests.conftest import ALICE, BOB, CAROL, DAVE, PRICE

CAP = 10


def record(ledger, who, quantity, round_id=1, paid=None):
    paid = quantity * PRICE if paid is None else paid
    return ledger.record_purchase(round_id, who, quantity, paid, ticket_price=PRICE, cap=CAP)


def test_purchase_appends_one_slot_per_ticket():
    ledger = EntryLedger()
    record(ledger, ALICE, 2)
    record(ledger, BOB, 1)
    record(ledger, ALICE, 1)

    assert ledger.entries_snapshot() == (ALICE, ALICE, BOB, ALICE)
    assert ledger.tickets_of(1, ALICE) == 3
    assert ledger.tickets_of(1, BOB) == 1
    assert ledger.unique_count(1) == 2
    assert ledger.total_entries(1) == 4


def test_unique_count_increments_once_per_identity():
    ledger = EntryLedger()
    for _ in range(4):
        record(ledger, CAROL, 1)
    assert ledger.unique_count(1) == 1
    assert ledger.participants(1) == {CAROL: 4}


@pytest.mark.parametrize("quantity", [0, -1, True, 1.5, "2"])
def test_invalid_quantity(quantity):
    ledger = EntryLedger()
    with pytest.raises(InvalidQuantity):
        ledger.record_purchase(1, ALICE, quantity, 0, ticket_price=PRICE, cap=CAP)
    assert ledger.entry_count() == 0


@pytest.mark.parametrize("paid", [0, PRICE, 3 * PRICE, 2 * PRICE + 1])
def test_payment_mismatch_leaves_ledger_unchanged(paid):
    ledger = EntryLedger()
    record(ledger, ALICE, 1)
    with pytest.raises(PaymentMismatch) as excinfo:
        record(ledger, BOB, 2, paid=paid)

    assert excinfo.value.expected == 2 * PRICE
    assert ledger.entries_snapshot() == (ALICE,)
    assert ledger.unique_count(1) == 1
    assert ledger.tickets_of(1, BOB) == 0


def test_cap_exceeded_records_nothing():
    ledger = EntryLedger()
    record(ledger, ALICE, 8)
    with pytest.raises(CapExceeded) as excinfo:
        record(ledger, ALICE, 3)

    assert excinfo.value.held == 8
    assert ledger.tickets_of(1, ALICE) == 8
    assert ledger.entry_count() == 8

    record(ledger, ALICE, 2)
    assert ledger.tickets_of(1, ALICE) == CAP


def test_cap_rejects_first_time_buyer_without_joining():
    ledger = EntryLedger()
    with pytest.raises(CapExceeded):
        record(ledger, DAVE, CAP + 1)
    assert ledger.unique_count(1) == 0
    assert ledger.participants(1) == {}


def test_records_are_kept_per_round():
    ledger = EntryLedger()
    record(ledger, ALICE, 3, round_id=1)
    ledger.clear_entries()
    record(ledger, ALICE, 1, round_id=2)

    assert ledger.tickets_of(1, ALICE) == 3
    assert ledger.tickets_of(2, ALICE) == 1
    assert ledger.unique_count(2) == 1
    assert ledger.entries_snapshot() == (ALICE,)


def test_random_purchases_keep_counts_consistent():
    rng = random.Random(7)
    ledger = EntryLedger()
    buyers = [ALICE, BOB, CAROL, DAVE]

    for _ in range(200):
        who = rng.choice(buyers)
        quantity = rng.randint(0, 4)
        paid = quantity * PRICE if rng.random() > 0.1 else quantity * PRICE + 1
        try:
            record(ledger, who, quantity, paid=paid)
        except (InvalidQuantity, PaymentMismatch, CapExceeded):
            pass

    counts = {who: ledger.tickets_of(1, who) for who in buyers}
    assert sum(counts.values()) == ledger.entry_count() == ledger.total_entries(1)
    assert ledger.unique_count(1) == sum(1 for c in counts.values() if c > 0)
    assert all(c <= CAP for c in counts.values())


def test_rollback_restores_current_round_only():
    ledger = EntryLedger()
    record(ledger, ALICE, 2, round_id=1)
    ledger.clear_entries()
    record(ledger, BOB, 1, round_id=2)

    mark = ledger.checkpoint(2)
    record(ledger, BOB, 2, round_id=2)
    record(ledger, CAROL, 1, round_id=2)
    ledger.rollback(mark)

    assert ledger.tickets_of(2, BOB) == 1
    assert ledger.tickets_of(2, CAROL) == 0
    assert ledger.unique_count(2) == 1
    assert ledger.total_entries(2) == 1
    assert ledger.entries_snapshot() == (BOB,)
    assert ledger.tickets_of(1, ALICE) == 2


def test_rollback_drops_rounds_opened_after_mark():
    ledger = EntryLedger()
    record(ledger, ALICE, 1, round_id=1)

    mark = ledger.checkpoint(1)
    ledger.clear_entries()
    record(ledger, DAVE, 3, round_id=2)
    ledger.rollback(mark)

    assert ledger.unique_count(2) == 0
    assert ledger.total_entries(2) == 0
    assert ledger.participants(2) == {}
    assert ledger.entries_snapshot() == (ALICE,)


def test_rollback_of_untouched_round_removes_new_records():
    ledger = EntryLedger()
    mark = ledger.checkpoint(1)
    record(ledger, ALICE, 1, round_id=1)
    ledger.rollback(mark)

    assert ledger.participants(1) == {}
    assert ledger.unique_count(1) == 0
    assert ledger.entry_count() == 0
