"""
Entry Ledger - per-round ticket bookkeeping
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from round_lottery.lottery.exceptions import CapExceeded, InvalidQuantity, PaymentMismatch
from round_lottery.lottery.models import ParticipationRecord
from round_lottery.utils.common import shorten_address
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class LedgerMark:
    round_id: int
    records: Optional[Dict[str, ParticipationRecord]]
    unique: Optional[int]
    total: Optional[int]
    entries: List[str]


class EntryLedger:
    """Tracks who bought how many tickets in each round.

    Participation records and unique counters are keyed by round id and
    never cleared; this relies on round ids never repeating. Only the
    weighted entry sequence (one slot per ticket) is reset between rounds.
    """

    def __init__(self) -> None:
        self._records: Dict[int, Dict[str, ParticipationRecord]] = {}
        self._unique: Dict[int, int] = {}
        self._totals: Dict[int, int] = {}
        self._entries: List[str] = []

    def record_purchase(
        self,
        round_id: int,
        identity: str,
        quantity: int,
        paid: int,
        *,
        ticket_price: int,
        cap: int,
    ) -> ParticipationRecord:
        """Validate and record a purchase of ``quantity`` tickets.

        Nothing is mutated unless every check passes.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity(quantity)

        expected = quantity * ticket_price
        if paid != expected:
            raise PaymentMismatch(expected, paid)

        round_records = self._records.setdefault(round_id, {})
        record = round_records.get(identity) or ParticipationRecord()
        if record.tickets + quantity > cap:
            raise CapExceeded(identity, record.tickets, quantity, cap)

        round_records[identity] = record
        self._entries.extend([identity] * quantity)
        record.tickets += quantity
        self._totals[round_id] = self._totals.get(round_id, 0) + quantity
        if not record.joined:
            record.joined = True
            self._unique[round_id] = self._unique.get(round_id, 0) + 1
            logger.debug("Round %s: new participant %s", round_id, shorten_address(identity))

        return record

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def unique_count(self, round_id: int) -> int:
        return self._unique.get(round_id, 0)

    def total_entries(self, round_id: int) -> int:
        return self._totals.get(round_id, 0)

    def entry_count(self) -> int:
        return len(self._entries)

    def entries_snapshot(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def tickets_of(self, round_id: int, identity: str) -> int:
        record = self._records.get(round_id, {}).get(identity)
        return record.tickets if record else 0

    def participants(self, round_id: int) -> Dict[str, int]:
        """Ticket counts by identity, in order of first purchase."""
        return {
            identity: record.tickets
            for identity, record in self._records.get(round_id, {}).items()
        }

    def clear_entries(self) -> None:
        self._entries = []

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------
    def checkpoint(self, round_id: int) -> LedgerMark:
        """Capture what a call made during ``round_id`` can change.

        Earlier rounds are closed to purchases, so only the current round's
        records and the entry sequence need saving.
        """
        records = {
            identity: ParticipationRecord(record.tickets, record.joined)
            for identity, record in self._records.get(round_id, {}).items()
        }
        return LedgerMark(
            round_id=round_id,
            records=records if round_id in self._records else None,
            unique=self._unique.get(round_id),
            total=self._totals.get(round_id),
            entries=list(self._entries),
        )

    def rollback(self, mark: LedgerMark) -> None:
        round_id = mark.round_id
        # rounds opened after the mark, e.g. by a nested start_round
        for later in [r for r in self._records if r > round_id]:
            del self._records[later]
        for table in (self._unique, self._totals):
            for later in [r for r in table if r > round_id]:
                del table[later]

        _put(self._records, round_id, mark.records)
        _put(self._unique, round_id, mark.unique)
        _put(self._totals, round_id, mark.total)
        self._entries = mark.entries


def _put(table: Dict[int, Any], key: int, value: Optional[Any]) -> None:
    if value is None:
        table.pop(key, None)
    else:
        table[key] = value
