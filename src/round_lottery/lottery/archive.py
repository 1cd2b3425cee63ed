"""Append-only history of resolved rounds."""

from __future__ import annotations

from typing import Dict, List, Optional

from round_lottery.lottery.exceptions import ArchiveConflict
from round_lottery.lottery.models import RoundOutcome
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class HistoryArchive:
    """One immutable :class:`RoundOutcome` per round id.

    There is no update path. ``checkpoint``/``rollback`` exist only so an
    aborted call can discard what it wrote.
    """

    def __init__(self) -> None:
        self._outcomes: Dict[int, RoundOutcome] = {}
        self._order: List[int] = []

    def write(self, outcome: RoundOutcome) -> None:
        if outcome.round_id in self._outcomes:
            raise ArchiveConflict(outcome.round_id)
        self._outcomes[outcome.round_id] = outcome
        self._order.append(outcome.round_id)
        logger.info(
            "Archived round %s as %s (%s winners)",
            outcome.round_id,
            outcome.kind.value,
            len(outcome.payouts),
        )

    def get(self, round_id: int) -> Optional[RoundOutcome]:
        return self._outcomes.get(round_id)

    def __contains__(self, round_id: int) -> bool:
        return round_id in self._outcomes

    def __len__(self) -> int:
        return len(self._order)

    def rounds(self, limit: Optional[int] = None) -> List[RoundOutcome]:
        """Outcomes in write order, optionally only the last ``limit``."""
        items = [self._outcomes[round_id] for round_id in self._order]
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items

    def checkpoint(self) -> int:
        return len(self._order)

    def rollback(self, mark: int) -> None:
        for round_id in self._order[mark:]:
            del self._outcomes[round_id]
        del self._order[mark:]
