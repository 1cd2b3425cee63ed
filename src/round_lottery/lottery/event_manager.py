"""Notification channel for committed lottery events."""

from __future__ import annotations

from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional

from round_lottery.lottery.models import LotteryEvent
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)

ROUND_STARTED = "RoundStarted"
TICKET_PURCHASED = "TicketPurchased"
ROUND_REFUNDED = "RoundRefunded"
WINNERS_SELECTED = "WinnersSelected"

ALL_EVENTS = "*"

_FEED_MESSAGES = {
    ROUND_STARTED: "Round {roundId} started",
    TICKET_PURCHASED: "{buyer} bought {quantity} ticket(s) in round {roundId}",
    ROUND_REFUNDED: "Round {roundId} refunded",
    WINNERS_SELECTED: "Round {roundId} settled with {winnerCount} winner(s)",
}


class EventManager:
    """Fans committed events out to listeners and keeps a bounded live feed."""

    def __init__(self, *, feed_capacity: int = 100) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Callable[[LotteryEvent], None]]] = defaultdict(list)
        self._live_feed: deque[LotteryEvent] = deque(maxlen=feed_capacity)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Callable[[LotteryEvent], None]) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)
            logger.debug(f"[EventManager] Adding listener for event_type={event_type}, callback={callback}")

    def _emit(self, event: LotteryEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event.name, [])) + list(self._listeners.get(ALL_EVENTS, []))
        for callback in listeners:
            try:
                callback(event)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event.name, exc)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(self, events: Iterable[LotteryEvent]) -> None:
        """Record and dispatch events in order."""
        for event in events:
            with self._lock:
                self._live_feed.append(event)
            logger.info("[EventManager] %s %s", event.name, event.args)
            self._emit(event)

    def get_live_feed(self, limit: Optional[int] = None) -> List[LotteryEvent]:
        with self._lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items

    @staticmethod
    def describe(event: LotteryEvent) -> str:
        template = _FEED_MESSAGES.get(event.name, event.name)
        args = dict(event.args)
        args.setdefault("winnerCount", len(args.get("winners", [])))
        try:
            return template.format(**args)
        except KeyError:
            return event.name
