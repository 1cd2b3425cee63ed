"""
Round Controller - round identity, timing window and state machine
"""

from __future__ import annotations

from round_lottery.lottery.exceptions import NotEnded, RoundAlreadyActive, RoundInactive, Unauthorized
from round_lottery.lottery.ledger import EntryLedger
from round_lottery.lottery.models import LastOutcome, LotteryConfig, RoundPhase, RoundState
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class RoundController:
    """Applies round transitions to an explicitly passed ``RoundState``.

    NO_ROUND -> ACTIVE -> ENDED -> SETTLED -> ACTIVE ...
    The ENDED -> SETTLED step belongs to the settlement engine, which calls
    :meth:`close`.
    """

    def __init__(self, config: LotteryConfig):
        self.config = config

    def start_round(self, state: RoundState, ledger: EntryLedger, caller: str, now: int) -> RoundState:
        if caller != self.config.admin:
            raise Unauthorized(caller)
        if state.is_active(now):
            raise RoundAlreadyActive(state.round_id)

        ledger.clear_entries()
        state.round_id += 1
        state.start_time = now
        state.end_time = now + self.config.round_duration
        state.last = LastOutcome()

        logger.info(f"Round {state.round_id} opened: {state.start_time} -> {state.end_time}")
        return state

    def require_active(self, state: RoundState, now: int) -> None:
        if not state.is_active(now):
            raise RoundInactive(f"Round {state.round_id} is not accepting entries")

    def require_ended(self, state: RoundState, now: int) -> None:
        phase = state.phase(now)
        if phase != RoundPhase.ENDED:
            raise NotEnded(f"Round {state.round_id} cannot be settled in phase {phase.name}")

    def close(self, state: RoundState, ledger: EntryLedger) -> None:
        """Zero the deadline and drop the entry sequence."""
        state.end_time = 0
        ledger.clear_entries()

    @staticmethod
    def is_active(state: RoundState, now: int) -> bool:
        return state.is_active(now)

    @staticmethod
    def time_remaining(state: RoundState, now: int) -> int:
        return state.time_remaining(now)
