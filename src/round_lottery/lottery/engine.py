"""
Lottery Engine - the call surface of the round lottery

Each public mutating call runs as one atomic unit: either it completes, or
every effect it attempted (round state, ledger, archive, balances, pending
notifications) is rolled back before the exception reaches the caller.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from round_lottery.blockchain.chain import ChainClock
from round_lottery.blockchain.funds import FundsLedger
from round_lottery.lottery.archive import HistoryArchive
from round_lottery.lottery.event_manager import ROUND_STARTED, TICKET_PURCHASED, EventManager
from round_lottery.lottery.exceptions import (
    DirectDepositRejected,
    InvalidIdentity,
    ReentrancyRejected,
    TransferFailed,
)
from round_lottery.lottery.ledger import EntryLedger
from round_lottery.lottery.models import (
    LastOutcome,
    LotteryConfig,
    LotteryEvent,
    RoundOutcome,
    RoundPhase,
    RoundState,
)
from round_lottery.lottery.rounds import RoundController
from round_lottery.lottery.selector import DrawFunction, KeccakDraw, WinnerSelector
from round_lottery.lottery.settlement import SettlementEngine
from round_lottery.utils.common import normalize_address, shorten_address
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


def _restore(target: Any, saved: Any) -> None:
    # in place, so references held further up the call stack stay valid
    vars(target).clear()
    vars(target).update(vars(saved))


class LotteryEngine:
    """Round lottery with a single collection account."""

    def __init__(
        self,
        config: LotteryConfig,
        clock: ChainClock,
        funds: FundsLedger,
        *,
        draw: Optional[DrawFunction] = None,
        events: Optional[EventManager] = None,
        archive: Optional[HistoryArchive] = None,
    ):
        self.config = config
        self.clock = clock
        self.funds = funds
        self.events = events or EventManager()
        self.archive = archive or HistoryArchive()

        self._state = RoundState()
        self._ledger = EntryLedger()
        self.controller = RoundController(config)
        self.selector = WinnerSelector(draw or KeccakDraw(clock))
        self.settlement = SettlementEngine(config, self.controller, self.selector, self.archive, funds)

        self._pending: List[LotteryEvent] = []
        self._depth = 0
        self._settling = False
        self._collecting = False

        funds.register_receiver(config.contract_address, self._on_receive)
        logger.info(
            f"Lottery engine ready: contract={config.contract_address}, admin={config.admin}, "
            f"price={config.ticket_price} wei, duration={config.round_duration}s, fee={config.fee_bps}bps"
        )

    @property
    def address(self) -> str:
        return self.config.contract_address

    # ------------------------------------------------------------------
    # Atomic call boundary
    # ------------------------------------------------------------------
    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        saved_state = copy.deepcopy(self._state)
        ledger_mark = self._ledger.checkpoint(self._state.round_id)
        archive_mark = self.archive.checkpoint()
        funds_mark = self.funds.checkpoint()
        event_mark = len(self._pending)

        self._depth += 1
        try:
            yield
        except Exception as exc:
            _restore(self._state, saved_state)
            self._ledger.rollback(ledger_mark)
            self.archive.rollback(archive_mark)
            self.funds.rollback(funds_mark)
            del self._pending[event_mark:]
            logger.warning("%s reverted: %s: %s", operation, type(exc).__name__, exc)
            raise
        finally:
            self._depth -= 1

        if self._depth == 0:
            self.funds.commit(funds_mark)
            if self._pending:
                committed, self._pending = self._pending, []
                self.events.publish(committed)

    def _emit(self, name: str, args: Dict[str, Any]) -> None:
        self._pending.append(LotteryEvent(name=name, args=args, timestamp=self.clock.now()))

    @staticmethod
    def _identity(value: str) -> str:
        try:
            return normalize_address(value)
        except ValueError:
            raise InvalidIdentity(value) from None

    # ------------------------------------------------------------------
    # Mutating calls
    # ------------------------------------------------------------------
    def start_round(self, caller: str) -> int:
        """Open the next round. Returns its id."""
        caller = self._identity(caller)
        with self._atomic("start_round"):
            state = self.controller.start_round(self._state, self._ledger, caller, self.clock.now())
            self._emit(ROUND_STARTED, {"roundId": state.round_id, "endTime": state.end_time})
        return self._state.round_id

    def buy_tickets(self, buyer: str, quantity: int, value: int) -> int:
        """Buy ``quantity`` tickets paying exactly ``value`` wei.

        Returns the buyer's ticket count for the round after the purchase.
        """
        buyer = self._identity(buyer)
        with self._atomic("buy_tickets"):
            self.controller.require_active(self._state, self.clock.now())
            round_id = self._state.round_id
            record = self._ledger.record_purchase(
                round_id,
                buyer,
                quantity,
                value,
                ticket_price=self.config.ticket_price,
                cap=self.config.per_address_cap,
            )

            self._collecting = True
            try:
                collected = self.funds.send(buyer, self.address, value)
            finally:
                self._collecting = False
            if not collected:
                raise TransferFailed(self.address, value, "ticket payment")

            self._emit(TICKET_PURCHASED, {"buyer": buyer, "quantity": quantity, "roundId": round_id})
            logger.info(f"Round {round_id}: {shorten_address(buyer)} bought {quantity} ticket(s), holds {record.tickets}")
            return record.tickets

    def settle(self, caller: str) -> RoundOutcome:
        """Resolve the ended round into a payout or a refund.

        Anyone may call this once the deadline has passed.
        """
        if self._settling:
            raise ReentrancyRejected("settlement is already in progress")
        caller = self._identity(caller)

        self._settling = True
        try:
            with self._atomic("settle"):
                return self.settlement.settle(
                    self._state,
                    self._ledger,
                    caller=caller,
                    now=self.clock.now(),
                    emit=self._emit,
                )
        finally:
            self._settling = False

    def deposit(self, sender: str, value: int) -> None:
        """Plain value transfers are never accepted."""
        raise DirectDepositRejected(f"{sender} tried to deposit {value} wei outside of a ticket purchase")

    def _on_receive(self, sender: str, amount: int) -> None:
        if not self._collecting:
            raise DirectDepositRejected(f"{sender} tried to deposit {amount} wei outside of a ticket purchase")

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    def is_active(self) -> bool:
        return self.controller.is_active(self._state, self.clock.now())

    def time_remaining(self) -> int:
        return self.controller.time_remaining(self._state, self.clock.now())

    def phase(self) -> RoundPhase:
        return self._state.phase(self.clock.now())

    @property
    def current_round(self) -> RoundState:
        return copy.deepcopy(self._state)

    @property
    def last_outcome(self) -> LastOutcome:
        return copy.deepcopy(self._state.last)

    def unique_count(self, round_id: Optional[int] = None) -> int:
        return self._ledger.unique_count(self._state.round_id if round_id is None else round_id)

    def entry_count(self) -> int:
        return self._ledger.entry_count()

    def entries_snapshot(self):
        return self._ledger.entries_snapshot()

    def tickets_of(self, identity: str, round_id: Optional[int] = None) -> int:
        identity = self._identity(identity)
        return self._ledger.tickets_of(self._state.round_id if round_id is None else round_id, identity)

    def pool_balance(self) -> int:
        return self.funds.balance_of(self.address)

    def get_round_outcome(self, round_id: int) -> RoundOutcome:
        outcome = self.archive.get(round_id)
        if outcome is None:
            raise KeyError(round_id)
        return outcome

    def get_round_history(self, limit: Optional[int] = None) -> List[RoundOutcome]:
        return self.archive.rounds(limit)

    def status(self) -> Dict[str, Any]:
        now = self.clock.now()
        state = self._state
        return {
            "roundId": state.round_id,
            "phase": state.phase(now).name,
            "startTime": state.start_time,
            "endTime": state.end_time,
            "timeRemaining": state.time_remaining(now),
            "isActive": state.is_active(now),
            "poolWei": self.pool_balance(),
            "uniqueParticipants": self._ledger.unique_count(state.round_id),
            "entryCount": self._ledger.entry_count(),
            "ticketPriceWei": self.config.ticket_price,
            "perAddressCap": self.config.per_address_cap,
            "feeBps": self.config.fee_bps,
            "now": now,
        }
