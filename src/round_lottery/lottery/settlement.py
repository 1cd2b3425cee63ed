"""
Settlement Engine - resolves an ended round into a payout or a refund

Effects (quick-view fields, archive entry, deadline reset) are applied
before any value leaves the collection account, so a recipient that calls
back in finds the round already settled. Any failed transfer raises
TransferFailed; the caller is expected to discard every effect of the
call when that happens.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Callable, Dict, List

from round_lottery.blockchain.funds import FundsLedger
from round_lottery.lottery.archive import HistoryArchive
from round_lottery.lottery.event_manager import ROUND_REFUNDED, WINNERS_SELECTED
from round_lottery.lottery.exceptions import NoEntries, TransferFailed
from round_lottery.lottery.ledger import EntryLedger
from round_lottery.lottery.models import (
    BPS_DENOMINATOR,
    MAX_WINNERS,
    MIN_UNIQUE_PARTICIPANTS,
    PRIZE_SCHEDULE,
    LastOutcome,
    LotteryConfig,
    Payout,
    ResolutionKind,
    RoundOutcome,
    RoundState,
)
from round_lottery.lottery.rounds import RoundController
from round_lottery.lottery.selector import WinnerSelector
from round_lottery.utils.common import format_wei, shorten_address
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)

EmitFn = Callable[[str, Dict[str, Any]], None]


def compute_fee(pool: int, fee_bps: int) -> int:
    return pool * fee_bps // BPS_DENOMINATOR


def split_prizes(pool_after_fee: int, winner_count: int) -> List[int]:
    """Split the post-fee pool by the fixed schedule.

    The last share is whatever the others leave, so the shares always add
    up to ``pool_after_fee`` exactly.
    """
    if winner_count not in PRIZE_SCHEDULE:
        raise ValueError(f"no prize schedule for {winner_count} winners")
    shares = [pool_after_fee * bps // BPS_DENOMINATOR for bps in PRIZE_SCHEDULE[winner_count][:-1]]
    shares.append(pool_after_fee - sum(shares))
    return shares


class SettlementEngine:
    """Orchestrates round resolution for one collection account."""

    def __init__(
        self,
        config: LotteryConfig,
        controller: RoundController,
        selector: WinnerSelector,
        archive: HistoryArchive,
        funds: FundsLedger,
    ):
        self.config = config
        self.controller = controller
        self.selector = selector
        self.archive = archive
        self.funds = funds

    def settle(
        self,
        state: RoundState,
        ledger: EntryLedger,
        *,
        caller: str,
        now: int,
        emit: EmitFn,
    ) -> RoundOutcome:
        self.controller.require_ended(state, now)

        unique = ledger.unique_count(state.round_id)
        if unique < MIN_UNIQUE_PARTICIPANTS:
            return self._refund(state, ledger, now=now, emit=emit)
        return self._payout(state, ledger, unique, caller=caller, now=now, emit=emit)

    # ------------------------------------------------------------------
    # Refund path
    # ------------------------------------------------------------------
    def _refund(self, state: RoundState, ledger: EntryLedger, *, now: int, emit: EmitFn) -> RoundOutcome:
        price = self.config.ticket_price
        tickets_by_identity = Counter(ledger.entries_snapshot())
        total_refunded = sum(tickets_by_identity.values()) * price

        outcome = RoundOutcome(
            round_id=state.round_id,
            kind=ResolutionKind.REFUNDED,
            start_time=state.start_time,
            end_time=state.end_time,
            amount=total_refunded,
            resolved_at=now,
        )
        state.last = LastOutcome(round_id=state.round_id, refunded=True, total_refunded=total_refunded)
        self.archive.write(outcome)
        self.controller.close(state, ledger)
        emit(ROUND_REFUNDED, {"roundId": outcome.round_id, "totalRefunded": total_refunded})

        for identity, tickets in tickets_by_identity.items():
            self._transfer(identity, tickets * price, "refund")

        logger.info(
            f"Round {outcome.round_id} refunded {format_wei(total_refunded)} "
            f"to {len(tickets_by_identity)} participant(s)"
        )
        return outcome

    # ------------------------------------------------------------------
    # Payout path
    # ------------------------------------------------------------------
    def _payout(
        self,
        state: RoundState,
        ledger: EntryLedger,
        unique: int,
        *,
        caller: str,
        now: int,
        emit: EmitFn,
    ) -> RoundOutcome:
        pool = self.funds.balance_of(self.config.contract_address)
        if pool == 0:
            raise NoEntries(f"Round {state.round_id} has an empty pool")

        fee = compute_fee(pool, self.config.fee_bps)
        pool_after_fee = pool - fee
        winner_count = min(unique, MAX_WINNERS)

        winners = self.selector.pick_distinct(
            winner_count,
            ledger.entries_snapshot(),
            state=state,
            caller=caller,
        )
        prizes = split_prizes(pool_after_fee, winner_count)

        outcome = RoundOutcome(
            round_id=state.round_id,
            kind=ResolutionKind.SETTLED,
            start_time=state.start_time,
            end_time=state.end_time,
            amount=pool_after_fee,
            fee=fee,
            payouts=tuple(Payout(winner, prize) for winner, prize in zip(winners, prizes)),
            resolved_at=now,
        )
        state.last = LastOutcome(
            round_id=state.round_id,
            winners=list(winners),
            prizes=list(prizes),
            pool_after_fee=pool_after_fee,
            fee=fee,
        )
        self.archive.write(outcome)
        self.controller.close(state, ledger)
        emit(
            WINNERS_SELECTED,
            {
                "roundId": outcome.round_id,
                "winners": list(winners),
                "prizes": list(prizes),
                "poolAfterFee": pool_after_fee,
                "fee": fee,
            },
        )

        self._transfer(self.config.admin, fee, "fee")
        for payout in outcome.payouts:
            self._transfer(payout.winner, payout.prize, "prize")

        logger.info(
            f"Round {outcome.round_id} settled: pool {format_wei(pool)}, fee {format_wei(fee)}, "
            f"winners {[shorten_address(w) for w in winners]}"
        )
        return outcome

    def _transfer(self, recipient: str, amount: int, purpose: str) -> None:
        if not self.funds.send(self.config.contract_address, recipient, amount):
            raise TransferFailed(recipient, amount, purpose)
