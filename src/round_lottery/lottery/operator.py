"""
Passive lottery operator.

Polls the engine and keeps rounds moving:
- Round ended but not settled: settle it
- No round running and auto-start enabled: start the next one
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from round_lottery.lottery.engine import LotteryEngine
from round_lottery.lottery.exceptions import LotteryError
from round_lottery.lottery.models import OperatorStatus, RoundPhase
from round_lottery.utils.config import as_bool
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class PassiveOperator:
    """Keeper loop driving settlement and round start."""

    def __init__(self, engine: LotteryEngine, config: Dict[str, Any]) -> None:
        self._engine = engine
        operator_cfg = config.get("operator", {})
        self.check_interval = float(operator_cfg.get("check_interval", 5))
        self.auto_start_rounds = as_bool(operator_cfg.get("auto_start_rounds", True))
        self.operator_address = operator_cfg.get("address") or engine.config.admin
        self.status = OperatorStatus()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self.status.is_running:
            logger.warning("Passive operator already running")
            return
        self.status.is_running = True
        self._task = asyncio.create_task(self._loop(), name="lottery-operator")
        logger.info(f"Passive operator started (interval {self.check_interval}s, auto start {self.auto_start_rounds})")

    async def stop(self) -> None:
        if not self.status.is_running:
            return
        logger.info("Stopping passive operator")
        self.status.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Passive operator stopped")

    async def _loop(self) -> None:
        while self.status.is_running:
            await self.tick()
            await asyncio.sleep(self.check_interval)

    async def tick(self) -> Optional[str]:
        """Run one pass. Returns the action taken, if any."""
        self.status.record_tick()
        action: Optional[str] = None
        try:
            await self._engine.clock.refresh()
            phase = self._engine.phase()
            if phase == RoundPhase.ENDED:
                action = "settle"
                outcome = self._engine.settle(self.operator_address)
                self.status.rounds_settled += 1
                logger.info(f"Operator settled round {outcome.round_id} ({outcome.kind.value})")
            elif phase in (RoundPhase.NO_ROUND, RoundPhase.SETTLED) and self.auto_start_rounds:
                action = "start_round"
                round_id = self._engine.start_round(self._engine.config.admin)
                self.status.rounds_started += 1
                logger.info(f"Operator started round {round_id}")
        except LotteryError as exc:
            self.status.record_failure(exc)
            logger.error(f"Operator {action} failed ({self.status.consecutive_failures} in a row): {exc}")
            return action
        except Exception as exc:
            self.status.record_failure(exc)
            logger.exception(f"Operator pass failed ({self.status.consecutive_failures} in a row): {exc}")
            return action

        if action:
            self.status.last_action = action
        self.status.reset_failures()
        return action

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self.status.is_running else "stopped",
            "operator_address": self.operator_address,
            "auto_start_rounds": self.auto_start_rounds,
            "last_action": self.status.last_action,
            "last_error": self.status.last_error,
            "consecutive_failures": self.status.consecutive_failures,
            "rounds_started": self.status.rounds_started,
            "rounds_settled": self.status.rounds_settled,
        }
