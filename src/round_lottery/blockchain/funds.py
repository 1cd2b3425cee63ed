"""Journaled in-process value transfers."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

from round_lottery.utils.common import shorten_address
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)

# hook(sender, amount); raising rejects the transfer
ReceiveHook = Callable[[str, int], None]


class FundsLedger:
    """Balances per address with an undo journal.

    A recipient may register a receive hook that runs after the balance has
    moved. The hook can do anything, including calling back into the
    lottery; if it raises, the move is undone and ``send`` returns False,
    the way a low-level value call reports failure.
    """

    def __init__(self, genesis: Optional[Dict[str, int]] = None) -> None:
        self._balances: Dict[str, int] = {}
        self._journal: List[Tuple[str, int]] = []
        self._receivers: Dict[str, ReceiveHook] = {}
        for address, amount in (genesis or {}).items():
            self.credit(address, amount)
        self.commit(0)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------
    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    def credit(self, address: str, amount: int) -> None:
        """Mint ``amount`` into ``address`` (genesis allocations, faucets)."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        self._apply(address, amount)

    def _apply(self, address: str, delta: int) -> None:
        self._balances[address] = self._balances.get(address, 0) + delta
        self._journal.append((address, delta))

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------
    def register_receiver(self, address: str, hook: ReceiveHook) -> None:
        self._receivers[address] = hook

    def unregister_receiver(self, address: str) -> None:
        self._receivers.pop(address, None)

    def send(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        if self.balance_of(sender) < amount:
            logger.warning(
                "Insufficient balance: %s has %s, needs %s",
                shorten_address(sender),
                self.balance_of(sender),
                amount,
            )
            return False

        mark = self.checkpoint()
        self._apply(sender, -amount)
        self._apply(recipient, amount)

        hook = self._receivers.get(recipient)
        if hook is not None:
            try:
                hook(sender, amount)
            except Exception as exc:
                logger.warning("Recipient %s rejected %s wei: %s", shorten_address(recipient), amount, exc)
                self.rollback(mark)
                return False
        return True

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------
    def checkpoint(self) -> int:
        return len(self._journal)

    def rollback(self, mark: int) -> None:
        while len(self._journal) > mark:
            address, delta = self._journal.pop()
            self._balances[address] -= delta

    def commit(self, mark: int) -> None:
        """Make every move since ``mark`` permanent and drop its undo entries."""
        del self._journal[mark:]
