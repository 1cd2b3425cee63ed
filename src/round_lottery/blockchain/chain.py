"""In-process clock and randomness beacon."""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Protocol

from web3 import Web3


class ChainClock(Protocol):
    """Clock and beacon the engine reads, refreshed before each request or tick."""

    def now(self) -> int: ...

    def beacon(self) -> int: ...

    async def refresh(self) -> None: ...

    async def health_check(self) -> Dict[str, Any]: ...


class LocalChain:
    """Monotonic block clock with a prevrandao-style beacon.

    With ``follow_wall_clock`` the timestamp tracks ``time.time()`` but never
    moves backwards; otherwise it only moves through :meth:`advance` and
    :meth:`set_time`, which is what tests use.
    """

    def __init__(self, *, start_time: Optional[int] = None, follow_wall_clock: bool = False):
        self.follow_wall_clock = follow_wall_clock
        self._timestamp = int(time.time()) if start_time is None else int(start_time)
        self.block_number = 0

    def now(self) -> int:
        if self.follow_wall_clock:
            wall = int(time.time())
            if wall > self._timestamp:
                self._timestamp = wall
                self.block_number += 1
        return self._timestamp

    def beacon(self) -> int:
        digest = Web3.solidity_keccak(["uint256", "uint256"], [self.block_number, self._timestamp])
        return int.from_bytes(digest, "big")

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("time cannot move backwards")
        self._timestamp += seconds
        self.block_number += 1
        return self._timestamp

    def set_time(self, timestamp: int) -> int:
        if timestamp < self._timestamp:
            raise ValueError(f"time cannot move backwards ({timestamp} < {self._timestamp})")
        return self.advance(timestamp - self._timestamp)

    async def refresh(self) -> None:
        """Nothing to fetch; the local clock is always current."""

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "latestBlock": self.block_number}
