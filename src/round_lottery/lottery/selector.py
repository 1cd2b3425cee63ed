"""Winner selection over the weighted entry sequence.

The default draw function, :class:`KeccakDraw`, hashes the block timestamp,
the chain's randomness beacon, the caller, the pool size and an internal
nonce, then reduces the digest modulo the pool size. This is NOT
cryptographically unpredictable: anyone who can influence block production
(timestamp or beacon) or choose when to call settlement can bias the
outcome. Deployments that need fair draws should inject a verifiable
randomness source implementing :class:`DrawFunction`.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence

from web3 import Web3

from round_lottery.lottery.models import RoundState
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class ClockSource(Protocol):
    def now(self) -> int: ...

    def beacon(self) -> int: ...


class DrawFunction(Protocol):
    def draw(self, modulus: int, *, caller: str, pool_size: int, nonce: int) -> int:
        """Return an index in ``[0, modulus)``."""
        ...


class KeccakDraw:
    """Weak, locally computable pseudo-random draw."""

    def __init__(self, source: ClockSource):
        self._source = source

    def draw(self, modulus: int, *, caller: str, pool_size: int, nonce: int) -> int:
        if modulus <= 0:
            raise ValueError("modulus must be positive")
        digest = Web3.solidity_keccak(
            ["uint256", "uint256", "address", "uint256", "uint256"],
            [self._source.now(), self._source.beacon(), caller, pool_size, nonce],
        )
        return int.from_bytes(digest, "big") % modulus


class SequenceDraw:
    """Replays a fixed sequence of raw values, cycling when exhausted."""

    def __init__(self, values: Sequence[int]):
        if not values:
            raise ValueError("SequenceDraw needs at least one value")
        self._values = list(values)
        self._position = 0

    def draw(self, modulus: int, *, caller: str, pool_size: int, nonce: int) -> int:
        value = self._values[self._position % len(self._values)]
        self._position += 1
        return value % modulus


class WinnerSelector:
    """Draws distinct identities from the entry pool."""

    def __init__(self, draw: DrawFunction):
        self.draw = draw

    def pick_distinct(
        self,
        count: int,
        entries: Sequence[str],
        *,
        state: RoundState,
        caller: str,
    ) -> List[str]:
        distinct = len(set(entries))
        if count > distinct:
            raise ValueError(f"cannot pick {count} distinct winners from {distinct} entrants")

        winners: List[str] = []
        while len(winners) < count:
            state.draw_nonce += 1
            index = self.draw.draw(
                len(entries),
                caller=caller,
                pool_size=len(entries),
                nonce=state.draw_nonce,
            )
            candidate = entries[index]
            # count <= 3, a linear scan is fine
            if candidate in winners:
                logger.debug("Draw %s hit already-chosen slot %s, redrawing", state.draw_nonce, index)
                continue
            winners.append(candidate)

        return winners
