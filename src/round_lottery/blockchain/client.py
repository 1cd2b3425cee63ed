"""Clock and beacon read from an Ethereum JSON-RPC node."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from web3 import Web3

from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class Web3ChainClient:
    """Reads the latest block's timestamp and prevrandao via web3.py.

    RPC calls run in a worker thread from :meth:`refresh`; ``now()`` and
    ``beacon()`` only read the block cached by the last refresh, so the
    engine never blocks the event loop on the node.

    Both values are public and producer-influenced; they feed the weak draw
    function and nothing else.
    """

    def __init__(self, config: Dict[str, Any]):
        chain_cfg = config.get("chain", {})
        self.rpc_url: Optional[str] = chain_cfg.get("rpc_url")
        try:
            self.rpc_timeout: float = float(chain_cfg.get("rpc_timeout", 10.0))
        except (TypeError, ValueError):
            self.rpc_timeout = 10.0
        self.chain_id: Optional[int] = int(chain_cfg["chain_id"]) if chain_cfg.get("chain_id") else None
        self._w3: Optional[Web3] = None
        self._latest_block: Optional[Dict[str, Any]] = None
        self._last_timestamp = 0

    async def initialize(self) -> None:
        """Establish the RPC connection and cache the first block."""
        if not self.rpc_url:
            raise ValueError("chain.rpc_url is not configured")
        w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        if not await asyncio.to_thread(w3.is_connected):  # pragma: no cover - depends on live RPC
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")
        self._w3 = w3

        logger.info("Connected to RPC %s", self.rpc_url)
        if self.chain_id is not None:
            actual_chain_id = await asyncio.to_thread(lambda: w3.eth.chain_id)
            if actual_chain_id != self.chain_id:
                logger.warning(f"Chain ID mismatch: expected {self.chain_id}, got {actual_chain_id}")
        await self.refresh()

    def close(self) -> None:
        self._w3 = None
        self._latest_block = None

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    async def refresh(self) -> None:
        """Fetch the latest block and make it the view for ``now``/``beacon``."""
        w3 = self._ensure_web3()

        def _fetch() -> Dict[str, Any]:
            return dict(w3.eth.get_block("latest"))

        block = await asyncio.to_thread(_fetch)
        self._latest_block = block
        # clamp so the clock never moves backwards across reorgs or node switches
        self._last_timestamp = max(self._last_timestamp, int(block["timestamp"]))

    def _cached_block(self) -> Dict[str, Any]:
        if self._latest_block is None:
            raise RuntimeError("No block cached yet; await refresh() first")
        return self._latest_block

    def now(self) -> int:
        self._cached_block()
        return self._last_timestamp

    def beacon(self) -> int:
        block = self._cached_block()
        mix = block.get("mixHash") or block.get("prevRandao")
        if mix is None:
            # pre-merge nodes expose only difficulty
            return int(block.get("difficulty", 0))
        if isinstance(mix, str):
            return int(mix, 16)
        return int.from_bytes(bytes(mix), "big")

    async def health_check(self) -> Dict[str, Any]:
        try:
            await self.refresh()
            return {"status": "healthy", "latestBlock": int(self._cached_block()["number"])}
        except Exception as exc:  # pragma: no cover - health failures are diagnostic
            logger.exception("Chain health check failed")
            return {"status": "error", "detail": str(exc)}
