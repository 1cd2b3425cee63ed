"""FastAPI web server for the round lottery."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from round_lottery.lottery.engine import LotteryEngine
from round_lottery.lottery.event_manager import EventManager
from round_lottery.lottery.exceptions import (
    DirectDepositRejected,
    InvalidIdentity,
    LotteryError,
    PreconditionError,
    ReentrancyRejected,
    TransferError,
    Unauthorized,
    ValidationError,
)
from round_lottery.lottery.models import LotteryEvent
from round_lottery.lottery.operator import PassiveOperator
from round_lottery.utils.common import normalize_address, shorten_address
from round_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class CallerRequest(BaseModel):
    caller: str
    signature: str = Field(..., description="personal_sign of action_message(...) by caller")


class TicketRequest(BaseModel):
    buyer: str
    quantity: int
    value: int = Field(..., ge=0, description="Payment in wei")
    signature: str = Field(..., description="personal_sign of action_message(...) by buyer")


class DepositRequest(BaseModel):
    sender: str
    value: int = Field(..., ge=0)


def action_message(action: str, address: str, round_id: int, **fields: Any) -> str:
    """Text an identity signs to authorise one call.

    The round id, and for purchases the tickets already held, make each
    message single-use.
    """
    lines = [f"round-lottery:{action}", f"address={address}", f"round={round_id}"]
    lines.extend(f"{key}={fields[key]}" for key in sorted(fields))
    return "\n".join(lines)


def recover_signer(message: str, signature: str) -> Optional[str]:
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:  # malformed hex or an invalid curve point
        logger.debug("Signature recovery failed: %s", exc)
        return None


def error_status(exc: LotteryError) -> int:
    if isinstance(exc, Unauthorized):
        return 403
    if isinstance(exc, (PreconditionError, ReentrancyRejected)):
        return 409
    if isinstance(exc, (ValidationError, DirectDepositRejected)):
        return 400
    if isinstance(exc, TransferError):
        return 502
    return 500


def to_http_error(exc: LotteryError) -> HTTPException:
    return HTTPException(
        status_code=error_status(exc),
        detail={"error": type(exc).__name__, "message": str(exc)},
    )


class LotteryWebServer:
    """HTTP gateway for the lottery engine."""

    def __init__(
        self,
        config: Dict[str, Any],
        engine: LotteryEngine,
        operator: Optional[PassiveOperator] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.operator = operator

        self.app = FastAPI(
            title="Round Lottery API",
            description="Round lifecycle, ticket sales and settlement",
            version="1.0.0",
        )
        self._server = None

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        origins = self.config.get("server", {}).get("cors_origins", ["*"])
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def refresh_chain_view(request: Request, call_next):
            # one RPC round trip per request, off the event loop
            if request.url.path.startswith("/api/") and request.url.path != "/api/health":
                try:
                    await self.engine.clock.refresh()
                except Exception as exc:
                    logger.error("Chain refresh failed for %s: %s", request.url.path, exc)
                    return JSONResponse(
                        status_code=503,
                        content={"detail": {"error": "ChainUnavailable", "message": str(exc)}},
                    )
            return await call_next(request)

    def _authorize(self, address: str, signature: str, action: str, round_id: int, **fields: Any) -> str:
        """Checksummed ``address`` if ``signature`` is its signature over the action message."""
        try:
            identity = normalize_address(address)
        except ValueError:
            raise to_http_error(InvalidIdentity(address)) from None
        if recover_signer(action_message(action, identity, round_id, **fields), signature) != identity:
            logger.warning("Rejected %s: signature does not belong to %s", action, shorten_address(identity))
            raise HTTPException(
                status_code=401,
                detail={"error": "InvalidSignature", "message": f"Signature does not authorise {action} for {identity}"},
            )
        return identity

    def _setup_routes(self) -> None:  # noqa: C901 - routing setup intentionally verbose
        engine = self.engine

        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            chain = await engine.clock.health_check()
            return {
                "status": "ok" if chain["status"] == "healthy" else "degraded",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "chain": chain,
                    "operator": self.operator.get_status()["status"] if self.operator else "disabled",
                    "round": engine.current_round.round_id,
                },
            }

        @self.app.get("/api/round/status")
        async def get_round_status() -> Dict[str, Any]:
            response = engine.status()
            response["contractAddress"] = engine.address
            last = engine.last_outcome
            response["lastOutcome"] = {
                "roundId": last.round_id,
                "refunded": last.refunded,
                "totalRefundedWei": last.total_refunded,
                "winners": last.winners,
                "prizesWei": last.prizes,
                "poolAfterFeeWei": last.pool_after_fee,
                "feeWei": last.fee,
            }
            return response

        # ------------------------------------------------------------------
        # Round lifecycle
        # ------------------------------------------------------------------
        @self.app.post("/api/round/start")
        async def start_round(request: CallerRequest) -> Dict[str, Any]:
            try:
                caller = self._authorize(
                    request.caller, request.signature, "start_round", engine.current_round.round_id + 1
                )
                round_id = engine.start_round(caller)
            except LotteryError as exc:
                raise to_http_error(exc)
            state = engine.current_round
            return {"roundId": round_id, "startTime": state.start_time, "endTime": state.end_time}

        @self.app.post("/api/tickets")
        async def buy_tickets(request: TicketRequest) -> Dict[str, Any]:
            try:
                buyer = self._authorize(
                    request.buyer,
                    request.signature,
                    "buy_tickets",
                    engine.current_round.round_id,
                    quantity=request.quantity,
                    value=request.value,
                    held=engine.tickets_of(request.buyer),
                )
                held = engine.buy_tickets(buyer, request.quantity, request.value)
            except LotteryError as exc:
                raise to_http_error(exc)
            return {
                "roundId": engine.current_round.round_id,
                "tickets": held,
                "uniqueParticipants": engine.unique_count(),
                "entryCount": engine.entry_count(),
            }

        @self.app.post("/api/round/settle")
        async def settle_round(request: CallerRequest) -> Dict[str, Any]:
            try:
                caller = self._authorize(request.caller, request.signature, "settle", engine.current_round.round_id)
                outcome = engine.settle(caller)
            except LotteryError as exc:
                raise to_http_error(exc)
            return outcome.to_dict()

        @self.app.post("/api/deposit")
        async def deposit(request: DepositRequest) -> Dict[str, Any]:
            try:
                engine.deposit(request.sender, request.value)
            except LotteryError as exc:
                raise to_http_error(exc)
            return {"status": "accepted"}  # pragma: no cover - deposit always raises

        # ------------------------------------------------------------------
        # History & feed
        # ------------------------------------------------------------------
        @self.app.get("/api/history")
        async def get_round_history(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            rounds = [outcome.to_dict() for outcome in reversed(engine.get_round_history(limit))]
            return {
                "rounds": rounds,
                "pagination": {"limit": limit, "returned": len(rounds)},
                "timestamp": datetime.utcnow().isoformat(),
            }

        @self.app.get("/api/history/{round_id}")
        async def get_round_outcome(round_id: int) -> Dict[str, Any]:
            try:
                return engine.get_round_outcome(round_id).to_dict()
            except KeyError:
                raise HTTPException(status_code=404, detail=f"Round {round_id} has no archived outcome")

        @self.app.get("/api/activities")
        async def get_live_feed(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = engine.events.get_live_feed(limit=limit)
            return {"activities": [self._serialize_activity(item) for item in reversed(feed)]}

    @staticmethod
    def _serialize_activity(item: LotteryEvent) -> Dict[str, Any]:
        return {
            "id": item.get_item_id(),
            "type": item.name,
            "message": EventManager.describe(item),
            "details": item.args,
            "timestamp": item.timestamp,
        }

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lottery web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Lottery web server stopped")

    async def stop(self) -> None:
        if self._server is not None:
            logger.info("Stopping lottery web server")
            self._server.should_exit = True
