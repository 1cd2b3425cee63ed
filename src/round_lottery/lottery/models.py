"""Core data models for the round lottery engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


MIN_UNIQUE_PARTICIPANTS = 2
MAX_WINNERS = 3
BPS_DENOMINATOR = 10_000

# Prize share of the post-fee pool, in basis points, keyed by winner count.
# The last winner always receives the remainder.
PRIZE_SCHEDULE: Dict[int, Tuple[int, ...]] = {
    1: (10_000,),
    2: (6_000, 4_000),
    3: (5_000, 3_000, 2_000),
}


class RoundPhase(IntEnum):
    """Lifecycle of a lottery round."""

    NO_ROUND = 0
    ACTIVE = 1
    ENDED = 2
    SETTLED = 3


class ResolutionKind(str, Enum):
    REFUNDED = "refunded"
    SETTLED = "settled"


@dataclass
class ParticipationRecord:
    """Per-round, per-identity ticket tally."""

    tickets: int = 0
    joined: bool = False


@dataclass
class LastOutcome:
    """Quick-view fields describing the most recent settlement."""

    round_id: int = 0
    refunded: bool = False
    total_refunded: int = 0
    winners: List[str] = field(default_factory=list)
    prizes: List[int] = field(default_factory=list)
    pool_after_fee: int = 0
    fee: int = 0


@dataclass
class RoundState:
    """Mutable round bookkeeping owned by a single engine instance.

    ``end_time == 0`` means no round is open for settlement: either none was
    ever started or the last one has been settled.
    """

    round_id: int = 0
    start_time: int = 0
    end_time: int = 0
    draw_nonce: int = 0
    last: LastOutcome = field(default_factory=LastOutcome)

    def is_active(self, now: int) -> bool:
        return self.end_time != 0 and now < self.end_time

    def time_remaining(self, now: int) -> int:
        if not self.is_active(now):
            return 0
        return self.end_time - now

    def phase(self, now: int) -> RoundPhase:
        if self.round_id == 0:
            return RoundPhase.NO_ROUND
        if self.end_time == 0:
            return RoundPhase.SETTLED
        if now < self.end_time:
            return RoundPhase.ACTIVE
        return RoundPhase.ENDED


@dataclass(frozen=True)
class Payout:
    winner: str
    prize: int


@dataclass(frozen=True)
class RoundOutcome:
    """Immutable archive entry for a resolved round.

    ``amount`` is the total refunded for a refunded round and the post-fee
    prize pool for a settled one.
    """

    round_id: int
    kind: ResolutionKind
    start_time: int
    end_time: int
    amount: int
    fee: int = 0
    payouts: Tuple[Payout, ...] = ()
    resolved_at: int = 0

    @property
    def winners(self) -> List[str]:
        return [p.winner for p in self.payouts]

    @property
    def prizes(self) -> List[int]:
        return [p.prize for p in self.payouts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roundId": self.round_id,
            "kind": self.kind.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "amountWei": self.amount,
            "feeWei": self.fee,
            "winners": self.winners,
            "prizesWei": self.prizes,
            "resolvedAt": self.resolved_at,
        }


@dataclass
class LotteryEvent:
    """Notification emitted once per committed state change."""

    name: str
    args: Dict[str, Any]
    timestamp: int

    def get_item_id(self) -> str:
        round_id = self.args.get("roundId", 0)
        return f"{round_id}-{self.timestamp}-{self.name}"


@dataclass(frozen=True)
class LotteryConfig:
    """Fixed policy for every round served by an engine."""

    admin: str
    contract_address: str
    ticket_price: int = 10**16
    round_duration: int = 300
    fee_bps: int = 500
    per_address_cap: int = 10

    def __post_init__(self) -> None:
        if self.ticket_price <= 0:
            raise ValueError("ticket_price must be positive")
        if self.round_duration <= 0:
            raise ValueError("round_duration must be positive")
        if not 0 <= self.fee_bps < BPS_DENOMINATOR:
            raise ValueError(f"fee_bps must be in [0, {BPS_DENOMINATOR})")
        if self.per_address_cap < 1:
            raise ValueError("per_address_cap must be at least 1")


@dataclass
class OperatorStatus:
    """Operational metrics for the passive operator loop."""

    is_running: bool = False
    last_tick: Optional[datetime] = None
    last_action: Optional[str] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    rounds_started: int = 0
    rounds_settled: int = 0

    def record_tick(self) -> None:
        self.last_tick = datetime.utcnow()

    def record_failure(self, error: Exception) -> None:
        self.consecutive_failures += 1
        self.last_error = f"{type(error).__name__}: {error}"

    def reset_failures(self) -> None:
        self.consecutive_failures = 0
        self.last_error = None
