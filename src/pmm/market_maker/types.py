import asyncio
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

from pmm.api.models import Market
from pmm.config import Settings


class Outcome(str, Enum):
    """The two mutually exclusive outcomes of a binary market."""

    YES = "YES"
    NO = "NO"


class SessionState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class RefreshOutcome(str, Enum):
    """Result of one quote refresh cycle for a market."""

    QUOTED = "quoted"
    RISK_BLOCKED = "risk_blocked"
    NO_DATA = "no_data"
    SKIPPED = "skipped"  # no active session


@dataclass(frozen=True)
class OrderbookSnapshot:
    """Derived top-of-book summary for one token."""

    token_id: str
    best_bid: Optional[float]
    best_ask: Optional[float]
    mid_price: Optional[float]
    spread: Optional[float]
    spread_bps: Optional[float]
    timestamp: datetime
    bid_depth: int = 0
    ask_depth: int = 0


@dataclass(frozen=True)
class MarketQuote:
    """Market-making quote for one outcome token."""

    token_id: str
    side: str  # "BUY" or "SELL"
    price: float
    size: float


@dataclass(frozen=True)
class Inventory:
    """Current inventory for one market condition."""

    condition_id: str
    yes_size: float = 0.0
    no_size: float = 0.0
    yes_value: float = 0.0
    no_value: float = 0.0

    @property
    def net_exposure(self) -> float:
        return self.yes_value - self.no_value

    @property
    def total_value(self) -> float:
        return self.yes_value + self.no_value

    @property
    def imbalance(self) -> float:
        """Net exposure over total value, clamped to [-1, 1]; 0 when the total is 0."""
        total = self.total_value
        if total == 0:
            return 0.0
        return max(-1.0, min(1.0, self.net_exposure / total))

    def to_dict(self) -> dict[str, float]:
        return {
            "yes_size": self.yes_size,
            "no_size": self.no_size,
            "yes_value": self.yes_value,
            "no_value": self.no_value,
            "net_exposure": self.net_exposure,
            "total_value": self.total_value,
        }


@dataclass(frozen=True)
class MarketMakerConfig:
    """Per-market quoting parameters."""

    spread_bps: float
    order_size_usd: float
    max_position_size_usd: float
    max_inventory_imbalance: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketMakerConfig":
        return cls(
            spread_bps=settings.mm_spread_bps,
            order_size_usd=settings.mm_order_size_usd,
            max_position_size_usd=settings.mm_max_position_size_usd,
            max_inventory_imbalance=settings.mm_max_inventory_imbalance,
        )

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "MarketMakerConfig":
        """Return a copy with every non-None override applied; unknown keys are ignored."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes = {k: float(v) for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class SessionResult:
    """Outcome of a start/stop request."""

    success: bool
    reason: str = ""


@dataclass(eq=False)
class ActiveSession:
    """Live quoting state for one market."""

    market_id: str
    market: Market
    config: MarketMakerConfig
    yes_token_id: str
    no_token_id: str
    order_ids: set[str] = field(default_factory=set)
    state: SessionState = SessionState.ACTIVE
    started_at: datetime = field(default_factory=datetime.now)
    last_refresh: Optional[datetime] = None

    # Orchestrator bookkeeping
    unsubscribers: list[Callable[[], None]] = field(default_factory=list, repr=False)
    refresh_task: Optional["asyncio.Task[RefreshOutcome]"] = field(default=None, repr=False)
    refresh_pending: bool = False

    @property
    def condition_id(self) -> str:
        return self.market.condition_id

    def token_for(self, outcome: Outcome) -> str:
        return self.yes_token_id if outcome is Outcome.YES else self.no_token_id


class ExchangeClient(Protocol):
    """Narrow exchange interface consumed by the market maker."""

    async def fetch_orderbook(self, token_id: str, depth: int = 20) -> Optional[dict[str, Any]]:
        ...

    async def fetch_market(self, market_id: str) -> Optional[Market]:
        ...

    async def fetch_positions(self, address: Optional[str] = None) -> list[dict[str, Any]]:
        ...

    async def submit_order(self, token_id: str, side: str, price: float, size: float) -> Optional[str]:
        ...

    async def cancel_order(self, order_id: str) -> bool:
        ...
