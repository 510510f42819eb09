import asyncio
import itertools
import math
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from pmm.market_maker.types import ExchangeClient, OrderbookSnapshot
from pmm.utils.logging import get_logger

log = get_logger(__name__)

SnapshotCallback = Callable[[OrderbookSnapshot], None]


def parse_level_price(level: Any) -> Optional[float]:
    """
    Extract the price from one book level.

    Feeds send levels as bare prices ("0.52"), as [price, size] pairs, as
    {"price": ..., "size": ...} mappings or as objects with a ``price``
    attribute. Anything unparsable or non-finite yields None.
    """
    try:
        if isinstance(level, (str, int, float)) and not isinstance(level, bool):
            raw = level
        elif isinstance(level, dict):
            raw = level["price"]
        elif isinstance(level, (list, tuple)):
            raw = level[0]
        else:
            raw = getattr(level, "price")
        price = float(raw)
    except (KeyError, IndexError, AttributeError, TypeError, ValueError):
        return None

    if not math.isfinite(price):
        return None
    return price


def _prices(levels: Optional[Iterable[Any]]) -> list[float]:
    if not levels:
        return []
    prices = []
    for level in levels:
        price = parse_level_price(level)
        if price is not None:
            prices.append(price)
    return prices


def build_snapshot(
    token_id: str,
    bid_levels: Optional[Iterable[Any]],
    ask_levels: Optional[Iterable[Any]],
    timestamp: Optional[datetime] = None,
) -> OrderbookSnapshot:
    """Derive best bid/ask, mid and spread from raw levels."""
    bids = _prices(bid_levels)
    asks = _prices(ask_levels)

    best_bid = max(bids) if bids else None
    best_ask = min(asks) if asks else None

    mid_price = None
    spread = None
    spread_bps = None
    if best_bid is not None and best_ask is not None:
        mid_price = (best_bid + best_ask) / 2
        spread = best_ask - best_bid
        if mid_price != 0:
            spread_bps = spread / mid_price * 10000

    return OrderbookSnapshot(
        token_id=token_id,
        best_bid=best_bid,
        best_ask=best_ask,
        mid_price=mid_price,
        spread=spread,
        spread_bps=spread_bps,
        timestamp=timestamp or datetime.now(),
        bid_depth=len(bids),
        ask_depth=len(asks),
    )


class OrderbookStateTracker:
    """Keeps the latest derived snapshot per token and notifies subscribers."""

    def __init__(self, exchange: ExchangeClient, depth: int = 20):
        self.exchange = exchange
        self.depth = depth

        self._snapshots: dict[str, OrderbookSnapshot] = {}
        self._subscribers: dict[str, dict[int, SnapshotCallback]] = {}
        self._subscription_ids = itertools.count()
        self._monitoring: set[str] = set()
        self._pulls: dict[str, asyncio.Task] = {}  # token_id -> pull in flight
        self._task: Optional[asyncio.Task] = None

    def ingest(
        self,
        token_id: str,
        bid_levels: Optional[Iterable[Any]],
        ask_levels: Optional[Iterable[Any]],
    ) -> OrderbookSnapshot:
        """Store a fresh snapshot for a token and notify its subscribers."""
        snapshot = build_snapshot(token_id, bid_levels, ask_levels)
        self._snapshots[token_id] = snapshot

        # Copy: callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers.get(token_id, {}).values()):
            try:
                callback(snapshot)
            except Exception as e:
                log.error("Orderbook callback failed", token_id=token_id[:20], error=str(e))

        return snapshot

    def subscribe(self, token_id: str, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register a callback for snapshot updates on a token.

        Returns:
            A function that removes exactly this registration
        """
        sub_id = next(self._subscription_ids)
        self._subscribers.setdefault(token_id, {})[sub_id] = callback

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(token_id)
            if callbacks is None:
                return
            callbacks.pop(sub_id, None)
            if not callbacks:
                del self._subscribers[token_id]

        return unsubscribe

    def subscriber_count(self, token_id: str) -> int:
        return len(self._subscribers.get(token_id, {}))

    def get_snapshot(self, token_id: str) -> Optional[OrderbookSnapshot]:
        return self._snapshots.get(token_id)

    def get_all_snapshots(self) -> dict[str, OrderbookSnapshot]:
        return dict(self._snapshots)

    @property
    def monitored_tokens(self) -> set[str]:
        return set(self._monitoring)

    def start_monitoring(self, token_ids: Iterable[str]) -> None:
        token_ids = list(token_ids)
        self._monitoring.update(token_ids)
        log.info("Started monitoring tokens", count=len(token_ids), total=len(self._monitoring))

    def stop_monitoring(self, token_id: str) -> None:
        self._monitoring.discard(token_id)
        self._snapshots.pop(token_id, None)
        log.info("Stopped monitoring token", token_id=token_id[:20])

    async def poll(self, token_ids: Optional[Iterable[str]] = None) -> None:
        """Pull books for the given tokens (default: all monitored) concurrently."""
        targets = list(token_ids) if token_ids is not None else list(self._monitoring)
        if not targets:
            return
        await asyncio.gather(*(self._update_orderbook(t) for t in targets))

    async def _update_orderbook(self, token_id: str) -> None:
        # One pull per token at a time; later callers wait on the one in flight
        pull = self._pulls.get(token_id)
        if pull is None or pull.done():
            pull = asyncio.create_task(self._pull_orderbook(token_id))
            self._pulls[token_id] = pull
        else:
            log.debug("Orderbook pull already in flight", token_id=token_id[:20])
        await asyncio.shield(pull)

    async def _pull_orderbook(self, token_id: str) -> None:
        was_monitored = token_id in self._monitoring
        try:
            book = await self.exchange.fetch_orderbook(token_id, self.depth)
            if book is None:
                log.debug("Orderbook unavailable", token_id=token_id[:20])
                return
            if was_monitored and token_id not in self._monitoring:
                # Unregistered while the pull was in flight
                return
            self.ingest(token_id, book.get("bids") or [], book.get("asks") or [])
        except Exception as e:
            log.error("Failed to update orderbook", token_id=token_id[:20], error=str(e))
        finally:
            self._pulls.pop(token_id, None)

    async def _run(self, interval: float) -> None:
        log.info("Orderbook poll loop started", interval=interval)
        while True:
            await self.poll()
            await asyncio.sleep(interval)

    def start(self, interval: float) -> None:
        """Start the background poll loop."""
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(interval))

    async def stop(self) -> None:
        """Stop the poll loop and forget all monitored tokens."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        pulls = list(self._pulls.values())
        for pull in pulls:
            pull.cancel()
        if pulls:
            await asyncio.gather(*pulls, return_exceptions=True)
        self._pulls.clear()

        self._monitoring.clear()
        self._snapshots.clear()
        log.info("Stopped all orderbook monitoring")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
