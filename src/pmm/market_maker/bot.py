import asyncio
from datetime import datetime
from typing import Any, Mapping, Optional

from pmm.config import Settings, get_settings
from pmm.market_maker.errors import (
    InsufficientOutcomesError,
    MarketMakerError,
    MarketNotFoundError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
)
from pmm.market_maker.inventory import InventoryTracker
from pmm.market_maker.orderbook import OrderbookStateTracker
from pmm.market_maker.quotes import compute_quotes
from pmm.market_maker.risk import RiskGate
from pmm.market_maker.types import (
    ActiveSession,
    ExchangeClient,
    MarketMakerConfig,
    MarketQuote,
    Outcome,
    RefreshOutcome,
    SessionResult,
    SessionState,
)
from pmm.utils.logging import get_logger

log = get_logger(__name__)


class MarketMaker:
    """Orchestrates quoting sessions, one per market."""

    def __init__(
        self,
        exchange: ExchangeClient,
        orderbooks: OrderbookStateTracker,
        inventory: InventoryTracker,
        settings: Optional[Settings] = None,
        risk_gate: Optional[RiskGate] = None,
    ):
        self.settings = settings or get_settings()
        self.exchange = exchange
        self.orderbooks = orderbooks
        self.inventory = inventory
        self.risk_gate = risk_gate or RiskGate(inventory)

        self.default_config = MarketMakerConfig.from_settings(self.settings)
        self.refresh_interval = self.settings.mm_refresh_interval
        self.max_orders_per_market = self.settings.mm_max_orders_per_market

        self._sessions: dict[str, ActiveSession] = {}
        self._starting: set[str] = set()
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_market_making(
        self,
        market_id: str,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """
        Start quoting a market.

        A market that already has a session (or is starting one) is rejected
        rather than replaced, so its outstanding orders are never orphaned.
        """
        try:
            session = await self._open_session(market_id, overrides)
        except MarketMakerError as e:
            log.error("Failed to start market making", market_id=market_id, error=str(e))
            return SessionResult(False, str(e))
        except Exception as e:
            log.error("Failed to start market making", market_id=market_id, error=str(e), exc_info=True)
            return SessionResult(False, f"Failed to start market making: {e}")

        log.info(
            "Started market making",
            market_id=market_id,
            question=session.market.question[:60],
            config=session.config.to_dict(),
        )

        # Initial quote placement
        await self.refresh(market_id)
        return SessionResult(True, f"Started market making for {market_id}")

    async def _open_session(
        self,
        market_id: str,
        overrides: Optional[Mapping[str, Any]],
    ) -> ActiveSession:
        if market_id in self._sessions or market_id in self._starting:
            raise SessionAlreadyActiveError(market_id)

        self._starting.add(market_id)
        try:
            market = await self.exchange.fetch_market(market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            if not market.is_binary:
                raise InsufficientOutcomesError(market_id, len(market.clob_token_ids))
            if market.closed or not market.active:
                log.warning(
                    "Quoting a market that is not open",
                    market_id=market_id,
                    active=market.active,
                    closed=market.closed,
                )

            session = ActiveSession(
                market_id=market_id,
                market=market,
                config=self.default_config.merged(overrides),
                yes_token_id=market.yes_token_id,
                no_token_id=market.no_token_id,
            )
            self._sessions[market_id] = session
        finally:
            self._starting.discard(market_id)

        tokens = [session.yes_token_id, session.no_token_id]
        self.orderbooks.start_monitoring(tokens)
        self._ensure_loop()

        # Books are pulled before subscribing so the start runs a single refresh
        await self.orderbooks.poll(tokens)
        if session.state is SessionState.ACTIVE:
            for token_id in tokens:
                session.unsubscribers.append(
                    self.orderbooks.subscribe(token_id, lambda _snapshot: self.request_refresh(market_id))
                )
        return session

    async def stop_market_making(self, market_id: str, cancel_orders: bool = True) -> SessionResult:
        """
        Stop quoting a market.

        Waits for an in-flight refresh to finish, then cancels the session's
        orders. The session is removed even if some cancellations fail.
        """
        session = self._sessions.get(market_id)
        if session is None or session.state is not SessionState.ACTIVE:
            error = SessionNotFoundError(market_id)
            log.warning("Cannot stop market making", market_id=market_id, error=str(error))
            return SessionResult(False, str(error))

        session.state = SessionState.STOPPING
        cancelled = 0
        try:
            if session.refresh_task is not None and not session.refresh_task.done():
                await asyncio.wait([session.refresh_task])

            for unsubscribe in session.unsubscribers:
                unsubscribe()
            session.unsubscribers.clear()

            if cancel_orders:
                cancelled = await self._cancel_orders(session)

            self.orderbooks.stop_monitoring(session.yes_token_id)
            self.orderbooks.stop_monitoring(session.no_token_id)
        finally:
            session.state = SessionState.STOPPED
            self._sessions.pop(market_id, None)
            if not self._sessions:
                await self._stop_loop()

        log.info("Stopped market making", market_id=market_id, cancelled=cancelled)
        return SessionResult(True, f"Stopped market making for {market_id}")

    async def shutdown(self, cancel_orders: bool = True) -> None:
        """Stop every session and the refresh loop."""
        market_ids = list(self._sessions)
        if market_ids:
            await asyncio.gather(
                *(self.stop_market_making(mid, cancel_orders=cancel_orders) for mid in market_ids)
            )
        await self._stop_loop()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def request_refresh(self, market_id: str) -> Optional["asyncio.Task[RefreshOutcome]"]:
        """
        Schedule a refresh for a market.

        Refreshes of one market never overlap: a request made while one is
        running is folded into a single re-run after it completes.
        """
        session = self._sessions.get(market_id)
        if session is None or session.state is not SessionState.ACTIVE:
            return None

        if session.refresh_task is not None and not session.refresh_task.done():
            session.refresh_pending = True
            return session.refresh_task

        session.refresh_task = asyncio.create_task(self._run_refresh(session))
        return session.refresh_task

    async def refresh(self, market_id: str) -> RefreshOutcome:
        """Refresh a market's quotes and wait for the cycle to finish."""
        task = self.request_refresh(market_id)
        if task is None:
            return RefreshOutcome.SKIPPED
        # Shielded: a cancelled caller must not abort a cycle half way
        return await asyncio.shield(task)

    async def refresh_all(self) -> dict[str, RefreshOutcome]:
        """Refresh every active session concurrently."""
        market_ids = [mid for mid, s in self._sessions.items() if s.state is SessionState.ACTIVE]
        results = await asyncio.gather(
            *(self.refresh(mid) for mid in market_ids),
            return_exceptions=True,
        )

        outcomes: dict[str, RefreshOutcome] = {}
        for market_id, result in zip(market_ids, results):
            if isinstance(result, BaseException):
                log.error("Refresh failed", market_id=market_id, error=str(result))
                continue
            outcomes[market_id] = result
        return outcomes

    async def _run_refresh(self, session: ActiveSession) -> RefreshOutcome:
        outcome = RefreshOutcome.SKIPPED
        while session.state is SessionState.ACTIVE:
            session.refresh_pending = False
            try:
                outcome = await self._refresh_once(session)
            except Exception as e:
                log.error(
                    "Failed to update quotes",
                    market_id=session.market_id,
                    error=str(e),
                    exc_info=True,
                )
            if not session.refresh_pending:
                break
        return outcome

    def _build_quotes(self, session: ActiveSession) -> Optional[list[MarketQuote]]:
        """Quotes for both outcomes, or None when either book is missing."""
        snapshots = {outcome: self.orderbooks.get_snapshot(session.token_for(outcome)) for outcome in Outcome}
        if any(snapshot is None for snapshot in snapshots.values()):
            return None

        imbalance = self.inventory.get_imbalance(session.condition_id)
        quotes: list[MarketQuote] = []
        for outcome, snapshot in snapshots.items():
            quotes.extend(compute_quotes(snapshot, session.config, outcome, imbalance))
        return quotes[: self.max_orders_per_market]

    async def _refresh_once(self, session: ActiveSession) -> RefreshOutcome:
        market_id = session.market_id

        decision = self.risk_gate.check_limits(session, self.settings)
        if not decision:
            log.warning(
                "Risk limits exceeded, skipping quote update",
                market_id=market_id,
                reason=decision.reason,
                open_orders=len(session.order_ids),
            )
            return RefreshOutcome.RISK_BLOCKED

        quotes = self._build_quotes(session)
        if quotes is None:
            log.debug("Orderbook data not available", market_id=market_id)
            return RefreshOutcome.NO_DATA

        # Cancel first, then place: the market has no live quotes in between
        try:
            cancelled = await self._cancel_orders(session)
            placed = await self._place_quotes(session, quotes)
        finally:
            session.last_refresh = datetime.now()

        log.info(
            "Quotes refreshed",
            market_id=market_id,
            cancelled=cancelled,
            placed=placed,
            quotes=len(quotes),
        )
        return RefreshOutcome.QUOTED

    async def _cancel_orders(self, session: ActiveSession) -> int:
        """Cancel all of a session's outstanding orders. Returns how many succeeded."""
        order_ids = list(session.order_ids)
        session.order_ids.clear()
        if not order_ids:
            return 0

        results = await asyncio.gather(
            *(self.exchange.cancel_order(oid) for oid in order_ids),
            return_exceptions=True,
        )

        cancelled = 0
        for order_id, result in zip(order_ids, results):
            if isinstance(result, BaseException):
                log.warning("Failed to cancel order", order_id=order_id[:20], error=str(result))
            elif not result:
                log.warning("Order cancel rejected", order_id=order_id[:20])
            else:
                cancelled += 1
        return cancelled

    async def _place_quotes(self, session: ActiveSession, quotes: list[MarketQuote]) -> int:
        """Submit quotes concurrently and record the ids of those accepted."""
        if not quotes:
            return 0

        results = await asyncio.gather(
            *(self.exchange.submit_order(q.token_id, q.side, q.price, q.size) for q in quotes),
            return_exceptions=True,
        )

        placed = 0
        for quote, result in zip(quotes, results):
            if isinstance(result, BaseException):
                log.error(
                    "Failed to place quote",
                    market_id=session.market_id,
                    token_id=quote.token_id[:20],
                    side=quote.side,
                    error=str(result),
                )
            elif not result:
                log.error("Quote placement returned no order id", token_id=quote.token_id[:20], side=quote.side)
            else:
                session.order_ids.add(result)
                placed += 1
                log.debug("Quote placed", order_id=result, side=quote.side, price=quote.price, size=quote.size)
        return placed

    # ------------------------------------------------------------------
    # Sweep loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        log.info("Started market maker update loop", interval=self.refresh_interval)
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh_all()

    def _ensure_loop(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def _stop_loop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Stopped market maker update loop")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session(self, market_id: str) -> Optional[ActiveSession]:
        return self._sessions.get(market_id)

    def get_active_sessions(self) -> list[ActiveSession]:
        return list(self._sessions.values())

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "active_markets": len(self._sessions),
            "markets": [
                {
                    "market_id": market_id,
                    "question": session.market.question,
                    "state": session.state.value,
                    "orders": len(session.order_ids),
                    "last_update": session.last_refresh.isoformat() if session.last_refresh else None,
                }
                for market_id, session in self._sessions.items()
            ],
        }


class MarketMakerService:
    """Wires the exchange adapter, trackers and market maker together."""

    def __init__(self, settings: Optional[Settings] = None, exchange: Optional[Any] = None):
        self.settings = settings or get_settings()

        if exchange is None:
            from pmm.executor.exchange import PolymarketExchange

            exchange = PolymarketExchange.from_settings(self.settings)
        self.exchange = exchange

        self.orderbooks = OrderbookStateTracker(exchange, depth=self.settings.mm_orderbook_depth)
        self.inventory = InventoryTracker(exchange, address=self.settings.wallet_address)
        self.market_maker = MarketMaker(exchange, self.orderbooks, self.inventory, self.settings)

    async def start(self) -> None:
        log.info("Starting market maker service", dry_run=self.settings.dry_run)

        await self.inventory.refresh()
        self.inventory.start(self.settings.mm_inventory_refresh_interval, refresh_first=False)
        self.orderbooks.start(self.settings.mm_orderbook_poll_interval)

        for market_id in self.settings.mm_market_ids:
            await self.market_maker.start_market_making(market_id)

    async def stop(self) -> None:
        log.info("Stopping market maker service")
        await self.market_maker.shutdown(cancel_orders=self.settings.mm_cancel_on_stop)
        await self.orderbooks.stop()
        await self.inventory.stop()

        close = getattr(self.exchange, "close", None)
        if close is not None:
            await close()
        log.info("Market maker service stopped")

    async def __aenter__(self) -> "MarketMakerService":
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()


async def run_market_maker(settings: Optional[Settings] = None) -> None:
    """Entry point: run the service and its HTTP control API until interrupted."""
    import uvicorn

    from pmm.dashboard.app import create_app

    settings = settings or get_settings()

    async with MarketMakerService(settings) as service:
        app = create_app(service)
        config = uvicorn.Config(
            app,
            host=settings.dashboard_host,
            port=settings.dashboard_port,
            log_level=settings.log_level.lower(),
            log_config=None,
        )
        server = uvicorn.Server(config)
        log.info("Control API listening", host=settings.dashboard_host, port=settings.dashboard_port)
        await server.serve()
