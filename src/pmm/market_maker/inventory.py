import asyncio
from datetime import datetime
from typing import Optional, Union

from pmm.api.models import Position
from pmm.market_maker.types import ExchangeClient, Inventory, Outcome
from pmm.utils.logging import get_logger

log = get_logger(__name__)


class InventoryTracker:
    """Tracks held positions and derives per-market inventory from them."""

    def __init__(self, exchange: ExchangeClient, address: Optional[str] = None):
        self.exchange = exchange
        self.address = address
        self._positions: dict[tuple[str, str], Position] = {}  # (condition_id, outcome) -> Position
        self._task: Optional[asyncio.Task] = None
        self.last_refresh: Optional[datetime] = None

    async def refresh(self) -> bool:
        """
        Replace the position cache from one exchange fetch.

        The cache is swapped in one step, so a failed fetch leaves the previous
        positions in place.

        Returns:
            True if the cache was replaced
        """
        try:
            records = await self.exchange.fetch_positions(self.address)
        except Exception as e:
            log.error("Failed to refresh inventory", error=str(e))
            return False

        new_positions: dict[tuple[str, str], Position] = {}
        for record in records:
            try:
                position = Position.from_api(record)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                log.debug("Skipping malformed position", error=str(e))
                continue
            new_positions[(position.condition_id, position.outcome)] = position

        self._positions = new_positions
        self.last_refresh = datetime.now()
        log.debug("Inventory refreshed", positions=len(self._positions))
        return True

    def get_position(self, condition_id: str, outcome: Union[Outcome, str]) -> Optional[Position]:
        label = outcome.value if isinstance(outcome, Outcome) else str(outcome).upper()
        return self._positions.get((condition_id, label))

    def get_all_positions(self) -> list[Position]:
        return list(self._positions.values())

    def get_inventory(self, condition_id: str) -> Inventory:
        """Get YES/NO sizes and mark values for a market condition."""
        yes = self._positions.get((condition_id, Outcome.YES.value))
        no = self._positions.get((condition_id, Outcome.NO.value))

        return Inventory(
            condition_id=condition_id,
            yes_size=yes.size if yes else 0.0,
            no_size=no.size if no else 0.0,
            yes_value=yes.value if yes else 0.0,
            no_value=no.value if no else 0.0,
        )

    def get_imbalance(self, condition_id: str) -> float:
        """
        Inventory imbalance ratio for a condition.

        Ranges from -1 (all exposure in NO) to 1 (all exposure in YES);
        0 when balanced or flat.
        """
        return self.get_inventory(condition_id).imbalance

    def is_balanced(self, condition_id: str, max_imbalance: float) -> bool:
        return abs(self.get_imbalance(condition_id)) <= max_imbalance

    def total_exposure(self) -> float:
        """Mark value across every cached position."""
        return sum(p.mark_price * p.size for p in self._positions.values())

    async def _run(self, interval: float, refresh_first: bool) -> None:
        log.info("Inventory refresh loop started", interval=interval)
        if not refresh_first:
            await asyncio.sleep(interval)
        while True:
            await self.refresh()
            await asyncio.sleep(interval)

    def start(self, interval: float = 10.0, refresh_first: bool = True) -> None:
        """Start periodic refreshes, by default with one right away."""
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(interval, refresh_first))

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        log.info("Stopped inventory tracker")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
