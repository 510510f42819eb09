"""Exchange adapter used by the market maker.

Wraps the Gamma, CLOB and Data APIs behind the narrow ExchangeClient
interface and turns transport errors into ExchangeError.
"""

import itertools
from datetime import datetime
from typing import Any, Optional

import aiohttp
import httpx

from pmm.api.gamma import GammaClient
from pmm.api.models import Market
from pmm.config import Settings, get_settings
from pmm.executor.async_clob import AsyncClobClient, create_async_clob_client
from pmm.market_maker.errors import ExchangeError
from pmm.utils.logging import get_logger

log = get_logger(__name__)


class PolymarketExchange:
    """ExchangeClient implementation for Polymarket.

    In dry-run mode orders are never sent: placements return a local
    ``dry_...`` id and cancellations succeed immediately. Reads always hit the
    real APIs.
    """

    def __init__(
        self,
        clob_client: AsyncClobClient,
        gamma_client: GammaClient,
        dry_run: bool = True,
        wallet_address: Optional[str] = None,
    ):
        self.clob_client = clob_client
        self.gamma_client = gamma_client
        self.dry_run = dry_run
        self.wallet_address = wallet_address or clob_client.address
        self._dry_run_ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PolymarketExchange":
        settings = settings or get_settings()
        return cls(
            clob_client=create_async_clob_client(settings),
            gamma_client=GammaClient(settings.gamma_base_url),
            dry_run=settings.dry_run,
            wallet_address=settings.wallet_address,
        )

    async def fetch_orderbook(self, token_id: str, depth: int = 20) -> Optional[dict[str, Any]]:
        try:
            return await self.clob_client.get_orderbook(token_id, depth)
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(f"orderbook fetch failed for {token_id}: {e}") from e

    async def fetch_market(self, market_id: str) -> Optional[Market]:
        try:
            data = await self.gamma_client.get_market(market_id)
        except (aiohttp.ClientError, ValueError) as e:
            raise ExchangeError(f"market fetch failed for {market_id}: {e}") from e
        if not data:
            return None
        return self.gamma_client.parse_market(data)

    async def fetch_positions(self, address: Optional[str] = None) -> list[dict[str, Any]]:
        user = address or self.wallet_address
        if not user:
            log.debug("No wallet address configured, no positions to track")
            return []
        try:
            return await self.clob_client.get_positions(user)
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(f"positions fetch failed: {e}") from e

    async def submit_order(self, token_id: str, side: str, price: float, size: float) -> Optional[str]:
        if self.dry_run:
            order_id = f"dry_{token_id[:16]}_{int(datetime.now().timestamp())}_{next(self._dry_run_ids)}"
            log.info(
                "Dry run: Placing quote",
                token_id=token_id[:20],
                side=side,
                price=price,
                size=size,
                order_id=order_id,
            )
            return order_id

        try:
            resp = await self.clob_client.submit_order(
                token_id=token_id,
                side=side,
                price=price,
                size=size,
            )
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(f"order submission failed for {token_id}: {e}") from e

        order_id = resp.get("orderID") or resp.get("orderId")
        if not order_id:
            log.error("Order response carried no orderID", response=str(resp)[:200])
            return None
        return str(order_id)

    async def cancel_order(self, order_id: str) -> bool:
        if self.dry_run:
            log.info("Dry run: Would cancel order", order_id=order_id)
            return True

        try:
            return await self.clob_client.cancel_order(order_id)
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(f"cancel failed for {order_id}: {e}") from e

    async def fetch_open_orders(self) -> list[dict[str, Any]]:
        """Open orders resting on the CLOB for this account. Always empty in dry run."""
        if self.dry_run:
            return []

        try:
            return await self.clob_client.get_orders()
        except (httpx.HTTPError, ValueError) as e:
            raise ExchangeError(f"open orders fetch failed: {e}") from e

    async def close(self) -> None:
        await self.clob_client.close()
        await self.gamma_client.close()
