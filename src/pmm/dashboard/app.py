"""FastAPI control API for the market maker."""

import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, ConfigDict, Field

from pmm import __version__
from pmm.market_maker.errors import MarketMakerError
from pmm.utils.logging import get_logger

if TYPE_CHECKING:
    from pmm.market_maker.bot import MarketMakerService

log = get_logger(__name__)

security = HTTPBasic(auto_error=False)


class ConfigOverrides(BaseModel):
    """Per-market overrides accepted when starting a session."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    spread_bps: Optional[float] = Field(default=None, alias="spreadBps", gt=0, le=10000)
    order_size_usd: Optional[float] = Field(default=None, alias="orderSizeUsd", gt=0)
    max_position_size_usd: Optional[float] = Field(default=None, alias="maxPositionSizeUsd", gt=0)
    max_inventory_imbalance: Optional[float] = Field(
        default=None, alias="maxInventoryImbalance", ge=0, le=1
    )


def create_app(service: "MarketMakerService") -> FastAPI:
    """Create the control API bound to a running service."""
    settings = service.settings
    market_maker = service.market_maker
    orderbooks = service.orderbooks
    inventory = service.inventory
    exchange = service.exchange

    def verify_credentials(
        credentials: Optional[HTTPBasicCredentials] = Depends(security),
    ) -> str:
        """Verify credentials if a password is configured."""
        if not settings.dashboard_password:
            return "anonymous"

        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Basic"},
            )

        correct_username = secrets.compare_digest(
            credentials.username.encode("utf8"),
            (settings.dashboard_username or "admin").encode("utf8"),
        )
        correct_password = secrets.compare_digest(
            credentials.password.encode("utf8"),
            settings.dashboard_password.encode("utf8"),
        )

        if not (correct_username and correct_password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )

        return credentials.username

    router = APIRouter(prefix="/api")

    @router.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now().isoformat()}

    @router.get("/status")
    async def get_status(username: str = Depends(verify_credentials)):
        """Market maker status plus position totals."""
        positions = inventory.get_all_positions()
        return {
            **market_maker.get_status(),
            "dry_run": settings.dry_run,
            "total_positions": len(positions),
            "total_exposure_usd": inventory.total_exposure(),
            "inventory_updated": inventory.last_refresh.isoformat() if inventory.last_refresh else None,
        }

    @router.post("/markets/{market_id}/start")
    async def start_market(
        market_id: str,
        overrides: Optional[ConfigOverrides] = None,
        username: str = Depends(verify_credentials),
    ):
        """Start quoting a market, optionally overriding its config."""
        values = overrides.model_dump(exclude_none=True) if overrides else None
        result = await market_maker.start_market_making(market_id, values)
        if not result.success:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"success": False, "error": result.reason},
            )
        return {"success": True, "message": result.reason}

    @router.post("/markets/{market_id}/stop")
    async def stop_market(market_id: str, username: str = Depends(verify_credentials)):
        """Stop quoting a market and cancel its orders."""
        result = await market_maker.stop_market_making(market_id)
        if not result.success:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"success": False, "error": result.reason},
            )
        return {"success": True, "message": result.reason}

    @router.get("/markets")
    async def get_markets(username: str = Depends(verify_credentials)):
        """Active quoting sessions."""
        sessions = market_maker.get_active_sessions()
        return {
            "count": len(sessions),
            "markets": [
                {
                    "market_id": s.market_id,
                    "condition_id": s.condition_id,
                    "question": s.market.question,
                    "slug": s.market.slug,
                    "active": s.market.active,
                    "state": s.state.value,
                    "tokens": {"YES": s.yes_token_id, "NO": s.no_token_id},
                    "orders": len(s.order_ids),
                    "config": s.config.to_dict(),
                    "started_at": s.started_at.isoformat(),
                    "last_update": s.last_refresh.isoformat() if s.last_refresh else None,
                }
                for s in sessions
            ],
        }

    @router.get("/positions")
    async def get_positions(username: str = Depends(verify_credentials)):
        positions = inventory.get_all_positions()
        return {
            "count": len(positions),
            "positions": [
                {
                    "condition_id": p.condition_id,
                    "outcome": p.outcome,
                    "size": p.size,
                    "avg_price": p.avg_price,
                    "cur_price": p.mark_price,
                    "value": p.value,
                }
                for p in positions
            ],
        }

    @router.get("/orders")
    async def get_orders(username: str = Depends(verify_credentials)):
        """Open orders on the exchange (empty in dry run)."""
        try:
            orders = await exchange.fetch_open_orders()
        except MarketMakerError as e:
            log.error("Failed to fetch open orders", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to fetch open orders",
            )

        return {
            "count": len(orders),
            "orders": [
                {
                    "id": o.get("id"),
                    "market": o.get("market"),
                    "token_id": o.get("asset_id"),
                    "side": o.get("side"),
                    "price": o.get("price"),
                    "size": o.get("original_size"),
                    "filled": o.get("size_matched"),
                    "status": o.get("status"),
                    "created_at": o.get("created_at"),
                }
                for o in orders
            ],
        }

    @router.get("/orderbook/{token_id}")
    async def get_orderbook(token_id: str, username: str = Depends(verify_credentials)):
        snapshot = orderbooks.get_snapshot(token_id)
        if snapshot is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Orderbook snapshot not found",
            )

        return {
            "token_id": snapshot.token_id,
            "best_bid": snapshot.best_bid,
            "best_ask": snapshot.best_ask,
            "mid_price": snapshot.mid_price,
            "spread": snapshot.spread,
            "spread_bps": snapshot.spread_bps,
            "bid_depth": snapshot.bid_depth,
            "ask_depth": snapshot.ask_depth,
            "timestamp": snapshot.timestamp.isoformat(),
        }

    @router.get("/inventory/{condition_id}")
    async def get_inventory(condition_id: str, username: str = Depends(verify_credentials)):
        """Inventory, imbalance and balance check against the default limit."""
        inv = inventory.get_inventory(condition_id)
        return {
            "condition_id": condition_id,
            "inventory": inv.to_dict(),
            "imbalance": inv.imbalance,
            "is_balanced": inventory.is_balanced(condition_id, settings.mm_max_inventory_imbalance),
        }

    app = FastAPI(
        title="pmm",
        description="Polymarket market maker control API",
        version=__version__,
    )
    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "name": "pmm",
            "version": __version__,
            "status": "running",
            "endpoints": {
                "health": "/api/health",
                "status": "/api/status",
                "markets": "/api/markets",
                "positions": "/api/positions",
                "orders": "/api/orders",
            },
        }

    return app
