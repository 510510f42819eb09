"""Tests for the HTTP control API."""

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeExchange, make_market, make_settings
from pmm.dashboard.app import create_app
from pmm.market_maker.errors import ExchangeError
from pmm.market_maker.inventory import InventoryTracker
from pmm.market_maker.orderbook import OrderbookStateTracker
from pmm.market_maker.types import ActiveSession, MarketMakerConfig, SessionResult


def make_service(**settings_overrides):
    """A service stand-in with real trackers and a mocked market maker."""
    settings = make_settings(**settings_overrides)
    exchange = FakeExchange()

    service = MagicMock()
    service.settings = settings
    service.exchange = MagicMock()
    service.exchange.fetch_open_orders = AsyncMock(return_value=[])
    service.orderbooks = OrderbookStateTracker(exchange)
    service.inventory = InventoryTracker(exchange)
    service.market_maker = MagicMock()
    service.market_maker.get_status.return_value = {"running": False, "active_markets": 0, "markets": []}
    service.market_maker.get_active_sessions.return_value = []
    service.market_maker.start_market_making = AsyncMock(return_value=SessionResult(True, "Started market making for 12345"))
    service.market_maker.stop_market_making = AsyncMock(return_value=SessionResult(True, "Stopped market making for 12345"))
    return service


def basic_auth(username: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def service():
    return make_service()


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


class TestReadEndpoints:
    """Health, status and cached state."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root_lists_endpoints(self, client):
        body = client.get("/").json()
        assert body["name"] == "pmm"
        assert body["endpoints"]["status"] == "/api/status"
        assert body["endpoints"]["orders"] == "/api/orders"

    def test_status_includes_position_totals(self, client):
        body = client.get("/api/status").json()

        assert body["running"] is False
        assert body["active_markets"] == 0
        assert body["dry_run"] is True
        assert body["total_positions"] == 0
        assert body["total_exposure_usd"] == 0

    def test_orderbook_snapshot(self, client, service):
        service.orderbooks.ingest("tok", ["0.48"], ["0.52"])

        body = client.get("/api/orderbook/tok").json()

        assert body["best_bid"] == 0.48
        assert body["best_ask"] == 0.52
        assert body["mid_price"] == pytest.approx(0.50)

    def test_orderbook_missing_is_404(self, client):
        response = client.get("/api/orderbook/unknown")

        assert response.status_code == 404
        assert response.json()["detail"] == "Orderbook snapshot not found"

    def test_inventory_for_flat_condition(self, client):
        body = client.get("/api/inventory/0xcond").json()

        assert body["imbalance"] == 0.0
        assert body["is_balanced"] is True
        assert body["inventory"]["yes_size"] == 0.0

    def test_markets_lists_sessions(self, client, service):
        session = ActiveSession(
            market_id="12345",
            market=make_market(),
            config=MarketMakerConfig.from_settings(service.settings),
            yes_token_id="yes-token",
            no_token_id="no-token",
            order_ids={"o1", "o2"},
        )
        service.market_maker.get_active_sessions.return_value = [session]

        body = client.get("/api/markets").json()

        assert body["count"] == 1
        entry = body["markets"][0]
        assert entry["market_id"] == "12345"
        assert entry["orders"] == 2
        assert entry["tokens"] == {"YES": "yes-token", "NO": "no-token"}
        assert entry["config"]["spread_bps"] == 50.0
        assert entry["last_update"] is None

    def test_orders_maps_open_orders(self, client, service):
        service.exchange.fetch_open_orders.return_value = [
            {
                "id": "0xorder",
                "market": "0xcond",
                "asset_id": "yes-token",
                "side": "BUY",
                "price": "0.49",
                "original_size": "20",
                "size_matched": "5",
                "status": "LIVE",
                "created_at": 1700000000,
            }
        ]

        body = client.get("/api/orders").json()

        assert body["count"] == 1
        assert body["orders"][0] == {
            "id": "0xorder",
            "market": "0xcond",
            "token_id": "yes-token",
            "side": "BUY",
            "price": "0.49",
            "size": "20",
            "filled": "5",
            "status": "LIVE",
            "created_at": 1700000000,
        }

    def test_orders_empty_in_dry_run(self, client):
        body = client.get("/api/orders").json()

        assert body == {"count": 0, "orders": []}

    def test_orders_exchange_failure_is_502(self, client, service):
        service.exchange.fetch_open_orders.side_effect = ExchangeError("open orders fetch failed")

        response = client.get("/api/orders")

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to fetch open orders"


class TestSessionEndpoints:
    """Start and stop."""

    def test_start_without_body(self, client, service):
        response = client.post("/api/markets/12345/start")

        assert response.status_code == 200
        assert response.json()["success"] is True
        service.market_maker.start_market_making.assert_awaited_once_with("12345", None)

    def test_start_with_camel_case_overrides(self, client, service):
        response = client.post("/api/markets/12345/start", json={"spreadBps": 80, "orderSizeUsd": 25})

        assert response.status_code == 200
        service.market_maker.start_market_making.assert_awaited_once_with(
            "12345", {"spread_bps": 80.0, "order_size_usd": 25.0}
        )

    def test_start_rejects_out_of_range_override(self, client, service):
        response = client.post("/api/markets/12345/start", json={"maxInventoryImbalance": 2})

        assert response.status_code == 422
        service.market_maker.start_market_making.assert_not_awaited()

    def test_start_failure_is_400(self, client, service):
        service.market_maker.start_market_making.return_value = SessionResult(False, "Market 12345 not found")

        response = client.post("/api/markets/12345/start")

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Market 12345 not found"}

    def test_stop(self, client, service):
        response = client.post("/api/markets/12345/stop")

        assert response.status_code == 200
        service.market_maker.stop_market_making.assert_awaited_once_with("12345")

    def test_stop_failure_is_400(self, client, service):
        service.market_maker.stop_market_making.return_value = SessionResult(False, "No active session for market 12345")

        response = client.post("/api/markets/12345/stop")

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestAuth:
    """Optional HTTP basic auth."""

    def test_no_password_means_open_access(self, client):
        assert client.get("/api/status").status_code == 200

    def test_password_required_when_configured(self):
        client = TestClient(create_app(make_service(dashboard_password="secret")))

        assert client.get("/api/status").status_code == 401
        assert client.get("/api/status", headers=basic_auth("admin", "wrong")).status_code == 401
        assert client.get("/api/status", headers=basic_auth("admin", "secret")).status_code == 200

    def test_health_is_always_open(self):
        client = TestClient(create_app(make_service(dashboard_password="secret")))
        assert client.get("/api/health").status_code == 200
