"""Shared fixtures for the market maker tests."""

import itertools
from typing import Any, Optional

import pytest

from pmm.api.models import Market
from pmm.config import Settings
from pmm.market_maker.errors import ExchangeError


def make_settings(**overrides: Any) -> Settings:
    """Create Settings isolated from the local .env file."""
    values: dict[str, Any] = {
        "dry_run": True,
        "mm_spread_bps": 50.0,
        "mm_order_size_usd": 10.0,
        "mm_max_position_size_usd": 100.0,
        "mm_max_inventory_imbalance": 0.6,
        "mm_refresh_interval": 60.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_market(
    market_id: str = "12345",
    condition_id: str = "0xcond",
    token_ids: Optional[list[str]] = None,
    active: bool = True,
    closed: bool = False,
) -> Market:
    """Create a binary Market for testing."""
    if token_ids is None:
        token_ids = ["yes-token", "no-token"]
    return Market(
        id=market_id,
        condition_id=condition_id,
        question="Will the test pass?",
        slug="will-the-test-pass",
        clob_token_ids=token_ids,
        outcomes=["Yes", "No"][: len(token_ids)],
        active=active,
        closed=closed,
    )


def make_book(bid: float, ask: float) -> dict[str, Any]:
    """A two-level orderbook payload around the given top of book."""
    return {
        "bids": [{"price": str(bid), "size": "100"}, {"price": str(round(bid - 0.01, 4)), "size": "50"}],
        "asks": [{"price": str(ask), "size": "100"}, {"price": str(round(ask + 0.01, 4)), "size": "50"}],
    }


def make_position(condition_id: str, outcome: str, size: float, cur_price: float) -> dict[str, Any]:
    """A Data API position record."""
    return {
        "conditionId": condition_id,
        "outcome": outcome,
        "size": size,
        "avgPrice": cur_price,
        "curPrice": cur_price,
        "asset": f"{outcome.lower()}-token",
    }


class FakeExchange:
    """In-memory ExchangeClient that records every order call."""

    def __init__(self) -> None:
        self.markets: dict[str, Market] = {}
        self.books: dict[str, dict[str, Any]] = {}
        self.positions: list[dict[str, Any]] = []

        self.submitted: list[tuple[str, str, float, float]] = []
        self.cancelled: list[str] = []
        self.book_requests: list[str] = []

        self.fail_books: set[str] = set()
        self.fail_submit_tokens: set[str] = set()
        self.fail_cancel_ids: set[str] = set()
        self.fail_positions = False

        self._ids = itertools.count(1)

    async def fetch_orderbook(self, token_id: str, depth: int = 20) -> Optional[dict[str, Any]]:
        self.book_requests.append(token_id)
        if token_id in self.fail_books:
            raise ExchangeError(f"orderbook fetch failed for {token_id}")
        return self.books.get(token_id)

    async def fetch_market(self, market_id: str) -> Optional[Market]:
        return self.markets.get(market_id)

    async def fetch_positions(self, address: Optional[str] = None) -> list[dict[str, Any]]:
        if self.fail_positions:
            raise ExchangeError("positions fetch failed")
        return list(self.positions)

    async def submit_order(self, token_id: str, side: str, price: float, size: float) -> Optional[str]:
        if token_id in self.fail_submit_tokens:
            raise ExchangeError(f"order submission failed for {token_id}")
        self.submitted.append((token_id, side, price, size))
        return f"order-{next(self._ids)}"

    async def cancel_order(self, order_id: str) -> bool:
        self.cancelled.append(order_id)
        if order_id in self.fail_cancel_ids:
            raise ExchangeError(f"cancel failed for {order_id}")
        return True


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def exchange() -> FakeExchange:
    """Exchange with one quotable market and books for both tokens."""
    fake = FakeExchange()
    fake.markets["12345"] = make_market()
    fake.books["yes-token"] = make_book(0.49, 0.51)
    fake.books["no-token"] = make_book(0.49, 0.51)
    return fake
