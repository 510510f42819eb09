"""Tests for the quote calculation."""

from datetime import datetime

import pytest

from pmm.market_maker.quotes import adjusted_spread_bps, compute_quotes
from pmm.market_maker.types import MarketMakerConfig, MarketQuote, OrderbookSnapshot, Outcome


def make_snapshot(mid: float | None = 0.50, token_id: str = "tok") -> OrderbookSnapshot:
    """Create a snapshot with the given midpoint."""
    return OrderbookSnapshot(
        token_id=token_id,
        best_bid=mid - 0.01 if mid is not None else None,
        best_ask=mid + 0.01 if mid is not None else None,
        mid_price=mid,
        spread=0.02 if mid is not None else None,
        spread_bps=None,
        timestamp=datetime(2024, 1, 1),
    )


def make_config(**overrides) -> MarketMakerConfig:
    values = {
        "spread_bps": 50.0,
        "order_size_usd": 10.0,
        "max_position_size_usd": 100.0,
        "max_inventory_imbalance": 0.6,
    }
    values.update(overrides)
    return MarketMakerConfig(**values)


class TestQuotePrices:
    """Bid/ask placement around the midpoint."""

    def test_balanced_inventory_uses_configured_spread(self):
        buy, sell = compute_quotes(make_snapshot(0.50), make_config(), Outcome.YES, 0.0)

        assert buy == MarketQuote(token_id="tok", side="BUY", price=0.49875, size=20.0)
        assert sell == MarketQuote(token_id="tok", side="SELL", price=0.50125, size=20.0)

    def test_large_imbalance_widens_spread(self):
        buy, sell = compute_quotes(make_snapshot(0.50), make_config(), Outcome.YES, 0.5)

        assert buy.price == 0.498125
        assert sell.price == 0.501875

    def test_widening_threshold_is_exclusive(self):
        assert adjusted_spread_bps(50.0, 0.3) == 50
        assert adjusted_spread_bps(50.0, 0.31) == 75
        assert adjusted_spread_bps(50.0, -0.31) == 75

    def test_prices_are_rounded_to_six_decimals(self):
        buy, sell = compute_quotes(make_snapshot(0.333), make_config(spread_bps=33.0), Outcome.YES, 0.0)

        assert buy.price == round(buy.price, 6)
        assert sell.price == round(sell.price, 6)
        assert buy.price < 0.333 < sell.price


class TestQuoteSizes:
    """Inventory skew on quote sizes."""

    def test_long_yes_skews_yes_sizes(self):
        buy, sell = compute_quotes(make_snapshot(0.50), make_config(), Outcome.YES, 0.5)

        assert buy.size == 10.0
        assert sell.size == 30.0

    def test_long_yes_skews_no_sizes_the_other_way(self):
        buy, sell = compute_quotes(make_snapshot(0.50), make_config(), Outcome.NO, 0.5)

        assert buy.size == 30.0
        assert sell.size == 10.0

    def test_long_no_skews_yes_buys_up(self):
        buy, sell = compute_quotes(make_snapshot(0.50), make_config(), Outcome.YES, -0.5)

        assert buy.size == 30.0
        assert sell.size == 10.0

    def test_inside_band_sizes_are_equal(self):
        for imbalance in (0.2, -0.2, 0.1, 0.0):
            buy, sell = compute_quotes(make_snapshot(0.50), make_config(), Outcome.NO, imbalance)
            assert buy.size == sell.size == 20.0

    def test_size_scales_with_price(self):
        buy, _ = compute_quotes(make_snapshot(0.25), make_config(), Outcome.YES, 0.0)
        assert buy.size == 40.0


class TestQuoteEdgeCases:
    def test_no_mid_returns_no_quotes(self):
        assert compute_quotes(make_snapshot(None), make_config(), Outcome.YES, 0.0) == []

    def test_zero_mid_returns_no_quotes(self):
        assert compute_quotes(make_snapshot(0.0), make_config(), Outcome.YES, 0.0) == []

    def test_quotes_are_for_snapshot_token(self):
        quotes = compute_quotes(make_snapshot(0.5, token_id="abc"), make_config(), Outcome.NO, 0.0)
        assert [q.token_id for q in quotes] == ["abc", "abc"]
        assert [q.side for q in quotes] == ["BUY", "SELL"]

    def test_deterministic(self):
        args = (make_snapshot(0.42), make_config(), Outcome.YES, 0.35)
        assert compute_quotes(*args) == compute_quotes(*args)


class TestConfigOverrides:
    def test_merged_applies_only_set_values(self):
        config = make_config().merged({"spread_bps": 80, "order_size_usd": None, "unknown": 1})

        assert config.spread_bps == 80.0
        assert config.order_size_usd == 10.0

    def test_merged_without_overrides_is_unchanged(self):
        config = make_config()
        assert config.merged(None) is config
        assert config.merged({}) is config


@pytest.mark.parametrize("mid", [0.05, 0.5, 0.95])
def test_bid_below_ask(mid):
    buy, sell = compute_quotes(make_snapshot(mid), make_config(), Outcome.YES, 0.0)
    assert buy.price < mid < sell.price
