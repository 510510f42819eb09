from decimal import ROUND_HALF_UP, Decimal

from pmm.market_maker.types import MarketMakerConfig, MarketQuote, OrderbookSnapshot, Outcome

BPS = Decimal("10000")

# Spread widens once inventory is this lopsided
IMBALANCE_WIDEN_THRESHOLD = Decimal("0.3")
SPREAD_WIDEN_FACTOR = Decimal("1.5")

# Size skew kicks in beyond +/- this imbalance
IMBALANCE_SKEW_THRESHOLD = Decimal("0.2")
SKEW_REDUCE = Decimal("0.5")
SKEW_INCREASE = Decimal("1.5")

PRICE_QUANTUM = Decimal("0.000001")


def _quantize(value: Decimal) -> float:
    return float(value.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP))


def adjusted_spread_bps(spread_bps: float, imbalance: float) -> Decimal:
    """Configured spread, widened by 1.5x when |imbalance| exceeds 0.3."""
    bps = Decimal(str(spread_bps))
    if abs(Decimal(str(imbalance))) > IMBALANCE_WIDEN_THRESHOLD:
        return bps * SPREAD_WIDEN_FACTOR
    return bps


def size_multipliers(outcome: Outcome, imbalance: float) -> tuple[Decimal, Decimal]:
    """
    (buy, sell) size multipliers for an outcome.

    Positive imbalance means net long YES. The outcome we are long gets
    smaller buys and larger sells; the other outcome gets the reverse.
    """
    imb = Decimal(str(imbalance))
    if outcome is Outcome.NO:
        imb = -imb

    if imb > IMBALANCE_SKEW_THRESHOLD:
        return SKEW_REDUCE, SKEW_INCREASE
    if imb < -IMBALANCE_SKEW_THRESHOLD:
        return SKEW_INCREASE, SKEW_REDUCE
    return Decimal("1"), Decimal("1")


def compute_quotes(
    snapshot: OrderbookSnapshot,
    config: MarketMakerConfig,
    outcome: Outcome,
    imbalance: float,
) -> list[MarketQuote]:
    """
    Compute a two-sided quote for one outcome token.

    Pure: the result depends only on the arguments.

    Returns:
        [buy quote, sell quote] for ``snapshot.token_id``, or an empty list
        when the book has no usable midpoint.
    """
    if snapshot.mid_price is None or snapshot.mid_price <= 0:
        return []

    mid = Decimal(str(snapshot.mid_price))
    half_spread = mid * adjusted_spread_bps(config.spread_bps, imbalance) / BPS / 2

    bid_price = mid - half_spread
    ask_price = mid + half_spread

    base_size = Decimal(str(config.order_size_usd)) / mid
    buy_mult, sell_mult = size_multipliers(outcome, imbalance)

    return [
        MarketQuote(
            token_id=snapshot.token_id,
            side="BUY",
            price=_quantize(bid_price),
            size=_quantize(base_size * buy_mult),
        ),
        MarketQuote(
            token_id=snapshot.token_id,
            side="SELL",
            price=_quantize(ask_price),
            size=_quantize(base_size * sell_mult),
        ),
    ]
