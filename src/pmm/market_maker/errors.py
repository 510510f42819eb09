"""Error types raised by the market maker and its exchange adapter."""


class MarketMakerError(Exception):
    """Base class for market maker errors."""


class NotFoundError(MarketMakerError):
    """An unknown market, instrument or session was referenced."""


class MarketNotFoundError(NotFoundError):
    def __init__(self, market_id: str):
        super().__init__(f"Market {market_id} not found")
        self.market_id = market_id


class SessionNotFoundError(NotFoundError):
    def __init__(self, market_id: str):
        super().__init__(f"No active session for market {market_id}")
        self.market_id = market_id


class InsufficientOutcomesError(MarketMakerError):
    def __init__(self, market_id: str, outcome_count: int):
        super().__init__(
            f"Market {market_id} has {outcome_count} outcome token(s), need at least 2"
        )
        self.market_id = market_id
        self.outcome_count = outcome_count


class SessionAlreadyActiveError(MarketMakerError):
    def __init__(self, market_id: str):
        super().__init__(f"Market {market_id} already has an active session")
        self.market_id = market_id


class ConfigurationError(MarketMakerError):
    """Missing or invalid process configuration. Only raised at startup."""


class ExchangeError(MarketMakerError):
    """A call to the exchange failed (network, HTTP status or bad payload)."""
