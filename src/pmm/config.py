"""Configuration management for pmm."""

from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Wallet Configuration
    private_key: Optional[SecretStr] = Field(
        default=None,
        description="Private key for signing orders (hex string with 0x prefix)",
    )
    wallet_address: Optional[str] = Field(
        default=None,
        description="Wallet address whose positions are tracked",
    )
    chain_id: int = Field(
        default=137,
        description="Chain ID (137 for Polygon mainnet)",
    )

    # API Endpoints
    clob_base_url: str = Field(
        default="https://clob.polymarket.com",
        description="Polymarket CLOB API base URL",
    )
    gamma_base_url: str = Field(
        default="https://gamma-api.polymarket.com",
        description="Polymarket Gamma API base URL",
    )
    data_base_url: str = Field(
        default="https://data-api.polymarket.com",
        description="Polymarket Data API base URL (positions)",
    )

    # Polymarket API Credentials (L2 Auth)
    poly_api_key: Optional[str] = Field(
        default=None,
        description="Polymarket API key for L2 authentication",
    )
    poly_api_secret: Optional[SecretStr] = Field(
        default=None,
        description="Polymarket API secret for L2 authentication",
    )
    poly_api_passphrase: Optional[SecretStr] = Field(
        default=None,
        description="Polymarket API passphrase for L2 authentication",
    )

    # Mode
    dry_run: bool = Field(
        default=True,
        description="If true, simulate order placement and cancellation",
    )

    # Market making defaults (per-market overridable)
    mm_spread_bps: float = Field(
        default=50.0,
        description="Quoted spread in basis points of the midpoint",
        gt=0.0,
        le=10000.0,
    )
    mm_order_size_usd: float = Field(
        default=10.0,
        description="Quote size per side in USD",
        gt=0.0,
    )
    mm_max_position_size_usd: float = Field(
        default=100.0,
        description="Maximum mark value held in a single market",
        gt=0.0,
    )
    mm_max_inventory_imbalance: float = Field(
        default=0.6,
        description="Maximum absolute inventory imbalance ratio before quoting pauses",
        ge=0.0,
        le=1.0,
    )

    # Market making cadence
    mm_market_ids: list[str] = Field(
        default_factory=list,
        description="Market IDs to start quoting at boot (JSON list)",
    )
    mm_refresh_interval: float = Field(
        default=5.0,
        description="Seconds between quote refresh sweeps",
        ge=0.5,
        le=300.0,
    )
    mm_orderbook_poll_interval: float = Field(
        default=5.0,
        description="Seconds between orderbook polls",
        ge=0.5,
        le=300.0,
    )
    mm_orderbook_depth: int = Field(
        default=20,
        description="Orderbook depth requested per poll",
        ge=1,
        le=500,
    )
    mm_inventory_refresh_interval: float = Field(
        default=10.0,
        description="Seconds between position refreshes",
        ge=1.0,
        le=600.0,
    )
    mm_max_orders_per_market: int = Field(
        default=4,
        description="Maximum quotes placed per market per refresh",
        ge=1,
        le=20,
    )
    mm_cancel_on_stop: bool = Field(
        default=True,
        description="If true, cancel outstanding orders on shutdown",
    )

    # Risk limits
    risk_enable_limits: bool = Field(
        default=True,
        description="If false, the risk gate always allows quoting",
    )
    risk_max_total_exposure_usd: float = Field(
        default=1000.0,
        description="Maximum mark value across all positions",
        gt=0.0,
    )

    # Control surface
    dashboard_host: str = Field(
        default="0.0.0.0",
        description="Control API bind address",
    )
    dashboard_port: int = Field(
        default=3000,
        description="Control API port",
    )
    dashboard_username: str = Field(
        default="admin",
        description="Control API login username",
    )
    dashboard_password: str = Field(
        default="",
        description="Control API login password (empty disables auth)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines",
    )

    # SOCKS5 Proxy (for routing order API calls)
    socks5_proxy_host: Optional[str] = Field(
        default=None,
        description="SOCKS5 proxy hostname or IP",
    )
    socks5_proxy_port: int = Field(
        default=1080,
        description="SOCKS5 proxy port",
    )
    socks5_proxy_user: Optional[str] = Field(
        default=None,
        description="SOCKS5 proxy username (if authentication required)",
    )
    socks5_proxy_pass: Optional[SecretStr] = Field(
        default=None,
        description="SOCKS5 proxy password (if authentication required)",
    )

    @field_validator("wallet_address", mode="before")
    @classmethod
    def validate_wallet_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Wallet address must be a valid Ethereum address (0x + 40 hex chars)")
        return v.lower()

    @field_validator("private_key", mode="before")
    @classmethod
    def validate_private_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not v.startswith("0x"):
            raise ValueError("Private key must start with 0x")
        if len(v) != 66:  # 0x + 64 hex chars
            raise ValueError("Private key must be 32 bytes (64 hex chars + 0x prefix)")
        return v

    def is_trading_enabled(self) -> bool:
        """Check if order signing and L2 credentials are configured."""
        return (
            self.private_key is not None
            and self.poly_api_key is not None
            and self.poly_api_secret is not None
            and self.poly_api_passphrase is not None
        )

    def get_socks5_proxy_url(self) -> Optional[str]:
        """Get SOCKS5 proxy URL if configured.

        Uses socks5h:// scheme so DNS resolution happens through the proxy.
        """
        if not self.socks5_proxy_host:
            return None
        if self.socks5_proxy_user and self.socks5_proxy_pass:
            password = self.socks5_proxy_pass.get_secret_value()
            return f"socks5h://{self.socks5_proxy_user}:{password}@{self.socks5_proxy_host}:{self.socks5_proxy_port}"
        return f"socks5h://{self.socks5_proxy_host}:{self.socks5_proxy_port}"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
