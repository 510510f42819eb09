"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from conftest import make_settings
from pmm.market_maker.types import MarketMakerConfig


class TestSettingsDefaults:
    def test_market_making_defaults(self):
        settings = make_settings()
        config = MarketMakerConfig.from_settings(settings)

        assert config.spread_bps == 50.0
        assert config.order_size_usd == 10.0
        assert config.max_position_size_usd == 100.0
        assert config.max_inventory_imbalance == 0.6
        assert settings.mm_max_orders_per_market == 4
        assert settings.risk_enable_limits is True
        assert settings.risk_max_total_exposure_usd == 1000.0

    def test_market_ids_from_environment(self, monkeypatch):
        monkeypatch.setenv("MM_MARKET_IDS", '["1", "2"]')

        settings = make_settings()

        assert settings.mm_market_ids == ["1", "2"]


class TestSettingsValidation:
    def test_wallet_address_is_lower_cased(self):
        settings = make_settings(wallet_address="0x" + "AB" * 20)
        assert settings.wallet_address == "0x" + "ab" * 20

    def test_bad_wallet_address_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(wallet_address="0x1234")

    def test_bad_private_key_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(private_key="1234")

    def test_imbalance_limit_bounded(self):
        with pytest.raises(ValidationError):
            make_settings(mm_max_inventory_imbalance=1.5)

    def test_trading_needs_all_credentials(self):
        assert not make_settings(private_key="0x" + "11" * 32).is_trading_enabled()
        assert make_settings(
            private_key="0x" + "11" * 32,
            poly_api_key="key",
            poly_api_secret="secret",
            poly_api_passphrase="pass",
        ).is_trading_enabled()


class TestProxyUrl:
    def test_no_proxy_by_default(self):
        assert make_settings().get_socks5_proxy_url() is None

    def test_proxy_with_credentials(self):
        settings = make_settings(
            socks5_proxy_host="10.0.0.1",
            socks5_proxy_port=9050,
            socks5_proxy_user="user",
            socks5_proxy_pass="pw",
        )

        assert settings.get_socks5_proxy_url() == "socks5h://user:pw@10.0.0.1:9050"
