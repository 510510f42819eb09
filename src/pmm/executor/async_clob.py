"""
Async CLOB client.

Native async implementation over httpx: public orderbook reads, Data API
position reads, and EIP-712 signed order placement / cancellation with L2
HMAC authentication.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_typed_data

from pmm.config import Settings, get_settings
from pmm.market_maker.errors import ConfigurationError
from pmm.utils.logging import get_logger

log = get_logger(__name__)

# Polymarket contract addresses (Polygon mainnet)
CTF_EXCHANGE = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
NEG_RISK_CTF_EXCHANGE = "0xC5d563A36AE78145C45a50134d48A1215220f80a"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ORDER_TYPES = {
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "signer", "type": "address"},
        {"name": "taker", "type": "address"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "makerAmount", "type": "uint256"},
        {"name": "takerAmount", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "feeRateBps", "type": "uint256"},
        {"name": "side", "type": "uint8"},
        {"name": "signatureType", "type": "uint8"},
    ]
}


@dataclass
class SignedOrder:
    """A signed order ready for submission."""
    salt: int
    maker: str
    signer: str
    taker: str
    token_id: str
    maker_amount: int
    taker_amount: int
    expiration: int
    nonce: int
    fee_rate_bps: int
    side: int  # 0 = BUY, 1 = SELL
    signature_type: int
    signature: str

    def to_dict(self) -> dict:
        """Convert to the CLOB API payload format."""
        return {
            "salt": self.salt,
            "maker": self.maker,
            "signer": self.signer,
            "taker": self.taker,
            "tokenId": self.token_id,
            "makerAmount": str(self.maker_amount),
            "takerAmount": str(self.taker_amount),
            "expiration": str(self.expiration),
            "nonce": str(self.nonce),
            "feeRateBps": str(self.fee_rate_bps),
            "side": "BUY" if self.side == 0 else "SELL",
            "signatureType": self.signature_type,
            "signature": self.signature,
        }


def order_amounts(side: str, price: float, size: float) -> tuple[int, int]:
    """
    Compute (maker_amount, taker_amount) in 6-decimal base units.

    The CLOB rejects amounts with more precision than it accepts: USDC legs
    take 2 decimals on BUY and 3 on SELL, token legs take 4.
    """
    if side == "BUY":
        # Buying tokens: maker gives USDC, takes tokens
        taker_amount = (round(size * 1e6) // 100) * 100
        maker_amount = (round(size * price * 1e6) // 10000) * 10000
    else:
        # Selling tokens: maker gives tokens, takes USDC
        maker_amount = (round(size * 1e6) // 100) * 100
        taker_amount = (round(size * price * 1e6) // 1000) * 1000
    return maker_amount, taker_amount


class AsyncClobClient:
    """
    Async CLOB client.

    Read endpoints (orderbooks, positions) work without credentials. Order
    placement and cancellation need a private key and L2 API credentials.
    """

    # Shared thread pool for CPU-bound signing
    _signing_executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def get_signing_executor(cls) -> ThreadPoolExecutor:
        """Get or create the shared signing thread pool."""
        if cls._signing_executor is None:
            cls._signing_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="signer")
            log.info("Created signing thread pool", max_workers=4)
        return cls._signing_executor

    def __init__(
        self,
        host: str = "https://clob.polymarket.com",
        data_host: str = "https://data-api.polymarket.com",
        private_key: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        api_passphrase: Optional[str] = None,
        chain_id: int = 137,
        proxy_url: Optional[str] = None,
    ):
        self.host = host.rstrip("/")
        self.data_host = data_host.rstrip("/")
        self.chain_id = chain_id

        self.account = Account.from_key(private_key) if private_key else None
        self.address: Optional[str] = self.account.address if self.account else None

        self.api_key = api_key
        self.api_secret = api_secret
        self.api_passphrase = api_passphrase

        limits = httpx.Limits(max_keepalive_connections=5, max_connections=20)
        transport = None
        if proxy_url:
            transport = httpx.AsyncHTTPTransport(proxy=proxy_url, limits=limits)

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=10.0),
            transport=transport,
            limits=limits,
        )

        # token_id -> neg_risk
        self._neg_risk: dict[str, bool] = {}

        log.info("AsyncClobClient initialized", address=self.address, can_trade=self.can_trade)

    @property
    def can_trade(self) -> bool:
        return bool(self.account and self.api_key and self.api_secret and self.api_passphrase)

    def _require_trading(self) -> None:
        if not self.can_trade:
            raise ConfigurationError("Order endpoints need PRIVATE_KEY and POLY_API_* credentials")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------------

    async def get_orderbook(self, token_id: str, depth: int = 20) -> Optional[dict[str, Any]]:
        """
        Fetch the orderbook for a token.

        Returns:
            Raw book dictionary with "bids" and "asks", or None if the CLOB has
            no book for the token.

        Raises:
            httpx.HTTPError: on transport failures or unexpected status codes
        """
        response = await self._client.get(
            f"{self.host}/book",
            params={"token_id": token_id, "depth": depth},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict):
            return None
        return data

    async def get_positions(self, address: Optional[str] = None) -> list[dict[str, Any]]:
        """
        Get current positions from the Data API.

        Raises:
            httpx.HTTPError: on transport failures or non-200 responses
        """
        user = address or self.address
        if not user:
            return []

        response = await self._client.get(
            f"{self.data_host}/positions",
            params={"user": user},
        )
        if response.status_code != 200:
            log.error("Failed to get positions", status=response.status_code, body=response.text[:200])
        response.raise_for_status()

        data = response.json()
        return data if isinstance(data, list) else []

    async def get_neg_risk(self, token_id: str) -> bool:
        """
        Check if a token trades on the neg-risk exchange.

        Results are cached to avoid repeated API calls.
        """
        if token_id in self._neg_risk:
            return self._neg_risk[token_id]

        try:
            response = await self._client.get(
                f"{self.host}/neg-risk",
                params={"token_id": token_id},
            )
            if response.status_code == 200:
                is_neg_risk = bool(response.json().get("neg_risk", False))
                self._neg_risk[token_id] = is_neg_risk
                return is_neg_risk
        except (httpx.HTTPError, ValueError) as e:
            log.warning("Failed to check neg_risk", token_id=token_id[:20], error=str(e))
            return False

        self._neg_risk[token_id] = False
        return False

    # ------------------------------------------------------------------
    # Authenticated endpoints
    # ------------------------------------------------------------------

    def _build_hmac_signature(
        self,
        timestamp: int,
        method: str,
        request_path: str,
        body: Optional[str] = None,
    ) -> str:
        """Build HMAC signature for L2 authentication."""
        secret_bytes = base64.urlsafe_b64decode(self.api_secret or "")
        message = f"{timestamp}{method}{request_path}"
        if body:
            message += body

        h = hmac.new(secret_bytes, message.encode("utf-8"), hashlib.sha256)
        return base64.urlsafe_b64encode(h.digest()).decode("utf-8")

    def _get_l2_headers(self, method: str, path: str, body: Optional[str] = None) -> dict:
        """Generate L2 authentication headers."""
        timestamp = int(time.time())
        signature = self._build_hmac_signature(timestamp, method, path, body)

        return {
            "POLY_ADDRESS": self.address or "",
            "POLY_SIGNATURE": signature,
            "POLY_TIMESTAMP": str(timestamp),
            "POLY_API_KEY": self.api_key or "",
            "POLY_PASSPHRASE": self.api_passphrase or "",
            "Content-Type": "application/json",
        }

    def sign_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        neg_risk: bool = False,
        fee_rate_bps: int = 0,
    ) -> SignedOrder:
        """Sign an order using EIP-712."""
        self._require_trading()
        assert self.account is not None

        side_int = 0 if side == "BUY" else 1
        maker_amount, taker_amount = order_amounts(side, price, size)
        salt = round(time.time() * random.random())

        domain = {
            "name": "Polymarket CTF Exchange",
            "version": "1",
            "chainId": self.chain_id,
            "verifyingContract": NEG_RISK_CTF_EXCHANGE if neg_risk else CTF_EXCHANGE,
        }
        order_data = {
            "salt": salt,
            "maker": self.account.address,
            "signer": self.account.address,
            "taker": ZERO_ADDRESS,
            "tokenId": int(token_id),
            "makerAmount": maker_amount,
            "takerAmount": taker_amount,
            "expiration": 0,
            "nonce": 0,
            "feeRateBps": fee_rate_bps,
            "side": side_int,
            "signatureType": 0,  # EOA
        }

        signable = encode_typed_data(domain, ORDER_TYPES, order_data)
        signed = self.account.sign_message(signable)

        return SignedOrder(
            salt=salt,
            maker=self.account.address,
            signer=self.account.address,
            taker=ZERO_ADDRESS,
            token_id=token_id,
            maker_amount=maker_amount,
            taker_amount=taker_amount,
            expiration=0,
            nonce=0,
            fee_rate_bps=fee_rate_bps,
            side=side_int,
            signature_type=0,
            signature="0x" + signed.signature.hex().removeprefix("0x"),
        )

    async def post_order(
        self,
        signed_order: SignedOrder,
        order_type: str = "GTC",
    ) -> dict[str, Any]:
        """
        Submit a signed order to the CLOB API.

        Raises:
            httpx.HTTPStatusError: if the CLOB rejects the order
        """
        path = "/order"
        body = {
            "order": signed_order.to_dict(),
            "owner": self.api_key,
            "orderType": order_type,
        }

        # Serialized once: the HMAC covers the exact body bytes
        body_str = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
        headers = self._get_l2_headers("POST", path, body_str)

        response = await self._client.post(
            f"{self.host}{path}",
            headers=headers,
            content=body_str,
        )

        if response.status_code != 200:
            log.error("Order submission failed", status=response.status_code, error=response.text[:200])
        response.raise_for_status()

        return response.json()

    async def submit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        order_type: str = "GTC",
    ) -> dict[str, Any]:
        """Sign and submit a limit order in one call."""
        self._require_trading()
        neg_risk = await self.get_neg_risk(token_id)

        loop = asyncio.get_running_loop()
        signed_order = await loop.run_in_executor(
            self.get_signing_executor(),
            self.sign_order,
            token_id,
            side,
            price,
            size,
            neg_risk,
            0,
        )
        return await self.post_order(signed_order, order_type=order_type)

    async def cancel_order(self, order_id: str) -> bool:
        """
        Cancel an order by ID.

        Raises:
            httpx.HTTPError: on transport failures
        """
        self._require_trading()
        path = "/order"
        body_str = json.dumps({"orderID": order_id}, separators=(",", ":"))
        headers = self._get_l2_headers("DELETE", path, body_str)

        response = await self._client.request(
            "DELETE",
            f"{self.host}{path}",
            headers=headers,
            content=body_str,
        )
        if response.status_code != 200:
            log.warning("Cancel rejected", order_id=order_id[:20], status=response.status_code)
            return False

        data = response.json()
        not_canceled = data.get("not_canceled") or {}
        return order_id not in not_canceled

    async def get_orders(self) -> list[dict[str, Any]]:
        """Get open orders."""
        self._require_trading()
        path = "/data/orders"
        headers = self._get_l2_headers("GET", path)

        response = await self._client.get(
            f"{self.host}{path}",
            headers=headers,
        )
        response.raise_for_status()

        data = response.json()
        if isinstance(data, dict):
            return data.get("data", [])
        return data if isinstance(data, list) else []


def create_async_clob_client(settings: Optional[Settings] = None) -> AsyncClobClient:
    """Create an AsyncClobClient from settings.

    Raises:
        ConfigurationError: in live mode when signing credentials are missing
    """
    settings = settings or get_settings()

    if not settings.dry_run and not settings.is_trading_enabled():
        raise ConfigurationError(
            "Live trading requires PRIVATE_KEY, POLY_API_KEY, POLY_API_SECRET and POLY_API_PASSPHRASE"
        )

    return AsyncClobClient(
        host=settings.clob_base_url,
        data_host=settings.data_base_url,
        private_key=settings.private_key.get_secret_value() if settings.private_key else None,
        api_key=settings.poly_api_key,
        api_secret=settings.poly_api_secret.get_secret_value() if settings.poly_api_secret else None,
        api_passphrase=(
            settings.poly_api_passphrase.get_secret_value() if settings.poly_api_passphrase else None
        ),
        chain_id=settings.chain_id,
        proxy_url=settings.get_socks5_proxy_url(),
    )
