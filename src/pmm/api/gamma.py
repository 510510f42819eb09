"""Gamma API client for market metadata."""

import json
from datetime import datetime
from typing import Any, Optional

import aiohttp

from pmm.api.models import Market
from pmm.config import get_settings
from pmm.utils.logging import get_logger

log = get_logger(__name__)


def _json_list(value: Any) -> list[Any]:
    """Decode a field the API returns either as a list or as a JSON string."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return [value] if value else []
    if isinstance(value, list):
        return value
    return []


class GammaClient:
    """Client for Polymarket Gamma API (market metadata)."""

    def __init__(self, base_url: Optional[str] = None) -> None:
        self.base_url = (base_url or get_settings().gamma_base_url).rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=30),
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _get(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Make a GET request to the API."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"

        try:
            async with session.get(url, params=params) as response:
                response.raise_for_status()
                return await response.json()
        except aiohttp.ClientError as e:
            log.error("Gamma API request failed", url=url, error=str(e))
            raise

    async def get_market(self, market_id: str) -> Optional[dict[str, Any]]:
        """
        Fetch a single raw market by ID.

        Args:
            market_id: The Gamma market ID

        Returns:
            Market dictionary or None if not found
        """
        try:
            data = await self._get(f"/markets/{market_id}")
        except aiohttp.ClientResponseError as e:
            if e.status in (404, 422):
                return None
            raise

        # The list endpoint shape shows up behind some proxies
        if isinstance(data, list):
            for m_data in data:
                if str(m_data.get("id")) == str(market_id):
                    return m_data
            return None
        return data or None

    def parse_market(self, data: dict[str, Any]) -> Optional[Market]:
        """
        Parse a market dictionary into a Market object.

        Markets with fewer than two outcome tokens are still returned so the
        caller can tell "not found" apart from "not quotable".

        Args:
            data: Raw market data from API

        Returns:
            Market object or None if parsing fails
        """
        try:
            clob_token_ids = [str(t) for t in _json_list(data.get("clobTokenIds")) if t]
            outcomes = [str(o) for o in _json_list(data.get("outcomes"))]

            end_date = None
            end_date_raw = data.get("endDate") or data.get("end_date_iso")
            if isinstance(end_date_raw, str) and end_date_raw:
                try:
                    if end_date_raw.endswith("Z"):
                        end_date_raw = end_date_raw[:-1] + "+00:00"
                    end_date = datetime.fromisoformat(end_date_raw)
                except ValueError as e:
                    log.debug("Failed to parse end_date", raw=end_date_raw, error=str(e))

            return Market(
                id=str(data.get("id", "")),
                condition_id=str(data.get("conditionId", data.get("condition_id", ""))),
                question=data.get("question") or data.get("title") or "",
                slug=data.get("slug") or "",
                clob_token_ids=clob_token_ids,
                outcomes=outcomes,
                active=data.get("active") is True,
                closed=data.get("closed") is True,
                end_date=end_date,
                neg_risk=bool(data.get("negRisk", False)),
            )

        except (KeyError, ValueError, TypeError, AttributeError) as e:
            log.warning(
                "Failed to parse market",
                market_id=data.get("id") if isinstance(data, dict) else None,
                error=str(e),
            )
            return None

    async def __aenter__(self) -> "GammaClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()
