"""Data models for Polymarket API responses."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class Market:
    """A Polymarket binary prediction market."""

    id: str
    condition_id: str
    question: str
    slug: str = ""

    # Outcome token IDs in outcome order: [YES, NO]
    clob_token_ids: list[str] = field(default_factory=list)
    outcomes: list[str] = field(default_factory=list)

    active: bool = True
    closed: bool = False

    end_date: Optional[datetime] = None
    neg_risk: bool = False

    @property
    def yes_token_id(self) -> Optional[str]:
        """Token for the first outcome."""
        return self.clob_token_ids[0] if len(self.clob_token_ids) > 0 else None

    @property
    def no_token_id(self) -> Optional[str]:
        """Token for the second outcome."""
        return self.clob_token_ids[1] if len(self.clob_token_ids) > 1 else None

    @property
    def is_binary(self) -> bool:
        return len(self.clob_token_ids) >= 2


@dataclass(frozen=True)
class Position:
    """A held position in one outcome of a market, as reported by the Data API."""

    condition_id: str
    outcome: str  # "YES" or "NO"
    size: float
    avg_price: float = 0.0
    mark_price: float = 0.0
    token_id: Optional[str] = None

    @property
    def value(self) -> float:
        """Mark value of the position."""
        return self.size * self.mark_price

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Position":
        """Parse a Data API position record.

        Raises:
            KeyError, TypeError, ValueError: if the record is malformed
        """
        condition_id = data.get("conditionId") or data.get("condition_id")
        outcome = data.get("outcome")
        if not condition_id or not outcome:
            raise KeyError("position record missing conditionId or outcome")

        # Non Yes/No labels ("Up"/"Down", team names) map through the outcome index
        outcome = str(outcome).strip().upper()
        outcome_index = data.get("outcomeIndex")
        if outcome not in ("YES", "NO") and outcome_index in (0, 1, "0", "1"):
            outcome = "YES" if int(outcome_index) == 0 else "NO"

        size = float(data.get("size") or 0)
        avg_price = float(data.get("avgPrice") or 0)
        mark_price = float(data.get("curPrice") or 0)
        if not all(math.isfinite(v) for v in (size, avg_price, mark_price)):
            raise ValueError("position record has a non-finite size or price")

        return cls(
            condition_id=str(condition_id),
            outcome=outcome,
            size=size,
            avg_price=avg_price,
            mark_price=mark_price,
            token_id=str(data["asset"]) if data.get("asset") else None,
        )
