from pmm.config import Settings
from pmm.market_maker.inventory import InventoryTracker
from pmm.market_maker.types import ActiveSession, RiskDecision
from pmm.utils.logging import get_logger

log = get_logger(__name__)


class RiskGate:
    """Decides whether a market's quotes may be refreshed."""

    def __init__(self, inventory: InventoryTracker):
        self.inventory = inventory

    def check_imbalance(self, session: ActiveSession) -> RiskDecision:
        imbalance = self.inventory.get_imbalance(session.condition_id)
        limit = session.config.max_inventory_imbalance
        if abs(imbalance) > limit:
            return RiskDecision(False, f"inventory imbalance {imbalance:.3f} exceeds {limit:.3f}")
        return RiskDecision(True)

    def check_position_size(self, session: ActiveSession) -> RiskDecision:
        value = self.inventory.get_inventory(session.condition_id).total_value
        limit = session.config.max_position_size_usd
        if value > limit:
            return RiskDecision(False, f"position value ${value:.2f} exceeds ${limit:.2f}")
        return RiskDecision(True)

    def check_total_exposure(self, settings: Settings) -> RiskDecision:
        exposure = self.inventory.total_exposure()
        limit = settings.risk_max_total_exposure_usd
        if exposure > limit:
            return RiskDecision(False, f"total exposure ${exposure:.2f} exceeds ${limit:.2f}")
        return RiskDecision(True)

    def check_limits(self, session: ActiveSession, settings: Settings) -> RiskDecision:
        """Run the imbalance, position and total exposure checks in order, stopping at the first failure."""
        if not settings.risk_enable_limits:
            return RiskDecision(True, "risk limits disabled")

        decision = self.check_imbalance(session)
        if decision.allowed:
            decision = self.check_position_size(session)
        if decision.allowed:
            decision = self.check_total_exposure(settings)
        return decision
