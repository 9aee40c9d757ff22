"""
Plan catalog.

The catalog is built once from settings at startup and handed to the
checkout service and the webhook dispatcher. It is immutable after
construction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from tradinggenie.core.config import Settings
from tradinggenie.core.errors import UnknownPlanError


PLAN_TAGS: Tuple[str, ...] = ("starter", "professional", "enterprise")
BILLING_INTERVALS: Tuple[str, ...] = ("monthly", "yearly")


@dataclass(frozen=True)
class PlanConfig:
    """One subscription tier."""
    tag: str
    name: str
    monthly_price_id: str
    yearly_price_id: Optional[str]
    monthly_price: int  # USD, display only
    yearly_price: int
    features: Tuple[str, ...]
    popular: bool = False

    def price_id_for(self, interval: str) -> Optional[str]:
        if interval == "yearly":
            return self.yearly_price_id
        if interval == "monthly":
            return self.monthly_price_id
        return None

    def feature_list(self) -> str:
        """Bulleted feature list used in the welcome notification."""
        return "\n".join(f"• {feature}" for feature in self.features)


@dataclass(frozen=True)
class PlanCatalog:
    plans: Mapping[str, PlanConfig] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))

    def __contains__(self, tag: object) -> bool:
        return tag in self.plans

    def __iter__(self):
        return iter(self.plans.values())

    def tags(self) -> Tuple[str, ...]:
        return tuple(self.plans)

    def get(self, tag: str) -> PlanConfig:
        """Return the plan for `tag` or raise UnknownPlanError."""
        plan = self.plans.get(tag)
        if plan is None:
            raise UnknownPlanError("Invalid plan selected")
        return plan

    def feature_list(self, tag: str) -> str:
        """Feature list for `tag`, empty for unknown tags."""
        plan = self.plans.get(tag)
        return plan.feature_list() if plan else ""


def build_plan_catalog(cfg: Settings) -> PlanCatalog:
    """Build the catalog from settings (price ids come from the environment)."""
    plans = [
        PlanConfig(
            tag="starter",
            name="Starter Plan",
            monthly_price_id=cfg.STRIPE_PRICE_STARTER,
            yearly_price_id=cfg.STRIPE_PRICE_STARTER_YEARLY,
            monthly_price=29,
            yearly_price=290,
            features=(
                "Gold (XAUUSD) Analysis",
                "3 Timeframes (M15, H1, H4)",
                "Daily Signals",
                "Basic Support",
            ),
        ),
        PlanConfig(
            tag="professional",
            name="Professional Plan",
            monthly_price_id=cfg.STRIPE_PRICE_PROFESSIONAL,
            yearly_price_id=cfg.STRIPE_PRICE_PROFESSIONAL_YEARLY,
            monthly_price=79,
            yearly_price=790,
            features=(
                "Gold + Forex Analysis",
                "All 9 Timeframes",
                "Hourly Signals",
                "Priority Support",
                "Advanced Indicators",
            ),
            popular=True,
        ),
        PlanConfig(
            tag="enterprise",
            name="Enterprise Plan",
            monthly_price_id=cfg.STRIPE_PRICE_ENTERPRISE,
            yearly_price_id=cfg.STRIPE_PRICE_ENTERPRISE_YEARLY,
            monthly_price=199,
            yearly_price=1990,
            features=(
                "Everything in Professional",
                "Custom Timeframes",
                "API Access",
                "Dedicated Support",
                "White-label Options",
            ),
        ),
    ]
    return PlanCatalog(plans={p.tag: p for p in plans})
