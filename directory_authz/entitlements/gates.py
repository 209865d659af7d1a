"""
Feature gates for plan-gated actions.

A gate is ENABLED, or disabled in one of two ways:
- LOCKED: the plan does not offer the feature at all
- LIMIT_REACHED: the plan offers it but the cap is used up

Disabled gates always carry a human-readable reason and the call to action
the UI should offer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from directory_authz.entitlements.limits import (
    LEGACY_TIERS,
    PLACE_LIMITS,
    SITE_LIMITS,
    AnyPlan,
    PlacePlan,
    PlaceLimits,
    SitePlan,
    limits_for,
    next_tier,
)


class GateState(str, Enum):
    ENABLED = "enabled"
    LOCKED = "locked"
    LIMIT_REACHED = "limit_reached"


class UpgradeCta(str, Enum):
    VIEW_PLANS = "viewPlans"
    CONTACT_ADMIN = "contactAdmin"
    UPGRADE_PLAN = "upgradePlan"


@dataclass(frozen=True)
class FeatureGate:
    state: GateState
    reason: Optional[str] = None
    upgrade_cta: Optional[UpgradeCta] = None
    required_plan: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return self.state == GateState.ENABLED

    def to_dict(self) -> dict:
        result = {"state": self.state.value}
        if not self.enabled:
            result["reason"] = self.reason
            result["upgrade_cta"] = self.upgrade_cta.value if self.upgrade_cta else None
            result["required_plan"] = self.required_plan
        return result


ENABLED = FeatureGate(state=GateState.ENABLED)


def _lowest_tier_offering(plan: AnyPlan, predicate) -> Optional[str]:
    for tier in type(plan):
        if tier in LEGACY_TIERS:
            continue
        if predicate(limits_for(tier)):
            return tier.value
    return None


def featured_gate(
    place_plan: PlacePlan,
    site_plan: SitePlan,
    current_featured_count: int,
    place_is_featured: bool = False,
    subscription_active: bool = True,
) -> FeatureGate:
    """
    Whether a place may be marked featured.

    The place tier must offer featured placement, the place's effective
    subscription must grant it, the site tier must offer featured slots, and a
    free slot must remain unless the place already holds one.
    """
    if not PLACE_LIMITS[place_plan].featured:
        required = _lowest_tier_offering(place_plan, lambda l: l.featured)
        return FeatureGate(
            state=GateState.LOCKED,
            reason=f"plan does not support featured placement; upgrade to {required}",
            upgrade_cta=UpgradeCta.VIEW_PLANS,
            required_plan=required,
        )

    if not subscription_active:
        return FeatureGate(
            state=GateState.LOCKED,
            reason="subscription is not active",
            upgrade_cta=UpgradeCta.CONTACT_ADMIN,
        )

    slots = SITE_LIMITS[site_plan].featured_slots
    if not slots.offered:
        required = _lowest_tier_offering(site_plan, lambda l: l.featured_slots.offered)
        return FeatureGate(
            state=GateState.LOCKED,
            reason=f"site plan has no featured slots; upgrade to {required}",
            upgrade_cta=UpgradeCta.CONTACT_ADMIN,
            required_plan=required,
        )

    if not place_is_featured and not slots.allows(current_featured_count):
        upgrade = next_tier(site_plan)
        return FeatureGate(
            state=GateState.LIMIT_REACHED,
            reason=(
                f"featured slots used up ({current_featured_count}/{slots.to_json()})"
            ),
            upgrade_cta=UpgradeCta.UPGRADE_PLAN,
            required_plan=upgrade.value if upgrade else None,
        )

    return ENABLED


def _count_gate(plan: AnyPlan, label: str, limit, current_count: int) -> FeatureGate:
    if limit.allows(current_count):
        return ENABLED

    upgrade = next_tier(plan)
    if not limit.offered:
        return FeatureGate(
            state=GateState.LOCKED,
            reason=f"{plan.value} plan does not include {label}",
            upgrade_cta=UpgradeCta.VIEW_PLANS,
            required_plan=upgrade.value if upgrade else None,
        )

    return FeatureGate(
        state=GateState.LIMIT_REACHED,
        reason=f"{label} limit reached ({current_count}/{limit.to_json()})",
        upgrade_cta=UpgradeCta.UPGRADE_PLAN,
        required_plan=upgrade.value if upgrade else None,
    )


def image_gate(plan: AnyPlan, current_count: int) -> FeatureGate:
    limits = limits_for(plan)
    limit = limits.images if isinstance(limits, PlaceLimits) else limits.images_per_place
    return _count_gate(plan, "images", limit, current_count)


def event_gate(plan: AnyPlan, current_count: int) -> FeatureGate:
    return _count_gate(plan, "events", limits_for(plan).events, current_count)
