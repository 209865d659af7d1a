"""
Static plan -> limit tables for sites and places.

Every decision in this module is a pure function of the plan tier and the
counts passed in. Nothing here reads the database.

Numeric caps use Limit = Bounded(n) | Unbounded. Checks against Unbounded
return True before any arithmetic, and Unbounded serializes as null.

CRITICAL: SITE_LIMITS and PLACE_LIMITS must contain every tier of their
enum. A missing tier fails at import, never at request time.
"""

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Optional, Union

from directory_authz.models.subscription import SubscriptionPlan, SubscriptionScope


# ---------------------------------------------------------------------------
# Limit type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Bounded:
    """A finite cap. A count is allowed while it is below the cap."""
    value: int

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Bounded limit must be >= 0, got {self.value}")

    def allows(self, current_count: int) -> bool:
        return current_count < self.value

    def exceeded_by(self, current_count: int) -> bool:
        return current_count > self.value

    @property
    def offered(self) -> bool:
        return self.value > 0

    def to_json(self) -> Optional[int]:
        return self.value


@dataclass(frozen=True)
class _UnboundedType:
    """No cap."""

    def allows(self, current_count: int) -> bool:
        return True

    def exceeded_by(self, current_count: int) -> bool:
        return False

    @property
    def offered(self) -> bool:
        return True

    def to_json(self) -> Optional[int]:
        return None

    def __repr__(self) -> str:
        return "Unbounded"


Unbounded = _UnboundedType()

Limit = Union[Bounded, _UnboundedType]


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

class SitePlan(str, Enum):
    """Site tiers, lowest first. OFFICIAL is the legacy name of PRO."""
    FREE = "free"
    OFFICIAL = "official"
    PRO = "pro"
    BUSINESS = "business"


class PlacePlan(str, Enum):
    """Place tiers, lowest first."""
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"


class AnalyticsLevel(str, Enum):
    NONE = "none"
    BASIC = "basic"
    ADVANCED = "advanced"


class SupportLevel(str, Enum):
    COMMUNITY = "community"
    EMAIL = "email"
    SLA = "sla"


AnyPlan = Union[SitePlan, PlacePlan]

# Still valid on existing sites, never offered as an upgrade target
LEGACY_TIERS = frozenset({SitePlan.OFFICIAL})


@dataclass(frozen=True)
class SiteLimits:
    places: Limit
    featured_slots: Limit
    events: Limit
    images_per_place: Limit
    custom_domain: bool
    multi_admin: bool
    analytics: AnalyticsLevel
    support: SupportLevel

    def to_dict(self) -> dict:
        return _limits_to_dict(self)


@dataclass(frozen=True)
class PlaceLimits:
    images: Limit
    events: Limit
    featured: bool

    def to_dict(self) -> dict:
        return _limits_to_dict(self)


AnyLimits = Union[SiteLimits, PlaceLimits]


def _limits_to_dict(record) -> dict:
    result = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if isinstance(value, (Bounded, _UnboundedType)):
            result[f.name] = value.to_json()
        elif isinstance(value, Enum):
            result[f.name] = value.value
        else:
            result[f.name] = value
    return result


_SITE_BASIC = SiteLimits(
    places=Unbounded,
    featured_slots=Bounded(0),
    events=Bounded(0),
    images_per_place=Unbounded,
    custom_domain=False,
    multi_admin=False,
    analytics=AnalyticsLevel.NONE,
    support=SupportLevel.COMMUNITY,
)

_SITE_PRO = SiteLimits(
    places=Unbounded,
    featured_slots=Bounded(3),
    events=Unbounded,
    images_per_place=Unbounded,
    custom_domain=False,
    multi_admin=False,
    analytics=AnalyticsLevel.BASIC,
    support=SupportLevel.EMAIL,
)

SITE_LIMITS: dict[SitePlan, SiteLimits] = {
    SitePlan.FREE: _SITE_BASIC,
    SitePlan.OFFICIAL: _SITE_PRO,
    SitePlan.PRO: _SITE_PRO,
    SitePlan.BUSINESS: SiteLimits(
        places=Unbounded,
        featured_slots=Unbounded,
        events=Unbounded,
        images_per_place=Unbounded,
        custom_domain=True,
        multi_admin=True,
        analytics=AnalyticsLevel.ADVANCED,
        support=SupportLevel.SLA,
    ),
}

PLACE_LIMITS: dict[PlacePlan, PlaceLimits] = {
    PlacePlan.FREE: PlaceLimits(images=Bounded(3), events=Bounded(0), featured=False),
    PlacePlan.BASIC: PlaceLimits(images=Bounded(15), events=Bounded(3), featured=False),
    PlacePlan.PRO: PlaceLimits(images=Unbounded, events=Unbounded, featured=True),
}


# ---------------------------------------------------------------------------
# Subscription capability matrix
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanCapabilities:
    """What an effective subscription plan grants, independent of tier tables."""
    plan: SubscriptionPlan
    can_create_event: bool
    max_images: Limit
    can_be_featured: bool

    def to_dict(self) -> dict:
        return {
            "plan": self.plan.value,
            "can_create_event": self.can_create_event,
            "max_images": self.max_images.to_json(),
            "can_be_featured": self.can_be_featured,
        }


PLAN_CAPABILITIES: dict[SubscriptionPlan, PlanCapabilities] = {
    SubscriptionPlan.FREE: PlanCapabilities(SubscriptionPlan.FREE, False, Unbounded, False),
    SubscriptionPlan.BASIC: PlanCapabilities(SubscriptionPlan.BASIC, False, Unbounded, False),
    SubscriptionPlan.PRO: PlanCapabilities(SubscriptionPlan.PRO, True, Bounded(20), True),
    SubscriptionPlan.BUSINESS: PlanCapabilities(SubscriptionPlan.BUSINESS, True, Unbounded, True),
}

# Granted when no effective subscription exists
FALLBACK_CAPABILITIES = PLAN_CAPABILITIES[SubscriptionPlan.BASIC]


def _check_exhaustive(table: dict, enum_cls: type, name: str) -> None:
    missing = [member.value for member in enum_cls if member not in table]
    if missing:
        raise RuntimeError(f"{name} is missing tiers: {missing}")


# Tier a subscription plan maps to when it is applied to a site or a place
SITE_TIER_FOR_PLAN: dict[SubscriptionPlan, SitePlan] = {
    SubscriptionPlan.FREE: SitePlan.FREE,
    SubscriptionPlan.BASIC: SitePlan.FREE,
    SubscriptionPlan.PRO: SitePlan.PRO,
    SubscriptionPlan.BUSINESS: SitePlan.BUSINESS,
}

PLACE_TIER_FOR_PLAN: dict[SubscriptionPlan, PlacePlan] = {
    SubscriptionPlan.FREE: PlacePlan.FREE,
    SubscriptionPlan.BASIC: PlacePlan.BASIC,
    SubscriptionPlan.PRO: PlacePlan.PRO,
    SubscriptionPlan.BUSINESS: PlacePlan.PRO,
}


_check_exhaustive(SITE_LIMITS, SitePlan, "SITE_LIMITS")
_check_exhaustive(PLACE_LIMITS, PlacePlan, "PLACE_LIMITS")
_check_exhaustive(PLAN_CAPABILITIES, SubscriptionPlan, "PLAN_CAPABILITIES")
_check_exhaustive(SITE_TIER_FOR_PLAN, SubscriptionPlan, "SITE_TIER_FOR_PLAN")
_check_exhaustive(PLACE_TIER_FOR_PLAN, SubscriptionPlan, "PLACE_TIER_FOR_PLAN")


# ---------------------------------------------------------------------------
# Lookups and checks
# ---------------------------------------------------------------------------

def limits_for(plan: AnyPlan) -> AnyLimits:
    """
    Limit record for a site or place tier.

    Raises:
        TypeError: If plan is not a SitePlan or PlacePlan
    """
    if isinstance(plan, SitePlan):
        return SITE_LIMITS[plan]
    if isinstance(plan, PlacePlan):
        return PLACE_LIMITS[plan]
    raise TypeError(f"Unknown plan type: {type(plan).__name__}")


def capabilities_for(plan: Optional[SubscriptionPlan]) -> PlanCapabilities:
    if plan is None:
        return FALLBACK_CAPABILITIES
    return PLAN_CAPABILITIES[plan]


def can_add_image(plan: AnyPlan, current_count: int) -> bool:
    """Images on one place: the place tier's cap, or the site tier's per-place cap."""
    limits = limits_for(plan)
    limit = limits.images if isinstance(limits, PlaceLimits) else limits.images_per_place
    return limit.allows(current_count)


def can_add_event(plan: AnyPlan, current_count: int) -> bool:
    return limits_for(plan).events.allows(current_count)


def can_add_place(plan: SitePlan, current_count: int) -> bool:
    return SITE_LIMITS[plan].places.allows(current_count)


def can_add_featured_place(plan: SitePlan, current_featured_count: int) -> bool:
    return SITE_LIMITS[plan].featured_slots.allows(current_featured_count)


def can_have_featured_places(plan: SitePlan) -> bool:
    return SITE_LIMITS[plan].featured_slots.offered


def can_be_featured(plan: PlacePlan) -> bool:
    return PLACE_LIMITS[plan].featured


def can_use_custom_domain(plan: SitePlan) -> bool:
    return SITE_LIMITS[plan].custom_domain


def can_disable_public_registration(plan: SitePlan) -> bool:
    """Sites on the lowest tier must keep public registration open."""
    return plan != SitePlan.FREE


def _tiers(plan: AnyPlan) -> list:
    return list(type(plan))


def can_upgrade(plan: AnyPlan) -> bool:
    """True unless the plan is the top tier of its kind."""
    return plan != _tiers(plan)[-1]


def can_downgrade(plan: AnyPlan) -> bool:
    """
    True unless the plan is the bottom tier of its kind.

    Tier position only. Usage against the lower tier is checked separately
    by downgrade_violations().
    """
    return plan != _tiers(plan)[0]


def next_tier(plan: AnyPlan) -> Optional[AnyPlan]:
    """
    The tier to suggest as an upgrade.

    Legacy tiers are never suggested, nor is a tier with the same limits as
    the current one.
    """
    tiers = _tiers(plan)
    current = limits_for(plan)
    for tier in tiers[tiers.index(plan) + 1:]:
        if tier in LEGACY_TIERS or limits_for(tier) == current:
            continue
        return tier
    return None


@dataclass(frozen=True)
class Usage:
    """Current consumption of a site or place, compared against a target tier."""
    places: int = 0
    featured_places: int = 0
    events: int = 0
    images: int = 0
    custom_domain: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def downgrade_violations(usage: Usage, target: AnyPlan) -> list[str]:
    """
    Caps of the target tier that current usage already exceeds.

    Usage equal to a cap is not a violation: the tier allows holding n items,
    only adding the (n+1)th is refused.

    Returns:
        Human-readable violations, empty when the move is safe
    """
    limits = limits_for(target)
    violations = []

    if isinstance(limits, SiteLimits):
        checks = [
            ("places", limits.places, usage.places),
            ("featured places", limits.featured_slots, usage.featured_places),
            ("events", limits.events, usage.events),
            ("images per place", limits.images_per_place, usage.images),
        ]
        if usage.custom_domain and not limits.custom_domain:
            violations.append(f"{target.value} plan does not support a custom domain")
    else:
        checks = [
            ("images", limits.images, usage.images),
            ("events", limits.events, usage.events),
        ]
        if usage.featured_places and not limits.featured:
            violations.append(f"{target.value} plan does not support featured placement")

    for label, limit, count in checks:
        if limit.exceeded_by(count):
            violations.append(
                f"{count} {label} exceeds the {target.value} plan limit of {limit.to_json()}"
            )

    return violations


def tier_for_subscription(scope: SubscriptionScope, plan: SubscriptionPlan) -> AnyPlan:
    """Site or place tier a subscription plan corresponds to."""
    if scope == SubscriptionScope.SITE:
        return SITE_TIER_FOR_PLAN[plan]
    return PLACE_TIER_FOR_PLAN[plan]


def is_downgrade(scope: SubscriptionScope, old: SubscriptionPlan, new: SubscriptionPlan) -> bool:
    old_tier = tier_for_subscription(scope, old)
    new_tier = tier_for_subscription(scope, new)
    tiers = _tiers(old_tier)
    return tiers.index(new_tier) < tiers.index(old_tier)
