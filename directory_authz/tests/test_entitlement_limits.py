"""
Tests for the static plan limit tables and checks.
"""

import pytest

from directory_authz.entitlements.limits import (
    FALLBACK_CAPABILITIES,
    PLACE_LIMITS,
    SITE_LIMITS,
    Bounded,
    PlacePlan,
    SitePlan,
    Unbounded,
    Usage,
    _check_exhaustive,
    can_add_event,
    can_add_featured_place,
    can_add_image,
    can_add_place,
    can_be_featured,
    can_disable_public_registration,
    can_downgrade,
    can_have_featured_places,
    can_upgrade,
    can_use_custom_domain,
    capabilities_for,
    downgrade_violations,
    is_downgrade,
    limits_for,
    next_tier,
)
from directory_authz.models.subscription import SubscriptionPlan, SubscriptionScope


class TestLimitType:

    def test_bounded_allows_below_cap_only(self):
        limit = Bounded(3)
        assert limit.allows(2)
        assert not limit.allows(3)

    def test_bounded_zero_is_not_offered(self):
        assert not Bounded(0).offered
        assert Bounded(1).offered

    def test_negative_bound_rejected(self):
        with pytest.raises(ValueError):
            Bounded(-1)

    def test_unbounded_short_circuits(self):
        assert Unbounded.allows(10**9)
        assert not Unbounded.exceeded_by(10**9)
        assert Unbounded.to_json() is None

    def test_unbounded_serializes_as_null(self):
        assert PLACE_LIMITS[PlacePlan.PRO].to_dict()["images"] is None
        assert PLACE_LIMITS[PlacePlan.BASIC].to_dict()["images"] == 15


class TestTables:

    def test_every_tier_has_limits(self):
        assert set(SITE_LIMITS) == set(SitePlan)
        assert set(PLACE_LIMITS) == set(PlacePlan)

    def test_missing_tier_fails(self):
        partial = {PlacePlan.FREE: PLACE_LIMITS[PlacePlan.FREE]}
        with pytest.raises(RuntimeError, match="missing tiers"):
            _check_exhaustive(partial, PlacePlan, "PLACE_LIMITS")

    def test_official_has_pro_limits(self):
        assert limits_for(SitePlan.OFFICIAL) == limits_for(SitePlan.PRO)

    def test_limits_for_rejects_raw_strings(self):
        with pytest.raises(TypeError):
            limits_for("pro")


class TestPlaceChecks:

    def test_free_place_images(self):
        assert can_add_image(PlacePlan.FREE, 2)
        assert not can_add_image(PlacePlan.FREE, 3)

    def test_basic_place_events(self):
        assert can_add_event(PlacePlan.BASIC, 2)
        assert not can_add_event(PlacePlan.BASIC, 3)

    def test_free_place_has_no_events(self):
        assert not can_add_event(PlacePlan.FREE, 0)

    def test_pro_place_is_unbounded(self):
        assert can_add_image(PlacePlan.PRO, 5000)
        assert can_add_event(PlacePlan.PRO, 5000)

    def test_only_pro_place_can_be_featured(self):
        assert not can_be_featured(PlacePlan.FREE)
        assert not can_be_featured(PlacePlan.BASIC)
        assert can_be_featured(PlacePlan.PRO)


class TestSiteChecks:

    def test_featured_slots(self):
        assert not can_have_featured_places(SitePlan.FREE)
        assert can_have_featured_places(SitePlan.PRO)
        assert can_add_featured_place(SitePlan.PRO, 2)
        assert not can_add_featured_place(SitePlan.PRO, 3)
        assert can_add_featured_place(SitePlan.BUSINESS, 10_000)

    def test_places_are_unbounded(self):
        assert can_add_place(SitePlan.FREE, 1000)

    def test_custom_domain_business_only(self):
        assert not can_use_custom_domain(SitePlan.PRO)
        assert can_use_custom_domain(SitePlan.BUSINESS)

    def test_free_site_cannot_disable_public_registration(self):
        assert not can_disable_public_registration(SitePlan.FREE)
        assert can_disable_public_registration(SitePlan.OFFICIAL)
        assert can_disable_public_registration(SitePlan.BUSINESS)


class TestTierMovement:

    def test_upgrade_and_downgrade_by_position(self):
        assert can_upgrade(SitePlan.FREE)
        assert not can_upgrade(SitePlan.BUSINESS)
        assert can_downgrade(PlacePlan.BASIC)
        assert not can_downgrade(PlacePlan.FREE)

    def test_next_tier_skips_legacy_and_equivalent_tiers(self):
        assert next_tier(SitePlan.FREE) == SitePlan.PRO
        assert next_tier(SitePlan.OFFICIAL) == SitePlan.BUSINESS
        assert next_tier(SitePlan.BUSINESS) is None
        assert next_tier(PlacePlan.BASIC) == PlacePlan.PRO

    def test_is_downgrade(self):
        assert is_downgrade(SubscriptionScope.SITE, SubscriptionPlan.BUSINESS, SubscriptionPlan.PRO)
        assert is_downgrade(SubscriptionScope.PLACE, SubscriptionPlan.PRO, SubscriptionPlan.BASIC)
        # BASIC and FREE map to the same site tier
        assert not is_downgrade(SubscriptionScope.SITE, SubscriptionPlan.BASIC, SubscriptionPlan.FREE)
        assert not is_downgrade(SubscriptionScope.SITE, SubscriptionPlan.PRO, SubscriptionPlan.BUSINESS)


class TestDowngradeViolations:

    def test_featured_places_over_target(self):
        violations = downgrade_violations(Usage(featured_places=2), SitePlan.FREE)
        assert violations == ["2 featured places exceeds the free plan limit of 0"]

    def test_usage_equal_to_cap_is_allowed(self):
        assert downgrade_violations(Usage(images=15, events=3), PlacePlan.BASIC) == []

    def test_every_exceeded_cap_is_listed(self):
        violations = downgrade_violations(Usage(images=16, events=4), PlacePlan.BASIC)
        assert len(violations) == 2

    def test_custom_domain_lost(self):
        violations = downgrade_violations(Usage(custom_domain=True), SitePlan.PRO)
        assert violations == ["pro plan does not support a custom domain"]

    def test_featured_place_moving_to_basic(self):
        violations = downgrade_violations(Usage(featured_places=1), PlacePlan.BASIC)
        assert violations == ["basic plan does not support featured placement"]


class TestCapabilities:

    def test_fallback_is_basic(self):
        assert capabilities_for(None) is FALLBACK_CAPABILITIES
        assert FALLBACK_CAPABILITIES.plan == SubscriptionPlan.BASIC
        assert not FALLBACK_CAPABILITIES.can_create_event

    def test_pro_capabilities(self):
        caps = capabilities_for(SubscriptionPlan.PRO)
        assert caps.to_dict() == {
            "plan": "PRO",
            "can_create_event": True,
            "max_images": 20,
            "can_be_featured": True,
        }

    def test_business_images_unbounded(self):
        assert capabilities_for(SubscriptionPlan.BUSINESS).to_dict()["max_images"] is None
