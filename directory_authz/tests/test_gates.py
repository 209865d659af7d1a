"""
Tests for feature gates.
"""

from directory_authz.entitlements.gates import (
    GateState,
    UpgradeCta,
    event_gate,
    featured_gate,
    image_gate,
)
from directory_authz.entitlements.limits import PlacePlan, SitePlan


class TestFeaturedGate:

    def test_enabled_with_free_slot(self):
        gate = featured_gate(PlacePlan.PRO, SitePlan.PRO, 2)
        assert gate.enabled
        assert gate.to_dict() == {"state": "enabled"}

    def test_locked_when_place_plan_lacks_featured(self):
        gate = featured_gate(PlacePlan.BASIC, SitePlan.PRO, 0)

        assert gate.state == GateState.LOCKED
        assert gate.upgrade_cta == UpgradeCta.VIEW_PLANS
        assert gate.required_plan == "pro"
        assert "upgrade to pro" in gate.reason

    def test_locked_when_site_has_no_slots(self):
        gate = featured_gate(PlacePlan.PRO, SitePlan.FREE, 0)

        assert gate.state == GateState.LOCKED
        assert gate.upgrade_cta == UpgradeCta.CONTACT_ADMIN
        assert gate.required_plan == "pro"

    def test_limit_reached_when_slots_used_up(self):
        gate = featured_gate(PlacePlan.PRO, SitePlan.PRO, 3)

        assert gate.state == GateState.LIMIT_REACHED
        assert gate.reason == "featured slots used up (3/3)"
        assert gate.required_plan == "business"

    def test_already_featured_place_keeps_its_slot(self):
        gate = featured_gate(PlacePlan.PRO, SitePlan.PRO, 3, place_is_featured=True)
        assert gate.enabled

    def test_business_site_never_runs_out(self):
        assert featured_gate(PlacePlan.PRO, SitePlan.BUSINESS, 500).enabled

    def test_inactive_subscription_locks(self):
        gate = featured_gate(PlacePlan.PRO, SitePlan.PRO, 0, subscription_active=False)

        assert gate.state == GateState.LOCKED
        assert gate.upgrade_cta == UpgradeCta.CONTACT_ADMIN
        assert gate.reason == "subscription is not active"

    def test_tier_lock_reported_before_inactive_subscription(self):
        gate = featured_gate(PlacePlan.BASIC, SitePlan.PRO, 0, subscription_active=False)

        assert gate.upgrade_cta == UpgradeCta.VIEW_PLANS
        assert gate.required_plan == "pro"


class TestCountGates:

    def test_image_limit_reached(self):
        gate = image_gate(PlacePlan.FREE, 3)

        assert gate.state == GateState.LIMIT_REACHED
        assert gate.reason == "images limit reached (3/3)"
        assert gate.required_plan == "basic"
        assert gate.to_dict()["upgrade_cta"] == "upgradePlan"

    def test_image_below_limit(self):
        assert image_gate(PlacePlan.FREE, 2).enabled

    def test_events_not_offered_is_locked(self):
        gate = event_gate(PlacePlan.FREE, 0)

        assert gate.state == GateState.LOCKED
        assert gate.reason == "free plan does not include events"
        assert gate.required_plan == "basic"

    def test_site_images_use_per_place_cap(self):
        assert image_gate(SitePlan.FREE, 1000).enabled

    def test_unbounded_events(self):
        assert event_gate(PlacePlan.PRO, 10_000).enabled
