"""
Plan read-model and plan-gated mutations for sites and places.

Every mutation runs the same pipeline:
    PermissionResolver -> EntitlementEngine -> write -> best-effort event log

CRITICAL:
- Limit checks use the entity's tier column (Site.plan / Place.plan).
  Featuring a place also needs its effective subscription
  (SubscriptionLifecycleService.get_entitlements); expiry does not lower
  Place.plan.
- Only a superadmin may change a site's tier.
- Lowering a site's tier is refused when current usage already exceeds the
  lower tier's caps.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from directory_authz.constants.roles import PlaceRole, SiteRole
from directory_authz.entitlements.gates import (
    FeatureGate,
    event_gate,
    featured_gate,
    image_gate,
)
from directory_authz.entitlements.limits import (
    PlacePlan,
    SitePlan,
    Usage,
    can_disable_public_registration,
    can_downgrade,
    can_upgrade,
    downgrade_violations,
    limits_for,
)
from directory_authz.models.base import as_utc
from directory_authz.models.place import Place
from directory_authz.models.site import Site
from directory_authz.platform.errors import NotFoundError, PlanViolationError
from directory_authz.repositories.usage_repository import UsageRepository
from directory_authz.services.event_log import log_admin_action
from directory_authz.services.rbac import PermissionResolver
from directory_authz.services.subscription_lifecycle import SubscriptionLifecycleService

logger = logging.getLogger(__name__)


@dataclass
class PlanOverview:
    """Tier, limits, usage and gates of one site or place."""
    entity_id: str
    plan: str
    limits: dict
    usage: Usage
    can_upgrade: bool
    can_downgrade: bool
    gates: dict[str, FeatureGate] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "plan": self.plan,
            "limits": self.limits,
            "usage": self.usage.to_dict(),
            "can_upgrade": self.can_upgrade,
            "can_downgrade": self.can_downgrade,
            "gates": {name: gate.to_dict() for name, gate in self.gates.items()},
        }


class BillingService:
    """
    Plan-aware operations on sites and places.

    Args:
        db_session: Database session
        resolver: Permission resolver; built from the session if omitted
        lifecycle: Subscription lifecycle used for effective entitlements
    """

    def __init__(
        self,
        db_session: Session,
        resolver: Optional[PermissionResolver] = None,
        lifecycle: Optional[SubscriptionLifecycleService] = None,
    ):
        self.db = db_session
        self.rbac = resolver or PermissionResolver(db_session)
        self.lifecycle = lifecycle or SubscriptionLifecycleService(db_session)
        self.usage = UsageRepository(db_session)

    def _get_site(self, site_id: str) -> Site:
        site = self.db.query(Site).filter(Site.id == site_id).first()
        if site is None:
            raise NotFoundError("site", site_id)
        return site

    def _get_place(self, place_id: str) -> Place:
        place = self.db.query(Place).filter(Place.id == place_id).first()
        if place is None:
            raise NotFoundError("place", place_id)
        return place

    def _featured_gate(self, place: Place) -> FeatureGate:
        entitlements = self.lifecycle.get_entitlements(place_id=place.id)
        return featured_gate(
            PlacePlan(place.plan),
            SitePlan(place.site.plan),
            self.usage.featured_place_count(place.site_id),
            place_is_featured=bool(place.is_featured),
            subscription_active=entitlements.capabilities.can_be_featured,
        )

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def get_site_overview(self, site_id: str) -> PlanOverview:
        site = self._get_site(site_id)
        plan = SitePlan(site.plan)
        usage = self.usage.site_usage(site_id)
        return PlanOverview(
            entity_id=site_id,
            plan=plan.value,
            limits=limits_for(plan).to_dict(),
            usage=usage,
            can_upgrade=can_upgrade(plan),
            can_downgrade=can_downgrade(plan),
            gates={"events": event_gate(plan, usage.events)},
        )

    def get_place_overview(self, place_id: str) -> PlanOverview:
        place = self._get_place(place_id)
        plan = PlacePlan(place.plan)
        usage = self.usage.place_usage(place_id)
        return PlanOverview(
            entity_id=place_id,
            plan=plan.value,
            limits=limits_for(plan).to_dict(),
            usage=usage,
            can_upgrade=can_upgrade(plan),
            can_downgrade=can_downgrade(plan),
            gates={
                "featured": self._featured_gate(place),
                "images": image_gate(plan, usage.images),
                "events": event_gate(plan, usage.events),
            },
        )

    def image_gate_for_place(self, place_id: str) -> FeatureGate:
        place = self._get_place(place_id)
        return image_gate(PlacePlan(place.plan), place.image_count or 0)

    def event_gate_for_place(self, place_id: str) -> FeatureGate:
        place = self._get_place(place_id)
        return event_gate(PlacePlan(place.plan), place.event_count or 0)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_place_featured(
        self,
        user_id: str,
        place_id: str,
        featured: bool,
        featured_until: Optional[datetime] = None,
    ) -> Place:
        """
        Mark or unmark a place as featured.

        Raises:
            PermissionDeniedError: User is below place manager
            NotFoundError: Unknown place
            PlanViolationError: Featured gate is not enabled
        """
        self.rbac.assert_place_permission(user_id, place_id, PlaceRole.MANAGER)
        place = self._get_place(place_id)

        if featured:
            gate = self._featured_gate(place)
            if not gate.enabled:
                logger.info(
                    "billing.featured_refused",
                    extra={"place_id": place_id, "gate_state": gate.state.value},
                )
                raise PlanViolationError(
                    gate.reason,
                    plan=place.plan,
                    required_plan=gate.required_plan,
                )

        place.is_featured = featured
        place.featured_until = as_utc(featured_until) if featured else None
        self.db.commit()

        log_admin_action(
            self.db,
            tenant_id=place.site_id,
            user_id=user_id,
            action="update",
            entity_type="place",
            entity_id=place_id,
            description=f"{'Featured' if featured else 'Unfeatured'} place {place_id}",
            metadata={"is_featured": featured},
        )
        return place

    def update_site_settings(
        self,
        user_id: str,
        site_id: str,
        plan: Optional[SitePlan] = None,
        allow_public_registration: Optional[bool] = None,
    ) -> Site:
        """
        Change a site's tier and/or public registration flag.

        A siteadmin may change the registration flag. Changing the tier needs
        the superadmin global role. Public registration can only be turned off
        on a tier above free, and moving to free with registration off is
        refused for the same reason.

        Raises:
            PermissionDeniedError: User is not siteadmin of the site, or
                changes the tier without being superadmin
            PlanViolationError: Downgrade exceeds usage, or registration rule
        """
        self.rbac.assert_site_permission(user_id, site_id, SiteRole.SITEADMIN)
        site = self._get_site(site_id)

        current_plan = SitePlan(site.plan)
        target_plan = plan or current_plan
        target_registration = (
            site.allow_public_registration
            if allow_public_registration is None
            else allow_public_registration
        )

        if plan is not None and plan != current_plan:
            self.rbac.assert_superadmin(user_id, site_id, "Changing the site plan")
            tiers = list(SitePlan)
            if tiers.index(plan) < tiers.index(current_plan):
                violations = downgrade_violations(self.usage.site_usage(site_id), plan)
                if violations:
                    raise PlanViolationError(
                        f"Cannot downgrade site to {plan.value}: " + "; ".join(violations),
                        plan=plan.value,
                        required_plan=current_plan.value,
                        violations=violations,
                    )

        if not target_registration and not can_disable_public_registration(target_plan):
            raise PlanViolationError(
                f"Public registration cannot be disabled for {target_plan.value} plan. "
                "Upgrade to pro or business plan to use this feature.",
                plan=target_plan.value,
                required_plan=SitePlan.PRO.value,
            )

        site.plan = target_plan.value
        site.allow_public_registration = target_registration
        self.db.commit()

        log_admin_action(
            self.db,
            tenant_id=site_id,
            user_id=user_id,
            action="update",
            entity_type="site",
            entity_id=site_id,
            metadata={
                "plan": target_plan.value,
                "allow_public_registration": target_registration,
            },
        )
        return site
