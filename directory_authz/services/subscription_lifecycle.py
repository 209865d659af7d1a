"""
Subscription lifecycle: ACTIVE / CANCELLED / EXPIRED.

Transitions:
- cancel:  any status but CANCELLED -> CANCELLED, valid until the last
           instant of the current month
- resume:  CANCELLED -> ACTIVE, valid from the first day of next month
- expire:  ACTIVE|CANCELLED past valid_until -> EXPIRED (scheduled sweep)
- update / extend: admin edits with change-type classification

Month boundaries are computed in the billing timezone and stored in UTC.

CRITICAL:
- Every state write is conditional on the status read before it
  (UPDATE ... WHERE id = ? AND status = ?). Zero rows changed means a
  concurrent transition won, and the caller gets InvalidTransitionError.
- Transitions never write history or audit rows directly. They return a
  TransitionResult whose intents the SideEffectDispatcher runs, so a side
  write failure can never fail the transition.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from directory_authz.config.settings import Settings, get_settings
from directory_authz.entitlements.limits import (
    PlanCapabilities,
    SitePlan,
    capabilities_for,
    downgrade_violations,
    is_downgrade,
    tier_for_subscription,
)
from directory_authz.models.base import as_utc, utcnow
from directory_authz.models.place import Place
from directory_authz.models.site import Site
from directory_authz.models.subscription import (
    ChangeType,
    SubscriptionHistory,
    SubscriptionPlan,
    SubscriptionScope,
    SubscriptionStatus,
)
from directory_authz.platform.errors import (
    AlreadyCancelledError,
    InvalidTransitionError,
    NotCancelledError,
    NotFoundError,
    PlanViolationError,
)
from directory_authz.repositories.membership_repository import MembershipRepository
from directory_authz.repositories.subscription_repository import (
    AnySubscription,
    SubscriptionRepository,
)
from directory_authz.repositories.usage_repository import UsageRepository
from directory_authz.services.side_effects import (
    AuditIntent,
    HistoryIntent,
    Intent,
    TransitionResult,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def end_of_month(now: datetime, tz: tzinfo) -> datetime:
    """Last instant (23:59:59.999) of now's calendar month in tz, as UTC."""
    local = now.astimezone(tz)
    last_day = calendar.monthrange(local.year, local.month)[1]
    boundary = datetime(local.year, local.month, last_day, 23, 59, 59, 999000, tzinfo=tz)
    return boundary.astimezone(timezone.utc)


def first_of_next_month(now: datetime, tz: tzinfo) -> datetime:
    """Midnight on the first day of the month after now's, in tz, as UTC."""
    local = now.astimezone(tz)
    year, month = (local.year + 1, 1) if local.month == 12 else (local.year, local.month + 1)
    return datetime(year, month, 1, tzinfo=tz).astimezone(timezone.utc)


def add_one_month(value: datetime, tz: tzinfo) -> datetime:
    """Same wall-clock time one month later, clamped to the month's last day."""
    local = value.astimezone(tz)
    year, month = (local.year + 1, 1) if local.month == 12 else (local.year, local.month + 1)
    day = min(local.day, calendar.monthrange(year, month)[1])
    shifted = datetime(
        year, month, day,
        local.hour, local.minute, local.second, local.microsecond,
        tzinfo=tz,
    )
    return shifted.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class SubscriptionChanges:
    """
    Fields an admin update may set. Only fields listed in `provided` are
    applied, so an explicit None (e.g. clearing valid_until) is distinct from
    "not given".
    """
    plan: Optional[SubscriptionPlan] = None
    status: Optional[SubscriptionStatus] = None
    valid_until: Optional[datetime] = None
    billing_period: Optional[str] = None
    price_cents: Optional[int] = None
    currency: Optional[str] = None
    note: Optional[str] = None
    provided: frozenset = frozenset()

    @classmethod
    def of(cls, **kwargs) -> "SubscriptionChanges":
        return cls(provided=frozenset(kwargs), **kwargs)

    def has(self, name: str) -> bool:
        return name in self.provided


@dataclass
class ExpiryResult:
    site_expired: int = 0
    place_expired: int = 0
    intents: list[Intent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"site_expired": self.site_expired, "place_expired": self.place_expired}


@dataclass
class Entitlements:
    """Capabilities currently granted to a site or place."""
    capabilities: PlanCapabilities
    scope: Optional[SubscriptionScope] = None
    entity_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    valid_until: Optional[datetime] = None
    is_fallback: bool = False

    def to_dict(self) -> dict:
        result = self.capabilities.to_dict()
        result.update({
            "scope": self.scope.value if self.scope else None,
            "entity_id": self.entity_id,
            "subscription_id": self.subscription_id,
            "status": self.status,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "is_fallback": self.is_fallback,
        })
        return result


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class SubscriptionLifecycleService:
    """
    Named transitions over site and place subscriptions.

    Args:
        db_session: Database session
        settings: Billing timezone and sweep options
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        db_session: Session,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db_session
        self.settings = settings or get_settings()
        self.clock = clock
        self.subscriptions = SubscriptionRepository(db_session)
        self.memberships = MembershipRepository(db_session)
        self.usage = UsageRepository(db_session)

    @property
    def tz(self) -> tzinfo:
        return self.settings.tzinfo

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _get_or_raise(self, scope: SubscriptionScope, subscription_id: str) -> AnySubscription:
        sub = self.subscriptions.get(scope, subscription_id)
        if sub is None:
            raise NotFoundError(f"{scope.value} subscription", subscription_id)
        return sub

    # ------------------------------------------------------------------
    # Attribution
    # ------------------------------------------------------------------

    def _tenant_id(self, scope: SubscriptionScope, entity_id: str) -> Optional[str]:
        if scope == SubscriptionScope.SITE:
            return entity_id
        return self.memberships.get_place_site_id(entity_id)

    def _resolve_owner(self, scope: SubscriptionScope, entity_id: str) -> Optional[str]:
        """Site admin for a site subscription, place owner for a place one."""
        if scope == SubscriptionScope.SITE:
            return self.memberships.find_site_admin_user_id(entity_id)
        return self.memberships.find_place_owner_user_id(entity_id)

    def _audit_intent(
        self,
        sub: AnySubscription,
        action: str,
        description: str,
        changed_by: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditIntent:
        scope, entity_id = sub.scope, sub.entity_id
        return AuditIntent(
            resolve_attribution=lambda: (
                self._tenant_id(scope, entity_id),
                self._resolve_owner(scope, entity_id),
            ),
            action=action,
            entity_type=f"{sub.scope.value}_subscription",
            entity_id=sub.id,
            description=description,
            metadata={"changed_by": changed_by, **(metadata or {})},
        )

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        scope: SubscriptionScope,
        sub: AnySubscription,
        expected_status: str,
        values: dict[str, Any],
    ) -> AnySubscription:
        updated = self.subscriptions.conditional_update(scope, sub.id, expected_status, values)
        if updated == 0:
            self.db.expire(sub)
            current = self.subscriptions.get(scope, sub.id)
            logger.warning(
                "subscription.transition_lost_race",
                extra={
                    "subscription_id": sub.id,
                    "scope": scope.value,
                    "expected_status": expected_status,
                    "current_status": current.status if current else None,
                },
            )
            raise InvalidTransitionError(
                "Subscription changed concurrently; transition not applied",
                subscription_id=sub.id,
                current_status=current.status if current else None,
            )
        self.db.refresh(sub)
        return sub

    def cancel(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
        changed_by: Optional[str] = None,
    ) -> TransitionResult:
        """
        Cancel at the end of the current month.

        Raises:
            NotFoundError: Unknown subscription
            AlreadyCancelledError: Subscription is already CANCELLED
            InvalidTransitionError: A concurrent transition changed the status
        """
        sub = self._get_or_raise(scope, subscription_id)
        if sub.status == SubscriptionStatus.CANCELLED.value:
            raise AlreadyCancelledError(subscription_id)

        now = self._now()
        old_status = sub.status
        old_valid_until = as_utc(sub.valid_until)
        valid_until = end_of_month(now, self.tz)

        sub = self._transition(scope, sub, old_status, {
            "status": SubscriptionStatus.CANCELLED.value,
            "valid_until": valid_until,
            "status_changed_at": now,
        })

        logger.info(
            "subscription.cancelled",
            extra={
                "subscription_id": sub.id,
                "scope": scope.value,
                "valid_until": valid_until.isoformat(),
                "changed_by": changed_by,
            },
        )

        intents: list[Intent] = [
            HistoryIntent(
                scope=scope.value,
                subscription_id=sub.id,
                change_type=ChangeType.STATUS_CHANGE.value,
                old_plan=sub.plan,
                new_plan=sub.plan,
                old_status=old_status,
                new_status=SubscriptionStatus.CANCELLED.value,
                old_valid_until=old_valid_until,
                new_valid_until=valid_until,
                note="Subscription cancelled",
                changed_by=changed_by,
            ),
            self._audit_intent(sub, "cancel", f"Cancelled {scope.value} subscription {sub.id}", changed_by),
        ]
        return TransitionResult(subscription=sub, intents=intents)

    def resume(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
        changed_by: Optional[str] = None,
    ) -> TransitionResult:
        """
        Resume a cancelled subscription from the first day of next month.

        Raises:
            NotFoundError: Unknown subscription
            NotCancelledError: Subscription is not CANCELLED
            InvalidTransitionError: A concurrent transition changed the status
        """
        sub = self._get_or_raise(scope, subscription_id)
        if sub.status != SubscriptionStatus.CANCELLED.value:
            raise NotCancelledError(subscription_id, sub.status)

        now = self._now()
        old_valid_until = as_utc(sub.valid_until)
        valid_until = first_of_next_month(now, self.tz)

        sub = self._transition(scope, sub, SubscriptionStatus.CANCELLED.value, {
            "status": SubscriptionStatus.ACTIVE.value,
            "valid_until": valid_until,
            "status_changed_at": now,
        })

        logger.info(
            "subscription.resumed",
            extra={
                "subscription_id": sub.id,
                "scope": scope.value,
                "valid_until": valid_until.isoformat(),
                "changed_by": changed_by,
            },
        )

        intents: list[Intent] = [
            HistoryIntent(
                scope=scope.value,
                subscription_id=sub.id,
                change_type=ChangeType.STATUS_CHANGE.value,
                old_plan=sub.plan,
                new_plan=sub.plan,
                old_status=SubscriptionStatus.CANCELLED.value,
                new_status=SubscriptionStatus.ACTIVE.value,
                old_valid_until=old_valid_until,
                new_valid_until=valid_until,
                note="Subscription resumed",
                changed_by=changed_by,
            ),
            self._audit_intent(sub, "resume", f"Resumed {scope.value} subscription {sub.id}", changed_by),
        ]
        return TransitionResult(subscription=sub, intents=intents)

    def expire(self, now: Optional[datetime] = None) -> ExpiryResult:
        """
        Expire every live subscription whose valid_until is before now.

        Site and place subscriptions are swept independently. Running the
        sweep twice expires nothing the second time.
        """
        now = as_utc(now) if now else self._now()
        result = ExpiryResult()

        for scope in (SubscriptionScope.SITE, SubscriptionScope.PLACE):
            expired = self.subscriptions.expire_due(scope, now)
            if scope == SubscriptionScope.SITE:
                result.site_expired = len(expired)
            else:
                result.place_expired = len(expired)

            if not self.settings.expiry_writes_history:
                continue
            for row in expired:
                result.intents.append(HistoryIntent(
                    scope=scope.value,
                    subscription_id=row.subscription.id,
                    change_type=ChangeType.EXPIRY.value,
                    old_plan=row.subscription.plan,
                    new_plan=row.subscription.plan,
                    old_status=row.old_status,
                    new_status=SubscriptionStatus.EXPIRED.value,
                    old_valid_until=as_utc(row.old_valid_until),
                    new_valid_until=as_utc(row.old_valid_until),
                    note="Expired by scheduled sweep",
                ))

        logger.info("subscription.expiry_sweep", extra=result.to_dict())
        return result

    # ------------------------------------------------------------------
    # Admin edits
    # ------------------------------------------------------------------

    def _check_downgrade(self, sub: AnySubscription, new_plan: SubscriptionPlan) -> None:
        old_plan = SubscriptionPlan(sub.plan)
        if not is_downgrade(sub.scope, old_plan, new_plan):
            return

        if sub.scope == SubscriptionScope.SITE:
            usage = self.usage.site_usage(sub.site_id)
        else:
            usage = self.usage.place_usage(sub.place_id)

        target = tier_for_subscription(sub.scope, new_plan)
        violations = downgrade_violations(usage, target)
        if violations:
            raise PlanViolationError(
                f"Cannot change plan from {old_plan.value} to {new_plan.value}: "
                + "; ".join(violations),
                plan=new_plan.value,
                required_plan=old_plan.value,
                violations=violations,
            )

    def _sync_entity_tier(self, sub: AnySubscription, new_plan: SubscriptionPlan) -> None:
        tier = tier_for_subscription(sub.scope, new_plan)
        if sub.scope == SubscriptionScope.SITE:
            entity = self.db.query(Site).filter(Site.id == sub.site_id).first()
            # OFFICIAL is kept as-is when the plan maps to PRO
            if entity and not (entity.plan == SitePlan.OFFICIAL.value and tier == SitePlan.PRO):
                entity.plan = tier.value
        else:
            entity = self.db.query(Place).filter(Place.id == sub.place_id).first()
            if entity:
                entity.plan = tier.value
        self.db.commit()

    def update(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
        changes: SubscriptionChanges,
        changed_by: Optional[str] = None,
    ) -> TransitionResult:
        """
        Apply an admin edit and classify it.

        Change type precedence: PLAN_CHANGE > STATUS_CHANGE > PAYMENT
        (valid_until moved) > UPDATE. Without an explicit valid_until, a plan
        change or a change to EXPIRED moves valid_until to the first day of
        next month.

        Raises:
            NotFoundError: Unknown subscription
            PlanViolationError: Downgrade would violate current usage
            InvalidTransitionError: A concurrent transition changed the status
        """
        sub = self._get_or_raise(scope, subscription_id)
        now = self._now()

        old_plan = sub.plan
        old_status = sub.status
        old_valid_until = as_utc(sub.valid_until)

        new_plan = changes.plan.value if changes.has("plan") and changes.plan else old_plan
        new_status = changes.status.value if changes.has("status") and changes.status else old_status
        plan_changed = new_plan != old_plan
        status_changed = new_status != old_status

        if plan_changed:
            self._check_downgrade(sub, SubscriptionPlan(new_plan))

        values: dict[str, Any] = {}
        if changes.has("plan"):
            values["plan"] = new_plan
        if changes.has("status"):
            values["status"] = new_status
        for name in ("billing_period", "price_cents", "currency", "note"):
            if changes.has(name):
                value = getattr(changes, name)
                values[name] = value.value if isinstance(value, Enum) else value

        if changes.has("valid_until"):
            values["valid_until"] = as_utc(changes.valid_until)
        elif plan_changed:
            values["valid_until"] = first_of_next_month(now, self.tz)

        if status_changed:
            values["status_changed_at"] = now
            if new_status == SubscriptionStatus.EXPIRED.value and not changes.has("valid_until"):
                values["valid_until"] = first_of_next_month(now, self.tz)

        valid_until_changed = changes.has("valid_until") and values["valid_until"] != old_valid_until

        if plan_changed:
            change_type = ChangeType.PLAN_CHANGE
        elif status_changed:
            change_type = ChangeType.STATUS_CHANGE
        elif valid_until_changed:
            change_type = ChangeType.PAYMENT
        else:
            change_type = ChangeType.UPDATE

        if values:
            sub = self._transition(scope, sub, old_status, values)
        if plan_changed:
            self._sync_entity_tier(sub, SubscriptionPlan(new_plan))

        new_valid_until = as_utc(sub.valid_until)
        note = changes.note if changes.has("note") and changes.note else None
        if note is None and plan_changed:
            note = f"Plan changed from {old_plan} to {new_plan}"

        logger.info(
            "subscription.updated",
            extra={
                "subscription_id": sub.id,
                "scope": scope.value,
                "change_type": change_type.value,
                "changed_by": changed_by,
            },
        )

        intents: list[Intent] = [
            HistoryIntent(
                scope=scope.value,
                subscription_id=sub.id,
                change_type=change_type.value,
                old_plan=old_plan,
                new_plan=new_plan,
                old_status=old_status,
                new_status=new_status,
                old_valid_until=old_valid_until,
                new_valid_until=new_valid_until,
                payment_due_date=new_valid_until if "valid_until" in values else None,
                amount_cents=sub.price_cents,
                currency=sub.currency,
                note=note,
                changed_by=changed_by,
            ),
            self._audit_intent(
                sub,
                "update",
                note or f"Updated {scope.value} subscription {sub.id}",
                changed_by,
                metadata={"change_type": change_type.value},
            ),
        ]
        return TransitionResult(subscription=sub, intents=intents)

    def extend(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
        changed_by: Optional[str] = None,
    ) -> TransitionResult:
        """
        Push valid_until out by one month; an unset valid_until becomes the
        first day of next month.
        """
        sub = self._get_or_raise(scope, subscription_id)
        now = self._now()
        old_valid_until = as_utc(sub.valid_until)

        if old_valid_until is None:
            valid_until = first_of_next_month(now, self.tz)
        else:
            valid_until = add_one_month(old_valid_until, self.tz)

        sub = self._transition(scope, sub, sub.status, {"valid_until": valid_until})

        logger.info(
            "subscription.extended",
            extra={
                "subscription_id": sub.id,
                "scope": scope.value,
                "valid_until": valid_until.isoformat(),
                "changed_by": changed_by,
            },
        )

        intents: list[Intent] = [
            HistoryIntent(
                scope=scope.value,
                subscription_id=sub.id,
                change_type=ChangeType.EXTENSION.value,
                old_plan=sub.plan,
                new_plan=sub.plan,
                old_status=sub.status,
                new_status=sub.status,
                old_valid_until=old_valid_until,
                new_valid_until=valid_until,
                payment_due_date=valid_until,
                amount_cents=sub.price_cents,
                currency=sub.currency,
                note="Extended by 1 month",
                changed_by=changed_by,
            ),
            self._audit_intent(sub, "extend", "Extended by 1 month", changed_by),
        ]
        return TransitionResult(subscription=sub, intents=intents)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_subscription(self, scope: SubscriptionScope, entity_id: str) -> AnySubscription:
        """The subscription of a site or place, in any status."""
        sub = self.subscriptions.get_for_entity(scope, entity_id)
        if sub is None:
            raise NotFoundError(f"{scope.value} subscription", entity_id)
        return sub

    def get_effective_subscription(
        self,
        scope: SubscriptionScope,
        entity_id: str,
    ) -> Optional[AnySubscription]:
        return self.subscriptions.get_effective(scope, entity_id, self._now())

    def get_entitlements(
        self,
        site_id: Optional[str] = None,
        place_id: Optional[str] = None,
    ) -> Entitlements:
        """
        Capabilities of the effective subscription.

        place_id wins when both are given. With no effective subscription, or
        neither id, the lowest plan's capabilities apply.
        """
        if place_id:
            scope, entity_id = SubscriptionScope.PLACE, place_id
        elif site_id:
            scope, entity_id = SubscriptionScope.SITE, site_id
        else:
            return Entitlements(capabilities=capabilities_for(None), is_fallback=True)

        sub = self.get_effective_subscription(scope, entity_id)
        if sub is None or sub.status == SubscriptionStatus.EXPIRED.value:
            return Entitlements(
                capabilities=capabilities_for(None),
                scope=scope,
                entity_id=entity_id,
                is_fallback=True,
            )

        return Entitlements(
            capabilities=capabilities_for(SubscriptionPlan(sub.plan)),
            scope=scope,
            entity_id=entity_id,
            subscription_id=sub.id,
            status=sub.status,
            valid_until=as_utc(sub.valid_until),
        )

    def get_history(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
    ) -> list[SubscriptionHistory]:
        """History rows of one subscription, newest first."""
        self._get_or_raise(scope, subscription_id)
        return self.subscriptions.list_history(scope, subscription_id)
