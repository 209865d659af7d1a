"""
Subscription API routes for sites and places.

Access:
- Read, cancel, resume, history: siteadmin of the site / owner of the place
  (a siteadmin is owner of every place on its site)
- Admin edit and extend: superadmin only

Every lifecycle call returns side-effect intents; the route dispatches them
after the state write, so a failing history or audit write never fails the
request.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from directory_authz.api.dependencies.principal import (
    Principal,
    get_principal,
    require_superadmin,
)
from directory_authz.constants.roles import PlaceRole, SiteRole
from directory_authz.database.session import get_db_session
from directory_authz.models.base import as_utc
from directory_authz.models.subscription import (
    BillingPeriod,
    SubscriptionPlan,
    SubscriptionScope,
    SubscriptionStatus,
)
from directory_authz.platform.errors import NotFoundError
from directory_authz.services.rbac import PermissionResolver
from directory_authz.services.side_effects import SideEffectDispatcher, TransitionResult
from directory_authz.services.subscription_lifecycle import (
    SubscriptionChanges,
    SubscriptionLifecycleService,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


# Request/Response models

class SubscriptionResponse(BaseModel):
    """Current state of one subscription."""
    id: str
    scope: str
    entity_id: str
    plan: str
    status: str
    valid_until: Optional[str]
    status_changed_at: Optional[str]
    billing_period: str
    price_cents: Optional[int] = None
    currency: Optional[str] = None
    note: Optional[str] = None


class UpdateSubscriptionRequest(BaseModel):
    """Admin edit. Only fields present in the body are applied."""
    plan: Optional[SubscriptionPlan] = Field(None, description="New subscription plan")
    status: Optional[SubscriptionStatus] = Field(None, description="New status")
    valid_until: Optional[datetime] = Field(None, description="New expiry; null clears it")
    billing_period: Optional[BillingPeriod] = Field(None, description="MONTHLY or YEARLY")
    price_cents: Optional[int] = Field(None, description="Price in cents", ge=0)
    currency: Optional[str] = Field(None, description="ISO 4217 code", min_length=3, max_length=3)
    note: Optional[str] = Field(None, description="Admin note", max_length=2000)


class HistoryEntryResponse(BaseModel):
    id: str
    change_type: str
    old_plan: Optional[str]
    new_plan: Optional[str]
    old_status: Optional[str]
    new_status: Optional[str]
    old_valid_until: Optional[str]
    new_valid_until: Optional[str]
    note: Optional[str]
    changed_by: Optional[str]
    created_at: str


class HistoryResponse(BaseModel):
    history: list[HistoryEntryResponse]


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _to_response(sub) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=sub.id,
        scope=sub.scope.value,
        entity_id=sub.entity_id,
        plan=sub.plan,
        status=sub.status,
        valid_until=_iso(sub.valid_until),
        status_changed_at=_iso(sub.status_changed_at),
        billing_period=sub.billing_period,
        price_cents=sub.price_cents,
        currency=sub.currency,
        note=sub.note,
    )


def _history_response(rows) -> HistoryResponse:
    return HistoryResponse(history=[
        HistoryEntryResponse(
            id=row.id,
            change_type=row.change_type,
            old_plan=row.old_plan,
            new_plan=row.new_plan,
            old_status=row.old_status,
            new_status=row.new_status,
            old_valid_until=_iso(row.old_valid_until),
            new_valid_until=_iso(row.new_valid_until),
            note=row.note,
            changed_by=row.changed_by,
            created_at=_iso(row.created_at),
        )
        for row in rows
    ])


def get_lifecycle_service(db: Session = Depends(get_db_session)) -> SubscriptionLifecycleService:
    return SubscriptionLifecycleService(db)


def get_resolver(db: Session = Depends(get_db_session)) -> PermissionResolver:
    return PermissionResolver(db)


def _apply(db: Session, result: TransitionResult) -> SubscriptionResponse:
    report = SideEffectDispatcher(db).dispatch(result.intents)
    if report.failed:
        logger.warning(
            "subscription.side_effects_failed",
            extra={"subscription_id": result.subscription.id, "failed": report.failed},
        )
    return _to_response(result.subscription)


def _owned_subscription(
    lifecycle: SubscriptionLifecycleService,
    scope: SubscriptionScope,
    entity_id: str,
    subscription_id: str,
):
    sub = lifecycle.get_subscription(scope, entity_id)
    if sub.id != subscription_id:
        raise NotFoundError(f"{scope.value} subscription", subscription_id)
    return sub


# ---------------------------------------------------------------------------
# Site subscription
# ---------------------------------------------------------------------------

@router.get("/api/sites/{site_id}/subscription", response_model=SubscriptionResponse)
async def get_site_subscription(
    site_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
):
    resolver.assert_site_permission(principal.user_id, site_id, SiteRole.SITEADMIN)
    return _to_response(lifecycle.get_subscription(SubscriptionScope.SITE, site_id))


@router.put("/api/sites/{site_id}/subscription", response_model=SubscriptionResponse)
async def update_site_subscription(
    site_id: str,
    body: UpdateSubscriptionRequest,
    principal: Principal = Depends(require_superadmin),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db_session),
):
    """
    Admin edit of a site subscription.

    Plan downgrades that current usage would violate are refused with 402.
    """
    sub = lifecycle.get_subscription(SubscriptionScope.SITE, site_id)
    changes = SubscriptionChanges.of(**body.model_dump(exclude_unset=True))

    logger.info("Updating site subscription", extra={
        "site_id": site_id,
        "subscription_id": sub.id,
        "fields": sorted(changes.provided),
    })

    result = lifecycle.update(
        SubscriptionScope.SITE, sub.id, changes, changed_by=principal.user_id
    )
    return _apply(db, result)


@router.post(
    "/api/sites/{site_id}/subscription/{subscription_id}/cancel",
    response_model=SubscriptionResponse,
)
async def cancel_site_subscription(
    site_id: str,
    subscription_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db_session),
):
    resolver.assert_site_permission(principal.user_id, site_id, SiteRole.SITEADMIN)
    _owned_subscription(lifecycle, SubscriptionScope.SITE, site_id, subscription_id)
    result = lifecycle.cancel(
        SubscriptionScope.SITE, subscription_id, changed_by=principal.user_id
    )
    return _apply(db, result)


@router.post(
    "/api/sites/{site_id}/subscription/{subscription_id}/resume",
    response_model=SubscriptionResponse,
)
async def resume_site_subscription(
    site_id: str,
    subscription_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db_session),
):
    resolver.assert_site_permission(principal.user_id, site_id, SiteRole.SITEADMIN)
    _owned_subscription(lifecycle, SubscriptionScope.SITE, site_id, subscription_id)
    result = lifecycle.resume(
        SubscriptionScope.SITE, subscription_id, changed_by=principal.user_id
    )
    return _apply(db, result)


@router.post(
    "/api/sites/{site_id}/subscription/{subscription_id}/extend",
    response_model=SubscriptionResponse,
)
async def extend_site_subscription(
    site_id: str,
    subscription_id: str,
    principal: Principal = Depends(require_superadmin),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db_session),
):
    _owned_subscription(lifecycle, SubscriptionScope.SITE, site_id, subscription_id)
    result = lifecycle.extend(
        SubscriptionScope.SITE, subscription_id, changed_by=principal.user_id
    )
    return _apply(db, result)


@router.get("/api/sites/{site_id}/subscription/history", response_model=HistoryResponse)
async def get_site_subscription_history(
    site_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
):
    resolver.assert_site_permission(principal.user_id, site_id, SiteRole.SITEADMIN)
    sub = lifecycle.get_subscription(SubscriptionScope.SITE, site_id)
    return _history_response(lifecycle.get_history(SubscriptionScope.SITE, sub.id))


# ---------------------------------------------------------------------------
# Place subscription
# ---------------------------------------------------------------------------

@router.get("/api/places/{place_id}/subscription", response_model=SubscriptionResponse)
async def get_place_subscription(
    place_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
):
    resolver.assert_place_permission(principal.user_id, place_id, PlaceRole.OWNER)
    return _to_response(lifecycle.get_subscription(SubscriptionScope.PLACE, place_id))


@router.post(
    "/api/places/{place_id}/subscription/{subscription_id}/cancel",
    response_model=SubscriptionResponse,
)
async def cancel_place_subscription(
    place_id: str,
    subscription_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db_session),
):
    resolver.assert_place_permission(principal.user_id, place_id, PlaceRole.OWNER)
    _owned_subscription(lifecycle, SubscriptionScope.PLACE, place_id, subscription_id)
    result = lifecycle.cancel(
        SubscriptionScope.PLACE, subscription_id, changed_by=principal.user_id
    )
    return _apply(db, result)


@router.post(
    "/api/places/{place_id}/subscription/{subscription_id}/resume",
    response_model=SubscriptionResponse,
)
async def resume_place_subscription(
    place_id: str,
    subscription_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
    db: Session = Depends(get_db_session),
):
    resolver.assert_place_permission(principal.user_id, place_id, PlaceRole.OWNER)
    _owned_subscription(lifecycle, SubscriptionScope.PLACE, place_id, subscription_id)
    result = lifecycle.resume(
        SubscriptionScope.PLACE, subscription_id, changed_by=principal.user_id
    )
    return _apply(db, result)


@router.get("/api/places/{place_id}/subscription/history", response_model=HistoryResponse)
async def get_place_subscription_history(
    place_id: str,
    principal: Principal = Depends(get_principal),
    resolver: PermissionResolver = Depends(get_resolver),
    lifecycle: SubscriptionLifecycleService = Depends(get_lifecycle_service),
):
    resolver.assert_place_permission(principal.user_id, place_id, PlaceRole.OWNER)
    sub = lifecycle.get_subscription(SubscriptionScope.PLACE, place_id)
    return _history_response(lifecycle.get_history(SubscriptionScope.PLACE, sub.id))
