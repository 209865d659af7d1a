"""
Plan and usage routes for sites and places.

- GET   /api/sites/{site_id}/plan        tier, limits, usage and gates (site viewer)
- PATCH /api/sites/{site_id}/settings    tier and public registration (siteadmin)
- GET   /api/places/{place_id}/plan      tier, limits, usage and gates (place editor)
- PUT   /api/places/{place_id}/featured  feature or unfeature a place (place manager)
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from directory_authz.api.dependencies.principal import Principal, get_principal
from directory_authz.constants.roles import PlaceRole, SiteRole
from directory_authz.database.session import get_db_session
from directory_authz.entitlements.limits import SitePlan
from directory_authz.models.base import as_utc
from directory_authz.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["plans"])


class UpdateSiteSettingsRequest(BaseModel):
    plan: Optional[SitePlan] = Field(None, description="New site tier")
    allow_public_registration: Optional[bool] = Field(
        None, description="Whether visitors may register on the site"
    )


class SiteSettingsResponse(BaseModel):
    site_id: str
    plan: str
    allow_public_registration: bool


class SetFeaturedRequest(BaseModel):
    featured: bool = Field(..., description="Mark (true) or unmark (false) the place as featured")
    featured_until: Optional[datetime] = Field(None, description="End of the featured placement")


class FeaturedResponse(BaseModel):
    place_id: str
    is_featured: bool
    featured_until: Optional[str]


def get_billing_service(db: Session = Depends(get_db_session)) -> BillingService:
    return BillingService(db)


@router.get("/api/sites/{site_id}/plan")
async def get_site_plan(
    site_id: str,
    principal: Principal = Depends(get_principal),
    service: BillingService = Depends(get_billing_service),
):
    service.rbac.assert_site_permission(principal.user_id, site_id, SiteRole.VIEWER)
    return service.get_site_overview(site_id).to_dict()


@router.patch("/api/sites/{site_id}/settings", response_model=SiteSettingsResponse)
async def update_site_settings(
    site_id: str,
    body: UpdateSiteSettingsRequest,
    principal: Principal = Depends(get_principal),
    service: BillingService = Depends(get_billing_service),
):
    site = service.update_site_settings(
        principal.user_id,
        site_id,
        plan=body.plan,
        allow_public_registration=body.allow_public_registration,
    )
    return SiteSettingsResponse(
        site_id=site.id,
        plan=site.plan,
        allow_public_registration=site.allow_public_registration,
    )


@router.get("/api/places/{place_id}/plan")
async def get_place_plan(
    place_id: str,
    principal: Principal = Depends(get_principal),
    service: BillingService = Depends(get_billing_service),
):
    service.rbac.assert_place_permission(principal.user_id, place_id, PlaceRole.EDITOR)
    return service.get_place_overview(place_id).to_dict()


@router.put("/api/places/{place_id}/featured", response_model=FeaturedResponse)
async def set_place_featured(
    place_id: str,
    body: SetFeaturedRequest,
    principal: Principal = Depends(get_principal),
    service: BillingService = Depends(get_billing_service),
):
    place = service.set_place_featured(
        principal.user_id, place_id, body.featured, featured_until=body.featured_until
    )
    featured_until = as_utc(place.featured_until)
    return FeaturedResponse(
        place_id=place.id,
        is_featured=place.is_featured,
        featured_until=featured_until.isoformat() if featured_until else None,
    )
