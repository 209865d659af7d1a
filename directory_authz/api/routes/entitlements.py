"""
Entitlements API route.

Returns the capabilities of the effective subscription of a site or place,
or the lowest plan's capabilities when none is effective.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from directory_authz.api.dependencies.principal import Principal, get_principal
from directory_authz.constants.roles import PlaceRole, SiteRole
from directory_authz.database.session import get_db_session
from directory_authz.services.rbac import PermissionResolver
from directory_authz.services.subscription_lifecycle import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


@router.get("")
async def get_entitlements(
    site_id: Optional[str] = Query(None, alias="siteId"),
    place_id: Optional[str] = Query(None, alias="placeId"),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db_session),
):
    """
    placeId wins when both are given. Place entitlements need at least
    place editor, site entitlements at least site viewer.
    """
    resolver = PermissionResolver(db)
    if place_id:
        resolver.assert_place_permission(principal.user_id, place_id, PlaceRole.EDITOR)
    elif site_id:
        resolver.assert_site_permission(principal.user_id, site_id, SiteRole.VIEWER)

    entitlements = SubscriptionLifecycleService(db).get_entitlements(
        site_id=site_id, place_id=place_id
    )
    return entitlements.to_dict()
