"""
Membership lookups for the permission resolver and audit attribution.

Every method is a single narrow query. The resolver counts on that: a
superadmin decision must not touch this repository at all, which the RBAC
tests assert by handing the resolver a mock.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from directory_authz.constants.roles import (
    PlaceRole,
    SiteRole,
    UserRole,
    parse_place_role,
    parse_site_role,
    parse_user_role,
)
from directory_authz.models.place import Place, PlaceMembership
from directory_authz.models.site import SiteMembership
from directory_authz.models.user import User

logger = logging.getLogger(__name__)


class MembershipRepository:
    """Read-only access to users, memberships and place ownership."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_user_role(self, user_id: str) -> Optional[UserRole]:
        """Global role of a user, or None when the user does not exist."""
        row = self.db.query(User.role).filter(User.id == user_id).first()
        if row is None:
            return None
        return parse_user_role(row.role)

    def get_site_role(self, user_id: str, site_id: str) -> Optional[SiteRole]:
        row = (
            self.db.query(SiteMembership.role)
            .filter(
                SiteMembership.site_id == site_id,
                SiteMembership.user_id == user_id,
            )
            .first()
        )
        return parse_site_role(row.role) if row else None

    def get_place_role(self, user_id: str, place_id: str) -> Optional[PlaceRole]:
        row = (
            self.db.query(PlaceMembership.role)
            .filter(
                PlaceMembership.place_id == place_id,
                PlaceMembership.user_id == user_id,
            )
            .first()
        )
        return parse_place_role(row.role) if row else None

    def get_place_site_id(self, place_id: str) -> Optional[str]:
        row = self.db.query(Place.site_id).filter(Place.id == place_id).first()
        return row.site_id if row else None

    def get_user_places(self, user_id: str, site_id: Optional[str] = None) -> list[str]:
        """
        Place ids a user holds any place membership on.

        Args:
            user_id: User to look up
            site_id: Restrict to places of this site

        Returns:
            Place ids, in membership creation order
        """
        query = (
            self.db.query(PlaceMembership.place_id)
            .join(Place, Place.id == PlaceMembership.place_id)
            .filter(PlaceMembership.user_id == user_id)
        )
        if site_id:
            query = query.filter(Place.site_id == site_id)
        rows = query.order_by(PlaceMembership.created_at).all()
        return [row.place_id for row in rows]

    def get_all_place_ids(self, site_id: Optional[str] = None) -> list[str]:
        query = self.db.query(Place.id)
        if site_id:
            query = query.filter(Place.site_id == site_id)
        return [row.id for row in query.order_by(Place.created_at).all()]

    def get_user_site_ids(self, user_id: str) -> list[str]:
        """Sites (tenants) a user holds any membership on."""
        rows = (
            self.db.query(SiteMembership.site_id)
            .filter(SiteMembership.user_id == user_id)
            .order_by(SiteMembership.created_at)
            .all()
        )
        return [row.site_id for row in rows]

    def find_site_admin_user_id(self, site_id: str) -> Optional[str]:
        """First siteadmin of a site, by membership age."""
        row = (
            self.db.query(SiteMembership.user_id)
            .filter(
                SiteMembership.site_id == site_id,
                SiteMembership.role == SiteRole.SITEADMIN.value,
            )
            .order_by(SiteMembership.created_at)
            .first()
        )
        return row.user_id if row else None

    def find_place_owner_user_id(self, place_id: str) -> Optional[str]:
        """
        Owner of a place.

        An owner membership wins; the legacy Place.owner_id column is the
        fallback.
        """
        row = (
            self.db.query(PlaceMembership.user_id)
            .filter(
                PlaceMembership.place_id == place_id,
                PlaceMembership.role == PlaceRole.OWNER.value,
            )
            .order_by(PlaceMembership.created_at)
            .first()
        )
        if row:
            return row.user_id

        place = self.db.query(Place.owner_id).filter(Place.id == place_id).first()
        if place and place.owner_id:
            return place.owner_id

        logger.debug("No owner resolved for place", extra={"place_id": place_id})
        return None
