"""
Current consumption of sites and places, for limit checks and downgrade
validation.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session

from directory_authz.entitlements.limits import Usage
from directory_authz.models.place import Place


class UsageRepository:

    def __init__(self, db_session: Session):
        self.db = db_session

    def featured_place_count(self, site_id: str) -> int:
        return (
            self.db.query(func.count(Place.id))
            .filter(Place.site_id == site_id, Place.is_featured.is_(True))
            .scalar()
            or 0
        )

    def site_usage(self, site_id: str) -> Usage:
        """
        Aggregate usage of a site across its active places.

        images is the largest image count on any single place, since the
        site caps images per place.
        """
        row = (
            self.db.query(
                func.count(Place.id).label("places"),
                func.coalesce(func.sum(Place.event_count), 0).label("events"),
                func.coalesce(func.max(Place.image_count), 0).label("images"),
            )
            .filter(Place.site_id == site_id, Place.is_active.is_(True))
            .one()
        )
        return Usage(
            places=row.places or 0,
            featured_places=self.featured_place_count(site_id),
            events=int(row.events or 0),
            images=int(row.images or 0),
        )

    def place_usage(self, place_id: str) -> Usage:
        place = self.db.query(Place).filter(Place.id == place_id).first()
        if place is None:
            return Usage()
        return Usage(
            featured_places=1 if place.is_featured else 0,
            events=place.event_count or 0,
            images=place.image_count or 0,
        )
