"""
Place (listed business) and place membership models.
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Enum, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from directory_authz.db_base import Base
from directory_authz.models.base import TimestampMixin, generate_uuid


class Place(Base, TimestampMixin):
    """A business listed on exactly one site."""

    __tablename__ = "places"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    site_id = Column(
        String(36),
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    owner_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Legacy owner pointer; owner memberships take precedence"
    )
    plan = Column(
        Enum("free", "basic", "pro", name="place_plan"),
        nullable=False,
        default="free",
        comment="Place limit tier"
    )
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    featured_until = Column(DateTime(timezone=True), nullable=True)
    image_count = Column(Integer, nullable=False, default=0)
    event_count = Column(Integer, nullable=False, default=0)

    site = relationship("Site", back_populates="places")
    owner = relationship("User")
    memberships = relationship(
        "PlaceMembership",
        back_populates="place",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_places_site_featured", "site_id", "is_featured"),
    )

    def __repr__(self) -> str:
        return f"<Place(id={self.id}, site_id={self.site_id}, plan={self.plan})>"


class PlaceMembership(Base, TimestampMixin):
    """A user's role on one place. Unique per (place, user)."""

    __tablename__ = "place_memberships"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    place_id = Column(
        String(36),
        ForeignKey("places.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(
        Enum("editor", "manager", "owner", name="place_role"),
        nullable=False,
    )

    place = relationship("Place", back_populates="memberships")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("place_id", "user_id", name="uq_place_memberships_place_user"),
    )
