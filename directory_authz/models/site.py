"""
Site (directory instance) and site membership models.
"""

from sqlalchemy import (
    Column, String, Boolean, Enum, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from directory_authz.db_base import Base
from directory_authz.models.base import TimestampMixin, generate_uuid


class Site(Base, TimestampMixin):
    """
    A directory site. Sites are the tenants of the platform: event log rows
    are scoped by site id.
    """

    __tablename__ = "sites"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    slug = Column(String(255), unique=True, nullable=False)
    plan = Column(
        Enum("free", "official", "pro", "business", name="site_plan"),
        nullable=False,
        default="free",
        comment="Site limit tier"
    )
    allow_public_registration = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)

    memberships = relationship(
        "SiteMembership",
        back_populates="site",
        cascade="all, delete-orphan",
    )
    places = relationship("Place", back_populates="site")

    def __repr__(self) -> str:
        return f"<Site(id={self.id}, slug={self.slug}, plan={self.plan})>"


class SiteMembership(Base, TimestampMixin):
    """A user's role on one site. Unique per (site, user)."""

    __tablename__ = "site_memberships"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    site_id = Column(
        String(36),
        ForeignKey("sites.id", ondelete="CASCADE"),
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
        Enum("viewer", "editor", "siteadmin", name="site_role"),
        nullable=False,
    )

    site = relationship("Site", back_populates="memberships")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("site_id", "user_id", name="uq_site_memberships_site_user"),
        Index("ix_site_memberships_site_role", "site_id", "role"),
    )
