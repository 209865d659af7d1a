"""
Subscription models for sites and places.

CRITICAL: One subscription per site and one per place.
status / valid_until change only through a named lifecycle transition
(services.subscription_lifecycle), which pairs every change with a
SubscriptionHistory row.
"""

from enum import Enum

from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Enum as SAEnum,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship, declared_attr

from directory_authz.db_base import Base
from directory_authz.models.base import TimestampMixin, generate_uuid, utcnow


class SubscriptionScope(str, Enum):
    """Which kind of entity a subscription belongs to."""
    SITE = "site"
    PLACE = "place"


class SubscriptionStatus(str, Enum):
    """Subscription status values. There is no separate trial state."""
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class SubscriptionPlan(str, Enum):
    """Commercial plan on a subscription record."""
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    BUSINESS = "BUSINESS"


class BillingPeriod(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class ChangeType(str, Enum):
    """Kinds of entries in the subscription history."""
    STATUS_CHANGE = "STATUS_CHANGE"
    PLAN_CHANGE = "PLAN_CHANGE"
    PAYMENT = "PAYMENT"
    EXTENSION = "EXTENSION"
    UPDATE = "UPDATE"
    EXPIRY = "EXPIRY"


# Statuses the expiry sweep may move to EXPIRED, and that can be effective.
LIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELLED.value)

_STATUS_VALUES = tuple(s.value for s in SubscriptionStatus)
_PLAN_VALUES = tuple(p.value for p in SubscriptionPlan)


class SubscriptionMixin(TimestampMixin):
    """Columns shared by site and place subscriptions."""

    id = Column(String(36), primary_key=True, default=generate_uuid)

    @declared_attr
    def plan(cls):
        return Column(
            SAEnum(*_PLAN_VALUES, name="subscription_plan"),
            nullable=False,
            default=SubscriptionPlan.FREE.value,
        )

    @declared_attr
    def status(cls):
        return Column(
            SAEnum(*_STATUS_VALUES, name="subscription_status"),
            nullable=False,
            default=SubscriptionStatus.ACTIVE.value,
            index=True,
        )

    valid_until = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="NULL means no expiry while ACTIVE"
    )
    status_changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @declared_attr
    def billing_period(cls):
        return Column(
            SAEnum("MONTHLY", "YEARLY", name="billing_period"),
            nullable=False,
            default=BillingPeriod.MONTHLY.value,
        )

    price_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    note = Column(Text, nullable=True)


class SiteSubscription(Base, SubscriptionMixin):
    """The subscription of one site."""

    __tablename__ = "site_subscriptions"

    site_id = Column(
        String(36),
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
        comment="One subscription per site"
    )

    site = relationship("Site")

    __table_args__ = (
        Index("ix_site_subscriptions_status_valid_until", "status", "valid_until"),
    )

    @property
    def scope(self) -> SubscriptionScope:
        return SubscriptionScope.SITE

    @property
    def entity_id(self) -> str:
        return self.site_id

    def __repr__(self) -> str:
        return f"<SiteSubscription(id={self.id}, site_id={self.site_id}, status={self.status})>"


class PlaceSubscription(Base, SubscriptionMixin):
    """The subscription of one place."""

    __tablename__ = "place_subscriptions"

    place_id = Column(
        String(36),
        ForeignKey("places.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
        comment="One subscription per place"
    )

    place = relationship("Place")

    __table_args__ = (
        Index("ix_place_subscriptions_status_valid_until", "status", "valid_until"),
    )

    @property
    def scope(self) -> SubscriptionScope:
        return SubscriptionScope.PLACE

    @property
    def entity_id(self) -> str:
        return self.place_id

    def __repr__(self) -> str:
        return f"<PlaceSubscription(id={self.id}, place_id={self.place_id}, status={self.status})>"


SUBSCRIPTION_MODELS = {
    SubscriptionScope.SITE: SiteSubscription,
    SubscriptionScope.PLACE: PlaceSubscription,
}


class SubscriptionHistory(Base):
    """
    Append-only record of every subscription transition.

    CRITICAL: Rows are never updated or deleted.
    """

    __tablename__ = "subscription_history"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    scope = Column(SAEnum("site", "place", name="subscription_scope"), nullable=False)
    subscription_id = Column(String(36), nullable=False, index=True)
    change_type = Column(String(32), nullable=False)
    old_plan = Column(String(16), nullable=True)
    new_plan = Column(String(16), nullable=True)
    old_status = Column(String(16), nullable=True)
    new_status = Column(String(16), nullable=True)
    old_valid_until = Column(DateTime(timezone=True), nullable=True)
    new_valid_until = Column(DateTime(timezone=True), nullable=True)
    payment_due_date = Column(DateTime(timezone=True), nullable=True)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    note = Column(Text, nullable=True)
    changed_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_subscription_history_scope_sub", "scope", "subscription_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionHistory(subscription_id={self.subscription_id}, "
            f"change_type={self.change_type})>"
        )
