"""
Database models for the authorization, entitlement and subscription core.
"""

from directory_authz.models.base import TimestampMixin
from directory_authz.models.user import User
from directory_authz.models.site import Site, SiteMembership
from directory_authz.models.place import Place, PlaceMembership
from directory_authz.models.subscription import (
    SiteSubscription,
    PlaceSubscription,
    SubscriptionHistory,
    SubscriptionScope,
    SubscriptionStatus,
    SubscriptionPlan,
    BillingPeriod,
    ChangeType,
)
from directory_authz.models.event_log import EventLog

__all__ = [
    "TimestampMixin",
    "User",
    "Site",
    "SiteMembership",
    "Place",
    "PlaceMembership",
    "SiteSubscription",
    "PlaceSubscription",
    "SubscriptionHistory",
    "SubscriptionScope",
    "SubscriptionStatus",
    "SubscriptionPlan",
    "BillingPeriod",
    "ChangeType",
    "EventLog",
]
