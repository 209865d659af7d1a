"""
Subscription persistence: lookups, conditional status writes, the bulk expiry
update and history rows.

CRITICAL: Every status write here is conditional on the status the caller
observed. Zero affected rows means another transition won the race.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from directory_authz.models.subscription import (
    LIVE_STATUSES,
    SUBSCRIPTION_MODELS,
    PlaceSubscription,
    SiteSubscription,
    SubscriptionHistory,
    SubscriptionScope,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

AnySubscription = Union[SiteSubscription, PlaceSubscription]


@dataclass
class ExpiredRow:
    """A subscription moved to EXPIRED by the sweep, with what it was before."""
    subscription: AnySubscription
    old_status: str
    old_valid_until: Optional[datetime]


def _entity_column(model):
    return model.site_id if model is SiteSubscription else model.place_id


class SubscriptionRepository:
    """Data access for site and place subscriptions."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, scope: SubscriptionScope, subscription_id: str) -> Optional[AnySubscription]:
        model = SUBSCRIPTION_MODELS[scope]
        return self.db.query(model).filter(model.id == subscription_id).first()

    def get_for_entity(self, scope: SubscriptionScope, entity_id: str) -> Optional[AnySubscription]:
        """The subscription of a site or place in any status."""
        model = SUBSCRIPTION_MODELS[scope]
        return self.db.query(model).filter(_entity_column(model) == entity_id).first()

    def get_effective(
        self,
        scope: SubscriptionScope,
        entity_id: str,
        now: datetime,
    ) -> Optional[AnySubscription]:
        """
        The subscription currently granting entitlements.

        Effective means ACTIVE or CANCELLED with valid_until unset or still
        in the future.
        """
        model = SUBSCRIPTION_MODELS[scope]
        return (
            self.db.query(model)
            .filter(
                _entity_column(model) == entity_id,
                model.status.in_(LIVE_STATUSES),
                or_(model.valid_until.is_(None), model.valid_until > now),
            )
            .first()
        )

    def conditional_update(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
        expected_status: str,
        values: dict[str, Any],
    ) -> int:
        """
        UPDATE ... WHERE id = :id AND status = :expected_status.

        Returns:
            Number of rows changed (0 or 1)
        """
        model = SUBSCRIPTION_MODELS[scope]
        updated = (
            self.db.query(model)
            .filter(model.id == subscription_id, model.status == expected_status)
            .update(values, synchronize_session="fetch")
        )
        self.db.commit()
        return updated

    def expire_due(self, scope: SubscriptionScope, now: datetime) -> list[ExpiredRow]:
        """
        Move every live subscription whose valid_until has passed to EXPIRED.

        The update re-applies the live/past-due condition, so a row changed
        concurrently between selection and update is left alone. Rows are
        returned only when this call expired them.

        Returns:
            One ExpiredRow per subscription expired by this call
        """
        model = SUBSCRIPTION_MODELS[scope]
        due_condition = (
            model.status.in_(LIVE_STATUSES),
            model.valid_until.isnot(None),
            model.valid_until < now,
        )

        candidates = self.db.query(model.id, model.status, model.valid_until).filter(
            *due_condition
        ).all()
        if not candidates:
            return []

        ids = [c.id for c in candidates]
        previous = {c.id: (c.status, c.valid_until) for c in candidates}

        self.db.query(model).filter(model.id.in_(ids), *due_condition).update(
            {
                model.status: SubscriptionStatus.EXPIRED.value,
                model.status_changed_at: now,
            },
            synchronize_session=False,
        )
        self.db.commit()

        expired = (
            self.db.query(model)
            .filter(
                model.id.in_(ids),
                model.status == SubscriptionStatus.EXPIRED.value,
                model.status_changed_at == now,
            )
            .all()
        )
        return [
            ExpiredRow(sub, previous[sub.id][0], previous[sub.id][1])
            for sub in expired
        ]

    def add_history(self, entry: SubscriptionHistory) -> SubscriptionHistory:
        self.db.add(entry)
        self.db.commit()
        return entry

    def list_history(
        self,
        scope: SubscriptionScope,
        subscription_id: str,
    ) -> list[SubscriptionHistory]:
        """History of one subscription, newest first."""
        return (
            self.db.query(SubscriptionHistory)
            .filter(
                SubscriptionHistory.scope == scope.value,
                SubscriptionHistory.subscription_id == subscription_id,
            )
            .order_by(SubscriptionHistory.created_at.desc())
            .all()
        )
