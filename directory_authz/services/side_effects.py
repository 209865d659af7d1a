"""
Side effects of subscription transitions.

Lifecycle operations do not write history or audit rows themselves. They
return the state they committed plus a list of intents, and the
SideEffectDispatcher executes those intents after the state write.

CRITICAL: A failing intent is logged and skipped. It never fails the
transition that produced it, and it never stops the remaining intents.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Union

from sqlalchemy.orm import Session

from directory_authz.models.subscription import SubscriptionHistory
from directory_authz.repositories.subscription_repository import SubscriptionRepository
from directory_authz.services.event_log import EventLogEntry, EventLogService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryIntent:
    """One SubscriptionHistory row to append."""
    scope: str
    subscription_id: str
    change_type: str
    old_plan: Optional[str] = None
    new_plan: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    old_valid_until: Optional[datetime] = None
    new_valid_until: Optional[datetime] = None
    payment_due_date: Optional[datetime] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    note: Optional[str] = None
    changed_by: Optional[str] = None

    def to_model(self) -> SubscriptionHistory:
        return SubscriptionHistory(
            scope=self.scope,
            subscription_id=self.subscription_id,
            change_type=self.change_type,
            old_plan=self.old_plan,
            new_plan=self.new_plan,
            old_status=self.old_status,
            new_status=self.new_status,
            old_valid_until=self.old_valid_until,
            new_valid_until=self.new_valid_until,
            payment_due_date=self.payment_due_date,
            amount_cents=self.amount_cents,
            currency=self.currency,
            note=self.note,
            changed_by=self.changed_by,
        )


@dataclass(frozen=True)
class AuditIntent:
    """
    One event log entry to append.

    When resolve_attribution is set, the dispatcher calls it for
    (tenant_id, user_id) at execution time, inside the same failure guard as
    the write itself.
    """
    action: str
    entity_type: str
    entity_id: str
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    resolve_attribution: Optional[Callable[[], tuple]] = field(
        default=None, compare=False, repr=False
    )


Intent = Union[HistoryIntent, AuditIntent]


@dataclass
class TransitionResult:
    """Committed subscription state plus the side effects still to run."""
    subscription: Any
    intents: list[Intent] = field(default_factory=list)


@dataclass
class DispatchReport:
    executed: int = 0
    failed: int = 0


class SideEffectDispatcher:
    """
    Executes history and audit intents against a session.

    Usage:
        result = lifecycle.cancel(scope, subscription_id)
        SideEffectDispatcher(db).dispatch(result.intents)
    """

    def __init__(self, db_session: Session):
        self.db = db_session
        self.subscriptions = SubscriptionRepository(db_session)

    def _write_history(self, intent: HistoryIntent) -> None:
        self.subscriptions.add_history(intent.to_model())

    def _write_audit(self, intent: AuditIntent) -> None:
        tenant_id, user_id = intent.tenant_id, intent.user_id
        if intent.resolve_attribution is not None:
            tenant_id, user_id = intent.resolve_attribution()
        if not tenant_id:
            logger.debug("side_effect.audit_skipped_no_tenant", extra={"action": intent.action})
            return
        EventLogService(self.db).append(
            EventLogEntry(
                tenant_id=tenant_id,
                user_id=user_id,
                action=intent.action,
                entity_type=intent.entity_type,
                entity_id=intent.entity_id,
                description=intent.description
                or f"{intent.action} {intent.entity_type} {intent.entity_id}",
                metadata=intent.metadata,
            )
        )

    def execute(self, intent: Intent) -> bool:
        """Run one intent. Returns False if it failed."""
        try:
            if isinstance(intent, HistoryIntent):
                self._write_history(intent)
            elif isinstance(intent, AuditIntent):
                self._write_audit(intent)
            else:
                raise TypeError(f"Unknown intent type: {type(intent).__name__}")
            return True
        except Exception:
            try:
                self.db.rollback()
            except Exception:
                logger.debug("side_effect.rollback_failed", exc_info=True)

            logger.error(
                "side_effect.failed",
                extra={"intent": type(intent).__name__, "intent_detail": repr(intent)},
                exc_info=True,
            )
            return False

    def dispatch(self, intents: list[Intent]) -> DispatchReport:
        report = DispatchReport()
        for intent in intents:
            if self.execute(intent):
                report.executed += 1
            else:
                report.failed += 1
        return report
