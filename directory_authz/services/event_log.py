"""
Administrative event log: append, filtered listing, CSV export, guarded
bulk deletion.

Access rules (global role):
- list / export / filter options: admin or superadmin
- delete: superadmin only
- A non-superadmin only ever sees its own tenants. A requested tenant outside
  that set is ignored, not an error.

CRITICAL:
- Callers performing an action never let an audit failure fail the action.
  They go through log_admin_action(), which swallows and logs. append()
  itself writes synchronously and may raise.
- Rows are never updated. Deletion goes through delete_many() only.
"""

import csv
import io
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from directory_authz.config.settings import Settings, get_settings
from directory_authz.constants.roles import UserRole, satisfies
from directory_authz.models.base import as_utc
from directory_authz.models.event_log import EventLog
from directory_authz.models.site import Site
from directory_authz.platform.errors import (
    InvalidRequestError,
    PermissionDeniedError,
    TooBroadError,
)

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("event_log.fallback")


CSV_HEADERS = [
    "ID",
    "Timestamp",
    "Tenant",
    "User",
    "User Email",
    "Action",
    "Entity Type",
    "Entity ID",
    "Description",
    "Metadata",
]


@dataclass
class EventLogEntry:
    """An event log row to be written."""
    tenant_id: str
    user_id: Optional[str]
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass
class EventLogFilters:
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: Optional[int] = None

    @property
    def has_specific_filters(self) -> bool:
        """Any filter narrower than the tenant."""
        return bool(
            self.user_id
            or self.action
            or self.entity_type
            or self.start_date
            or self.end_date
        )


@dataclass
class EventLogPage:
    logs: list[EventLog]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def pagination(self) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
        }


@dataclass
class DeleteResult:
    count: int
    remaining: int = 0
    message: str = field(init=False)

    def __post_init__(self):
        self.message = f"Deleted {self.count} event log(s)"

    def to_dict(self) -> dict:
        return {"message": self.message, "count": self.count, "remaining": self.remaining}


def _role(value) -> UserRole:
    return value if isinstance(value, UserRole) else UserRole(str(value).lower())


class EventLogService:
    """
    Tenant-scoped access to the event log.

    Args:
        db_session: Database session
        settings: Page sizes and the bulk delete threshold
    """

    def __init__(self, db_session: Session, settings: Optional[Settings] = None):
        self.db = db_session
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: EventLogEntry) -> EventLog:
        """Write one row. Raises on database failure."""
        row = EventLog(
            tenant_id=entry.tenant_id,
            user_id=entry.user_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            description=entry.description,
            event_metadata=entry.metadata,
        )
        self.db.add(row)
        self.db.commit()

        logger.info(
            "event_log.appended",
            extra={
                "event_log_id": row.id,
                "tenant_id": entry.tenant_id,
                "user_id": entry.user_id,
                "action": entry.action,
            },
        )
        return row

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _require_reader(self, principal_role, verb: str) -> UserRole:
        role = _role(principal_role)
        if not satisfies(role, UserRole.ADMIN):
            raise PermissionDeniedError(
                required_role=UserRole.ADMIN.value,
                resource_id="event_logs",
                message=f"Only superadmin and admin can {verb} event logs",
            )
        return role

    def _scoped_query(self, query, role: UserRole, scope_ids: list[str], filters: EventLogFilters):
        if role == UserRole.SUPERADMIN:
            if filters.tenant_id:
                query = query.filter(EventLog.tenant_id == filters.tenant_id)
        elif filters.tenant_id and filters.tenant_id in scope_ids:
            query = query.filter(EventLog.tenant_id == filters.tenant_id)
        else:
            query = query.filter(EventLog.tenant_id.in_(list(scope_ids)))
        return self._apply_filters(query, filters)

    def _apply_filters(self, query, filters: EventLogFilters):
        if filters.user_id:
            query = query.filter(EventLog.user_id == filters.user_id)
        if filters.action:
            query = query.filter(EventLog.action == filters.action)
        if filters.entity_type:
            query = query.filter(EventLog.entity_type == filters.entity_type)
        if filters.start_date:
            query = query.filter(EventLog.created_at >= as_utc(filters.start_date))
        if filters.end_date:
            query = query.filter(EventLog.created_at <= as_utc(filters.end_date))
        return query

    def _page_size(self, requested: Optional[int]) -> int:
        if not requested or requested < 1:
            return self.settings.default_page_size
        return min(requested, self.settings.max_page_size)

    def list_logs(
        self,
        principal_role,
        scope_ids: list[str],
        filters: Optional[EventLogFilters] = None,
    ) -> EventLogPage:
        """
        Filtered, paginated event logs, newest first.

        Args:
            principal_role: Global role of the caller
            scope_ids: Tenant ids the caller belongs to
            filters: Optional filters and page/limit

        Raises:
            PermissionDeniedError: Caller is below admin
        """
        filters = filters or EventLogFilters()
        role = self._require_reader(principal_role, "access")

        page = max(filters.page or 1, 1)
        limit = self._page_size(filters.limit)

        base = self._scoped_query(self.db.query(EventLog), role, scope_ids, filters)
        total = self._scoped_query(
            self.db.query(func.count(EventLog.id)), role, scope_ids, filters
        ).scalar() or 0

        logs = (
            base.options(joinedload(EventLog.user))
            .order_by(EventLog.created_at.desc(), EventLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return EventLogPage(logs=logs, page=page, limit=limit, total=total)

    def export_csv(
        self,
        principal_role,
        scope_ids: list[str],
        filters: Optional[EventLogFilters] = None,
    ) -> str:
        """
        All matching rows as CSV, newest first.

        Every field is quoted, embedded quotes are doubled and rows end in
        CRLF.
        """
        filters = filters or EventLogFilters()
        role = self._require_reader(principal_role, "export")

        rows = (
            self._scoped_query(
                self.db.query(EventLog, Site.slug).outerjoin(Site, Site.id == EventLog.tenant_id),
                role,
                scope_ids,
                filters,
            )
            .options(joinedload(EventLog.user))
            .order_by(EventLog.created_at.desc(), EventLog.id.desc())
            .all()
        )

        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
        writer.writerow(CSV_HEADERS)

        for log, tenant_slug in rows:
            created_at = as_utc(log.created_at)
            writer.writerow([
                log.id,
                created_at.isoformat() if created_at else "",
                tenant_slug or log.tenant_id,
                log.user.display_name if log.user else "",
                log.user.email if log.user else "",
                log.action,
                log.entity_type or "",
                log.entity_id or "",
                log.description or "",
                json.dumps(log.event_metadata) if log.event_metadata else "",
            ])

        logger.info(
            "event_log.exported",
            extra={"row_count": len(rows), "principal_role": role.value},
        )
        return output.getvalue()

    def filter_options(self, principal_role, scope_ids: list[str]) -> dict[str, list[str]]:
        """Distinct actions and entity types visible to the caller."""
        role = self._require_reader(principal_role, "access")

        def scoped(query):
            if role != UserRole.SUPERADMIN:
                query = query.filter(EventLog.tenant_id.in_(list(scope_ids)))
            return query

        actions = scoped(self.db.query(EventLog.action).distinct()).order_by(EventLog.action).all()
        entity_types = (
            scoped(self.db.query(EventLog.entity_type).distinct())
            .filter(EventLog.entity_type.isnot(None))
            .order_by(EventLog.entity_type)
            .all()
        )
        return {
            "actions": [row.action for row in actions],
            "entity_types": [row.entity_type for row in entity_types],
        }

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_many(
        self,
        principal_role,
        scope_ids: list[str],
        filters: Optional[EventLogFilters] = None,
    ) -> DeleteResult:
        """
        Delete matching rows.

        A tenant is always required: the explicit filter, or else every
        tenant of the caller. With only a tenant filter, more than
        bulk_delete_threshold matches is refused.

        Raises:
            PermissionDeniedError: Caller is not superadmin
            InvalidRequestError: No tenant given and caller has none
            TooBroadError: Tenant-only filter matches too many rows
        """
        filters = filters or EventLogFilters()
        role = _role(principal_role)
        if role != UserRole.SUPERADMIN:
            raise PermissionDeniedError(
                required_role=UserRole.SUPERADMIN.value,
                resource_id="event_logs",
                message="Only superadmin can delete event logs",
            )

        def scoped(query):
            if filters.tenant_id:
                query = query.filter(EventLog.tenant_id == filters.tenant_id)
            elif scope_ids:
                query = query.filter(EventLog.tenant_id.in_(list(scope_ids)))
            else:
                raise InvalidRequestError(
                    "Cannot delete event logs: no tenant specified and user has no tenants"
                )
            return self._apply_filters(query, filters)

        matching = scoped(self.db.query(func.count(EventLog.id))).scalar() or 0
        threshold = self.settings.bulk_delete_threshold
        if not filters.has_specific_filters and matching > threshold:
            logger.warning(
                "event_log.delete_refused",
                extra={"matching": matching, "threshold": threshold},
            )
            raise TooBroadError(matching=matching, threshold=threshold)

        deleted = scoped(self.db.query(EventLog)).delete(synchronize_session=False)
        self.db.commit()

        remaining = scoped(self.db.query(func.count(EventLog.id))).scalar() or 0
        if remaining:
            logger.warning(
                "event_log.delete_incomplete",
                extra={"deleted": deleted, "remaining": remaining},
            )
        else:
            logger.info("event_log.deleted", extra={"deleted": deleted})

        return DeleteResult(count=deleted, remaining=remaining)


def log_admin_action(
    db: Session,
    tenant_id: Optional[str],
    user_id: Optional[str],
    action: str,
    entity_type: Optional[str],
    entity_id: Optional[str],
    description: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Optional[EventLog]:
    """
    Record an administrative action without ever failing the caller.

    On failure the session is rolled back and the entry goes to the fallback
    logger.

    Returns:
        The written row, or None if the write failed or no tenant is known
    """
    if not tenant_id:
        logger.debug("event_log.skipped_no_tenant", extra={"action": action})
        return None

    entry = EventLogEntry(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description or f"{action} {entity_type} {entity_id}",
        metadata=metadata,
    )
    try:
        return EventLogService(db).append(entry)
    except Exception as e:
        try:
            db.rollback()
        except Exception:
            logger.debug("event_log.rollback_failed", exc_info=True)

        fallback_logger.error(
            "Event log fallback",
            extra={
                "entry": json.dumps(
                    {
                        "tenant_id": entry.tenant_id,
                        "user_id": entry.user_id,
                        "action": entry.action,
                        "entity_type": entry.entity_type,
                        "entity_id": entry.entity_id,
                        "description": entry.description,
                    }
                ),
                "fallback_reason": str(e),
            },
            exc_info=True,
        )
        return None
