"""
Tests for the administrative event log.
"""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from directory_authz.constants.roles import UserRole
from directory_authz.models.event_log import EventLog
from directory_authz.platform.errors import (
    InvalidRequestError,
    PermissionDeniedError,
    TooBroadError,
)
from directory_authz.services.event_log import (
    CSV_HEADERS,
    EventLogEntry,
    EventLogFilters,
    EventLogService,
    log_admin_action,
)
from directory_authz.tests.time_utils import FIXED_NOW


@pytest.fixture
def service(db_session, settings):
    return EventLogService(db_session, settings=settings)


@pytest.fixture
def seed_logs(db_session):
    """Insert n rows for a tenant, newest first by index."""
    def _seed(tenant_id, n, action="update", entity_type="place", user_id=None, **kwargs):
        rows = [
            EventLog(
                tenant_id=tenant_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=f"entity-{i}",
                created_at=FIXED_NOW - timedelta(minutes=i),
                **kwargs,
            )
            for i in range(n)
        ]
        db_session.add_all(rows)
        db_session.commit()
        return rows
    return _seed


class TestAppend:

    def test_append_writes_row(self, db_session, service, make_site, make_user):
        site, user = make_site(), make_user()

        row = service.append(EventLogEntry(
            tenant_id=site.id,
            user_id=user.id,
            action="create",
            entity_type="place",
            entity_id="p1",
            metadata={"name": "Bakery"},
        ))

        stored = db_session.query(EventLog).filter(EventLog.id == row.id).one()
        assert stored.event_metadata == {"name": "Bakery"}
        assert stored.tenant_id == site.id


class TestList:

    def test_viewer_cannot_list(self, service):
        with pytest.raises(PermissionDeniedError) as exc_info:
            service.list_logs(UserRole.EDITOR, ["t1"])

        assert str(exc_info.value) == "Only superadmin and admin can access event logs"

    def test_admin_is_narrowed_to_own_tenants(self, service, seed_logs):
        seed_logs("tenant-a", 3)
        seed_logs("tenant-b", 2)

        page = service.list_logs(UserRole.ADMIN, ["tenant-a"])

        assert page.total == 3
        assert {log.tenant_id for log in page.logs} == {"tenant-a"}

    def test_foreign_tenant_filter_is_ignored_for_admin(self, service, seed_logs):
        seed_logs("tenant-a", 3)
        seed_logs("tenant-b", 2)

        page = service.list_logs(
            UserRole.ADMIN, ["tenant-a"], EventLogFilters(tenant_id="tenant-b")
        )

        assert {log.tenant_id for log in page.logs} == {"tenant-a"}

    def test_superadmin_sees_every_tenant(self, service, seed_logs):
        seed_logs("tenant-a", 3)
        seed_logs("tenant-b", 2)

        assert service.list_logs(UserRole.SUPERADMIN, []).total == 5
        assert service.list_logs(
            UserRole.SUPERADMIN, [], EventLogFilters(tenant_id="tenant-b")
        ).total == 2

    def test_newest_first_with_pagination(self, service, seed_logs):
        rows = seed_logs("tenant-a", 5)

        page = service.list_logs(
            UserRole.ADMIN, ["tenant-a"], EventLogFilters(page=1, limit=2)
        )
        last = service.list_logs(
            UserRole.ADMIN, ["tenant-a"], EventLogFilters(page=3, limit=2)
        )

        assert [log.id for log in page.logs] == [rows[0].id, rows[1].id]
        assert [log.id for log in last.logs] == [rows[4].id]
        assert page.pagination == {"page": 1, "limit": 2, "total": 5, "total_pages": 3}

    def test_default_and_max_page_size(self, service, settings):
        assert service._page_size(None) == settings.default_page_size
        assert service._page_size(10_000) == settings.max_page_size

    def test_filters(self, service, seed_logs):
        seed_logs("tenant-a", 4, action="update")
        seed_logs("tenant-a", 2, action="delete", entity_type="event")

        by_action = service.list_logs(
            UserRole.ADMIN, ["tenant-a"], EventLogFilters(action="delete")
        )
        by_date = service.list_logs(
            UserRole.ADMIN,
            ["tenant-a"],
            EventLogFilters(start_date=FIXED_NOW - timedelta(minutes=1)),
        )

        assert by_action.total == 2
        # minute 0 and minute 1 of both batches
        assert by_date.total == 4


class TestExport:

    def test_csv_quoting_and_line_endings(self, service, db_session, make_site, make_user):
        site = make_site(slug="main-street")
        user = make_user(first_name="Ada", last_name="Lovelace", email="ada@example.com")
        db_session.add(EventLog(
            tenant_id=site.id,
            user_id=user.id,
            action="update",
            entity_type="place",
            entity_id="p1",
            description='Renamed to "Joe\'s", downtown',
            created_at=FIXED_NOW,
        ))
        db_session.commit()

        content = service.export_csv(UserRole.SUPERADMIN, [])

        lines = content.split("\r\n")
        assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADERS)
        assert '"main-street","Ada Lovelace","ada@example.com"' in lines[1]
        assert '"Renamed to ""Joe\'s"", downtown"' in lines[1]
        assert content.endswith("\r\n")

    def test_viewer_cannot_export(self, service):
        with pytest.raises(PermissionDeniedError) as exc_info:
            service.export_csv(UserRole.VIEWER, ["t1"])

        assert "export" in str(exc_info.value)


class TestFilterOptions:

    def test_distinct_sorted_and_scoped(self, service, seed_logs):
        seed_logs("tenant-a", 2, action="update", entity_type="place")
        seed_logs("tenant-a", 1, action="create", entity_type="event")
        seed_logs("tenant-b", 1, action="delete", entity_type="site")

        options = service.filter_options(UserRole.ADMIN, ["tenant-a"])

        assert options == {"actions": ["create", "update"], "entity_types": ["event", "place"]}


@pytest.mark.security
class TestDelete:

    def test_only_superadmin_deletes(self, service):
        with pytest.raises(PermissionDeniedError) as exc_info:
            service.delete_many(UserRole.ADMIN, ["tenant-a"], EventLogFilters(tenant_id="tenant-a"))

        assert str(exc_info.value) == "Only superadmin can delete event logs"

    def test_broad_delete_over_threshold_refused(self, db_session, service, seed_logs):
        seed_logs("tenant-a", 150)

        with pytest.raises(TooBroadError) as exc_info:
            service.delete_many(UserRole.SUPERADMIN, [], EventLogFilters(tenant_id="tenant-a"))

        assert exc_info.value.matching == 150
        assert db_session.query(EventLog).count() == 150

    def test_broad_delete_at_threshold_allowed(self, service, seed_logs):
        seed_logs("tenant-a", 100)

        result = service.delete_many(UserRole.SUPERADMIN, [], EventLogFilters(tenant_id="tenant-a"))

        assert result.count == 100

    def test_specific_filter_lifts_threshold(self, db_session, service, seed_logs):
        seed_logs("tenant-a", 110, action="update")
        seed_logs("tenant-a", 40, action="delete")

        result = service.delete_many(
            UserRole.SUPERADMIN, [], EventLogFilters(tenant_id="tenant-a", action="delete")
        )

        assert result.to_dict() == {"message": "Deleted 40 event log(s)", "count": 40, "remaining": 0}
        assert db_session.query(EventLog).count() == 110

    def test_scope_tenants_used_without_explicit_tenant(self, db_session, service, seed_logs):
        seed_logs("tenant-a", 3)
        seed_logs("tenant-b", 3)

        result = service.delete_many(UserRole.SUPERADMIN, ["tenant-a"], EventLogFilters())

        assert result.count == 3
        assert db_session.query(EventLog).filter(EventLog.tenant_id == "tenant-b").count() == 3

    def test_tenant_required(self, service):
        with pytest.raises(InvalidRequestError):
            service.delete_many(UserRole.SUPERADMIN, [], EventLogFilters(action="update"))


class TestLogAdminAction:

    def test_writes_with_default_description(self, db_session, make_site):
        site = make_site()

        row = log_admin_action(db_session, site.id, None, "update", "place", "p1")

        assert row.description == "update place p1"

    def test_no_tenant_is_skipped(self, db_session):
        assert log_admin_action(db_session, None, None, "update", "place", "p1") is None
        assert db_session.query(EventLog).count() == 0

    def test_failure_is_swallowed_and_logged(self, db_session, caplog):
        with patch.object(EventLogService, "append", side_effect=RuntimeError("db down")):
            with caplog.at_level(logging.ERROR, logger="event_log.fallback"):
                result = log_admin_action(db_session, "tenant-a", "u1", "delete", "event", "e1")

        assert result is None
        assert "Event log fallback" in caplog.text
