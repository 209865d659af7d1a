"""
Root test configuration and fixtures.

Provides database fixtures, model factories and an API client factory used
by all tests.

Services commit on their own, so each test runs inside an outer transaction
on one connection and the session works in savepoints
(join_transaction_mode="create_savepoint"). The outer transaction is rolled
back after the test.
"""

import os
import uuid
from typing import Generator, Optional

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from directory_authz.config.settings import Settings
from directory_authz.tests.time_utils import FIXED_NOW

# Set test environment
os.environ.setdefault("ENV", "test")


@pytest.fixture(scope="session", autouse=True)
def _httpx_app_kwarg_patch():
    """
    Compatibility patch for httpx>=0.28 where Client(app=...) is not supported.

    Starlette's TestClient (used by FastAPI) passes app= into httpx.Client on
    older releases. This patch removes the app kwarg to avoid TypeError in
    environments with newer httpx while remaining safe for newer Starlette.
    """
    import httpx

    original_init = httpx.Client.__init__

    def patched_init(self, *args, **kwargs):
        kwargs.pop("app", None)
        return original_init(self, *args, **kwargs)

    httpx.Client.__init__ = patched_init
    try:
        yield
    finally:
        httpx.Client.__init__ = original_init


def _get_test_database_url() -> str:
    """Get database URL for tests."""
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    # Default to SQLite for unit tests if no PostgreSQL available
    return "sqlite:///:memory:"


def _is_postgres() -> bool:
    return _get_test_database_url().startswith("postgresql")


@pytest.fixture(scope="session")
def db_engine():
    """
    Create database engine for tests.

    Uses PostgreSQL if DATABASE_URL is set, otherwise SQLite in-memory.
    """
    database_url = _get_test_database_url()

    if _is_postgres():
        try:
            engine = create_engine(database_url, pool_pre_ping=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            pytest.skip(
                f"PostgreSQL not available. Set DATABASE_URL or use SQLite. Error: {e}"
            )
    else:
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite does not emit BEGIN itself; take over so SAVEPOINT works
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    from directory_authz.db_base import Base
    from directory_authz import models  # noqa: F401 - registers every table

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create database session with transaction rollback for test isolation.

    Commits inside services release savepoints; nothing reaches the outer
    transaction's commit.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


# =============================================================================
# Factories
# =============================================================================

def _short_id() -> str:
    return uuid.uuid4().hex[:8]


@pytest.fixture
def make_user(db_session):
    def _make(role: str = "viewer", email: Optional[str] = None, **kwargs):
        from directory_authz.models.user import User

        user = User(
            email=email or f"user-{_short_id()}@example.com",
            role=role,
            **kwargs,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_site(db_session):
    def _make(plan: str = "free", slug: Optional[str] = None, **kwargs):
        from directory_authz.models.site import Site

        site = Site(slug=slug or f"site-{_short_id()}", plan=plan, **kwargs)
        db_session.add(site)
        db_session.commit()
        return site
    return _make


@pytest.fixture
def make_place(db_session):
    def _make(site, plan: str = "free", name: Optional[str] = None, **kwargs):
        from directory_authz.models.place import Place

        place = Place(
            site_id=site.id,
            name=name or f"Place {_short_id()}",
            plan=plan,
            **kwargs,
        )
        db_session.add(place)
        db_session.commit()
        return place
    return _make


@pytest.fixture
def add_site_member(db_session):
    def _add(site, user, role: str):
        from directory_authz.models.site import SiteMembership

        membership = SiteMembership(site_id=site.id, user_id=user.id, role=role)
        db_session.add(membership)
        db_session.commit()
        return membership
    return _add


@pytest.fixture
def add_place_member(db_session):
    def _add(place, user, role: str):
        from directory_authz.models.place import PlaceMembership

        membership = PlaceMembership(place_id=place.id, user_id=user.id, role=role)
        db_session.add(membership)
        db_session.commit()
        return membership
    return _add


@pytest.fixture
def make_site_subscription(db_session):
    def _make(site, plan: str = "PRO", status: str = "ACTIVE", valid_until=None, **kwargs):
        from directory_authz.models.subscription import SiteSubscription

        sub = SiteSubscription(
            site_id=site.id,
            plan=plan,
            status=status,
            valid_until=valid_until,
            **kwargs,
        )
        db_session.add(sub)
        db_session.commit()
        return sub
    return _make


@pytest.fixture
def make_place_subscription(db_session):
    def _make(place, plan: str = "PRO", status: str = "ACTIVE", valid_until=None, **kwargs):
        from directory_authz.models.subscription import PlaceSubscription

        sub = PlaceSubscription(
            place_id=place.id,
            plan=plan,
            status=status,
            valid_until=valid_until,
            **kwargs,
        )
        db_session.add(sub)
        db_session.commit()
        return sub
    return _make


# =============================================================================
# API client
# =============================================================================

@pytest.fixture
def api_client(db_session):
    """
    Factory for TestClients acting as a given principal.

    Usage:
        client = api_client(Principal(user_id=user.id, role=UserRole.ADMIN))
        client.get("/api/admin/event-logs")
    """
    from fastapi.testclient import TestClient

    from directory_authz.database.session import get_db_session
    from directory_authz.main import create_app

    def _make(principal=None) -> TestClient:
        app = create_app()

        @app.middleware("http")
        async def attach_principal(request, call_next):
            if principal is not None:
                request.state.principal = principal
            return await call_next(request)

        app.dependency_overrides[get_db_session] = lambda: db_session
        return TestClient(app, raise_server_exceptions=False)

    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
