"""
Permission resolver for site and place scoped actions.

Each check runs an ordered chain of resolution strategies. A strategy
returns ALLOW, DENY or CONTINUE; the first decision other than CONTINUE
wins and an exhausted chain denies.

Precedence (global role wins over site role, which wins over place role):
- Site check:   superadmin -> site membership
- Place check:  superadmin -> place exists -> siteadmin cascade -> place membership
- Create event: superadmin -> siteadmin -> place required -> place manager/owner

CRITICAL:
- A user record that does not exist denies (fail closed), never raises.
- Superadmin is decided from the user row alone, before any membership or
  place lookup.
- Each check follows at most one owning relationship (place -> site).
- Database errors propagate; they are not turned into a deny.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from directory_authz.constants.roles import (
    PlaceRole,
    SiteRole,
    UserRole,
    satisfies,
)
from directory_authz.platform.errors import PermissionDeniedError
from directory_authz.repositories.membership_repository import MembershipRepository

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    CONTINUE = "continue"


_UNSET = object()


@dataclass
class PermissionQuery:
    """
    One permission question plus the lookups resolved while answering it.

    Lookups are memoised on the query so two strategies never repeat the same
    read.
    """
    user_id: str
    site_id: Optional[str] = None
    place_id: Optional[str] = None
    site_role: Optional[SiteRole] = None
    place_role: Optional[PlaceRole] = None
    _cache: dict = field(default_factory=dict, repr=False)

    def lookup(self, key: str, loader: Callable[[], object]):
        value = self._cache.get(key, _UNSET)
        if value is _UNSET:
            value = loader()
            self._cache[key] = value
        return value


Strategy = Callable[[MembershipRepository, PermissionQuery], Decision]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def superadmin_bypass(repo: MembershipRepository, query: PermissionQuery) -> Decision:
    """Deny unknown users, allow superadmins, otherwise defer."""
    user_role = query.lookup("user_role", lambda: repo.get_user_role(query.user_id))
    if user_role is None:
        return Decision.DENY
    if user_role == UserRole.SUPERADMIN:
        return Decision.ALLOW
    return Decision.CONTINUE


def site_membership(repo: MembershipRepository, query: PermissionQuery) -> Decision:
    role = query.lookup(
        "site_role", lambda: repo.get_site_role(query.user_id, query.site_id)
    )
    if role is not None and satisfies(role, query.site_role):
        return Decision.ALLOW
    return Decision.CONTINUE


def place_exists(repo: MembershipRepository, query: PermissionQuery) -> Decision:
    """Resolve the owning site of the place; an unknown place denies."""
    site_id = query.lookup("place_site_id", lambda: repo.get_place_site_id(query.place_id))
    if site_id is None:
        return Decision.DENY
    return Decision.CONTINUE


def siteadmin_cascade(repo: MembershipRepository, query: PermissionQuery) -> Decision:
    """
    A siteadmin holds every place role on every place of its site.

    The site is the one given on the query, or the place's owning site.
    """
    site_id = query.site_id or query.lookup(
        "place_site_id", lambda: repo.get_place_site_id(query.place_id)
    )
    if site_id is None:
        return Decision.CONTINUE

    role = query.lookup("site_role", lambda: repo.get_site_role(query.user_id, site_id))
    if role == SiteRole.SITEADMIN:
        return Decision.ALLOW
    return Decision.CONTINUE


def place_required(repo: MembershipRepository, query: PermissionQuery) -> Decision:
    """Without a place only the strategies before this one can allow."""
    if not query.place_id:
        return Decision.DENY
    return Decision.CONTINUE


def place_membership(repo: MembershipRepository, query: PermissionQuery) -> Decision:
    role = query.lookup(
        "place_role", lambda: repo.get_place_role(query.user_id, query.place_id)
    )
    if role is not None and satisfies(role, query.place_role):
        return Decision.ALLOW
    return Decision.CONTINUE


SITE_CHAIN: Sequence[Strategy] = (superadmin_bypass, site_membership)

PLACE_CHAIN: Sequence[Strategy] = (
    superadmin_bypass,
    place_exists,
    siteadmin_cascade,
    place_membership,
)

CREATE_EVENT_CHAIN: Sequence[Strategy] = (
    superadmin_bypass,
    siteadmin_cascade,
    place_required,
    place_membership,
)


def evaluate(
    chain: Sequence[Strategy],
    repo: MembershipRepository,
    query: PermissionQuery,
) -> bool:
    """Run a strategy chain; the first non-CONTINUE decision wins."""
    for strategy in chain:
        decision = strategy(repo, query)
        if decision is Decision.ALLOW:
            return True
        if decision is Decision.DENY:
            return False
    return False


class PermissionResolver:
    """
    Answers "may this user act on this site/place at this role".

    Usage:
        resolver = PermissionResolver(db)
        resolver.assert_place_permission(user_id, place_id, PlaceRole.MANAGER)
    """

    def __init__(
        self,
        db_session: Optional[Session] = None,
        repository: Optional[MembershipRepository] = None,
    ):
        if repository is None:
            if db_session is None:
                raise ValueError("db_session or repository is required")
            repository = MembershipRepository(db_session)
        self.repo = repository

    def has_site_permission(
        self,
        user_id: str,
        site_id: str,
        required_role: SiteRole,
    ) -> bool:
        query = PermissionQuery(user_id=user_id, site_id=site_id, site_role=required_role)
        allowed = evaluate(SITE_CHAIN, self.repo, query)
        if not allowed:
            logger.info(
                "rbac.site_permission_denied",
                extra={
                    "user_id": user_id,
                    "site_id": site_id,
                    "required_role": required_role.value,
                },
            )
        return allowed

    def has_place_permission(
        self,
        user_id: str,
        place_id: str,
        required_role: PlaceRole,
    ) -> bool:
        query = PermissionQuery(user_id=user_id, place_id=place_id, place_role=required_role)
        allowed = evaluate(PLACE_CHAIN, self.repo, query)
        if not allowed:
            logger.info(
                "rbac.place_permission_denied",
                extra={
                    "user_id": user_id,
                    "place_id": place_id,
                    "required_role": required_role.value,
                },
            )
        return allowed

    def can_create_event_for_place(
        self,
        user_id: str,
        site_id: str,
        place_id: Optional[str],
    ) -> bool:
        """
        Siteadmins create events anywhere on their site; otherwise a place is
        required and the user must be at least its manager.
        """
        query = PermissionQuery(
            user_id=user_id,
            site_id=site_id,
            place_id=place_id,
            place_role=PlaceRole.MANAGER,
        )
        return evaluate(CREATE_EVENT_CHAIN, self.repo, query)

    def get_user_places(self, user_id: str, site_id: Optional[str] = None) -> list[str]:
        """Place ids the user holds a place membership on."""
        return self.repo.get_user_places(user_id, site_id)

    def is_superadmin(self, user_id: str) -> bool:
        return self.repo.get_user_role(user_id) == UserRole.SUPERADMIN

    def assert_superadmin(self, user_id: str, resource_id: str, action: str) -> None:
        if not self.is_superadmin(user_id):
            logger.info(
                "rbac.superadmin_required",
                extra={"user_id": user_id, "resource_id": resource_id, "action": action},
            )
            raise PermissionDeniedError(
                required_role=UserRole.SUPERADMIN.value,
                resource_id=resource_id,
                message=f"{action} requires superadmin",
            )

    def assert_site_permission(
        self,
        user_id: str,
        site_id: str,
        required_role: SiteRole,
    ) -> None:
        if not self.has_site_permission(user_id, site_id, required_role):
            raise PermissionDeniedError(
                required_role=required_role.value,
                resource_id=site_id,
                message=f"User does not have {required_role.value} permission for site {site_id}",
            )

    def assert_place_permission(
        self,
        user_id: str,
        place_id: str,
        required_role: PlaceRole,
    ) -> None:
        if not self.has_place_permission(user_id, place_id, required_role):
            raise PermissionDeniedError(
                required_role=required_role.value,
                resource_id=place_id,
                message=f"User does not have {required_role.value} permission for place {place_id}",
            )

    def assert_can_create_event_for_place(
        self,
        user_id: str,
        site_id: str,
        place_id: Optional[str],
    ) -> None:
        if not self.can_create_event_for_place(user_id, site_id, place_id):
            target = place_id or f"in site {site_id}"
            raise PermissionDeniedError(
                required_role=PlaceRole.MANAGER.value if place_id else SiteRole.SITEADMIN.value,
                resource_id=place_id or site_id,
                message=f"User cannot create events for place {target}",
            )
