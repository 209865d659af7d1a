"""
Canonical role hierarchies for the directory platform.

IMPORTANT: This is the single source of truth for role ranking.
All role comparisons MUST go through satisfies().

Role Hierarchy (three independent scopes):
- Global roles:  SUPERADMIN > ADMIN > EDITOR > VIEWER
- Site roles:    SITEADMIN > EDITOR > VIEWER
- Place roles:   OWNER > MANAGER > EDITOR

Site and place hierarchies are never merged into one ranking: "editor" on a
site and "editor" on a place are different roles. The only cross-scope rule
(siteadmin manages every place of its site) lives in the permission resolver,
not here.
"""

from enum import Enum
from typing import Mapping, Union


class UserRole(str, Enum):
    """Global role stored on the user record."""
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class SiteRole(str, Enum):
    """Role held through a site membership."""
    VIEWER = "viewer"
    EDITOR = "editor"
    SITEADMIN = "siteadmin"


class PlaceRole(str, Enum):
    """Role held through a place membership."""
    EDITOR = "editor"
    MANAGER = "manager"
    OWNER = "owner"


USER_ROLE_RANK: Mapping[UserRole, int] = {
    UserRole.VIEWER: 1,
    UserRole.EDITOR: 2,
    UserRole.ADMIN: 3,
    UserRole.SUPERADMIN: 4,
}

SITE_ROLE_RANK: Mapping[SiteRole, int] = {
    SiteRole.VIEWER: 1,
    SiteRole.EDITOR: 2,
    SiteRole.SITEADMIN: 3,
}

PLACE_ROLE_RANK: Mapping[PlaceRole, int] = {
    PlaceRole.EDITOR: 1,
    PlaceRole.MANAGER: 2,
    PlaceRole.OWNER: 3,
}

_RANKS = {
    UserRole: USER_ROLE_RANK,
    SiteRole: SITE_ROLE_RANK,
    PlaceRole: PLACE_ROLE_RANK,
}

AnyRole = Union[UserRole, SiteRole, PlaceRole]


def rank(role: AnyRole) -> int:
    """Return the ordinal rank of a role within its own scope."""
    return _RANKS[type(role)][role]


def satisfies(actual: AnyRole, required: AnyRole) -> bool:
    """
    Check whether a held role meets a required role of the same scope.

    Args:
        actual: Role the principal holds
        required: Minimum role the action needs

    Returns:
        True if rank(actual) >= rank(required)

    Raises:
        TypeError: If the two roles belong to different scopes
    """
    if type(actual) is not type(required):
        raise TypeError(
            f"Cannot compare {type(actual).__name__} with {type(required).__name__}"
        )
    return rank(actual) >= rank(required)


def parse_user_role(value: str) -> UserRole:
    return UserRole(value.lower())


def parse_site_role(value: str) -> SiteRole:
    return SiteRole(value.lower())


def parse_place_role(value: str) -> PlaceRole:
    return PlaceRole(value.lower())
