"""
Principal dependency.

Authentication happens upstream: the auth middleware resolves the caller and
stores a Principal on request.state.principal. Routes only read it.
"""

import logging
from dataclasses import dataclass, field

from fastapi import HTTPException, Request, status

from directory_authz.constants.roles import UserRole
from directory_authz.platform.errors import PermissionDeniedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    The authenticated caller.

    tenant_ids are the site ids the caller belongs to; they scope event log
    access for non-superadmins.
    """
    user_id: str
    role: UserRole = UserRole.VIEWER
    tenant_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_superadmin(self) -> bool:
        return self.role == UserRole.SUPERADMIN


def get_principal(request: Request) -> Principal:
    """
    Extract the principal from request state.

    Raises 401 if no principal was resolved for this request.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        logger.warning("Route accessed without principal", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return principal


def require_superadmin(request: Request) -> Principal:
    """Principal dependency that also requires the superadmin global role."""
    principal = get_principal(request)
    if not principal.is_superadmin:
        logger.warning(
            "Superadmin route denied",
            extra={"user_id": principal.user_id, "path": request.url.path},
        )
        raise PermissionDeniedError(
            required_role=UserRole.SUPERADMIN.value,
            resource_id=request.url.path,
            message="Superadmin role required",
        )
    return principal
