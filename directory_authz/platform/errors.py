"""
Structured error classes for the authorization core.

Every domain error carries a stable machine-readable code and the HTTP
status the API layer maps it to. Infrastructure errors (SQLAlchemy,
driver errors) are not wrapped and propagate unchanged.
"""

from typing import Any, Optional

from fastapi import status


class DirectoryError(Exception):
    """Base exception for authorization, entitlement and lifecycle errors."""

    code = "directory_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class PermissionDeniedError(DirectoryError):
    """Principal lacks the role an action requires."""

    code = "permission_denied"
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        required_role: str,
        resource_id: Optional[str],
        message: Optional[str] = None,
    ):
        self.required_role = required_role
        self.resource_id = resource_id
        super().__init__(
            message or f"User does not have {required_role} permission for {resource_id}",
            details={"required_role": required_role, "resource_id": resource_id},
        )


class NotFoundError(DirectoryError):
    """A referenced subscription, site, place or membership does not exist."""

    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Optional[str]):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} {resource_id} not found",
            details={"resource": resource, "resource_id": resource_id},
        )


class InvalidTransitionError(DirectoryError):
    """A lifecycle transition was requested from a state that forbids it."""

    code = "invalid_transition"
    http_status = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        subscription_id: Optional[str] = None,
        current_status: Optional[str] = None,
    ):
        self.subscription_id = subscription_id
        self.current_status = current_status
        super().__init__(
            message,
            details={"subscription_id": subscription_id, "current_status": current_status},
        )


class AlreadyCancelledError(InvalidTransitionError):
    code = "already_cancelled"

    def __init__(self, subscription_id: str):
        super().__init__(
            "Subscription is already cancelled",
            subscription_id=subscription_id,
            current_status="CANCELLED",
        )


class NotCancelledError(InvalidTransitionError):
    code = "not_cancelled"

    def __init__(self, subscription_id: str, current_status: str):
        super().__init__(
            "Only cancelled subscriptions can be resumed",
            subscription_id=subscription_id,
            current_status=current_status,
        )


class PlanViolationError(DirectoryError):
    """A requested change conflicts with what the current plan allows."""

    code = "plan_violation"
    http_status = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        message: str,
        plan: Optional[str] = None,
        required_plan: Optional[str] = None,
        violations: Optional[list[str]] = None,
    ):
        self.plan = plan
        self.required_plan = required_plan
        self.violations = violations or []
        super().__init__(
            message,
            details={
                "plan": plan,
                "required_plan": required_plan,
                "violations": self.violations,
            },
        )


class TooBroadError(DirectoryError):
    """A bulk delete filter set matches too many rows without narrowing filters."""

    code = "too_broad"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, matching: int, threshold: int):
        self.matching = matching
        self.threshold = threshold
        super().__init__(
            f"Cannot delete {matching} event logs without specific filters. "
            "Please add filters to narrow down the deletion.",
            details={"matching": matching, "threshold": threshold},
        )


class InvalidRequestError(DirectoryError):
    """A request is well-formed but cannot be served as given."""

    code = "invalid_request"
    http_status = status.HTTP_400_BAD_REQUEST
