"""
User model.

Only the fields the authorization core reads are modelled here: identity,
display name for audit exports, and the global role.
"""

from sqlalchemy import Column, String, Enum

from directory_authz.db_base import Base
from directory_authz.models.base import TimestampMixin, generate_uuid


class User(Base, TimestampMixin):
    """A principal that can hold a global role plus site/place memberships."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(320), unique=True, nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    role = Column(
        Enum("viewer", "editor", "admin", "superadmin", name="user_role"),
        nullable=False,
        default="viewer",
        comment="Global role; superadmin bypasses every scoped check"
    )

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role})>"
