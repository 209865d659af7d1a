"""
Administrative event log model.

Canonical, append-only record of administrative actions, scoped by tenant
(site id).

CRITICAL:
- Rows are write-once. No UPDATE.
- DELETE only through EventLogService.delete_many (superadmin, filter-scoped,
  guarded against broad deletes).
"""

from sqlalchemy import Column, String, DateTime, Text, Index, JSON, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from directory_authz.db_base import Base
from directory_authz.models.base import generate_uuid, utcnow

# Use JSON with PostgreSQL variant for JSONB - allows SQLite in tests
JSONType = JSON().with_variant(JSONB(), "postgresql")


class EventLog(Base):
    """One administrative action performed by a user inside a tenant."""

    __tablename__ = "event_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), nullable=True, index=True)
    entity_id = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    event_metadata = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User")

    __table_args__ = (
        Index("ix_event_logs_tenant_created", "tenant_id", "created_at"),
        Index("ix_event_logs_tenant_action", "tenant_id", "action"),
    )

    def __repr__(self) -> str:
        return f"<EventLog(id={self.id}, tenant_id={self.tenant_id}, action={self.action})>"
