"""
Admin event log routes.

SECURITY: list, export and filter options need the admin global role;
delete needs superadmin. Non-superadmins only see their own tenants.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from directory_authz.api.dependencies.principal import Principal, get_principal
from directory_authz.database.session import get_db_session
from directory_authz.models.base import as_utc
from directory_authz.services.event_log import EventLogFilters, EventLogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/event-logs", tags=["admin-event-logs"])


class EventLogUser(BaseModel):
    id: str
    name: str
    email: str


class EventLogResponse(BaseModel):
    id: str
    tenant_id: str
    user_id: Optional[str]
    user: Optional[EventLogUser] = None
    action: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    description: Optional[str]
    metadata: Optional[dict]
    created_at: str


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class EventLogListResponse(BaseModel):
    logs: list[EventLogResponse]
    pagination: PaginationResponse


class DeleteResponse(BaseModel):
    message: str
    count: int
    remaining: int


class FilterOptionsResponse(BaseModel):
    actions: list[str]
    entity_types: list[str]


def get_filters(
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None, alias="entityType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> EventLogFilters:
    return EventLogFilters(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


def get_event_log_service(db: Session = Depends(get_db_session)) -> EventLogService:
    return EventLogService(db)


def _to_response(log) -> EventLogResponse:
    return EventLogResponse(
        id=log.id,
        tenant_id=log.tenant_id,
        user_id=log.user_id,
        user=EventLogUser(id=log.user.id, name=log.user.display_name, email=log.user.email)
        if log.user else None,
        action=log.action,
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        description=log.description,
        metadata=log.event_metadata,
        created_at=as_utc(log.created_at).isoformat(),
    )


@router.get("", response_model=EventLogListResponse)
async def list_event_logs(
    filters: EventLogFilters = Depends(get_filters),
    principal: Principal = Depends(get_principal),
    service: EventLogService = Depends(get_event_log_service),
):
    result = service.list_logs(principal.role, list(principal.tenant_ids), filters)
    return EventLogListResponse(
        logs=[_to_response(log) for log in result.logs],
        pagination=PaginationResponse(**result.pagination),
    )


@router.get("/export")
async def export_event_logs(
    filters: EventLogFilters = Depends(get_filters),
    principal: Principal = Depends(get_principal),
    service: EventLogService = Depends(get_event_log_service),
):
    content = service.export_csv(principal.role, list(principal.tenant_ids), filters)
    filename = f"event-logs-{datetime.now().strftime('%Y%m%d-%H%M%S')}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/filter-options", response_model=FilterOptionsResponse)
async def get_filter_options(
    principal: Principal = Depends(get_principal),
    service: EventLogService = Depends(get_event_log_service),
):
    return service.filter_options(principal.role, list(principal.tenant_ids))


@router.delete("", response_model=DeleteResponse)
async def delete_event_logs(
    filters: EventLogFilters = Depends(get_filters),
    principal: Principal = Depends(get_principal),
    service: EventLogService = Depends(get_event_log_service),
):
    logger.info("Deleting event logs", extra={
        "user_id": principal.user_id,
        "tenant_id": filters.tenant_id,
        "has_specific_filters": filters.has_specific_filters,
    })
    result = service.delete_many(principal.role, list(principal.tenant_ids), filters)
    return result.to_dict()
