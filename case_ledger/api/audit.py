"""API routes for the audit trail."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..core import AdminDep, SessionDep
from ..schemas import AuditLogEntry, AuditLogResponse, ChainVerificationResult
from ..services import AuditService

router = APIRouter(prefix="/audit", tags=["audit"])


def get_audit_service(session: SessionDep) -> AuditService:
    return AuditService(session)


AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]


@router.get("/logs", response_model=AuditLogResponse)
async def get_audit_log(
    current_user: AdminDep,  # Only admins can view audit logs
    service: AuditServiceDep,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: str | None = None,
    action: str | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    """Query the audit log with filters. Requires admin privileges."""
    entries, total = await service.get_audit_log(
        actor=actor,
        action=action,
        resource=resource,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )

    return AuditLogResponse.create(
        items=[AuditLogEntry.model_validate(e) for e in entries],
        total=total,
        page=offset // limit + 1,
        page_size=limit,
    )


@router.get("/verify", response_model=ChainVerificationResult)
async def verify_audit_chain(current_user: AdminDep, service: AuditServiceDep):
    """Recompute every entry hash and report the first break, if any."""
    return ChainVerificationResult(**await service.verify_chain_integrity())
