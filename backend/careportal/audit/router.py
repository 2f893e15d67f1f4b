from typing import Annotated, List

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..auth.service import require_permission
from ..core.database import get_session
from ..models.Audit import AuditChainStatus, AuditLog
from ..sessions.service import Principal
from .service import list_events, validate_chain

router = APIRouter(
    prefix="/admin/audit-logs",
    tags=["audit"],
    responses={404: {"description": "Not found"}},
)

Auditor = Annotated[Principal, Depends(require_permission("system.audit"))]

@router.get("", response_model=List[AuditLog])
def get_audit_logs(
    auditor: Auditor,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(get_session),
):
    return list_events(session, offset=offset, limit=limit)

@router.get("/verify", response_model=AuditChainStatus)
def verify_audit_chain(auditor: Auditor, session: Session = Depends(get_session)):
    is_valid, broken_id, entries = validate_chain(session)
    return AuditChainStatus(valid=is_valid, entries=entries, broken_id=broken_id)
