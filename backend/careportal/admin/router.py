from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from ..accounts.service import get_account
from ..approval import service as approval
from ..audit.service import audit_request
from ..auth.service import require_permission
from ..core.database import get_session
from ..core.errors import PortalError
from ..models.Account import AccountDetail, PendingAccountsPage
from ..models.ApprovalDecision import ApprovalDecision, DecisionRequest
from ..models.Role import Role
from ..notifications.service import Notifier, get_notifier
from ..permissions import catalog
from ..sessions import service as sessions
from ..sessions.service import Principal

router = APIRouter(prefix="/admin", tags=["admin"])

# Any system.* permission may decide registrations too.
Reviewer = Annotated[Principal, Depends(require_permission("user.approve", *catalog.by_category()["system"]))]


def _decide(decide, verb: str, account_id: int, payload: DecisionRequest | None, reviewer: Principal, session: Session, notifier: Notifier) -> ApprovalDecision:
    notes = payload.notes if payload else None
    path = f"/admin/{verb}/{account_id}"
    try:
        decision = decide(session, account_id, reviewer.account.id, notes, notifier)
    except PortalError as exc:
        audit_request(session, reviewer.account.id, "POST", path, exc.status_code, exc.code)
        raise
    audit_request(session, reviewer.account.id, "POST", path, status.HTTP_200_OK, notes)
    return decision

@router.post("/approve/{account_id}", response_model=ApprovalDecision)
async def approve_account(
    account_id: int,
    reviewer: Reviewer,
    payload: DecisionRequest | None = None,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Approve a registration that is waiting for review.
    """
    return _decide(approval.approve, "approve", account_id, payload, reviewer, session, notifier)

@router.post("/reject/{account_id}", response_model=ApprovalDecision)
async def reject_account(
    account_id: int,
    reviewer: Reviewer,
    payload: DecisionRequest | None = None,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Reject a registration that is waiting for review. The account is kept.
    """
    return _decide(approval.reject, "reject", account_id, payload, reviewer, session, notifier)

@router.get("/pending-accounts", response_model=PendingAccountsPage)
async def list_pending_accounts(
    principal: Annotated[Principal, Depends(require_permission("user.approve", "user.read"))],
    role: Role | None = None,
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
):
    """
    The review queue, oldest registration first.
    """
    items, total = approval.list_pending(session, role=role, search=search, page=page, limit=limit)
    return PendingAccountsPage(
        items=[AccountDetail(**account.model_dump(exclude={"hashed_password", "updated_at", "review_cycle"})) for account in items],
        total=total,
        page=page,
        limit=limit,
        pages=approval.page_count(total, limit),
    )

@router.get("/approval-stats")
async def read_approval_stats(
    principal: Annotated[Principal, Depends(require_permission("user.approve", "user.read"))],
    session: Session = Depends(get_session),
):
    """
    Account counts per role and approval state.
    """
    return approval.approval_stats(session)

@router.get("/accounts/{account_id}/decisions", response_model=list[ApprovalDecision])
async def read_decisions(
    account_id: int,
    principal: Annotated[Principal, Depends(require_permission("user.approve", "user.read"))],
    session: Session = Depends(get_session),
):
    """
    Every review outcome recorded for an account, one per review cycle.
    """
    return approval.decisions_for(session, account_id)

@router.post("/accounts/{account_id}/revoke-sessions")
async def revoke_account_sessions(
    account_id: int,
    principal: Annotated[Principal, Depends(require_permission("user.update"))],
    session: Session = Depends(get_session),
):
    """
    Force sign-out: every outstanding token of the account stops working.
    """
    get_account(session, account_id)
    revoked = sessions.revoke(session, account_id)
    path = f"/admin/accounts/{account_id}/revoke-sessions"
    audit_request(session, principal.account.id, "POST", path, status.HTTP_200_OK, f"revoked={revoked}")
    return {"account_id": account_id, "revoked_sessions": revoked}
