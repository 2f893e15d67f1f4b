from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from ..accounts.service import change_password
from ..audit.service import audit_request
from ..auth.service import get_current_principal
from ..core.database import get_session
from ..core.errors import PortalError
from ..models.Account import AccountDetail, ChangePasswordRequest
from ..permissions.service import AuthorizationEngine, get_authorization
from ..sessions import service as sessions
from ..sessions.service import Principal

router = APIRouter(prefix="/account", tags=["account"])

@router.get("/me", response_model=AccountDetail)
async def read_current_account(
    principal: Annotated[Principal, Depends(get_current_principal)],
    session: Session = Depends(get_session),
    engine: AuthorizationEngine = Depends(get_authorization),
):
    """
    The signed-in account and the permissions its session grants.
    """
    account = principal.account
    return AccountDetail(
        **account.model_dump(exclude={"hashed_password", "updated_at", "review_cycle"}),
        permissions=engine.effective_permissions(session, account, role=principal.role),
    )

@router.post("/password", status_code=status.HTTP_200_OK)
async def update_password(
    data: ChangePasswordRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    session: Session = Depends(get_session),
):
    """
    Change the password. Every session of the account ends, this one included.
    """
    account = principal.account
    try:
        change_password(session, account, data.current_password, data.new_password)
    except PortalError as exc:
        audit_request(session, account.id, "POST", "/account/password", exc.status_code, exc.code)
        raise

    revoked = sessions.revoke(session, account.id)
    audit_request(session, account.id, "POST", "/account/password", status.HTTP_200_OK, f"revoked={revoked}")
    return {"message": "Password changed. Sign in again.", "revoked_sessions": revoked}
