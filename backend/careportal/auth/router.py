from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from ..accounts.service import get_account, record_login
from ..approval import policy
from ..audit.service import audit_request
from ..core.database import get_session
from ..core.errors import PortalError
from ..models.Account import LoginRequest, RegisterRequest, RegisterResponse, ResendRequest
from ..models.PasswordResetToken import ForgotPasswordRequest, ResetPasswordRequest
from ..models.SessionToken import RefreshRequest, TokenPair
from ..models.VerificationToken import VerificationResponse
from ..notifications.service import Notifier, get_notifier
from ..recovery import service as recovery
from ..sessions import service as sessions
from ..sessions.service import Principal
from ..verification.service import consume_token
from .service import authenticate_account, get_current_principal, register_account, request_resend

router = APIRouter(tags=["auth"])

@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse)
async def register(
    data: RegisterRequest,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Self-register an account. A verification link is mailed to the owner.
    """
    try:
        account = register_account(session, data, notifier)
    except PortalError as exc:
        audit_request(session, None, "POST", "/register", exc.status_code, f"login={data.login} {exc.code}")
        raise

    audit_request(session, account.id, "POST", "/register", status.HTTP_201_CREATED, f"role={account.role.value} cycle={account.review_cycle}")
    return RegisterResponse(
        account_id=account.id,
        approval_state=account.approval_state,
        message="Registration received. Check your email to verify the address.",
    )

@router.get("/onboarding-policy")
async def onboarding_policy():
    """
    Which roles may self-register, which need review, and which profile
    fields each role must supply.
    """
    return policy.describe()

@router.get("/verify-email", response_model=VerificationResponse)
async def verify_email(token: str = Query(min_length=1), session: Session = Depends(get_session)):
    """
    Redeem an email verification token.
    """
    try:
        account_id = consume_token(session, token)
    except PortalError as exc:
        audit_request(session, None, "GET", "/verify-email", exc.status_code, exc.code)
        raise

    account = get_account(session, account_id)
    audit_request(session, account.id, "GET", "/verify-email", status.HTTP_200_OK, f"state={account.approval_state.value}")
    return VerificationResponse(
        message="Email verified",
        account_id=account.id,
        approval_state=account.approval_state.value,
    )

@router.post("/resend-verification", status_code=status.HTTP_200_OK)
async def resend_verification(
    data: ResendRequest,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Ask for a new verification link. The answer is the same whether or not
    the login exists.
    """
    request_resend(session, data.login, notifier)
    return {"message": "If the account exists and is awaiting verification, a new link has been sent."}

@router.post("/login", response_model=TokenPair)
async def login(login_data: LoginRequest, session: Session = Depends(get_session)):
    """
    Login with login identifier and password to get access and refresh tokens.
    """
    try:
        account = authenticate_account(session, login_data.login, login_data.password)
    except PortalError as exc:
        audit_request(session, None, "POST", "/login", exc.status_code, f"login={login_data.login} {exc.code}")
        raise

    pair = sessions.issue(session, account.id)
    record_login(session, account)
    audit_request(session, account.id, "POST", "/login", status.HTTP_200_OK, "Login successful")
    return pair

@router.post("/token/refresh", response_model=TokenPair)
async def refresh_token(data: RefreshRequest, session: Session = Depends(get_session)):
    """
    Exchange a refresh token for a new token pair.
    """
    return sessions.refresh(session, data.refresh_token)

@router.post("/logout")
async def logout(
    principal: Annotated[Principal, Depends(get_current_principal)],
    session: Session = Depends(get_session)
):
    """
    End the current session: its refresh token and the access tokens minted with it.
    """
    sessions.revoke_family(session, principal.refresh_id or principal.token_id)
    audit_request(session, principal.account.id, "POST", "/logout", status.HTTP_200_OK, "Logged out successfully")
    return {"message": "Logged out successfully"}

@router.post("/forgot-password", status_code=status.HTTP_200_OK)
async def forgot_password(
    data: ForgotPasswordRequest,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Ask for a password reset link. The answer is the same whether or not
    the login exists.
    """
    recovery.request_reset(session, data.login, notifier)
    return {"message": "If the account exists, a password reset link has been sent."}

@router.post("/reset-password", status_code=status.HTTP_200_OK)
async def reset_password(data: ResetPasswordRequest, session: Session = Depends(get_session)):
    """
    Set a new password with the token from the reset email. Every session of
    the account ends.
    """
    try:
        account_id = recovery.reset_password(session, data.token, data.new_password)
    except PortalError as exc:
        audit_request(session, None, "POST", "/reset-password", exc.status_code, exc.code)
        raise

    audit_request(session, account_id, "POST", "/reset-password", status.HTTP_200_OK, "Password reset")
    return {"message": "Password has been reset. Sign in with the new password."}
