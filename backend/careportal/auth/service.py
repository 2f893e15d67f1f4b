import logging
from typing import Annotated

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from ..accounts import service as accounts
from ..core.database import get_session
from ..core.errors import (
    EmailNotVerified,
    Forbidden,
    InvalidCredentials,
    PendingApproval,
    RegistrationRejected,
)
from ..models.Account import Account, ApprovalState, RegisterRequest
from ..notifications.service import Notifier
from ..permissions.service import get_authorization, AuthorizationEngine
from ..sessions import service as sessions
from ..sessions.service import Principal
from ..verification import service as verification

logger = logging.getLogger(__name__)

# OAuth2 scheme (for extracting token from header)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login")


def register_account(session: Session, data: RegisterRequest, notifier: Notifier | None = None) -> Account:
    """Store the account, then mail its first verification token."""
    account = accounts.create_account(session, data)
    verification.issue_token(session, account.id, notifier)
    return account


def authenticate_account(session: Session, login: str, password: str) -> Account:
    """
    The login gate, checked in this order: credentials, verified email,
    approval state.
    """
    account = accounts.get_account_by_login(session, login)
    if account is None:
        accounts.burn_password_check()
        raise InvalidCredentials()
    if not accounts.verify_password(password, account.hashed_password):
        raise InvalidCredentials()

    if not account.email_verified:
        raise EmailNotVerified(login=account.login)

    if account.approval_state is ApprovalState.REJECTED:
        raise RegistrationRejected()
    if account.approval_state is not ApprovalState.APPROVED:
        raise PendingApproval()
    return account


def request_resend(session: Session, login: str, notifier: Notifier | None = None) -> bool:
    """
    Re-send a verification link when the login is awaiting verification and
    the cooldown has passed. Returns whether a token went out; callers must
    not reveal it.
    """
    account = accounts.get_account_by_login(session, login)
    if account is None or account.email_verified:
        return False
    if not verification.resend_allowed(session, account.id):
        logger.info("Resend for account %s refused by cooldown", account.id)
        return False
    verification.resend(session, account.id, notifier)
    return True


async def get_current_principal(token: Annotated[str, Depends(oauth2_scheme)], session: Session = Depends(get_session)) -> Principal:
    return sessions.authenticate(session, token)


def require_permission(*permission_ids: str):
    """
    Dependency factory: the caller must hold at least one of the given
    permissions, judged with the role snapshot of their token.
    """
    async def check_permission(
        principal: Annotated[Principal, Depends(get_current_principal)],
        session: Session = Depends(get_session),
        engine: AuthorizationEngine = Depends(get_authorization),
    ) -> Principal:
        for permission_id in permission_ids:
            if engine.can(session, principal.account, permission_id, role=principal.role):
                return principal
        logger.info("Account %s denied %s", principal.account.id, " | ".join(permission_ids))
        raise Forbidden(permission=" | ".join(permission_ids))

    return check_permission
