import logging
import secrets
from datetime import timedelta

from sqlalchemy import update
from sqlmodel import Session, col, select

from ..accounts import service as accounts
from ..core.database import with_store_retry
from ..core.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound
from ..core.settings import settings
from ..core.timeutils import utc_now
from ..models.PasswordResetToken import PasswordResetToken
from ..notifications.service import PASSWORD_RESET_REQUESTED, Notifier, dispatch
from ..sessions import service as sessions

logger = logging.getLogger(__name__)


@with_store_retry
def _store_token(session: Session, account_id: int) -> PasswordResetToken:
    now = utc_now()
    session.exec(
        update(PasswordResetToken)
        .where(
            col(PasswordResetToken.account_id) == account_id,
            col(PasswordResetToken.consumed_at).is_(None),
            col(PasswordResetToken.superseded_at).is_(None),
        )
        .values(superseded_at=now)
    )
    token = PasswordResetToken(
        token=secrets.token_urlsafe(32),
        account_id=account_id,
        issued_at=now,
        expires_at=now + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_TTL_MINUTES),
    )
    session.add(token)
    session.commit()
    session.refresh(token)
    return token


def latest_token(session: Session, account_id: int) -> PasswordResetToken | None:
    statement = (
        select(PasswordResetToken)
        .where(PasswordResetToken.account_id == account_id)
        .order_by(col(PasswordResetToken.issued_at).desc())
    )
    return session.exec(statement).first()


def request_allowed(session: Session, account_id: int) -> bool:
    latest = latest_token(session, account_id)
    if latest is None:
        return True
    return (utc_now() - latest.issued_at).total_seconds() >= settings.RESEND_COOLDOWN_SECONDS


def request_reset(session: Session, login: str, notifier: Notifier | None = None) -> bool:
    """
    Mail a single-use reset link to the owner of ``login``.

    Only accounts with a verified email get one, at most once per
    RESEND_COOLDOWN_SECONDS. Returns whether a link went out; callers must
    answer the same either way.
    """
    account = accounts.get_account_by_login(session, login)
    if account is None or not account.email_verified:
        return False
    if not request_allowed(session, account.id):
        logger.info("Password reset for account %s refused by cooldown", account.id)
        return False

    token = _store_token(session, account.id)
    logger.info("Issued password reset token for account %s, expires %s", account.id, token.expires_at.isoformat())
    dispatch(
        notifier,
        PASSWORD_RESET_REQUESTED,
        account,
        {
            "token": token.token,
            "link": f"{settings.PASSWORD_RESET_URL}?token={token.token}",
            "expires_at": token.expires_at.isoformat(),
        },
    )
    return True


@with_store_retry
def _redeem(session: Session, token_value: str, new_password: str) -> int:
    token = session.get(PasswordResetToken, token_value)
    if token is None:
        raise TokenNotFound("Password reset token not found")

    now = utc_now()
    if token.expires_at <= now:
        raise TokenExpired("Password reset token has expired")
    if not token.is_live:
        raise TokenAlreadyUsed("Password reset token has already been used or replaced")

    claimed = session.exec(
        update(PasswordResetToken)
        .where(
            col(PasswordResetToken.token) == token_value,
            col(PasswordResetToken.consumed_at).is_(None),
            col(PasswordResetToken.superseded_at).is_(None),
            col(PasswordResetToken.expires_at) > now,
        )
        .values(consumed_at=now)
    )
    if claimed.rowcount != 1:
        session.rollback()
        raise TokenAlreadyUsed("Password reset token has already been used or replaced")

    # The claim and the new secret commit together.
    accounts.store_password(session, token.account_id, new_password)
    session.commit()
    return token.account_id


def reset_password(session: Session, token_value: str, new_password: str) -> int:
    """
    Redeem a reset token, store the new password and end every session of
    the account. Returns the account id.
    """
    account_id = _redeem(session, token_value, new_password)
    revoked = sessions.revoke(session, account_id)
    logger.info("Password reset for account %s, %s session tokens revoked", account_id, revoked)
    return account_id
