import logging
import secrets
from datetime import timedelta

from sqlalchemy import update
from sqlmodel import Session, col, select

from ..accounts.service import get_account, mark_email_verified
from ..approval import service as approval_service
from ..core.database import with_store_retry
from ..core.errors import InvalidStateTransition, TokenAlreadyUsed, TokenExpired, TokenNotFound
from ..core.settings import settings
from ..core.timeutils import utc_now
from ..models.VerificationToken import VerificationToken
from ..notifications.service import EMAIL_VERIFICATION_REQUESTED, Notifier, dispatch

logger = logging.getLogger(__name__)


def _new_token_value() -> str:
    return secrets.token_urlsafe(32)


@with_store_retry
def _store_token(session: Session, account_id: int) -> VerificationToken:
    account = get_account(session, account_id)
    if account.email_verified:
        raise InvalidStateTransition("Email address is already verified", state=account.approval_state.value)

    now = utc_now()
    # Replace, never accumulate: every earlier live token dies with this one's birth.
    session.exec(
        update(VerificationToken)
        .where(
            col(VerificationToken.account_id) == account_id,
            col(VerificationToken.consumed_at).is_(None),
            col(VerificationToken.superseded_at).is_(None),
        )
        .values(superseded_at=now)
    )
    token = VerificationToken(
        token=_new_token_value(),
        account_id=account_id,
        issued_at=now,
        expires_at=now + timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS),
    )
    session.add(token)
    session.commit()
    session.refresh(token)
    return token


def issue_token(session: Session, account_id: int, notifier: Notifier | None = None) -> VerificationToken:
    """
    Create a fresh verification token for an unverified account and mail it.
    Any earlier unconsumed token for the account stops working.
    """
    token = _store_token(session, account_id)
    account = get_account(session, account_id)
    logger.info("Issued verification token for account %s, expires %s", account_id, token.expires_at.isoformat())
    dispatch(
        notifier,
        EMAIL_VERIFICATION_REQUESTED,
        account,
        {
            "token": token.token,
            "link": f"{settings.VERIFICATION_URL}?token={token.token}",
            "expires_at": token.expires_at.isoformat(),
        },
    )
    return token


def resend(session: Session, account_id: int, notifier: Notifier | None = None) -> VerificationToken:
    """Same as issue_token. Callers enforce RESEND_COOLDOWN_SECONDS."""
    return issue_token(session, account_id, notifier)


def latest_token(session: Session, account_id: int) -> VerificationToken | None:
    statement = (
        select(VerificationToken)
        .where(VerificationToken.account_id == account_id)
        .order_by(col(VerificationToken.issued_at).desc())
    )
    return session.exec(statement).first()


def resend_allowed(session: Session, account_id: int) -> bool:
    latest = latest_token(session, account_id)
    if latest is None:
        return True
    elapsed = (utc_now() - latest.issued_at).total_seconds()
    return elapsed >= settings.RESEND_COOLDOWN_SECONDS


@with_store_retry
def consume_token(session: Session, token_value: str) -> int:
    """
    Redeem a verification token and return the owning account id.

    The token claim, the email flag and the follow-up approval transition
    commit together. The claim is a conditional UPDATE on a still-live
    token, so of two concurrent redemptions exactly one wins.
    """
    token = session.get(VerificationToken, token_value)
    if token is None:
        raise TokenNotFound()

    now = utc_now()
    if token.expires_at <= now:
        raise TokenExpired()
    if not token.is_live:
        raise TokenAlreadyUsed()

    claimed = session.exec(
        update(VerificationToken)
        .where(
            col(VerificationToken.token) == token_value,
            col(VerificationToken.consumed_at).is_(None),
            col(VerificationToken.superseded_at).is_(None),
            col(VerificationToken.expires_at) > now,
        )
        .values(consumed_at=now)
    )
    if claimed.rowcount != 1:
        session.rollback()
        raise TokenAlreadyUsed()

    account_id = token.account_id
    mark_email_verified(session, account_id)
    account = get_account(session, account_id)
    session.refresh(account)
    state = approval_service.advance_after_verification(session, account)
    session.commit()

    logger.info("Account %s verified its email, now %s", account_id, state.value)
    return account_id
