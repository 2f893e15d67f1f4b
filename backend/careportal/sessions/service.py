import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from jose import JWTError, jwt
from sqlalchemy import or_, update
from sqlmodel import Session, col

from ..core.database import with_store_retry
from ..core.errors import AccountNotFound, InvalidSessionToken, NotApproved
from ..core.settings import settings
from ..core.timeutils import utc_now
from ..models.Account import Account, ApprovalState
from ..models.Role import Role
from ..models.SessionToken import SessionToken, TokenKind, TokenPair

logger = logging.getLogger(__name__)


@dataclass
class Principal:
    """An authenticated caller: the live account plus the token's role snapshot."""
    account: Account
    role: Role
    token_id: str
    refresh_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


def _signing_key() -> str:
    if settings.ALGORITHM == "RS256":
        return settings.SERVER_PRIVATE_KEY
    return settings.JWT_SECRET_KEY

def _verification_key() -> str:
    if settings.ALGORITHM == "RS256":
        return settings.SERVER_PUBLIC_KEY
    return settings.JWT_SECRET_KEY


def ensure_provisioned(account: Account) -> None:
    if account.approval_state is not ApprovalState.APPROVED or not account.email_verified:
        raise NotApproved(state=account.approval_state.value, email_verified=account.email_verified)


def _mint(session: Session, account: Account, kind: TokenKind, lifetime: timedelta, refresh_id: str | None = None) -> tuple[str, str]:
    issued_at = utc_now().replace(microsecond=0)
    expire = issued_at + lifetime
    jti = uuid.uuid4().hex

    to_encode = {
        "sub": str(account.id),
        "role": account.role.value,
        "typ": kind.value,
        "jti": jti,
        "iat": issued_at,
        "exp": expire,
    }
    if refresh_id:
        to_encode["rid"] = refresh_id
    encoded_jwt = jwt.encode(to_encode, _signing_key(), algorithm=settings.ALGORITHM)

    session.add(SessionToken(
        id=jti,
        account_id=account.id,
        kind=kind,
        role=account.role,
        refresh_id=refresh_id,
        issued_at=issued_at,
        expires_at=expire,
    ))
    return encoded_jwt, jti


def _mint_pair(session: Session, account: Account) -> TokenPair:
    refresh_token, refresh_id = _mint(session, account, TokenKind.REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))
    access_lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token, _ = _mint(session, account, TokenKind.ACCESS, access_lifetime, refresh_id=refresh_id)
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=int(access_lifetime.total_seconds()),
    )


def decode_token(token: str, kind: TokenKind) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, _verification_key(), algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        raise InvalidSessionToken(f"Invalid token: {exc}")

    if payload.get("typ") != kind.value or not payload.get("jti") or not payload.get("sub"):
        raise InvalidSessionToken("Token is not a valid {} token".format(kind.value))
    return payload


@with_store_retry
def issue(session: Session, account_id: int) -> TokenPair:
    """
    Mint an access/refresh pair. Only approved accounts with a verified
    email get one.
    """
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound()
    ensure_provisioned(account)

    pair = _mint_pair(session, account)
    session.commit()
    logger.info("Issued session for account %s as %s", account.id, account.role.value)
    return pair


@with_store_retry
def refresh(session: Session, refresh_token: str) -> TokenPair:
    """
    Trade a refresh token for a new pair carrying a fresh role snapshot.

    The presented refresh token is retired by a conditional update, so
    replaying it fails. The account's state is re-checked every time.
    """
    payload = decode_token(refresh_token, TokenKind.REFRESH)
    row = session.get(SessionToken, payload["jti"])
    if row is None or row.kind is not TokenKind.REFRESH or row.revoked_at is not None:
        raise InvalidSessionToken("Refresh token has been revoked")

    account = session.get(Account, row.account_id)
    if account is None:
        raise InvalidSessionToken()
    try:
        ensure_provisioned(account)
    except NotApproved:
        revoke(session, account.id)
        raise

    now = utc_now()
    retired = session.exec(
        update(SessionToken)
        .where(col(SessionToken.id) == row.id, col(SessionToken.revoked_at).is_(None))
        .values(revoked_at=now)
    )
    if retired.rowcount != 1:
        session.rollback()
        raise InvalidSessionToken("Refresh token has already been used")
    session.exec(
        update(SessionToken)
        .where(col(SessionToken.refresh_id) == row.id, col(SessionToken.revoked_at).is_(None))
        .values(revoked_at=now)
    )

    pair = _mint_pair(session, account)
    session.commit()
    logger.info("Refreshed session for account %s", account.id)
    return pair


@with_store_retry
def revoke(session: Session, subject_id: int) -> int:
    """Invalidate every outstanding session of an account. Returns how many."""
    result = session.exec(
        update(SessionToken)
        .where(col(SessionToken.account_id) == subject_id, col(SessionToken.revoked_at).is_(None))
        .values(revoked_at=utc_now())
    )
    session.commit()
    logger.info("Revoked %s session tokens for account %s", result.rowcount, subject_id)
    return result.rowcount


@with_store_retry
def revoke_family(session: Session, refresh_id: str) -> int:
    """Sign out one device: the refresh token and every access token minted with it."""
    result = session.exec(
        update(SessionToken)
        .where(
            or_(col(SessionToken.id) == refresh_id, col(SessionToken.refresh_id) == refresh_id),
            col(SessionToken.revoked_at).is_(None),
        )
        .values(revoked_at=utc_now())
    )
    session.commit()
    return result.rowcount


def authenticate(session: Session, token: str) -> Principal:
    """
    Resolve a bearer access token. Signature and expiry are not enough: the
    stored token row must exist and carry no revocation marker.
    """
    payload = decode_token(token, TokenKind.ACCESS)
    row = session.get(SessionToken, payload["jti"])
    if row is None or row.revoked_at is not None:
        raise InvalidSessionToken("Session has been revoked")

    account = session.get(Account, row.account_id)
    if account is None or str(account.id) != payload["sub"]:
        raise InvalidSessionToken()

    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise InvalidSessionToken("Token carries an unknown role")

    return Principal(account=account, role=role, token_id=row.id, refresh_id=row.refresh_id, claims=payload)
