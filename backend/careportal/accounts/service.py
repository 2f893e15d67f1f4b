import logging

from passlib.context import CryptContext
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from ..approval import policy
from ..approval import service as approval_service
from ..core.database import with_store_retry
from ..core.errors import AccountNotFound, InvalidCredentials, ValidationFailed
from ..core.settings import settings
from ..core.timeutils import utc_now
from ..models.Account import Account, ApprovalState, RegisterRequest

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__time_cost=settings.ARGON2_TIME_COST,
    argon2__memory_cost=settings.ARGON2_MEMORY_COST,
    argon2__parallelism=settings.ARGON2_PARALLELISM,
)

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password + settings.PASSWORD_PEPPER, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password + settings.PASSWORD_PEPPER)

def burn_password_check():
    # Same cost as a real verify so unknown logins are not distinguishable by timing.
    pwd_context.dummy_verify()


def get_account(session: Session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound()
    return account

def get_account_by_login(session: Session, login: str) -> Account | None:
    """Login identifiers are matched case-insensitively against login and email."""
    login = login.strip().lower()
    statement = select(Account).where(or_(Account.login == login, Account.email == login))
    return session.exec(statement).first()


def _identifier_taken(session: Session, identifier: str | None, account_id: int | None) -> bool:
    """Login and email share one namespace: either column of another account counts."""
    if not identifier:
        return False
    owners = session.exec(select(Account).where(or_(Account.login == identifier, Account.email == identifier))).all()
    return any(owner.id != account_id for owner in owners)


@with_store_retry
def create_account(session: Session, data: RegisterRequest) -> Account:
    """
    Store a self-registered account in ``pending_email_verification``.

    A login that belongs to a rejected account is re-opened as a new review
    cycle instead of failing; any other taken login or email is a
    validation error.
    """
    errors = policy.validate_registration(data.role, data.profile)
    if errors:
        raise ValidationFailed(errors)

    email = data.email or (data.login if "@" in data.login else None)
    existing = session.exec(select(Account).where(Account.login == data.login)).first()

    if existing is not None and existing.approval_state is not ApprovalState.REJECTED:
        raise ValidationFailed([{"field": "login", "message": "Login is already registered"}])

    existing_id = existing.id if existing else None
    if _identifier_taken(session, data.login, existing_id):
        raise ValidationFailed([{"field": "login", "message": "Login is already registered"}])
    if email != data.login and _identifier_taken(session, email, existing_id):
        raise ValidationFailed([{"field": "email", "message": "Email is already registered"}])

    if existing is not None:
        account = _reset_rejected(session, existing, data, email)
    else:
        account = Account(
            login=data.login,
            email=email,
            hashed_password=get_password_hash(data.password),
            full_name=data.full_name,
            role=data.role,
            profile=dict(data.profile),
        )
        session.add(account)

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationFailed([{"field": "login", "message": "Login is already registered"}])

    session.refresh(account)
    logger.info("Registered account %s (%s) as %s, review cycle %s", account.id, account.login, account.role.value, account.review_cycle)
    return account


def _reset_rejected(session: Session, account: Account, data: RegisterRequest, email: str | None) -> Account:
    if not approval_service.reopen(session, account):
        raise ValidationFailed([{"field": "login", "message": "Login is already registered"}])

    session.refresh(account)
    account.email = email
    account.hashed_password = get_password_hash(data.password)
    account.full_name = data.full_name
    account.role = data.role
    account.profile = dict(data.profile)
    account.email_verified = False
    account.updated_at = utc_now()
    session.add(account)
    return account


def create_bootstrap_account(session: Session, login: str, email: str | None, password: str, full_name: str | None, role) -> Account:
    """Store an account outside self-registration rules. Does not commit."""
    account = Account(
        login=login.strip().lower(),
        email=email.lower() if email else None,
        hashed_password=get_password_hash(password),
        full_name=full_name,
        role=role,
    )
    session.add(account)
    session.flush()
    return account


def mark_email_verified(session: Session, account_id: int) -> None:
    """Flip the email flag. Part of a larger transaction; does not commit."""
    session.exec(
        update(Account)
        .where(col(Account.id) == account_id)
        .values(email_verified=True, updated_at=utc_now())
    )


def store_password(session: Session, account_id: int, new_password: str) -> None:
    """Replace the secret hash. Part of a larger transaction; does not commit."""
    session.exec(
        update(Account)
        .where(col(Account.id) == account_id)
        .values(hashed_password=get_password_hash(new_password), updated_at=utc_now())
    )


def record_login(session: Session, account: Account) -> None:
    account.last_login_at = utc_now()
    session.add(account)
    session.commit()
    session.refresh(account)


@with_store_retry
def change_password(session: Session, account: Account, current_password: str, new_password: str) -> Account:
    if not verify_password(current_password, account.hashed_password):
        raise InvalidCredentials("Current password is incorrect")

    account.hashed_password = get_password_hash(new_password)
    account.updated_at = utc_now()
    session.add(account)
    session.commit()
    session.refresh(account)
    logger.info("Password changed for account %s", account.id)
    return account
