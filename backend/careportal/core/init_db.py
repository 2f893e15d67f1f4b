import logging

from sqlmodel import Session

from .database import engine
from .settings import settings
from ..accounts.service import create_bootstrap_account, get_account_by_login, mark_email_verified
from ..approval.service import approve_bootstrap
from ..models.Account import Account
from ..models.Role import Role
from ..permissions.service import authorization

logger = logging.getLogger(__name__)

def seed_admin(session: Session, login: str, email: str | None, password: str) -> Account:
    """Create an approved, verified administrator in one transaction."""
    account = create_bootstrap_account(session, login, email, password, "Administrator", Role.ADMIN)
    mark_email_verified(session, account.id)
    session.refresh(account)
    approve_bootstrap(session, account)
    session.commit()
    session.refresh(account)
    return account

def init_db(bind=None):
    with Session(bind or engine) as session:
        authorization.load(session)

        if not settings.ADMIN_PASSWORD:
            logger.warning("ADMIN_PASSWORD is empty, skipping bootstrap administrator")
            return

        if get_account_by_login(session, settings.ADMIN_LOGIN):
            logger.info("Admin account already exists.")
            return

        logger.info("Creating initial admin account: %s", settings.ADMIN_LOGIN)
        seed_admin(session, settings.ADMIN_LOGIN, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
        logger.info("Admin account created successfully.")
