import logging
from typing import Any, Protocol

from ..models.Account import Account

logger = logging.getLogger(__name__)

EMAIL_VERIFICATION_REQUESTED = "email_verification_requested"
ACCOUNT_APPROVED = "account_approved"
ACCOUNT_REJECTED = "account_rejected"
PASSWORD_RESET_REQUESTED = "password_reset_requested"

# Payload keys that carry a redeemable secret; never written to the log.
SECRET_FIELDS = frozenset({"token", "link"})


class Notifier(Protocol):
    def send(self, event: str, recipient: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """
    Default notifier. Delivery (SMTP, SMS) lives outside the portal; this one
    only records that a message was due. Secret fields are left out.
    """

    def send(self, event: str, recipient: str, payload: dict[str, Any]) -> None:
        visible = {key: value for key, value in payload.items() if key not in SECRET_FIELDS}
        logger.info("Notification %s for %s: %s", event, recipient, visible)


default_notifier = LoggingNotifier()

def get_notifier() -> Notifier:
    return default_notifier


def recipient_for(account: Account) -> str:
    return account.email or account.login


def dispatch(notifier: Notifier | None, event: str, account: Account, payload: dict[str, Any]) -> bool:
    """
    Fire-and-forget delivery. Failures are logged and reported as False;
    they never reach the caller's transaction.
    """
    notifier = notifier or default_notifier
    recipient = recipient_for(account)
    try:
        notifier.send(event, recipient, {"account_id": account.id, **payload})
    except Exception:
        logger.exception("Failed to dispatch %s notification to %s", event, recipient)
        return False
    return True
