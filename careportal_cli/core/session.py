# careportal_cli/core/session.py
import json
from typing import Optional

from .config import SESSION_FILE


def save_session(access_token: str, refresh_token: str, login: str) -> None:
    """
    Stores the token pair and the login it belongs to in SESSION_FILE.
    """
    data = {"access_token": access_token, "refresh_token": refresh_token, "login": login}
    with open(SESSION_FILE, "w", encoding="utf-8") as f:
        json.dump(data, f)
    SESSION_FILE.chmod(0o600)


def load_session() -> Optional[dict]:
    """
    Reads the session file. Returns None when there is no usable session.
    """
    if not SESSION_FILE.exists():
        return None

    try:
        with open(SESSION_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        # An unreadable session file counts as no session
        return None
    if not isinstance(data, dict) or not data.get("access_token"):
        return None
    return data


def load_token() -> Optional[str]:
    data = load_session()
    return data.get("access_token") if data else None


def load_refresh_token() -> Optional[str]:
    data = load_session()
    return data.get("refresh_token") if data else None


def update_tokens(access_token: str, refresh_token: str) -> None:
    data = load_session() or {}
    save_session(access_token, refresh_token, data.get("login", ""))


def clear_session() -> None:
    """
    Deletes the session file, ending the local session.
    """
    if SESSION_FILE.exists():
        SESSION_FILE.unlink()


def is_logged_in() -> bool:
    return load_token() is not None
