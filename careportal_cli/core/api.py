# careportal_cli/core/api.py
"""
Thin wrappers around the CarePortal HTTP API.

Every call returns ``(status_code, body)``. A status of 0 means the backend
could not be reached; the body then carries a ``ConnectionError`` detail in
the same shape the server uses for its own errors.
"""
from typing import Optional

import requests

from .config import BASE_URL, CA_CERT, TIMEOUT


def _get_verify():
    if CA_CERT:
        return CA_CERT
    return True  # Use system default


def _headers(token: Optional[str]) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _call(method: str, path: str, token: Optional[str] = None, **kwargs) -> tuple[int, dict]:
    url = f"{BASE_URL}{path}"
    try:
        resp = requests.request(method, url, headers=_headers(token), verify=_get_verify(), timeout=TIMEOUT, **kwargs)
    except requests.RequestException as exc:
        return 0, {"detail": {"code": "ConnectionError", "message": str(exc)}}

    if resp.status_code == 204 or not resp.content:
        return resp.status_code, {}
    try:
        body = resp.json()
    except ValueError:
        body = {"detail": {"code": "BadResponse", "message": resp.text[:200]}}
    if isinstance(body, list):
        body = {"items": body}
    return resp.status_code, body


# Onboarding

def api_register(registration: dict) -> tuple[int, dict]:
    return _call("POST", "/register", json=registration)

def api_verify_email(token: str) -> tuple[int, dict]:
    return _call("GET", "/verify-email", params={"token": token})

def api_resend_verification(login: str) -> tuple[int, dict]:
    return _call("POST", "/resend-verification", json={"login": login})

def api_onboarding_policy() -> tuple[int, dict]:
    return _call("GET", "/onboarding-policy")


# Sessions

def api_login(login: str, password: str) -> tuple[int, dict]:
    return _call("POST", "/login", json={"login": login, "password": password})

def api_refresh(refresh_token: str) -> tuple[int, dict]:
    return _call("POST", "/token/refresh", json={"refresh_token": refresh_token})

def api_logout(token: str) -> tuple[int, dict]:
    return _call("POST", "/logout", token=token)

def api_get_me(token: str) -> tuple[int, dict]:
    return _call("GET", "/account/me", token=token)

def api_change_password(token: str, current_password: str, new_password: str) -> tuple[int, dict]:
    return _call(
        "POST", "/account/password", token=token,
        json={"current_password": current_password, "new_password": new_password},
    )

def api_forgot_password(login: str) -> tuple[int, dict]:
    return _call("POST", "/forgot-password", json={"login": login})

def api_reset_password(token: str, new_password: str) -> tuple[int, dict]:
    return _call("POST", "/reset-password", json={"token": token, "new_password": new_password})


# Administration

def api_list_pending(token: str, role: Optional[str] = None, search: Optional[str] = None, page: int = 1, limit: int = 20) -> tuple[int, dict]:
    params = {"page": page, "limit": limit}
    if role:
        params["role"] = role
    if search:
        params["search"] = search
    return _call("GET", "/admin/pending-accounts", token=token, params=params)

def api_approve(token: str, account_id: int, notes: Optional[str] = None) -> tuple[int, dict]:
    return _call("POST", f"/admin/approve/{account_id}", token=token, json={"notes": notes})

def api_reject(token: str, account_id: int, notes: Optional[str] = None) -> tuple[int, dict]:
    return _call("POST", f"/admin/reject/{account_id}", token=token, json={"notes": notes})

def api_approval_stats(token: str) -> tuple[int, dict]:
    return _call("GET", "/admin/approval-stats", token=token)

def api_get_role_permissions(token: str) -> tuple[int, dict]:
    return _call("GET", "/admin/role-permissions", token=token)

def api_set_role_permissions(token: str, role: str, permissions: list[str], expected_version: Optional[int] = None) -> tuple[int, dict]:
    payload = {"role": role, "permissions": permissions, "expected_version": expected_version}
    return _call("POST", "/admin/role-permissions", token=token, json=payload)

def api_revoke_sessions(token: str, account_id: int) -> tuple[int, dict]:
    return _call("POST", f"/admin/accounts/{account_id}/revoke-sessions", token=token)

def api_verify_audit(token: str) -> tuple[int, dict]:
    return _call("GET", "/admin/audit-logs/verify", token=token)
