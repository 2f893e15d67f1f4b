import getpass
from typing import List, Optional

import typer

from careportal_cli.core.api import (
    api_change_password,
    api_forgot_password,
    api_get_me,
    api_login,
    api_logout,
    api_onboarding_policy,
    api_refresh,
    api_register,
    api_resend_verification,
    api_reset_password,
    api_verify_email,
)
from careportal_cli.core.session import (
    clear_session,
    is_logged_in,
    load_refresh_token,
    load_token,
    save_session,
    update_tokens,
)
from careportal_cli.core.utils import fail, validate_login, validate_password


app = typer.Typer(help="Account commands (register, verify, login, logout)")


def _parse_profile(entries: List[str]) -> dict:
    profile = {}
    for entry in entries:
        if "=" not in entry:
            typer.echo(f"Invalid profile field '{entry}'. Use key=value.")
            raise typer.Exit(code=1)
        key, value = entry.split("=", 1)
        profile[key.strip()] = value.strip()
    return profile


@app.command("register")
def register(
    login: str = typer.Option(None, "--login", "-l", help="Username or email"),
    role: str = typer.Option("patient", "--role", "-r", help="Role to register as"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Contact email"),
    full_name: Optional[str] = typer.Option(None, "--name", "-n", help="Full name"),
    profile: List[str] = typer.Option([], "--profile", "-p", help="Role profile field as key=value (repeatable)"),
):
    """
    Register a new account. A verification link is sent to the email address.
    """
    if login is None:
        login = typer.prompt("Login")
    if not validate_login(login):
        raise typer.Exit(code=1)

    password = getpass.getpass("Password: ")
    password_confirm = getpass.getpass("Confirm password: ")
    if password != password_confirm:
        typer.echo("Passwords do not match.")
        raise typer.Exit(code=1)
    if not validate_password(password):
        raise typer.Exit(code=1)

    registration = {
        "login": login,
        "password": password,
        "role": role,
        "email": email,
        "full_name": full_name,
        "profile": _parse_profile(profile),
    }
    status_code, body = api_register(registration)
    if status_code != 201:
        fail(status_code, body)

    typer.echo(f"Registration received (account {body.get('account_id')}).")
    typer.echo("Check your email for the verification link, then run `careportal auth verify <token>`.")


@app.command("policy")
def policy():
    """
    Show which roles can self-register and which need administrator review.
    """
    status_code, body = api_onboarding_policy()
    if status_code != 200:
        fail(status_code, body)

    for role, rules in body.items():
        review = "review required" if rules.get("requires_review") else "no review"
        fields = ", ".join(rules.get("required_profile_fields", [])) or "-"
        if rules.get("self_registration"):
            typer.echo(f"{role:20} {review:16} profile: {fields}")


@app.command("verify")
def verify(token: str = typer.Argument(..., help="Token from the verification email")):
    """
    Confirm the email address with the token from the verification email.
    """
    status_code, body = api_verify_email(token.strip())
    if status_code != 200:
        fail(status_code, body)

    state = body.get("approval_state")
    typer.echo("Email verified.")
    if state == "approved":
        typer.echo("Your account is active. You can now login.")
    else:
        typer.echo("Your registration is now waiting for administrator approval.")


@app.command("resend")
def resend(login: str = typer.Option(None, "--login", "-l", help="Username or email")):
    """
    Ask for a new verification link.
    """
    if login is None:
        login = typer.prompt("Login")
    status_code, body = api_resend_verification(login)
    if status_code != 200:
        fail(status_code, body)
    typer.echo(body.get("message", "Request sent."))


@app.command("login")
def login(
    login: str = typer.Option(None, "--login", "-l", help="Username or email"),
):
    """
    Login to the system. Only allowed if no session is active.
    """
    if is_logged_in():
        typer.echo("Session already active. Logout first to remove current session token.")
        raise typer.Exit(code=1)

    if login is None:
        login = typer.prompt("Login")
    if not validate_login(login):
        raise typer.Exit(code=1)

    password = getpass.getpass("Password: ")

    status_code, body = api_login(login, password)
    if status_code != 200:
        fail(status_code, body)

    save_session(body["access_token"], body["refresh_token"], login)
    typer.echo(f"Login successful as '{login}'.")


@app.command("refresh")
def refresh():
    """
    Renew the session with the stored refresh token.
    """
    refresh_token = load_refresh_token()
    if not refresh_token:
        typer.echo("No active session. Please run `careportal auth login` first.")
        raise typer.Exit(code=1)

    status_code, body = api_refresh(refresh_token)
    if status_code != 200:
        clear_session()
        fail(status_code, body)

    update_tokens(body["access_token"], body["refresh_token"])
    typer.echo("Session renewed.")


@app.command("logout")
def logout():
    """
    End session and delete local token.
    """
    token = load_token()
    if token:
        status_code, _ = api_logout(token)
        if status_code == 200:
            typer.echo("Logged out from backend.")
        else:
            typer.echo("Warning: Failed to logout from backend. The token may have had already expired.")

    clear_session()
    typer.echo("Session ended.")


@app.command("whoami")
def whoami():
    """
    Show the signed-in account and its permissions.
    """
    token = load_token()
    if not token:
        typer.echo("No active session. Please run `careportal auth login` first.")
        raise typer.Exit(code=1)

    status_code, body = api_get_me(token)
    if status_code != 200:
        fail(status_code, body)

    typer.echo(f"Login:       {body.get('login')}")
    typer.echo(f"Role:        {body.get('role')}")
    typer.echo(f"State:       {body.get('approval_state')}")
    typer.echo(f"Permissions: {', '.join(body.get('permissions', [])) or '-'}")


@app.command("password")
def change_password():
    """
    Change your password. Every session ends, so you must login again.
    """
    token = load_token()
    if not token:
        typer.echo("No active session. Please run `careportal auth login` first.")
        raise typer.Exit(code=1)

    current_password = getpass.getpass("Current password: ")
    new_password = getpass.getpass("New password: ")
    if new_password != getpass.getpass("Confirm password: "):
        typer.echo("Passwords do not match.")
        raise typer.Exit(code=1)
    if not validate_password(new_password):
        raise typer.Exit(code=1)

    status_code, body = api_change_password(token, current_password, new_password)
    if status_code != 200:
        fail(status_code, body)

    clear_session()
    typer.echo("Password changed. Please login again.")


@app.command("forgot-password")
def forgot_password(login: str = typer.Option(None, "--login", "-l", help="Username or email")):
    """
    Ask for a password reset link.
    """
    if login is None:
        login = typer.prompt("Login")
    status_code, body = api_forgot_password(login)
    if status_code != 200:
        fail(status_code, body)
    typer.echo(body.get("message", "Request sent."))


@app.command("reset-password")
def reset_password(token: str = typer.Argument(..., help="Token from the password reset email")):
    """
    Set a new password with the token from the reset email.
    """
    new_password = getpass.getpass("New password: ")
    if new_password != getpass.getpass("Confirm password: "):
        typer.echo("Passwords do not match.")
        raise typer.Exit(code=1)
    if not validate_password(new_password):
        raise typer.Exit(code=1)

    status_code, body = api_reset_password(token.strip(), new_password)
    if status_code != 200:
        fail(status_code, body)

    clear_session()
    typer.echo("Password reset. Please login with the new password.")
