import re
import typer

LOGIN_REGEX = re.compile(r"^[a-zA-Z0-9_.@+-]{3,254}$")

# What the user can do next, per error code returned by the backend
ERROR_HINTS = {
    "EmailNotVerified": "Check your inbox for the verification link, or run `careportal auth resend`.",
    "PendingApproval": "An administrator still has to review your registration.",
    "RegistrationRejected": "Your registration was rejected. You may register again with the same login.",
    "InvalidCredentials": "Check your login and password.",
    "TokenExpired": "The link has expired. Run `careportal auth resend` or `careportal auth forgot-password` for a new one.",
    "TokenAlreadyUsed": "This link was already used or replaced by a newer one.",
    "TokenNotFound": "The token is not valid. Copy it again from the latest email.",
    "AlreadyDecided": "Another administrator already decided this registration.",
    "InvalidStateTransition": "The account is not waiting for review.",
    "InvalidSessionToken": "Your session has ended. Run `careportal auth login` again.",
    "NotApproved": "The account is not approved for sign-in.",
    "Forbidden": "Your role does not allow this action.",
    "MatrixConflict": "The permission matrix changed meanwhile. Reload it and try again.",
    "StoreUnavailable": "The server is temporarily unavailable. Try again later.",
    "ConnectionError": "Could not reach the CarePortal server.",
}


def validate_password(password: str) -> bool:
    """
    Validates password strength:
    - 8 to 128 characters
    - At least one letter
    - At least one number
    """
    if len(password) < 8:
        typer.echo("Password must be at least 8 characters long.")
        return False

    if len(password) > 128:
        typer.echo("Password must be at most 128 characters long.")
        return False

    if not re.search(r"[a-zA-Z]", password):
        typer.echo("Password must contain at least one letter.")
        return False

    if not re.search(r"\d", password):
        typer.echo("Password must contain at least one number.")
        return False

    return True


def validate_login(login: str) -> bool:
    if not LOGIN_REGEX.match(login):
        typer.echo(
            "Invalid login.\n"
            "Use letters, numbers, '.', '_', '-', '+' or '@', with 3 to 254 characters."
        )
        return False
    return True


def describe_error(status_code: int, body: dict) -> str:
    """
    Turns an error response into one or more readable lines.
    """
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        code = detail.get("code", "Error")
        lines = [f"{code}: {detail.get('message', '')}".rstrip(": ")]
        for error in detail.get("errors", []):
            lines.append(f"  - {error.get('field')}: {error.get('message')}")
        hint = ERROR_HINTS.get(code)
        if hint:
            lines.append(hint)
        return "\n".join(lines)
    if detail:
        return f"Error {status_code}: {detail}"
    return f"Error {status_code}"


def fail(status_code: int, body: dict) -> None:
    typer.echo(describe_error(status_code, body))
    raise typer.Exit(code=1)
