from typing import List, Optional

import typer

from careportal_cli.core.api import (
    api_approval_stats,
    api_approve,
    api_get_role_permissions,
    api_list_pending,
    api_reject,
    api_revoke_sessions,
    api_set_role_permissions,
    api_verify_audit,
)
from careportal_cli.core.session import load_token
from careportal_cli.core.utils import fail


app = typer.Typer(help="Administration commands (approvals, permissions, sessions)")


def _require_token() -> str:
    token = load_token()
    if not token:
        typer.echo("No active session. Please run `careportal auth login` as an administrator first.")
        raise typer.Exit(code=1)
    return token


@app.command("pending")
def pending(
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Only this role"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Match login, email or name"),
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(20, "--limit", min=1, max=100),
):
    """
    List registrations waiting for review.
    """
    token = _require_token()
    status_code, body = api_list_pending(token, role=role, search=search, page=page, limit=limit)
    if status_code != 200:
        fail(status_code, body)

    items = body.get("items", [])
    if not items:
        typer.echo("No registrations waiting for review.")
        return

    typer.echo(f"{'ID':<6} {'LOGIN':<28} {'ROLE':<20} {'REGISTERED'}")
    for account in items:
        typer.echo(f"{account['id']:<6} {account['login']:<28} {account['role']:<20} {account['created_at']}")
    typer.echo(f"Page {body.get('page')}/{body.get('pages')} ({body.get('total')} total)")


@app.command("approve")
def approve(
    account_id: int = typer.Argument(..., help="Account to approve"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Reviewer notes"),
):
    """
    Approve a registration that is waiting for review.
    """
    token = _require_token()
    status_code, body = api_approve(token, account_id, notes)
    if status_code != 200:
        fail(status_code, body)
    typer.echo(f"Account {account_id} approved.")


@app.command("reject")
def reject(
    account_id: int = typer.Argument(..., help="Account to reject"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Reason shared with the applicant"),
):
    """
    Reject a registration that is waiting for review.
    """
    token = _require_token()
    if notes is None:
        notes = typer.prompt("Reason", default="", show_default=False) or None
    status_code, body = api_reject(token, account_id, notes)
    if status_code != 200:
        fail(status_code, body)
    typer.echo(f"Account {account_id} rejected.")


@app.command("stats")
def stats():
    """
    Account counts per role and approval state.
    """
    token = _require_token()
    status_code, body = api_approval_stats(token)
    if status_code != 200:
        fail(status_code, body)

    typer.echo(f"{'ROLE':<20} {'TOTAL':>6} {'UNVERIFIED':>11} {'PENDING':>8} {'APPROVED':>9} {'REJECTED':>9}")
    rows = list(body.get("roles", {}).items()) + [("all", body.get("summary", {}))]
    for role, counts in rows:
        typer.echo(
            f"{role:<20} {counts.get('total', 0):>6} {counts.get('pending_email_verification', 0):>11} "
            f"{counts.get('pending_admin_approval', 0):>8} {counts.get('approved', 0):>9} {counts.get('rejected', 0):>9}"
        )


@app.command("permissions")
def permissions(role: Optional[str] = typer.Argument(None, help="Only show this role")):
    """
    Show the permission matrix.
    """
    token = _require_token()
    status_code, body = api_get_role_permissions(token)
    if status_code != 200:
        fail(status_code, body)

    typer.echo(f"Matrix version {body.get('version')}")
    for name, granted in body.get("roles", {}).items():
        if role and name != role:
            continue
        typer.echo(f"{name}: {', '.join(granted) or '-'}")


@app.command("set-permissions")
def set_permissions(
    role: str = typer.Argument(..., help="Role to change"),
    permissions: List[str] = typer.Argument(..., help="Complete new permission list for the role"),
    expected_version: Optional[int] = typer.Option(None, "--expected-version", help="Fail if the matrix moved past this version"),
):
    """
    Replace a role's permission set in one step.
    """
    token = _require_token()
    status_code, body = api_set_role_permissions(token, role, permissions, expected_version)
    if status_code != 200:
        fail(status_code, body)
    typer.echo(f"Role '{role}' updated. Matrix is now at version {body.get('version')}.")


@app.command("revoke-sessions")
def revoke_sessions(account_id: int = typer.Argument(..., help="Account to sign out everywhere")):
    """
    End every session of an account.
    """
    token = _require_token()
    status_code, body = api_revoke_sessions(token, account_id)
    if status_code != 200:
        fail(status_code, body)
    typer.echo(f"Revoked {body.get('revoked_sessions', 0)} session token(s) for account {account_id}.")


@app.command("verify-audit")
def verify_audit():
    """
    Check the audit log hash chain.
    """
    token = _require_token()
    status_code, body = api_verify_audit(token)
    if status_code != 200:
        fail(status_code, body)
    if body.get("valid"):
        typer.echo(f"Audit chain intact ({body.get('entries')} entries).")
    else:
        typer.echo(f"Audit chain broken at entry {body.get('broken_id')}.")
        raise typer.Exit(code=1)
