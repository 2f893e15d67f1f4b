import logging
import math

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from ..core.database import with_store_retry
from ..core.errors import AccountNotFound, AlreadyDecided, InvalidStateTransition
from ..core.timeutils import utc_now
from ..models.Account import Account, ApprovalState
from ..models.ApprovalDecision import ApprovalDecision, Decision
from ..models.Role import Role
from ..notifications.service import ACCOUNT_APPROVED, ACCOUNT_REJECTED, Notifier, dispatch
from . import policy

logger = logging.getLogger(__name__)


def _transition(session: Session, account_id: int, expected: ApprovalState, target: ApprovalState, **values) -> bool:
    """
    The single writer of ``Account.approval_state``.

    Issues one conditional UPDATE guarded by the expected prior state and
    reports whether this caller won. Does not commit.
    """
    statement = (
        update(Account)
        .where(col(Account.id) == account_id, col(Account.approval_state) == expected)
        .values(approval_state=target, updated_at=utc_now(), **values)
    )
    result = session.exec(statement)
    return result.rowcount == 1


def _record(session: Session, account: Account, cycle: int, decision: Decision, reviewer_id: int | None, notes: str | None) -> ApprovalDecision:
    record = ApprovalDecision(
        account_id=account.id,
        review_cycle=cycle,
        decision=decision,
        reviewer_id=reviewer_id,
        notes=notes,
    )
    session.add(record)
    return record


def advance_after_verification(session: Session, account: Account) -> ApprovalState:
    """
    Runs inside the verification transaction, right after the email flag
    flips. Roles under review wait for an administrator; the others are
    approved by policy. Does not commit.
    """
    cycle = account.review_cycle
    if policy.requires_review(account.role):
        target = ApprovalState.PENDING_ADMIN_APPROVAL
    else:
        target = ApprovalState.APPROVED

    if not _transition(session, account.id, ApprovalState.PENDING_EMAIL_VERIFICATION, target):
        session.refresh(account)
        return account.approval_state

    if target is ApprovalState.APPROVED:
        _record(session, account, cycle, Decision.APPROVED, None, "Approved by onboarding policy")
    return target


def approve_bootstrap(session: Session, account: Account) -> None:
    """Bootstrap accounts skip review entirely. Does not commit."""
    if not _transition(session, account.id, ApprovalState.PENDING_EMAIL_VERIFICATION, ApprovalState.APPROVED):
        raise InvalidStateTransition(state=account.approval_state.value)
    _record(session, account, account.review_cycle, Decision.APPROVED, None, "Bootstrap administrator")


def reopen(session: Session, account: Account) -> bool:
    """
    Start a fresh review cycle for a rejected account that registers again.
    Earlier decisions stay untouched. Does not commit.
    """
    return _transition(
        session,
        account.id,
        ApprovalState.REJECTED,
        ApprovalState.PENDING_EMAIL_VERIFICATION,
        review_cycle=account.review_cycle + 1,
    )


@with_store_retry
def _decide(session: Session, account_id: int, decision: Decision, reviewer_id: int, notes: str | None) -> tuple[Account, ApprovalDecision]:
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound()

    cycle = account.review_cycle
    target = ApprovalState.APPROVED if decision is Decision.APPROVED else ApprovalState.REJECTED

    if not _transition(session, account_id, ApprovalState.PENDING_ADMIN_APPROVAL, target):
        session.rollback()
        session.refresh(account)
        current = account.approval_state
        if current.is_terminal:
            raise AlreadyDecided(state=current.value)
        raise InvalidStateTransition(state=current.value)

    record = _record(session, account, cycle, decision, reviewer_id, notes)
    try:
        session.commit()
    except IntegrityError:
        # Another reviewer recorded this cycle first.
        session.rollback()
        session.refresh(account)
        raise AlreadyDecided(state=account.approval_state.value)

    session.refresh(account)
    session.refresh(record)
    logger.info("Account %s %s by reviewer %s (cycle %s)", account_id, decision.value, reviewer_id, cycle)
    return account, record


def approve(session: Session, account_id: int, reviewer_id: int, notes: str | None = None, notifier: Notifier | None = None) -> ApprovalDecision:
    account, record = _decide(session, account_id, Decision.APPROVED, reviewer_id, notes)
    dispatch(notifier, ACCOUNT_APPROVED, account, {"role": account.role.value})
    return record


def reject(session: Session, account_id: int, reviewer_id: int, notes: str | None = None, notifier: Notifier | None = None) -> ApprovalDecision:
    account, record = _decide(session, account_id, Decision.REJECTED, reviewer_id, notes)
    dispatch(notifier, ACCOUNT_REJECTED, account, {"role": account.role.value, "notes": notes})
    return record


def decisions_for(session: Session, account_id: int) -> list[ApprovalDecision]:
    if session.get(Account, account_id) is None:
        raise AccountNotFound()
    statement = (
        select(ApprovalDecision)
        .where(ApprovalDecision.account_id == account_id)
        .order_by(col(ApprovalDecision.review_cycle).asc())
    )
    return list(session.exec(statement).all())


def list_pending(session: Session, role: Role | None = None, search: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[Account], int]:
    """Review queue, oldest first. Returns (page_items, total)."""
    statement = select(Account).where(Account.approval_state == ApprovalState.PENDING_ADMIN_APPROVAL)
    if role is not None:
        statement = statement.where(Account.role == role)
    if search:
        pattern = f"%{search.strip().lower()}%"
        statement = statement.where(
            or_(
                col(Account.login).like(pattern),
                col(Account.email).like(pattern),
                func.lower(col(Account.full_name)).like(pattern),
            )
        )

    total = session.exec(select(func.count()).select_from(statement.subquery())).one()
    items = session.exec(
        statement.order_by(col(Account.created_at).asc(), col(Account.id).asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(items), total


def page_count(total: int, limit: int) -> int:
    return max(1, math.ceil(total / limit)) if limit else 1


def approval_stats(session: Session) -> dict:
    """Account counts per role and approval state, plus overall totals."""
    states = [state.value for state in ApprovalState]
    by_role = {role.value: {"total": 0, **{state: 0 for state in states}} for role in Role}
    summary = {"total": 0, **{state: 0 for state in states}}

    rows = session.exec(
        select(Account.role, Account.approval_state, func.count(col(Account.id)))
        .group_by(Account.role, Account.approval_state)
    ).all()
    for role, state, count in rows:
        bucket = by_role[Role(role).value]
        bucket[ApprovalState(state).value] += count
        bucket["total"] += count
        summary[ApprovalState(state).value] += count
        summary["total"] += count

    return {"roles": by_role, "summary": summary}
