import http
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Session, select

from ..models.Audit import AuditLog, GENESIS_HASH

def log_event(db: Session, actor_id: int, action: str, details: Optional[str] = None) -> AuditLog:
    """
    Logs a new event to the AuditLog chain.
    """
    last_entry = db.exec(select(AuditLog).order_by(AuditLog.id.desc())).first()
    previous_hash = last_entry.current_hash if last_entry else GENESIS_HASH

    new_log = AuditLog(
        actor_id=actor_id,
        action=action,
        details=details or "",
        previous_hash=previous_hash,
        current_hash="", # Placeholder, will be calculated
        timestamp=datetime.now(timezone.utc).replace(microsecond=0)
    )
    new_log.current_hash = new_log.calculate_hash()

    db.add(new_log)
    db.commit()
    db.refresh(new_log)

    return new_log

def audit_request(db: Session, actor_id: int | None, method: str, path: str, status_code: int, details: Optional[str] = None) -> AuditLog:
    """
    Logs an HTTP-level event as ``"<METHOD> <path> <status> <phrase>"``.
    """
    action = f"{method} {path} {status_code} {http.HTTPStatus(status_code).phrase}"
    return log_event(db, actor_id or 0, action, details)

def validate_chain(db: Session) -> tuple[bool, Optional[int], int]:
    """
    Walks the chain from the first entry and recomputes every hash.
    Returns (is_valid, first_broken_id, entries_checked).
    """
    previous_hash = GENESIS_HASH
    checked = 0
    for entry in db.exec(select(AuditLog).order_by(AuditLog.id.asc())):
        checked += 1
        if entry.previous_hash != previous_hash or entry.calculate_hash() != entry.current_hash:
            return False, entry.id, checked
        previous_hash = entry.current_hash
    return True, None, checked

def list_events(db: Session, offset: int = 0, limit: int = 100) -> list[AuditLog]:
    statement = select(AuditLog).order_by(AuditLog.id.asc()).offset(offset).limit(limit)
    return list(db.exec(statement).all())
