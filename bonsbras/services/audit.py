"""
Audit logging service.
Append-only audit log with integrity hashing.

Entries are added to the caller's session and committed with the change they
describe, so a rolled-back transition leaves no audit trace.
"""
import hashlib
import hmac
import json
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict

from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


def _utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def compute_integrity_hash(
    entity_type: str,
    entity_id,
    action: str,
    timestamp_utc: datetime,
    actor_id=None,
    actor_role: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> str:
    """SHA-256 over the canonical JSON of an entry plus the secret."""
    if integrity_secret is None:
        integrity_secret = settings.jwt_secret
    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "actor_role": actor_role,
        "timestamp_utc": _utc(timestamp_utc).isoformat(),
        "changes": changes_json,
        "context": context,
    }
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{integrity_secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    actor_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Create an append-only audit log entry in the caller's transaction.

    Args:
        db: Database session (the caller commits)
        entity_type: Type of entity (project|project_request|pro_profile)
        entity_id: Entity ID
        action: Action performed (CREATE|ACCEPT|DECLINE|ONBOARDING_COMPLETE)
        actor_id: User ID who performed the action
        actor_role: Role of the actor (client|professional|system)
        changes_json: Before/after diff
        context: Additional context (project_id, request_id, ...)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)

    Returns:
        The pending AuditLog object
    """
    timestamp_utc = datetime.now(timezone.utc)
    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=compute_integrity_hash(
            entity_type,
            entity_id,
            action,
            timestamp_utc,
            actor_id=actor_id,
            actor_role=actor_role,
            changes_json=changes_json,
            context=context,
            integrity_secret=integrity_secret,
        ),
    )
    db.add(audit_log)
    return audit_log


def verify_audit_log(entry: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """True when the stored hash still matches the entry's contents."""
    if not entry.integrity_hash:
        return False
    expected = compute_integrity_hash(
        entry.entity_type,
        entry.entity_id,
        entry.action,
        entry.timestamp_utc,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        changes_json=entry.changes_json,
        context=entry.context,
        integrity_secret=integrity_secret,
    )
    return hmac.compare_digest(expected, entry.integrity_hash)
