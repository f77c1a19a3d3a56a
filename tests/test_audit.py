from bonsbras.models.models import AuditLog
from bonsbras.schemas.projects import RequestCreate
from bonsbras.services.audit import verify_audit_log
from bonsbras.services.request_lifecycle import create_request, respond_to_request

from conftest import make_client, make_pro


def test_lifecycle_entries_verify_after_reload(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = create_request(db, client_user, RequestCreate(pro_id=pro_user.id, title="Toiture", budget=20000))
    respond_to_request(db, pro_user, request.id, accept=True)

    db.expire_all()
    entries = db.query(AuditLog).order_by(AuditLog.timestamp_utc).all()
    assert [e.action for e in entries] == ["CREATE", "ACCEPT"]
    assert entries[1].actor_role == "professional"
    assert entries[1].changes_json == {"before": {"status": "pending"}, "after": {"status": "accepted"}}
    assert all(verify_audit_log(e) for e in entries)


def test_tampered_entry_fails_verification(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = create_request(db, client_user, RequestCreate(pro_id=pro_user.id, title="Toiture", budget=20000))
    entry = db.query(AuditLog).filter(AuditLog.entity_id == request.id).one()

    entry.changes_json = {"after": {"status": "accepted"}}
    assert not verify_audit_log(entry)
    assert not verify_audit_log(entry, integrity_secret="another-secret")
