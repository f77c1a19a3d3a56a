from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from bonsbras.models.models import AuditLog, Project, ProjectRequest
from bonsbras.schemas.projects import RequestCreate
from bonsbras.services.request_lifecycle import create_request, respond_to_request, list_pending_requests

from conftest import make_client, make_pro, auth_headers


def _send(db, client_user, pro_user, title="Cuisine", budget=12000):
    return create_request(db, client_user, RequestCreate(pro_id=pro_user.id, title=title, budget=budget))


def test_create_request_builds_unassigned_project(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = _send(db, client_user, pro_user)
    assert request.status == "pending"
    project = db.query(Project).filter(Project.id == request.project_id).one()
    assert project.pro_id is None
    assert project.status == "planned"
    assert project.client_id == client_user.id
    assert db.query(AuditLog).filter(AuditLog.entity_id == request.id, AuditLog.action == "CREATE").count() == 1


def test_create_request_rejects_pro_without_onboarding(db):
    client_user = make_client(db)
    pro_user = make_pro(db, onboarded=False)
    with pytest.raises(HTTPException) as exc:
        _send(db, client_user, pro_user)
    assert exc.value.status_code == 404
    assert db.query(Project).count() == 0


def test_accept_assigns_project_in_one_step(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = _send(db, client_user, pro_user)

    respond_to_request(db, pro_user, request.id, accept=True, project_id=request.project_id)

    db.expire_all()
    stored = db.query(ProjectRequest).filter(ProjectRequest.id == request.id).one()
    project = db.query(Project).filter(Project.id == stored.project_id).one()
    assert stored.status == "accepted"
    assert project.pro_id == stored.pro_id == pro_user.id
    assert project.status == "in_progress"
    assert db.query(AuditLog).filter(AuditLog.action == "ACCEPT").count() == 1


def test_decline_leaves_project_unassigned(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = _send(db, client_user, pro_user)

    respond_to_request(db, pro_user, request.id, accept=False)

    db.expire_all()
    project = db.query(Project).filter(Project.id == request.project_id).one()
    assert db.query(ProjectRequest).filter(ProjectRequest.id == request.id).one().status == "declined"
    assert project.pro_id is None
    assert project.status == "planned"


def test_second_response_conflicts(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = _send(db, client_user, pro_user)
    respond_to_request(db, pro_user, request.id, accept=True)

    with pytest.raises(HTTPException) as exc:
        respond_to_request(db, pro_user, request.id, accept=False)
    assert exc.value.status_code == 409
    assert exc.value.detail == "Request already accepted"
    db.expire_all()
    assert db.query(Project).filter(Project.id == request.project_id).one().pro_id == pro_user.id


def test_only_target_pro_may_respond(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    other_pro = make_pro(db, email="other@example.com")
    request = _send(db, client_user, pro_user)
    with pytest.raises(HTTPException) as exc:
        respond_to_request(db, other_pro, request.id, accept=True)
    assert exc.value.status_code == 403


def test_mismatched_project_id_is_rejected(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    first = _send(db, client_user, pro_user, title="Salle de bain")
    second = _send(db, client_user, pro_user, title="Cuisine")
    with pytest.raises(HTTPException) as exc:
        respond_to_request(db, pro_user, first.id, accept=True, project_id=second.project_id)
    assert exc.value.status_code == 400
    db.expire_all()
    assert db.query(ProjectRequest).filter(ProjectRequest.id == first.id).one().status == "pending"


def test_failure_rolls_back_both_writes(db, monkeypatch):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = _send(db, client_user, pro_user)

    def broken_audit(*args, **kwargs):
        raise RuntimeError("audit store down")

    monkeypatch.setattr("bonsbras.services.request_lifecycle.create_audit_log", broken_audit)
    with pytest.raises(HTTPException) as exc:
        respond_to_request(db, pro_user, request.id, accept=True)
    assert exc.value.status_code == 500

    db.expire_all()
    assert db.query(ProjectRequest).filter(ProjectRequest.id == request.id).one().status == "pending"
    project = db.query(Project).filter(Project.id == request.project_id).one()
    assert project.pro_id is None
    assert project.status == "planned"


def test_pending_list_skips_requests_without_client_profile(db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    _send(db, client_user, pro_user)
    # a request whose sender has no client profile
    orphan_sender = make_pro(db, email="sender@example.com")
    project = Project(client_id=orphan_sender.id, title="Garage")
    db.add(project)
    db.flush()
    db.add(ProjectRequest(project_id=project.id, client_id=orphan_sender.id, pro_id=pro_user.id))
    db.commit()

    pending = list_pending_requests(db, pro_user)
    assert len(pending) == 1
    assert pending[0]["client"].user_id == client_user.id


def test_accepting_second_of_three_pending_requests(client, db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    requests = [_send(db, client_user, pro_user, title=f"Projet {i}") for i in (1, 2, 3)]
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for i, r in enumerate(requests):
        r.created_at = base + timedelta(hours=i)
    db.commit()
    ids = [str(r.id) for r in requests]
    project_ids = [str(r.project_id) for r in requests]

    resp = client.post(
        f"/requests/{ids[1]}/respond",
        json={"accept": True, "project_id": project_ids[1]},
        headers=auth_headers(pro_user),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"

    pending = client.get("/requests/pending", headers=auth_headers(pro_user))
    assert pending.status_code == 200
    assert [r["id"] for r in pending.json()] == [ids[2], ids[0]]

    detail = client.get(f"/projects/{project_ids[1]}", headers=auth_headers(pro_user))
    assert detail.status_code == 200
    assert detail.json()["status"] == "in_progress"
    assert detail.json()["pro_id"] == str(pro_user.id)


def test_respond_twice_over_http_returns_409(client, db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    request = _send(db, client_user, pro_user)
    request_id = str(request.id)
    assert client.post(f"/requests/{request_id}/respond", json={"accept": False}, headers=auth_headers(pro_user)).status_code == 200
    resp = client.post(f"/requests/{request_id}/respond", json={"accept": True}, headers=auth_headers(pro_user))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Request already declined"


def test_client_sends_request_over_http(client, db):
    client_user = make_client(db)
    pro_user = make_pro(db)
    resp = client.post(
        "/requests",
        json={"pro_id": str(pro_user.id), "title": "Terrasse", "budget": 8000, "message": "Bonjour"},
        headers=auth_headers(client_user),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "pending"
    assert body["pro_id"] == str(pro_user.id)
