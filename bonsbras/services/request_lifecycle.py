"""
Project request lifecycle.

A client creates a project together with a pending request aimed at one
professional. The professional accepts (project becomes theirs and moves to
in_progress) or declines (project stays unassigned). Request and project are
written in a single transaction so a request is never accepted while its
project has no professional.
"""
import uuid
from typing import List, Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ..models.models import (
    ClientProfile,
    Project,
    ProjectRequest,
    User,
    ROLE_CLIENT,
    ROLE_PRO,
)
from ..schemas.projects import RequestCreate
from .audit import create_audit_log
from .roles import get_pro_profile

logger = structlog.get_logger(__name__)

FINAL_REQUEST_STATUSES = {"accepted", "declined"}


def create_request(db: Session, client: User, payload: RequestCreate) -> ProjectRequest:
    """Create the project (unassigned, planned) and its pending request."""
    pro = get_pro_profile(db, payload.pro_id)
    if pro is None or not pro.onboarding_complete:
        raise HTTPException(status_code=404, detail="Professional not found")
    if payload.pro_id == client.id:
        raise HTTPException(status_code=400, detail="Cannot send a request to yourself")

    try:
        project = Project(
            client_id=client.id,
            pro_id=None,
            title=payload.title,
            description=payload.description or "",
            status="planned",
            progress=0,
            budget=payload.budget,
            spent=0,
            address=payload.address,
            start_date=payload.start_date,
            estimated_end_date=payload.estimated_end_date,
        )
        db.add(project)
        db.flush()
        request = ProjectRequest(
            project_id=project.id,
            client_id=client.id,
            pro_id=payload.pro_id,
            status="pending",
            message=(payload.message or "").strip() or None,
        )
        db.add(request)
        db.flush()
        create_audit_log(
            db,
            entity_type="project_request",
            entity_id=request.id,
            action="CREATE",
            actor_id=client.id,
            actor_role=ROLE_CLIENT,
            changes_json={"after": {"status": "pending"}},
            context={"project_id": str(project.id), "pro_id": str(payload.pro_id)},
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("request_create_failed", client_id=str(client.id), pro_id=str(payload.pro_id), error=str(e))
        raise

    db.refresh(request)
    logger.info("request_created", request_id=str(request.id), project_id=str(request.project_id), pro_id=str(request.pro_id))
    return request


def _load_for_update(db: Session, request_id: uuid.UUID) -> ProjectRequest:
    # FOR UPDATE is ignored by SQLite; PostgreSQL serialises concurrent responders here
    request = (
        db.query(ProjectRequest)
        .filter(ProjectRequest.id == request_id)
        .with_for_update()
        .first()
    )
    if request is None:
        raise HTTPException(status_code=404, detail="Request not found")
    return request


def respond_to_request(
    db: Session,
    pro: User,
    request_id: uuid.UUID,
    accept: bool,
    project_id: Optional[uuid.UUID] = None,
) -> ProjectRequest:
    """
    Accept or decline a pending request in one transaction.

    accept:  request -> accepted, project.pro_id = caller, project.status = in_progress
    decline: request -> declined, project untouched

    Raises 404 for an unknown request, 403 when the caller is not the target
    professional, 400 when project_id does not match, 409 when the request was
    already answered. Any failure rolls back both writes.
    """
    try:
        request = _load_for_update(db, request_id)
        if request.pro_id != pro.id:
            raise HTTPException(status_code=403, detail="Not allowed for this request")
        if project_id is not None and project_id != request.project_id:
            raise HTTPException(status_code=400, detail="project_id does not match the request")
        if request.status in FINAL_REQUEST_STATUSES:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Request already {request.status}")

        project = (
            db.query(Project)
            .filter(Project.id == request.project_id)
            .with_for_update()
            .first()
        )
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")

        before = {"status": request.status}
        if accept:
            request.status = "accepted"
            project.pro_id = pro.id
            project.status = "in_progress"
        else:
            request.status = "declined"

        create_audit_log(
            db,
            entity_type="project_request",
            entity_id=request.id,
            action="ACCEPT" if accept else "DECLINE",
            actor_id=pro.id,
            actor_role=ROLE_PRO,
            changes_json={"before": before, "after": {"status": request.status}},
            context={"project_id": str(project.id)},
        )
        db.commit()
    except HTTPException as e:
        db.rollback()
        logger.warning("request_respond_rejected", request_id=str(request_id), status_code=e.status_code, detail=e.detail)
        raise
    except Exception as e:
        db.rollback()
        logger.error("request_respond_failed", request_id=str(request_id), accept=accept, error=str(e))
        raise HTTPException(status_code=500, detail="Could not update the request") from e

    db.refresh(request)
    logger.info(
        "request_accepted" if accept else "request_declined",
        request_id=str(request.id),
        project_id=str(request.project_id),
        pro_id=str(pro.id),
    )
    return request


def list_pending_requests(db: Session, pro: User) -> List[dict]:
    """
    Pending requests for the professional, newest first, each joined with
    its project and the client's profile. Requests whose project or client
    profile is missing are skipped.
    """
    requests = (
        db.query(ProjectRequest)
        .filter(ProjectRequest.pro_id == pro.id, ProjectRequest.status == "pending")
        .order_by(ProjectRequest.created_at.desc())
        .all()
    )
    if not requests:
        return []

    client_ids = {r.client_id for r in requests}
    clients = {
        c.user_id: c
        for c in db.query(ClientProfile).filter(ClientProfile.user_id.in_(client_ids)).all()
    }
    out = []
    for r in requests:
        client = clients.get(r.client_id)
        if r.project is None or client is None:
            continue
        out.append({"request": r, "project": r.project, "client": client})
    return out
