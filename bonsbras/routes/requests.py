import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import ProjectRequest, User, ROLE_CLIENT, ROLE_PRO
from ..schemas.profiles import ClientProfileOut
from ..schemas.projects import RequestCreate, RespondRequest, RequestOut, RequestWithDetails
from ..services.change_feed import publish_rows
from ..services.request_lifecycle import create_request, respond_to_request, list_pending_requests
from ..services.roles import require_role
from .projects import serialize_project


router = APIRouter(prefix="/requests", tags=["requests"])


def serialize_pending(item: dict) -> RequestWithDetails:
    base = RequestOut.model_validate(item["request"]).model_dump()
    return RequestWithDetails(
        **base,
        project=serialize_project(item["project"]),
        client=ClientProfileOut.model_validate(item["client"]),
    )


@router.post("", response_model=RequestOut)
def send_request(payload: RequestCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    require_role(db, me, ROLE_CLIENT)
    request = create_request(db, me, payload)
    publish_rows([("insert", request.project), ("insert", request)])
    return request


@router.get("/sent", response_model=List[RequestOut])
def list_sent_requests(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    require_role(db, me, ROLE_CLIENT)
    return (
        db.query(ProjectRequest)
        .filter(ProjectRequest.client_id == me.id)
        .order_by(ProjectRequest.created_at.desc())
        .all()
    )


@router.get("/pending", response_model=List[RequestWithDetails])
def pending_requests(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    require_role(db, me, ROLE_PRO)
    return [serialize_pending(item) for item in list_pending_requests(db, me)]


@router.post("/{request_id}/respond", response_model=RequestOut)
def respond(
    request_id: uuid.UUID,
    payload: RespondRequest,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    require_role(db, me, ROLE_PRO)
    request = respond_to_request(db, me, request_id, payload.accept, payload.project_id)
    changes = [("update", request)]
    if payload.accept:
        changes.append(("update", request.project))
    publish_rows(changes)
    return request
