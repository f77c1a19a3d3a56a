import asyncio
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, File, Form, UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import UpstreamError
from ..models.models import (
    Project,
    ProjectPhase,
    ProjectPhoto,
    ProjectCost,
    User,
    ROLE_CLIENT,
)
from ..schemas.profiles import ClientProfileOut, ProProfileOut
from ..schemas.projects import (
    ProjectCreate,
    ProjectUpdate,
    ProjectOut,
    ProjectDetails,
    ProjectMetrics,
    PhaseCreate,
    PhaseUpdate,
    PhaseOut,
    PhotoOut,
    CostCreate,
    CostUpdate,
    CostOut,
    PortfolioSummary,
    CLIENT_FIELDS,
    PRO_FIELDS,
)
from ..services import metrics
from ..services.change_feed import feed, publish_rows, row_to_record
from ..services.onboarding import file_extension
from ..services.roles import resolve_role, require_role, get_client_profile, get_pro_profile
from ..storage.blob_provider import get_storage
from ..storage.provider import StorageProvider, BUCKET_PROJECT_PHOTOS


router = APIRouter(prefix="/projects", tags=["projects"])
logger = structlog.get_logger(__name__)


def serialize_project(p: Project) -> ProjectOut:
    out = ProjectOut.model_validate(p)
    out.over_budget = metrics.is_over_budget(p)
    out.budget_utilization = metrics.budget_utilization(p)
    return out


def projects_for(db: Session, user: User, role: str) -> List[Project]:
    column = Project.client_id if role == ROLE_CLIENT else Project.pro_id
    return db.query(Project).filter(column == user.id).order_by(Project.updated_at.desc()).all()


def _get_project(db: Session, project_id: uuid.UUID, me: User) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    if me.id not in (project.client_id, project.pro_id):
        raise HTTPException(status_code=403, detail="Not a party to this project")
    return project


def _require_assigned_pro(project: Project, me: User) -> None:
    if project.pro_id != me.id:
        raise HTTPException(status_code=403, detail="Only the assigned professional can do this")


@router.get("", response_model=List[ProjectOut])
def list_projects(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    role, _ = resolve_role(db, me)
    return [serialize_project(p) for p in projects_for(db, me, role)]


@router.get("/summary", response_model=PortfolioSummary)
def projects_summary(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    role, _ = resolve_role(db, me)
    return metrics.portfolio_summary(projects_for(db, me, role))


@router.post("", response_model=ProjectOut)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    require_role(db, me, ROLE_CLIENT)
    project = Project(
        client_id=me.id,
        title=payload.title,
        description=payload.description or "",
        status="planned",
        budget=payload.budget,
        address=payload.address,
        start_date=payload.start_date,
        estimated_end_date=payload.estimated_end_date,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    publish_rows([("insert", project)])
    return serialize_project(project)


@router.get("/{project_id}", response_model=ProjectDetails)
def get_project(project_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id, me)
    phases = list(project.phases)
    costs = list(project.costs)
    client = get_client_profile(db, project.client_id)
    pro = get_pro_profile(db, project.pro_id) if project.pro_id else None
    base = serialize_project(project).model_dump()
    return ProjectDetails(
        **base,
        phases=[PhaseOut.model_validate(ph) for ph in phases],
        photos=[PhotoOut.model_validate(ph) for ph in project.photos],
        costs=[CostOut.model_validate(c) for c in costs],
        client=ClientProfileOut.model_validate(client) if client else None,
        pro=ProProfileOut.model_validate(pro) if pro else None,
        metrics=ProjectMetrics(**metrics.project_metrics(project, phases, costs, datetime.now(timezone.utc))),
    )


@router.patch("/{project_id}", response_model=ProjectOut)
def update_project(
    project_id: uuid.UUID,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = _get_project(db, project_id, me)
    changes = payload.model_dump(exclude_unset=True)
    allowed = CLIENT_FIELDS if me.id == project.client_id else PRO_FIELDS
    forbidden = sorted(set(changes) - allowed)
    if forbidden:
        raise HTTPException(status_code=403, detail=f"Cannot edit: {', '.join(forbidden)}")
    for key, value in changes.items():
        if value is None and key in {"title", "budget", "status", "progress", "spent"}:
            raise HTTPException(status_code=400, detail=f"{key} cannot be null")
        setattr(project, key, value)
    if project.start_date and project.estimated_end_date and project.estimated_end_date < project.start_date:
        raise HTTPException(status_code=400, detail="estimated_end_date must not precede start_date")
    db.commit()
    db.refresh(project)
    publish_rows([("update", project)])
    return serialize_project(project)


# ----- phases -----


@router.post("/{project_id}/phases", response_model=PhaseOut)
def create_phase(project_id: uuid.UUID, payload: PhaseCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id, me)
    _require_assigned_pro(project, me)
    sort_order = payload.sort_order
    if sort_order is None:
        current_max = db.query(func.max(ProjectPhase.sort_order)).filter(ProjectPhase.project_id == project.id).scalar()
        sort_order = (current_max or 0) + 1
    phase = ProjectPhase(
        project_id=project.id,
        name=payload.name.strip(),
        status=payload.status,
        start_date=payload.start_date,
        end_date=payload.end_date,
        sort_order=sort_order,
    )
    db.add(phase)
    db.commit()
    db.refresh(phase)
    publish_rows([("insert", phase)])
    return phase


@router.patch("/{project_id}/phases/{phase_id}", response_model=PhaseOut)
def update_phase(
    project_id: uuid.UUID,
    phase_id: uuid.UUID,
    payload: PhaseUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = _get_project(db, project_id, me)
    _require_assigned_pro(project, me)
    phase = db.query(ProjectPhase).filter(ProjectPhase.id == phase_id, ProjectPhase.project_id == project.id).first()
    if not phase:
        raise HTTPException(status_code=404, detail="Phase not found")
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is None and key in {"name", "status", "sort_order"}:
            continue
        setattr(phase, key, value)
    db.commit()
    db.refresh(phase)
    publish_rows([("update", phase)])
    return phase


# ----- costs -----


@router.post("/{project_id}/costs", response_model=CostOut)
def create_cost(project_id: uuid.UUID, payload: CostCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id, me)
    _require_assigned_pro(project, me)
    cost = ProjectCost(
        project_id=project.id,
        label=payload.label.strip(),
        amount=payload.amount,
        category=payload.category,
        date=payload.date,
        paid=payload.paid,
    )
    db.add(cost)
    db.commit()
    db.refresh(cost)
    publish_rows([("insert", cost)])
    return cost


@router.patch("/{project_id}/costs/{cost_id}", response_model=CostOut)
def update_cost(
    project_id: uuid.UUID,
    cost_id: uuid.UUID,
    payload: CostUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = _get_project(db, project_id, me)
    _require_assigned_pro(project, me)
    cost = db.query(ProjectCost).filter(ProjectCost.id == cost_id, ProjectCost.project_id == project.id).first()
    if not cost:
        raise HTTPException(status_code=404, detail="Cost not found")
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(cost, key, value)
    db.commit()
    db.refresh(cost)
    publish_rows([("update", cost)])
    return cost


# ----- photos -----


def _store_photo(
    db: Session,
    storage: StorageProvider,
    me: User,
    project_id: uuid.UUID,
    data: bytes,
    filename: Optional[str],
    content_type: str,
    caption: Optional[str],
    phase: Optional[str],
):
    project = _get_project(db, project_id, me)
    name = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{file_extension(filename, content_type)}"
    path = f"{me.id}/{project.id}/{name}"
    try:
        url = storage.upload(BUCKET_PROJECT_PHOTOS, path, data, content_type, upsert=False)
    except Exception as e:
        logger.error("project_photo_upload_failed", project_id=str(project.id), path=path, error=str(e))
        raise UpstreamError("Upload failed", str(e))
    photo = ProjectPhoto(
        project_id=project.id,
        url=url,
        caption=(caption or "").strip() or None,
        phase=(phase or "").strip() or None,
    )
    db.add(photo)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        storage.delete(BUCKET_PROJECT_PHOTOS, path)
        logger.error("project_photo_save_failed", project_id=str(project.id), error=str(e))
        raise
    db.refresh(photo)
    return PhotoOut.model_validate(photo), row_to_record(photo)


@router.post("/{project_id}/photos", response_model=PhotoOut)
async def upload_photo(
    project_id: uuid.UUID,
    file: UploadFile = File(...),
    caption: Optional[str] = Form(None),
    phase: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    content_type = file.content_type or "application/octet-stream"
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image uploads are allowed")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    photo, record = await asyncio.to_thread(
        _store_photo, db, storage, me, project_id, data, file.filename, content_type, caption, phase
    )
    await feed.publish("insert", ProjectPhoto.__tablename__, record)
    logger.info("project_photo_uploaded", project_id=str(project_id), size=len(data))
    return photo
