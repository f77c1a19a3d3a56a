from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_optional_user
from ..db import get_db
from ..models.models import User, ROLE_CLIENT, ROLE_PRO
from ..schemas.profiles import ClientProfileOut, ProProfileOut
from ..services import metrics
from ..services.request_lifecycle import list_pending_requests
from ..services.roles import dashboard_destination, require_role, ONBOARDING_PATH
from .projects import projects_for, serialize_project
from .requests import serialize_pending


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("")
def dashboard_redirect(db: Session = Depends(get_db), me: Optional[User] = Depends(get_optional_user)):
    """Where the single /dashboard entry point sends the caller."""
    return {"redirect": dashboard_destination(db, me)}


@router.get("/client")
def client_dashboard(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    profile = require_role(db, me, ROLE_CLIENT)
    projects = projects_for(db, me, ROLE_CLIENT)
    return {
        "profile": ClientProfileOut.model_validate(profile).model_dump(mode="json") if profile else None,
        "projects": [serialize_project(p).model_dump(mode="json") for p in projects],
        "summary": metrics.portfolio_summary(projects),
    }


@router.get("/pro")
def pro_dashboard(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    profile = require_role(db, me, ROLE_PRO)
    if profile is None or not profile.onboarding_complete:
        return {"redirect": ONBOARDING_PATH}
    projects = projects_for(db, me, ROLE_PRO)
    active = [p for p in projects if p.status == "in_progress"]
    pending = list_pending_requests(db, me)
    return {
        "profile": ProProfileOut.model_validate(profile).model_dump(mode="json"),
        "active_projects": [serialize_project(p).model_dump(mode="json") for p in active],
        "stats": {
            "active_count": metrics.active_count(projects),
            "revenue": metrics.total_budget(projects),
            "average_progress": metrics.average_progress(projects),
            "completed_count": metrics.completed_count(projects),
        },
        "pending_requests": [serialize_pending(item).model_dump(mode="json") for item in pending],
    }
