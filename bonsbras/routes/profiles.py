import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..config import settings
from ..db import get_db
from ..models.models import ProPortfolioItem, User, ROLE_CLIENT, ROLE_PRO
from ..schemas.profiles import ClientProfileOut, ProProfileWithPortfolio, ProfileUpdate
from ..services.change_feed import publish_rows
from ..services.roles import resolve_role
from ..storage.blob_provider import get_storage
from ..storage.provider import StorageProvider, BUCKET_PORTFOLIO
from ..errors import ProfileNotFound


router = APIRouter(prefix="/profiles", tags=["profiles"])
logger = structlog.get_logger(__name__)

CLIENT_EDITABLE = {"full_name", "phone"}


def _serialize_profile(role: str, profile) -> dict:
    if role == ROLE_CLIENT:
        return {"role": role, "profile": ClientProfileOut.model_validate(profile).model_dump(mode="json")}
    return {"role": role, "profile": ProProfileWithPortfolio.model_validate(profile).model_dump(mode="json")}


def _own_profile(db: Session, me: User):
    role, profile = resolve_role(db, me)
    if profile is None:
        raise ProfileNotFound()
    return role, profile


@router.get("/me")
def get_my_profile(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    role, profile = _own_profile(db, me)
    return _serialize_profile(role, profile)


@router.patch("/me")
def update_my_profile(payload: ProfileUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    role, profile = _own_profile(db, me)
    changes = payload.model_dump(exclude_unset=True)
    if role == ROLE_CLIENT:
        changes = {k: v for k, v in changes.items() if k in CLIENT_EDITABLE}
    if "description" in changes and changes["description"] and len(changes["description"]) > settings.bio_max_chars:
        raise HTTPException(status_code=400, detail=f"description must be at most {settings.bio_max_chars} characters")
    if role == ROLE_PRO and "specialties" in changes and not changes["specialties"]:
        raise HTTPException(status_code=400, detail="Select at least one specialty")
    for key, value in changes.items():
        if value is None and key in {"full_name", "company_name", "specialties", "years_experience"}:
            continue
        setattr(profile, key, value)
    db.commit()
    db.refresh(profile)
    publish_rows([("update", profile)])
    return _serialize_profile(role, profile)


@router.delete("/me/portfolio/{item_id}")
def delete_portfolio_item(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    item = db.query(ProPortfolioItem).filter(ProPortfolioItem.id == item_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Portfolio item not found")
    if item.pro_id != me.id:
        raise HTTPException(status_code=403, detail="Not your portfolio item")
    storage_key = item.storage_key
    db.delete(item)
    db.commit()
    if storage_key:
        try:
            storage.delete(BUCKET_PORTFOLIO, storage_key)
        except Exception as e:
            logger.warning("portfolio_object_delete_failed", item_id=str(item_id), error=str(e))
    return {"status": "ok", "id": str(item_id)}
