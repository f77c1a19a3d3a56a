import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import ProProfile, SPECIALTIES
from ..schemas.profiles import ProProfileOut, ProProfileWithPortfolio


router = APIRouter(prefix="/pros", tags=["pros"])


@router.get("", response_model=List[ProProfileOut])
def list_pros(
    specialty: Optional[str] = None,
    verified: Optional[bool] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    if specialty is not None and specialty not in SPECIALTIES:
        raise HTTPException(status_code=400, detail="Unknown specialty")
    query = db.query(ProProfile).filter(ProProfile.onboarding_complete.is_(True))
    if verified is not None:
        query = query.filter(ProProfile.verified.is_(verified))
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(
            or_(
                ProProfile.company_name.ilike(like),
                ProProfile.full_name.ilike(like),
                ProProfile.service_area.ilike(like),
            )
        )
    rows = query.order_by(ProProfile.rating.desc(), ProProfile.total_reviews.desc()).all()
    # specialties is a JSON list; filter in Python so SQLite and PostgreSQL behave alike
    if specialty is not None:
        rows = [p for p in rows if specialty in (p.specialties or [])]
    return rows


@router.get("/{user_id}", response_model=ProProfileWithPortfolio)
def get_pro(user_id: uuid.UUID, db: Session = Depends(get_db)):
    profile = db.query(ProProfile).filter(ProProfile.user_id == user_id).first()
    if not profile or not profile.onboarding_complete:
        raise HTTPException(status_code=404, detail="Professional not found")
    return profile
