import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User, ROLE_PRO
from ..schemas.onboarding import OnboardingForm, OnboardingPrefill, OnboardingResult, StepResult
from ..schemas.profiles import ProProfileWithPortfolio, PortfolioItemOut
from ..services import onboarding
from ..services.change_feed import feed, row_to_record
from ..services.roles import resolve_role, DASHBOARD_PATH
from ..storage.blob_provider import get_storage
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/onboarding", tags=["onboarding"])


async def _to_upload(file: UploadFile, caption: Optional[str] = None) -> onboarding.ImageUpload:
    return onboarding.ImageUpload(
        filename=file.filename or "",
        content_type=file.content_type or "application/octet-stream",
        data=await file.read(),
        caption=(caption or "").strip() or None,
    )


def _is_pro(db: Session, me: User) -> bool:
    role, _ = resolve_role(db, me)
    return role == ROLE_PRO


def _submit(db: Session, storage: StorageProvider, me: User, form: OnboardingForm, avatar, images):
    result = onboarding.submit(db, storage, me, form, avatar=avatar, images=images)
    profile = result["profile"]
    body = OnboardingResult(
        profile=ProProfileWithPortfolio.model_validate(profile),
        portfolio_added=result["portfolio_added"],
        portfolio_dropped=result["portfolio_dropped"],
        redirect=result["redirect"],
    )
    return body, profile.__tablename__, row_to_record(profile)


@router.get("")
def get_onboarding(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    if not _is_pro(db, me):
        return {"redirect": DASHBOARD_PATH}
    data = onboarding.prefill(db, me)
    data["portfolio"] = [PortfolioItemOut.model_validate(item) for item in data["portfolio"]]
    return OnboardingPrefill(**data)


@router.post("/steps/{step}")
def validate_step(step: int, form: OnboardingForm, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    if not _is_pro(db, me):
        return {"redirect": DASHBOARD_PATH}
    existing = onboarding.portfolio_count(db, me.id)
    return StepResult(**onboarding.validate_step(step, form, existing_portfolio=existing))


@router.post("")
async def submit_onboarding(
    full_name: str = Form(""),
    company_name: str = Form(""),
    phone: Optional[str] = Form(None),
    license_number: Optional[str] = Form(None),
    years_experience: int = Form(0),
    service_area: Optional[str] = Form(None),
    hourly_rate: Optional[float] = Form(None),
    specialties: List[str] = Form([]),
    description: Optional[str] = Form(None),
    captions: List[str] = Form([]),
    avatar: Optional[UploadFile] = File(None),
    portfolio: List[UploadFile] = File([]),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    if not await asyncio.to_thread(_is_pro, db, me):
        return {"redirect": DASHBOARD_PATH}
    try:
        form = OnboardingForm(
            full_name=full_name,
            company_name=company_name,
            phone=phone,
            license_number=license_number,
            years_experience=years_experience,
            service_area=service_area,
            hourly_rate=hourly_rate,
            specialties=specialties,
            description=description,
            portfolio_count=len(portfolio),
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    avatar_upload = await _to_upload(avatar) if avatar is not None and avatar.filename else None
    images = []
    for i, file in enumerate(portfolio):
        images.append(await _to_upload(file, captions[i] if i < len(captions) else None))

    body, table, record = await asyncio.to_thread(_submit, db, storage, me, form, avatar_upload, images)
    await feed.publish("update", table, record)
    return body
