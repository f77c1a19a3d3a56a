"""
Professional onboarding.

The wizard has four steps (identity, specialties, photos, bio). The same rules
back the per-step "continue" check and the final submission. Submission uploads
every file first and only then writes the profile, portfolio rows and the
completion flag in one transaction; a failed upload deletes what was already
uploaded so a retry starts clean.
"""
import secrets
import time
import mimetypes
from typing import List, NamedTuple, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationFailed, UpstreamError
from ..models.models import ProProfile, ProPortfolioItem, User, SPECIALTIES, ROLE_PRO
from ..schemas.onboarding import OnboardingForm
from ..storage.provider import StorageProvider, BUCKET_AVATARS, BUCKET_PORTFOLIO
from .audit import create_audit_log
from .roles import get_pro_profile, PRO_DASHBOARD_PATH

logger = structlog.get_logger(__name__)

STEPS = (1, 2, 3, 4)


class ImageUpload(NamedTuple):
    filename: str
    content_type: str
    data: bytes
    caption: Optional[str] = None


def file_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext.isalnum():
            return ext
    guessed = mimetypes.guess_extension(content_type or "") if content_type else None
    return (guessed or ".bin").lstrip(".")


def clamp_portfolio(existing: int, incoming: int) -> Tuple[int, int]:
    """(kept, dropped) so that existing + kept never exceeds the portfolio cap."""
    slots = max(settings.portfolio_max_items - existing, 0)
    kept = min(incoming, slots)
    return kept, incoming - kept


def validate_step(step: int, form: OnboardingForm, existing_portfolio: int = 0) -> dict:
    if step == 1:
        if not form.company_name:
            raise ValidationFailed("company_name is required", step=1)
        if not form.full_name:
            raise ValidationFailed("full_name is required", step=1)
        return {"step": 1}
    if step == 2:
        if not form.specialties:
            raise ValidationFailed("Select at least one specialty", step=2)
        unknown = [s for s in form.specialties if s not in SPECIALTIES]
        if unknown:
            raise ValidationFailed(f"Unknown specialties: {', '.join(unknown)}", step=2)
        return {"step": 2}
    if step == 3:
        kept, dropped = clamp_portfolio(existing_portfolio, form.portfolio_count)
        return {"step": 3, "portfolio_kept": kept, "portfolio_dropped": dropped}
    if step == 4:
        if form.description and len(form.description) > settings.bio_max_chars:
            raise ValidationFailed(f"Bio must be at most {settings.bio_max_chars} characters", step=4)
        return {"step": 4}
    raise ValidationFailed(f"Unknown onboarding step {step}")


def _check_images(avatar: Optional[ImageUpload], images: List[ImageUpload]) -> None:
    for upload in ([avatar] if avatar else []) + list(images):
        if not (upload.content_type or "").startswith("image/"):
            raise ValidationFailed(f"{upload.filename or 'file'} is not an image", step=3)
        if not upload.data:
            raise ValidationFailed(f"{upload.filename or 'file'} is empty", step=3)


def portfolio_count(db: Session, user_id) -> int:
    return db.query(ProPortfolioItem).filter(ProPortfolioItem.pro_id == user_id).count()


def prefill(db: Session, user: User) -> dict:
    profile = get_pro_profile(db, user.id)
    existing = profile.portfolio if profile is not None else []
    if profile is None:
        meta = user.user_metadata or {}
        form = OnboardingForm(
            full_name=meta.get("full_name") or "",
            company_name=meta.get("company_name") or "",
            phone=meta.get("phone"),
            license_number=meta.get("license_number"),
        )
    else:
        form = OnboardingForm(
            full_name=profile.full_name,
            company_name=profile.company_name,
            phone=profile.phone,
            license_number=profile.license_number,
            years_experience=profile.years_experience or 0,
            service_area=profile.service_area,
            hourly_rate=float(profile.hourly_rate) if profile.hourly_rate is not None else None,
            specialties=list(profile.specialties or []),
            description=profile.description,
        )
    return {
        "form": form,
        "avatar_url": profile.avatar_url if profile is not None else None,
        "portfolio": list(existing),
        "portfolio_slots_left": max(settings.portfolio_max_items - len(existing), 0),
        "onboarding_complete": bool(profile is not None and profile.onboarding_complete),
    }


def _object_name(upload: ImageUpload) -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{file_extension(upload.filename, upload.content_type)}"


def _delete_uploaded(storage: StorageProvider, uploaded: List[Tuple[str, str]]) -> None:
    for bucket, path in uploaded:
        try:
            storage.delete(bucket, path)
        except Exception as e:
            logger.warning("onboarding_compensation_failed", bucket=bucket, path=path, error=str(e))


def submit(
    db: Session,
    storage: StorageProvider,
    user: User,
    form: OnboardingForm,
    avatar: Optional[ImageUpload] = None,
    images: Optional[List[ImageUpload]] = None,
) -> dict:
    images = list(images or [])
    for step in (1, 2, 4):
        validate_step(step, form)
    _check_images(avatar, images)

    existing = portfolio_count(db, user.id)
    kept, dropped = clamp_portfolio(existing, len(images))
    images = images[:kept]

    uploaded: List[Tuple[str, str]] = []
    avatar_url = avatar_key = None
    new_items = []
    try:
        if avatar is not None:
            avatar_key = f"{user.id}/avatar-{_object_name(avatar)}"
            avatar_url = storage.upload(BUCKET_AVATARS, avatar_key, avatar.data, avatar.content_type, upsert=False)
            uploaded.append((BUCKET_AVATARS, avatar_key))
        for img in images:
            path = f"{user.id}/{_object_name(img)}"
            url = storage.upload(BUCKET_PORTFOLIO, path, img.data, img.content_type, upsert=False)
            uploaded.append((BUCKET_PORTFOLIO, path))
            new_items.append((url, path, img.caption))
    except Exception as e:
        logger.error("onboarding_upload_failed", user_id=str(user.id), uploaded=len(uploaded), error=str(e))
        _delete_uploaded(storage, uploaded)
        raise UpstreamError("Upload failed", str(e))

    try:
        profile = get_pro_profile(db, user.id)
        if profile is None:
            profile = ProProfile(user_id=user.id, email=user.email)
            db.add(profile)
        was_complete = bool(profile.onboarding_complete)
        previous_avatar_key = profile.avatar_key

        profile.full_name = form.full_name
        profile.company_name = form.company_name
        profile.phone = form.phone
        profile.license_number = form.license_number
        profile.specialties = list(dict.fromkeys(form.specialties))
        profile.description = form.description
        profile.years_experience = form.years_experience
        profile.service_area = form.service_area
        profile.hourly_rate = form.hourly_rate
        if avatar_url:
            profile.avatar_url = avatar_url
            profile.avatar_key = avatar_key
        profile.onboarding_complete = True

        category = form.specialties[0]
        for url, path, caption in new_items:
            db.add(ProPortfolioItem(pro_id=user.id, url=url, storage_key=path, caption=caption or None, category=category))

        db.flush()
        if not was_complete:
            create_audit_log(
                db,
                entity_type="pro_profile",
                entity_id=profile.id,
                action="ONBOARDING_COMPLETE",
                actor_id=user.id,
                actor_role=ROLE_PRO,
                changes_json={"before": {"onboarding_complete": False}, "after": {"onboarding_complete": True}},
                context={"portfolio_added": len(new_items), "portfolio_dropped": dropped},
            )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("onboarding_submit_failed", user_id=str(user.id), error=str(e))
        _delete_uploaded(storage, uploaded)
        raise

    if avatar_key and previous_avatar_key and previous_avatar_key != avatar_key:
        # replaced avatar is only removed once the new one is committed
        _delete_uploaded(storage, [(BUCKET_AVATARS, previous_avatar_key)])

    db.refresh(profile)
    logger.info(
        "onboarding_completed" if not was_complete else "onboarding_updated",
        user_id=str(user.id),
        portfolio_added=len(new_items),
        portfolio_dropped=dropped,
    )
    return {
        "profile": profile,
        "portfolio_added": len(new_items),
        "portfolio_dropped": dropped,
        "redirect": PRO_DASHBOARD_PATH,
    }
