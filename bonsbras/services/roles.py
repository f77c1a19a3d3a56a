from typing import Optional, Tuple, Union

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ..errors import ProfileNotFound, LOGIN_PATH
from ..models.models import ClientProfile, ProProfile, User, ROLE_CLIENT, ROLE_PRO, ROLES

CLIENT_DASHBOARD_PATH = "/dashboard/client"
PRO_DASHBOARD_PATH = "/dashboard/entrepreneur"
ONBOARDING_PATH = "/onboarding"
DASHBOARD_PATH = "/dashboard"


def get_client_profile(db: Session, user_id) -> Optional[ClientProfile]:
    return db.query(ClientProfile).filter(ClientProfile.user_id == user_id).first()


def get_pro_profile(db: Session, user_id) -> Optional[ProProfile]:
    return db.query(ProProfile).filter(ProProfile.user_id == user_id).first()


def metadata_role(user: User) -> Optional[str]:
    role = (user.user_metadata or {}).get("role")
    return role if role in ROLES else None


def resolve_role(db: Session, user: User) -> Tuple[str, Optional[Union[ClientProfile, ProProfile]]]:
    """
    Resolve the caller's role and profile.

    A client profile wins over a professional profile; without either, the role
    hint stored at sign-up is used and the profile is None. Raises
    ProfileNotFound when nothing identifies the user.
    """
    client = get_client_profile(db, user.id)
    if client is not None:
        return ROLE_CLIENT, client
    pro = get_pro_profile(db, user.id)
    if pro is not None:
        return ROLE_PRO, pro
    role = metadata_role(user)
    if role is not None:
        return role, None
    raise ProfileNotFound()


def dashboard_destination(db: Session, user: Optional[User]) -> str:
    if user is None:
        return LOGIN_PATH
    role, profile = resolve_role(db, user)
    if role == ROLE_CLIENT:
        return CLIENT_DASHBOARD_PATH
    if profile is None or not profile.onboarding_complete:
        return ONBOARDING_PATH
    return PRO_DASHBOARD_PATH


def require_role(db: Session, user: User, role: str):
    """Return the caller's profile, or 403 when the caller has another role."""
    actual, profile = resolve_role(db, user)
    if actual != role:
        raise HTTPException(status_code=403, detail=f"Only {role} accounts can do this")
    return profile
