from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import LOGIN_PATH
from ..models.models import User, RefreshToken, ClientProfile, ProProfile, ROLE_CLIENT, ROLE_PRO, ROLES
from ..schemas.auth import (
    SignUpRequest,
    SignInRequest,
    RefreshRequest,
    TokenResponse,
    OAuthStartResponse,
    SessionResponse,
)
from ..services.oauth import GoogleOAuthClient, get_oauth_client
from ..services.roles import dashboard_destination, resolve_role
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    create_state_token,
    decode_token,
    get_current_user,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def oauth_client(provider: str) -> GoogleOAuthClient:
    return get_oauth_client(provider)


def _role_or_none(db: Session, user: User) -> Optional[str]:
    try:
        role, _ = resolve_role(db, user)
    except HTTPException:
        return None
    return role


def _issue_tokens(db: Session, user: User) -> TokenResponse:
    role = _role_or_none(db, user)
    access = create_access_token(str(user.id), role=role)
    refresh = create_refresh_token(db, user.id)
    user.last_login_at = datetime.now(timezone.utc)
    redirect_to = dashboard_destination(db, user) if role else None
    db.commit()
    return TokenResponse(access_token=access, refresh_token=refresh, role=role, redirect_to=redirect_to)


def _create_profile(db: Session, user: User, role: str, full_name: str, phone: Optional[str] = None,
                    company_name: Optional[str] = None, license_number: Optional[str] = None) -> None:
    if role == ROLE_CLIENT:
        db.add(ClientProfile(user_id=user.id, full_name=full_name, email=user.email, phone=phone))
    else:
        db.add(
            ProProfile(
                user_id=user.id,
                full_name=full_name,
                email=user.email,
                phone=phone,
                company_name=company_name or "",
                license_number=license_number,
                onboarding_complete=False,
            )
        )


@router.post("/signup", response_model=TokenResponse)
def signup(req: SignUpRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")
    if req.role == ROLE_PRO and not req.company_name:
        raise HTTPException(status_code=400, detail="company_name is required for professionals")

    metadata = {"role": req.role, "full_name": req.full_name, "phone": req.phone}
    if req.role == ROLE_PRO:
        metadata.update({"company_name": req.company_name, "license_number": req.license_number})
    user = User(email=email, password_hash=get_password_hash(req.password), user_metadata=metadata)
    db.add(user)
    db.flush()
    _create_profile(db, user, req.role, req.full_name, req.phone, req.company_name, req.license_number)
    db.flush()
    logger.info("user_signed_up", user_id=str(user.id), role=req.role)
    return _issue_tokens(db, user)


@router.post("/signin", response_model=TokenResponse)
def signin(req: SignInRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _issue_tokens(db, user)


@router.get("/oauth/{provider}", response_model=OAuthStartResponse)
def oauth_start(provider: str, role: Optional[str] = None, client: GoogleOAuthClient = Depends(oauth_client)):
    if role is not None and role not in ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    state = create_state_token({"provider": provider, "role": role})
    return OAuthStartResponse(authorization_url=client.authorization_url(state), state=state)


@router.get("/oauth/{provider}/callback", response_model=TokenResponse)
def oauth_callback(
    provider: str,
    code: str,
    state: str,
    db: Session = Depends(get_db),
    client: GoogleOAuthClient = Depends(oauth_client),
):
    claims = decode_token(state)
    if claims.get("type") != "oauth_state" or claims.get("provider") != provider:
        raise HTTPException(status_code=400, detail="Invalid OAuth state")

    identity = client.exchange_code(code)
    user = (
        db.query(User)
        .filter(User.oauth_provider == provider, User.oauth_subject == identity["subject"])
        .first()
    )
    if user is None:
        user = db.query(User).filter(User.email == identity["email"]).first()
        if user is None:
            role_hint = claims.get("role")
            user = User(
                email=identity["email"],
                user_metadata={"role": role_hint, "full_name": identity["name"]} if role_hint else {"full_name": identity["name"]},
            )
            db.add(user)
            db.flush()
            if role_hint:
                _create_profile(db, user, role_hint, identity["name"])
            logger.info("user_signed_up", user_id=str(user.id), role=role_hint, provider=provider)
        user.oauth_provider = provider
        user.oauth_subject = identity["subject"]
        db.flush()
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    return _issue_tokens(db, user)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    stored = db.query(RefreshToken).filter(RefreshToken.jti == payload.get("jti")).first()
    if stored is None:
        raise HTTPException(status_code=401, detail="Refresh token revoked")
    user = db.query(User).filter(User.id == stored.user_id).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    # rotate: each refresh token is single-use
    db.delete(stored)
    return _issue_tokens(db, user)


@router.post("/signout")
def signout(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    revoked = db.query(RefreshToken).filter(RefreshToken.user_id == user.id).delete()
    db.commit()
    logger.info("user_signed_out", user_id=str(user.id), revoked=revoked)
    return {"status": "ok", "redirect": LOGIN_PATH}


@router.get("/session", response_model=SessionResponse)
def session(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return SessionResponse(
        user_id=str(user.id),
        email=user.email,
        role=_role_or_none(db, user),
        oauth_provider=user.oauth_provider,
    )
