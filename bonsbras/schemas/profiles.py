import uuid
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from ..models.models import SPECIALTIES


class ClientProfileOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    full_name: str
    email: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PortfolioItemOut(BaseModel):
    id: uuid.UUID
    url: str
    caption: Optional[str] = None
    category: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProProfileOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    full_name: str
    email: str
    phone: Optional[str] = None
    company_name: str
    license_number: Optional[str] = None
    specialties: List[str] = []
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    verified: bool
    rating: float
    total_reviews: int
    years_experience: int
    service_area: Optional[str] = None
    hourly_rate: Optional[float] = None
    onboarding_complete: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProProfileWithPortfolio(ProProfileOut):
    portfolio: List[PortfolioItemOut] = []


class ProfileUpdate(BaseModel):
    """Self-service profile edit. Professional-only fields are ignored for clients."""
    full_name: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    license_number: Optional[str] = None
    specialties: Optional[List[str]] = None
    description: Optional[str] = None
    years_experience: Optional[int] = Field(default=None, ge=0)
    service_area: Optional[str] = None
    hourly_rate: Optional[float] = Field(default=None, gt=0)

    @field_validator('full_name', 'company_name', mode='before')
    @classmethod
    def non_blank(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator('phone', 'license_number', 'description', 'service_area', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('specialties')
    @classmethod
    def known_specialties(cls, v):
        if v is None:
            return None
        unknown = [s for s in v if s not in SPECIALTIES]
        if unknown:
            raise ValueError(f"unknown specialties: {', '.join(unknown)}")
        return list(dict.fromkeys(v))
