from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from .profiles import ProProfileWithPortfolio, PortfolioItemOut


class OnboardingForm(BaseModel):
    """Values collected by the four-step professional onboarding wizard."""
    # step 1
    full_name: str = ""
    company_name: str = ""
    phone: Optional[str] = None
    license_number: Optional[str] = None
    years_experience: int = Field(default=0, ge=0)
    service_area: Optional[str] = None
    hourly_rate: Optional[float] = Field(default=None, gt=0)
    # step 2
    specialties: List[str] = []
    # step 3: number of portfolio images picked so far
    portfolio_count: int = Field(default=0, ge=0)
    # step 4
    description: Optional[str] = None

    @field_validator('full_name', 'company_name', mode='before')
    @classmethod
    def strip_required(cls, v):
        return str(v).strip() if v is not None else ""

    @field_validator('phone', 'license_number', 'service_area', 'description', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class StepResult(BaseModel):
    step: int
    valid: bool = True
    portfolio_kept: Optional[int] = None
    portfolio_dropped: Optional[int] = None


class OnboardingPrefill(BaseModel):
    form: OnboardingForm
    avatar_url: Optional[str] = None
    portfolio: List[PortfolioItemOut] = []
    portfolio_slots_left: int
    onboarding_complete: bool


class OnboardingResult(BaseModel):
    profile: ProProfileWithPortfolio
    portfolio_added: int
    portfolio_dropped: int
    redirect: str
