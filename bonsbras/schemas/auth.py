from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, Literal


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    role: Literal["client", "professional"]
    full_name: str = Field(min_length=1)
    phone: Optional[str] = None
    # professional-only attributes
    company_name: Optional[str] = None
    license_number: Optional[str] = None

    @field_validator('full_name', 'phone', 'company_name', 'license_number', mode='before')
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return None
        return str(v).strip()


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: Optional[str] = None
    redirect_to: Optional[str] = None


class OAuthStartResponse(BaseModel):
    authorization_url: str
    state: str


class SessionResponse(BaseModel):
    user_id: str
    email: EmailStr
    role: Optional[str] = None
    oauth_provider: Optional[str] = None
