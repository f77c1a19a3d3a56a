import uuid
import datetime as dt
from datetime import date, datetime
from typing import Optional, List, Literal, Dict

from pydantic import BaseModel, Field, field_validator, model_validator

from .profiles import ClientProfileOut, ProProfileOut


ProjectStatus = Literal["planned", "in_progress", "done", "paused"]
PhaseStatus = Literal["done", "in_progress", "pending"]
CostCategory = Literal["materials", "labor", "permits", "other"]
RequestStatus = Literal["pending", "accepted", "declined"]


class ProjectBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    budget: float = Field(default=0, ge=0)
    address: Optional[str] = None
    start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None

    @field_validator('title', mode='before')
    @classmethod
    def strip_title(cls, v):
        return str(v).strip() if v is not None else v

    @model_validator(mode='after')
    def end_after_start(self):
        if self.start_date and self.estimated_end_date and self.estimated_end_date < self.start_date:
            raise ValueError("estimated_end_date must not precede start_date")
        return self


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    # client-owned fields
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    budget: Optional[float] = Field(default=None, ge=0)
    address: Optional[str] = None
    start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None
    # professional-owned fields
    status: Optional[ProjectStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    spent: Optional[float] = Field(default=None, ge=0)


CLIENT_FIELDS = {"title", "description", "budget", "address", "start_date", "estimated_end_date"}
PRO_FIELDS = {"status", "progress", "spent"}


class ProjectOut(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    pro_id: Optional[uuid.UUID] = None
    title: str
    description: str
    status: str
    progress: int
    budget: float
    spent: float
    over_budget: bool = False
    budget_utilization: int = 0
    address: Optional[str] = None
    start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PhaseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    status: PhaseStatus = "pending"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sort_order: Optional[int] = None


class PhaseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    status: Optional[PhaseStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sort_order: Optional[int] = None


class PhaseOut(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    name: str
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sort_order: int

    class Config:
        from_attributes = True


class PhotoOut(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    url: str
    caption: Optional[str] = None
    phase: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CostCreate(BaseModel):
    label: str = Field(min_length=1, max_length=255)
    amount: float = Field(gt=0)
    category: CostCategory = "other"
    date: dt.date
    paid: bool = False


class CostUpdate(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[float] = Field(default=None, gt=0)
    category: Optional[CostCategory] = None
    paid: Optional[bool] = None


class CostOut(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    label: str
    amount: float
    category: str
    date: dt.date
    paid: bool

    class Config:
        from_attributes = True


class ProjectMetrics(BaseModel):
    budget_utilization: int
    over_budget: bool
    completed_phases: int
    total_phases: int
    current_phase: Optional[str] = None
    duration_weeks: int
    days_remaining: Optional[int] = None
    cost_totals: Dict[str, float]
    costs_reconciled: bool


class ProjectDetails(ProjectOut):
    phases: List[PhaseOut] = []
    photos: List[PhotoOut] = []
    costs: List[CostOut] = []
    client: Optional[ClientProfileOut] = None
    pro: Optional[ProProfileOut] = None
    metrics: ProjectMetrics


class PortfolioSummary(BaseModel):
    total_budget: float
    total_spent: float
    active_count: int
    completed_count: int
    average_progress: int
    project_count: int


# ----- Requests -----


class RequestCreate(ProjectBase):
    pro_id: uuid.UUID
    message: Optional[str] = None


class RespondRequest(BaseModel):
    accept: bool
    project_id: Optional[uuid.UUID] = None


class RequestOut(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    client_id: uuid.UUID
    pro_id: uuid.UUID
    status: str
    message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RequestWithDetails(RequestOut):
    project: ProjectOut
    client: ClientProfileOut
