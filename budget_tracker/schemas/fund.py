from datetime import date, datetime
from pydantic import BaseModel, Field
from typing import Optional


class FundCreate(BaseModel):
    """Generic fund payload. Amounts map to the fund type's own columns."""
    title: str = Field(..., min_length=1, description="Particulars or project title")
    office: str = Field(..., description="Implementing office / office in charge code")
    allocated: float = Field(0, ge=0, description="Allocated budget or amount received")
    utilized: Optional[float] = Field(None, ge=0, description="Ignored while auto-calculation is on")
    obligated: Optional[float] = Field(None, ge=0)
    status: Optional[str] = None
    remarks: Optional[str] = None
    year: Optional[int] = None
    date_received: Optional[date] = None
    auto_calculate_budget_utilized: bool = True


class FundUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    office: Optional[str] = None
    allocated: Optional[float] = Field(None, ge=0)
    utilized: Optional[float] = Field(None, ge=0)
    obligated: Optional[float] = Field(None, ge=0)
    status: Optional[str] = None
    remarks: Optional[str] = None
    year: Optional[int] = None
    date_received: Optional[date] = None
    reason: Optional[str] = None


class FundOut(BaseModel):
    id: int
    fund_type: str
    title: Optional[str]
    office: Optional[str]
    allocated: float
    utilized: float
    obligated: float
    balance: float
    utilization_rate: float
    status: Optional[str]
    remarks: Optional[str]
    year: Optional[int]
    date_received: Optional[date] = None
    auto_calculate_budget_utilized: bool
    projects_completed: Optional[int] = None
    projects_delayed: Optional[int] = None
    projects_ongoing: Optional[int] = None
    is_pinned: bool
    pinned_at: Optional[datetime]
    is_deleted: bool
    deleted_at: Optional[datetime]
    deletion_reason: Optional[str]
    created_at: datetime
    created_by_id: Optional[int]
    updated_at: datetime


class FundStatistics(BaseModel):
    fund_type: str
    count: int
    total_allocated: float
    total_utilized: float
    total_obligated: float
    total_balance: float
    average_utilization_rate: float
