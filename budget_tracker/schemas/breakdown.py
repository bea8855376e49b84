from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from budget_tracker.models.fund_type import BreakdownStatus


class BreakdownFields(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    project_title: Optional[str] = None
    municipality: Optional[str] = None
    barangay: Optional[str] = None
    district: Optional[str] = None
    remarks: Optional[str] = None
    fund_source: Optional[str] = None
    project_accomplishment: Optional[float] = Field(None, ge=0, le=100)
    status: Optional[BreakdownStatus] = None
    date_started: Optional[date] = None
    target_date: Optional[date] = None
    completion_date: Optional[date] = None
    report_date: Optional[date] = None


class BreakdownCreate(BreakdownFields):
    project_name: str = Field(..., min_length=1)
    implementing_office: str
    allocated_budget: float = Field(0, ge=0)
    obligated_budget: float = Field(0, ge=0)
    budget_utilized: float = Field(0, ge=0)


class BreakdownCreateRequest(BreakdownCreate):
    confirm_violations: bool = False


class BreakdownUpdate(BreakdownFields):
    project_name: Optional[str] = Field(None, min_length=1)
    implementing_office: Optional[str] = None
    allocated_budget: Optional[float] = Field(None, ge=0)
    obligated_budget: Optional[float] = Field(None, ge=0)
    budget_utilized: Optional[float] = Field(None, ge=0)


class BreakdownUpdateRequest(BreakdownUpdate):
    confirm_violations: bool = False
    reason: Optional[str] = None


class BreakdownBulkUpdateItem(BreakdownUpdate):
    id: int


class BreakdownBulkCreateRequest(BaseModel):
    items: list[BreakdownCreate] = Field(..., min_length=1)
    confirm_violations: bool = False


class BreakdownBulkUpdateRequest(BaseModel):
    items: list[BreakdownBulkUpdateItem] = Field(..., min_length=1)
    confirm_violations: bool = False
    reason: Optional[str] = None


class BreakdownOut(BaseModel):
    id: int
    parent_id: Optional[int] = None
    project_name: str
    implementing_office: str
    project_title: Optional[str]
    municipality: Optional[str]
    barangay: Optional[str]
    district: Optional[str]
    remarks: Optional[str]
    fund_source: Optional[str]
    allocated_budget: float
    obligated_budget: float
    budget_utilized: float
    balance: float
    utilization_rate: float
    project_accomplishment: Optional[float]
    status: Optional[str]
    date_started: Optional[date]
    target_date: Optional[date]
    completion_date: Optional[date]
    report_date: Optional[date]
    batch_id: Optional[str]
    is_deleted: bool
    deleted_at: Optional[datetime]
    deletion_reason: Optional[str]
    created_at: datetime
    created_by_id: Optional[int]
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BreakdownStats(BaseModel):
    parent_id: int
    count: int
    total_allocated: float
    total_obligated: float
    total_utilized: float
    total_balance: float
    utilization_rate: float
    by_status: dict[str, int]
    parent_total: float
    available: float
