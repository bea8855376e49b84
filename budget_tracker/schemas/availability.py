from typing import Optional
from pydantic import BaseModel, Field

from budget_tracker.services.availability import BudgetAvailability
from budget_tracker.services.violations import Violation, ViolationReport

__all__ = ["BudgetAvailability", "Violation", "ViolationReport", "ViolationCheckRequest"]


class ViolationCheckRequest(BaseModel):
    allocated_budget: float = Field(0, ge=0)
    budget_utilized: float = Field(0, ge=0)
    obligated_budget: float = Field(0, ge=0)
    exclude_id: Optional[int] = None
