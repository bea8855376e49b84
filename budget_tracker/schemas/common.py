from typing import Optional
from pydantic import BaseModel, Field


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    count: Optional[int] = None
    batch_id: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BulkTrashRequest(ReasonRequest):
    ids: list[int] = Field(..., min_length=1)


class ToggleAutoCalculateResponse(BaseModel):
    success: bool = True
    auto_calculate: bool
