import json
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, field_validator


class ActivityOut(BaseModel):
    id: int
    action: str
    entity_kind: str
    entity_id: Optional[int]
    fund_id: Optional[int]
    previous_values: Optional[dict[str, Any]]
    new_values: Optional[dict[str, Any]]
    changed_fields: Optional[list[str]]
    change_summary: Optional[dict[str, Any]]
    performed_by_id: Optional[int]
    performed_by_name: Optional[str]
    performed_by_email: Optional[str]
    performed_by_role: Optional[str]
    performed_by_department_name: Optional[str]
    timestamp: datetime
    batch_id: Optional[str]
    record_count: Optional[int]
    reason: Optional[str]
    source: str
    is_flagged: bool
    flag_reason: Optional[str]

    model_config = ConfigDict(from_attributes=True)

    @field_validator("previous_values", "new_values", "changed_fields", "change_summary", mode="before")
    @classmethod
    def parse_json(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value


class ActivityPage(BaseModel):
    items: list[ActivityOut]
    total: int
