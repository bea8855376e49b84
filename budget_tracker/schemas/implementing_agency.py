from pydantic import BaseModel, ConfigDict


class ImplementingAgencyOut(BaseModel):
    id: int
    code: str
    full_name: str
    is_active: bool
    usage_count: int

    model_config = ConfigDict(from_attributes=True)
