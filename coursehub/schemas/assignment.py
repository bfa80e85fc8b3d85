from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from coursehub.core.clock import as_utc


class AssignmentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str
    due_at: datetime
    total_marks: float = Field(default=100, gt=0)

    @field_validator("due_at")
    @classmethod
    def due_at_in_utc(cls, v: datetime) -> datetime:
        # stored without an offset; naive input is taken as UTC
        return as_utc(v)


class AssignmentRead(BaseModel):
    id: int
    course_id: int
    title: str
    description: Optional[str]
    due_at: datetime
    total_marks: float
    is_published: bool
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True
