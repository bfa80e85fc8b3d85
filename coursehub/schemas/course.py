from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Category = Literal[
    "Computer Science",
    "Engineering",
    "Mathematics",
    "Physics",
    "Chemistry",
    "Biology",
    "Business",
    "Arts",
    "Other",
]
Level = Literal["Beginner", "Intermediate", "Advanced"]


class CourseCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: Category = "Other"
    level: Level = "Beginner"


class CourseRead(BaseModel):
    id: int
    title: str
    description: str | None = None
    category: str
    level: str
    instructor_id: int
    created_at: datetime

    class Config:
        from_attributes = True
