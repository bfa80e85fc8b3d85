from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class PerformanceItem(BaseModel):
    id: int
    type: str  # "assignment" | "quiz"
    title: str
    course_id: int
    total_marks: float
    obtained_marks: float
    status: str
    submitted_at: Optional[datetime] = None


class CoursePerformance(BaseModel):
    course_id: int
    course_title: str
    total_items: int
    completed_items: int
    total_marks: float
    obtained_marks: float
    percentage: float


class PerformanceSummary(BaseModel):
    items: list[PerformanceItem]
    courses: list[CoursePerformance]
    overall_percentage: float
