from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AttachmentRef(BaseModel):
    filename: str
    path: str
    mimetype: Optional[str] = None


class SubmissionCreate(BaseModel):
    comment: Optional[str] = None
    attachments: list[AttachmentRef] = Field(default_factory=list)


class GradeRead(BaseModel):
    marks: float
    feedback: Optional[str] = None
    graded_by: int
    graded_at: datetime


class SubmissionRead(BaseModel):
    id: int
    assignment_id: int
    student_id: int
    submitted_at: datetime
    comment: Optional[str] = None
    attachments: list[AttachmentRef] = Field(default_factory=list)
    status: str
    grade: Optional[GradeRead] = None

    @classmethod
    def from_submission(cls, sub) -> "SubmissionRead":
        grade = None
        if sub.graded_at is not None:
            grade = GradeRead(
                marks=sub.marks,
                feedback=sub.feedback,
                graded_by=sub.graded_by,
                graded_at=sub.graded_at,
            )
        return cls(
            id=sub.id,
            assignment_id=sub.assignment_id,
            student_id=sub.student_id,
            submitted_at=sub.submitted_at,
            comment=sub.comment,
            attachments=sub.attachments or [],
            status=sub.status,
            grade=grade,
        )


class SubmissionGradeUpdate(BaseModel):
    marks: float
    feedback: Optional[str] = None
