import enum

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from coursehub.db.base_class import Base


class AssignmentStatus(str, enum.Enum):
    # "pending" is never stored: it is the absence of a row
    SUBMITTED = "submitted"
    LATE = "late"
    GRADED = "graded"


class AssignmentSubmission(Base):
    __tablename__ = "assignment_submissions"

    id = Column(Integer, primary_key=True, index=True)

    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    submitted_at = Column(DateTime(timezone=True), nullable=False)
    comment = Column(Text, nullable=True)
    # [{"filename", "path", "mimetype"}]; the files themselves live in external storage
    attachments = Column(JSON, nullable=False, default=list)

    status = Column(String(20), nullable=False, default=AssignmentStatus.SUBMITTED.value)

    # Grading fields (nullable until graded)
    marks = Column(Float, nullable=True)
    feedback = Column(Text, nullable=True)
    graded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", name="uq_assignment_submission_student"),
    )

    assignment = relationship("Assignment", back_populates="submissions")
