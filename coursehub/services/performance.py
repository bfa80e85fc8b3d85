from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from coursehub.core.clock import utcnow
from coursehub.models.assignment import Assignment
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.quiz import Quiz, QuizStatus, QuizSubmission
from coursehub.models.submission import AssignmentStatus, AssignmentSubmission
from coursehub.models.user import User
from coursehub.services.submissions import expire_overdue_attempts


def _percent(obtained: float, total: float) -> float:
    return round(obtained / total * 100, 2) if total > 0 else 0.0


def student_performance(db: Session, student: User, now: Optional[datetime] = None) -> dict:
    """Marks obtained vs available across the student's enrolled courses.

    Only entities the student has a submission for count. Assignment marks
    stay 0 until graded; quiz marks are the auto-computed score.
    """
    expire_overdue_attempts(db, now or utcnow(), student_id=student.id)

    courses = (
        db.query(Course)
        .join(Enrollment, Enrollment.course_id == Course.id)
        .filter(Enrollment.student_id == student.id)
        .order_by(Course.id.asc())
        .all()
    )
    course_ids = [c.id for c in courses]

    items: list[dict] = []

    assignment_rows = (
        db.query(Assignment, AssignmentSubmission)
        .join(AssignmentSubmission, AssignmentSubmission.assignment_id == Assignment.id)
        .filter(
            Assignment.course_id.in_(course_ids),
            AssignmentSubmission.student_id == student.id,
        )
        .order_by(Assignment.id.asc())
        .all()
    )
    for a, sub in assignment_rows:
        items.append(
            {
                "id": a.id,
                "type": "assignment",
                "title": a.title,
                "course_id": a.course_id,
                "total_marks": a.total_marks,
                "obtained_marks": sub.marks or 0.0,
                "status": sub.status,
                "submitted_at": sub.submitted_at,
            }
        )

    quiz_rows = (
        db.query(Quiz, QuizSubmission)
        .join(QuizSubmission, QuizSubmission.quiz_id == Quiz.id)
        .filter(
            Quiz.course_id.in_(course_ids),
            QuizSubmission.student_id == student.id,
            QuizSubmission.status != QuizStatus.IN_PROGRESS.value,
        )
        .order_by(Quiz.id.asc())
        .all()
    )
    for q, sub in quiz_rows:
        items.append(
            {
                "id": q.id,
                "type": "quiz",
                "title": q.title,
                "course_id": q.course_id,
                "total_marks": q.total_marks,
                "obtained_marks": sub.score,
                "status": sub.status,
                "submitted_at": sub.submitted_at,
            }
        )

    finished = (AssignmentStatus.GRADED.value, QuizStatus.COMPLETED.value)
    per_course: list[dict] = []
    for c in courses:
        course_items = [i for i in items if i["course_id"] == c.id]
        total = sum(i["total_marks"] for i in course_items)
        obtained = sum(i["obtained_marks"] for i in course_items)
        per_course.append(
            {
                "course_id": c.id,
                "course_title": c.title,
                "total_items": len(course_items),
                "completed_items": sum(1 for i in course_items if i["status"] in finished),
                "total_marks": total,
                "obtained_marks": obtained,
                "percentage": _percent(obtained, total),
            }
        )

    return {
        "items": items,
        "courses": per_course,
        "overall_percentage": _percent(
            sum(i["obtained_marks"] for i in items),
            sum(i["total_marks"] for i in items),
        ),
    }
