from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from coursehub.core.clock import as_utc
from coursehub.core.current_user import get_current_user
from coursehub.core.deps import get_db
from coursehub.core.errors import ValidationFailed
from coursehub.core.permissions import require_faculty
from coursehub.models.assignment import Assignment
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.user import ROLE_ADMIN, User
from coursehub.schemas.assignment import AssignmentCreate, AssignmentRead

router = APIRouter()


def _ensure_course_exists(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def _is_course_staff(course: Course, user: User) -> bool:
    return user.role == ROLE_ADMIN or course.instructor_id == user.id


@router.get("/courses/{course_id}/assignments", response_model=list[AssignmentRead])
def list_assignments(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    course = _ensure_course_exists(db, course_id)
    q = db.query(Assignment).filter(Assignment.course_id == course_id)

    if not _is_course_staff(course, current_user):
        enrolled = (
            db.query(Enrollment)
            .filter(Enrollment.course_id == course_id, Enrollment.student_id == current_user.id)
            .first()
            is not None
        )
        if not enrolled:
            raise HTTPException(status_code=403, detail="Not enrolled in this course")
        # students never see drafts
        q = q.filter(Assignment.is_published.is_(True))

    return q.order_by(Assignment.due_at.asc(), Assignment.id.asc()).all()


@router.post(
    "/courses/{course_id}/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_assignment(
    course_id: int,
    payload: AssignmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    faculty: User = Depends(require_faculty),
):
    course = _ensure_course_exists(db, course_id)
    if course.instructor_id != faculty.id:
        raise HTTPException(status_code=403, detail="Only the course instructor can create assignments")
    if payload.due_at <= as_utc(request.app.state.clock()):
        raise ValidationFailed("Due date must be in the future")

    a = Assignment(
        course_id=course_id,
        title=payload.title,
        description=payload.description,
        due_at=payload.due_at,
        total_marks=payload.total_marks,
        created_by=faculty.id,
    )
    db.add(a)
    db.commit()
    db.refresh(a)
    return a


@router.post("/assignments/{assignment_id}/publish", response_model=AssignmentRead)
def publish_assignment(
    assignment_id: int,
    db: Session = Depends(get_db),
    faculty: User = Depends(require_faculty),
):
    a = db.get(Assignment, assignment_id)
    if not a:
        raise HTTPException(status_code=404, detail="Assignment not found")
    if a.course.instructor_id != faculty.id:
        raise HTTPException(status_code=403, detail="Only the course instructor can publish")

    a.is_published = True
    db.commit()
    db.refresh(a)
    return a
