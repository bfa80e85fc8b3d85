from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from coursehub.core.current_user import get_current_user
from coursehub.core.deps import get_db
from coursehub.core.permissions import require_faculty
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.user import ROLE_FACULTY, User
from coursehub.schemas.course import CourseCreate, CourseRead

router = APIRouter()


@router.get("", response_model=list[CourseRead])
def list_courses(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return db.query(Course).order_by(Course.id.asc()).all()


@router.post("", response_model=CourseRead, status_code=status.HTTP_201_CREATED)
def create_course(
    payload: CourseCreate,
    db: Session = Depends(get_db),
    faculty: User = Depends(require_faculty),
):
    course = Course(
        title=payload.title,
        description=payload.description,
        category=payload.category,
        level=payload.level,
        instructor_id=faculty.id,
    )
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@router.get("/me", response_model=list[CourseRead])
def my_courses(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # enrolled courses for students, taught courses for faculty
    q = db.query(Course)
    if current_user.role == ROLE_FACULTY:
        q = q.filter(Course.instructor_id == current_user.id)
    else:
        q = q.join(Enrollment, Enrollment.course_id == Course.id).filter(
            Enrollment.student_id == current_user.id
        )
    return q.order_by(Course.id.asc()).all()
