from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursehub.core.deps import get_db
from coursehub.core.permissions import require_student
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.user import User
from coursehub.schemas.enrollment import EnrollmentCreate, EnrollmentOut

router = APIRouter()


@router.post("", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
def enroll_me(
    payload: EnrollmentCreate,
    db: Session = Depends(get_db),
    me: User = Depends(require_student),
):
    if db.get(Course, payload.course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")

    enrollment = Enrollment(student_id=me.id, course_id=payload.course_id)
    db.add(enrollment)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Already enrolled")

    db.refresh(enrollment)
    return enrollment


@router.get("/me", response_model=list[EnrollmentOut])
def my_enrollments(
    db: Session = Depends(get_db),
    me: User = Depends(require_student),
):
    return db.query(Enrollment).filter(Enrollment.student_id == me.id).all()
