from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from coursehub.core.clock import as_utc
from coursehub.core.current_user import get_current_user
from coursehub.core.deps import get_db, get_submission_engine
from coursehub.core.errors import ValidationFailed
from coursehub.core.permissions import require_faculty, require_student
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.quiz import Quiz, QuizOption, QuizQuestion
from coursehub.models.user import ROLE_ADMIN, User
from coursehub.schemas.quiz import QuizCreate, QuizRead, QuizResult, QuizSubmissionRead, QuizSubmit
from coursehub.services.submissions import SubmissionEngine

router = APIRouter()


@router.post(
    "/courses/{course_id}/quizzes",
    response_model=QuizRead,
    status_code=status.HTTP_201_CREATED,
)
def create_quiz(
    course_id: int,
    payload: QuizCreate,
    request: Request,
    db: Session = Depends(get_db),
    faculty: User = Depends(require_faculty),
):
    course = db.get(Course, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    if course.instructor_id != faculty.id:
        raise HTTPException(status_code=403, detail="Only the course instructor can create quizzes")
    if payload.due_at <= as_utc(request.app.state.clock()):
        raise ValidationFailed("Due date must be in the future")

    quiz = Quiz(
        course_id=course_id,
        title=payload.title,
        description=payload.description,
        time_limit_minutes=payload.time_limit_minutes,
        due_at=payload.due_at,
        allow_review=payload.allow_review,
        shuffle_questions=payload.shuffle_questions,
        created_by=faculty.id,
        questions=[
            QuizQuestion(
                position=qi,
                text=q.text,
                marks=q.marks,
                explanation=q.explanation,
                options=[
                    QuizOption(position=oi, text=o.text, is_correct=o.is_correct)
                    for oi, o in enumerate(q.options)
                ],
            )
            for qi, q in enumerate(payload.questions)
        ],
    )
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    return quiz


@router.get("/courses/{course_id}/quizzes", response_model=list[QuizRead])
def list_quizzes(
    course_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    course = db.get(Course, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    q = db.query(Quiz).filter(Quiz.course_id == course_id)
    if current_user.role != ROLE_ADMIN and course.instructor_id != current_user.id:
        enrolled = (
            db.query(Enrollment)
            .filter(Enrollment.course_id == course_id, Enrollment.student_id == current_user.id)
            .first()
        )
        if not enrolled:
            raise HTTPException(status_code=403, detail="Not enrolled in this course")
        q = q.filter(Quiz.is_published.is_(True))

    return q.order_by(Quiz.due_at.asc(), Quiz.id.asc()).all()


@router.post("/quizzes/{quiz_id}/publish", response_model=QuizRead)
def publish_quiz(
    quiz_id: int,
    db: Session = Depends(get_db),
    faculty: User = Depends(require_faculty),
):
    quiz = db.get(Quiz, quiz_id)
    if not quiz:
        raise HTTPException(status_code=404, detail="Quiz not found")
    if quiz.course.instructor_id != faculty.id:
        raise HTTPException(status_code=403, detail="Only the course instructor can publish")

    quiz.is_published = True
    db.commit()
    db.refresh(quiz)
    return quiz


@router.post("/quizzes/{quiz_id}/start", response_model=QuizSubmissionRead)
def start_quiz(
    quiz_id: int,
    engine: SubmissionEngine = Depends(get_submission_engine),
    me: User = Depends(require_student),
):
    return engine.start_quiz(quiz_id, me)


@router.post(
    "/quizzes/{quiz_id}/submit",
    response_model=QuizResult,
    responses={
        404: {"description": "Quiz not found, not published or closed"},
        409: {"description": "Already submitted"},
    },
)
def submit_quiz(
    quiz_id: int,
    payload: QuizSubmit,
    engine: SubmissionEngine = Depends(get_submission_engine),
    me: User = Depends(require_student),
):
    sub = engine.submit_quiz(quiz_id, me, payload.answers, time_taken=payload.time_taken)
    return {
        "score": sub.score,
        "percentage": sub.percentage,
        "total_marks": sub.quiz.total_marks,
        "status": sub.status,
    }


@router.get("/quizzes/{quiz_id}/submissions", response_model=list[QuizSubmissionRead])
def list_quiz_submissions(
    quiz_id: int,
    student_id: Optional[int] = None,
    engine: SubmissionEngine = Depends(get_submission_engine),
    me: User = Depends(get_current_user),
):
    return engine.list_quiz_submissions(quiz_id, me, student_id=student_id)
