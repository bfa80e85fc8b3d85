from typing import Optional

from fastapi import APIRouter, Depends, status

from coursehub.core.current_user import get_current_user
from coursehub.core.deps import get_submission_engine
from coursehub.core.permissions import require_faculty
from coursehub.models.user import User
from coursehub.schemas.submission import SubmissionCreate, SubmissionGradeUpdate, SubmissionRead
from coursehub.services.submissions import SubmissionEngine

router = APIRouter()


@router.post(
    "/assignments/{assignment_id}/submit",
    response_model=SubmissionRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Assignment not found or not published"},
        409: {"description": "Already submitted"},
    },
)
def submit_assignment(
    assignment_id: int,
    payload: SubmissionCreate,
    engine: SubmissionEngine = Depends(get_submission_engine),
    me: User = Depends(get_current_user),
):
    sub = engine.submit_assignment(
        assignment_id,
        me,
        comment=payload.comment,
        attachments=[a.model_dump() for a in payload.attachments],
    )
    return SubmissionRead.from_submission(sub)


@router.get(
    "/assignments/{assignment_id}/submissions",
    response_model=list[SubmissionRead],
)
def list_submissions_for_assignment(
    assignment_id: int,
    student_id: Optional[int] = None,
    engine: SubmissionEngine = Depends(get_submission_engine),
    me: User = Depends(get_current_user),
):
    subs = engine.list_assignment_submissions(assignment_id, me, student_id=student_id)
    return [SubmissionRead.from_submission(s) for s in subs]


@router.post(
    "/assignments/{assignment_id}/grade/{submission_id}",
    response_model=SubmissionRead,
    responses={
        403: {"description": "Not the course instructor"},
        404: {"description": "Assignment or submission not found"},
    },
)
def grade_submission(
    assignment_id: int,
    submission_id: int,
    payload: SubmissionGradeUpdate,
    engine: SubmissionEngine = Depends(get_submission_engine),
    faculty: User = Depends(require_faculty),
):
    sub = engine.grade_assignment(
        assignment_id,
        submission_id,
        marks=payload.marks,
        feedback=payload.feedback,
        grader=faculty,
    )
    return SubmissionRead.from_submission(sub)
