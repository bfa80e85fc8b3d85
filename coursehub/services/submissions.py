"""Submission lifecycle for assignments and quizzes.

Assignment: (no row) -> submitted | late -> graded
Quiz:       (no row) -> in-progress -> completed | expired

An in-progress attempt whose time limit or quiz window has run out is moved
to expired the next time it is read, see ``expire_overdue_attempts``.

At most one submission exists per (entity, student); the unique constraints
on the submission tables are the arbiter when two requests race.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursehub.core.clock import Clock, as_utc, utcnow
from coursehub.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from coursehub.models.assignment import Assignment
from coursehub.models.course import Course
from coursehub.models.enrollment import Enrollment
from coursehub.models.quiz import (
    FINISHED_QUIZ_STATUSES,
    Quiz,
    QuizAnswer,
    QuizStatus,
    QuizSubmission,
)
from coursehub.models.submission import AssignmentStatus, AssignmentSubmission
from coursehub.models.user import ROLE_ADMIN, ROLE_STUDENT, User

logger = logging.getLogger(__name__)


def score_answers(quiz: Quiz, answers: Iterable) -> tuple[list[dict], float]:
    """Mark each answer against the option flagged correct.

    ``answers`` items need ``question_index`` and ``selected_option``.
    Returns the graded answers and the sum of marks of the correct ones.
    """
    questions = quiz.questions
    graded: list[dict] = []
    seen: set[int] = set()
    score = 0.0

    for answer in answers:
        qi, oi = answer.question_index, answer.selected_option
        if qi < 0 or qi >= len(questions):
            raise ValidationFailed(f"question {qi} does not exist")
        if qi in seen:
            raise ValidationFailed(f"question {qi} answered more than once")
        seen.add(qi)

        options = questions[qi].options
        if oi < 0 or oi >= len(options):
            raise ValidationFailed(f"question {qi} has no option {oi}")

        is_correct = bool(options[oi].is_correct)
        if is_correct:
            score += questions[qi].marks
        graded.append({"question_index": qi, "selected_option": oi, "is_correct": is_correct})

    return graded, score


def percentage_of(score: float, total_marks: float) -> int:
    if total_marks <= 0:
        return 0
    # halves round up
    return math.floor(score / total_marks * 100 + 0.5)


def expire_overdue_attempts(
    db: Session,
    now: datetime,
    quiz_id: Optional[int] = None,
    student_id: Optional[int] = None,
) -> int:
    """Mark in-progress attempts past their time limit or quiz due date expired.

    Each row is claimed with a conditional update, so an attempt that a
    concurrent submit finished first is left alone. Returns how many rows
    were expired.
    """
    now = as_utc(now)
    q = (
        db.query(QuizSubmission, Quiz)
        .join(Quiz, Quiz.id == QuizSubmission.quiz_id)
        .filter(QuizSubmission.status == QuizStatus.IN_PROGRESS.value)
    )
    if quiz_id is not None:
        q = q.filter(QuizSubmission.quiz_id == quiz_id)
    if student_id is not None:
        q = q.filter(QuizSubmission.student_id == student_id)

    expired = 0
    for sub, quiz in q.all():
        minutes = (now - as_utc(sub.started_at)).total_seconds() / 60
        if minutes <= quiz.time_limit_minutes and now <= as_utc(quiz.due_at):
            continue

        expired += (
            db.query(QuizSubmission)
            .filter(
                QuizSubmission.id == sub.id,
                QuizSubmission.status == QuizStatus.IN_PROGRESS.value,
            )
            .update(
                {
                    "status": QuizStatus.EXPIRED.value,
                    "time_taken_minutes": round(minutes, 2),
                },
                synchronize_session=False,
            )
        )

    if expired:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("expired %d overdue quiz attempt(s)", expired)
    return expired


class SubmissionEngine:
    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        late_grace: timedelta = timedelta(0),
    ):
        self.db = db
        self.clock = clock or utcnow
        self.late_grace = late_grace

    # ---------------------------------------------------------------- helpers

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_utc(now) if now is not None else as_utc(self.clock())

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _ensure_enrolled(self, course_id: int, student: User) -> None:
        if student.role != ROLE_STUDENT:
            raise Forbidden("Only students can submit")
        enrolled = (
            self.db.query(Enrollment)
            .filter(Enrollment.course_id == course_id, Enrollment.student_id == student.id)
            .first()
            is not None
        )
        if not enrolled:
            raise Forbidden("Not enrolled in this course")

    def _owns_course(self, course_id: int, user: User) -> bool:
        course = self.db.get(Course, course_id)
        return course is not None and course.instructor_id == user.id

    def _visible_student_id(
        self,
        course_id: int,
        requester: User,
        student_id: Optional[int],
    ) -> Optional[int]:
        """Which student's rows the requester may list (None means all)."""
        if requester.role == ROLE_ADMIN or self._owns_course(course_id, requester):
            return student_id
        if requester.role == ROLE_STUDENT:
            if student_id is not None and student_id != requester.id:
                raise Forbidden("Students can only view their own submission")
            return requester.id
        raise Forbidden("Only the course instructor can view submissions")

    # ------------------------------------------------------------ assignments

    def get_assignment(self, assignment_id: int, published_only: bool = False) -> Assignment:
        assignment = self.db.get(Assignment, assignment_id)
        if assignment is None or (published_only and not assignment.is_published):
            raise NotFound("Assignment not found")
        return assignment

    def is_late(self, assignment: Assignment, submitted_at: datetime) -> bool:
        return as_utc(submitted_at) > as_utc(assignment.due_at) + self.late_grace

    def submit_assignment(
        self,
        assignment_id: int,
        student: User,
        comment: Optional[str] = None,
        attachments: Optional[list[dict]] = None,
        now: Optional[datetime] = None,
    ) -> AssignmentSubmission:
        assignment = self.get_assignment(assignment_id, published_only=True)
        self._ensure_enrolled(assignment.course_id, student)

        now = self._now(now)
        status = AssignmentStatus.LATE if self.is_late(assignment, now) else AssignmentStatus.SUBMITTED

        sub = AssignmentSubmission(
            assignment_id=assignment.id,
            student_id=student.id,
            submitted_at=now,
            comment=comment,
            attachments=list(attachments or []),
            status=status.value,
        )
        self.db.add(sub)

        # the unique constraint decides between racing submits
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("You have already submitted this assignment")

        self.db.refresh(sub)
        logger.info(
            "assignment %s submitted by student %s (%s)",
            assignment.id,
            student.id,
            sub.status,
        )
        return sub

    def grade_assignment(
        self,
        assignment_id: int,
        submission_id: int,
        marks: float,
        feedback: Optional[str],
        grader: User,
        now: Optional[datetime] = None,
    ) -> AssignmentSubmission:
        assignment = self.get_assignment(assignment_id)
        if not self._owns_course(assignment.course_id, grader):
            raise Forbidden("Only the course instructor can grade")

        sub = (
            self.db.query(AssignmentSubmission)
            .filter(
                AssignmentSubmission.id == submission_id,
                AssignmentSubmission.assignment_id == assignment.id,
            )
            .first()
        )
        if sub is None:
            raise NotFound("Submission not found")

        if marks < 0 or marks > assignment.total_marks:
            raise ValidationFailed(f"marks must be between 0 and {assignment.total_marks:g}")

        # re-grading overwrites the previous grade so mistakes can be corrected
        regrade = sub.status == AssignmentStatus.GRADED.value
        sub.marks = marks
        sub.feedback = feedback
        sub.graded_by = grader.id
        sub.graded_at = self._now(now)
        sub.status = AssignmentStatus.GRADED.value
        self._commit()

        self.db.refresh(sub)
        logger.info(
            "submission %s %s by %s: %s/%s",
            sub.id,
            "regraded" if regrade else "graded",
            grader.id,
            marks,
            assignment.total_marks,
        )
        return sub

    def list_assignment_submissions(
        self,
        assignment_id: int,
        requester: User,
        student_id: Optional[int] = None,
    ) -> list[AssignmentSubmission]:
        assignment = self.get_assignment(assignment_id)
        visible = self._visible_student_id(assignment.course_id, requester, student_id)

        q = self.db.query(AssignmentSubmission).filter(
            AssignmentSubmission.assignment_id == assignment.id
        )
        if visible is not None:
            q = q.filter(AssignmentSubmission.student_id == visible)
        return q.order_by(AssignmentSubmission.id.asc()).all()

    # ---------------------------------------------------------------- quizzes

    def get_quiz(self, quiz_id: int, published_only: bool = False) -> Quiz:
        quiz = self.db.get(Quiz, quiz_id)
        if quiz is None or (published_only and not quiz.is_published):
            raise NotFound("Quiz not found")
        return quiz

    def _open_quiz(self, quiz_id: int, student: User, now: datetime) -> Quiz:
        quiz = self.get_quiz(quiz_id, published_only=True)
        if now > as_utc(quiz.due_at):
            raise NotFound("Quiz is closed")
        self._ensure_enrolled(quiz.course_id, student)
        return quiz

    def _quiz_submission(self, quiz_id: int, student_id: int) -> Optional[QuizSubmission]:
        return (
            self.db.query(QuizSubmission)
            .filter(QuizSubmission.quiz_id == quiz_id, QuizSubmission.student_id == student_id)
            .first()
        )

    def start_quiz(
        self,
        quiz_id: int,
        student: User,
        now: Optional[datetime] = None,
    ) -> QuizSubmission:
        now = self._now(now)
        quiz = self._open_quiz(quiz_id, student, now)
        expire_overdue_attempts(self.db, now, quiz_id=quiz.id, student_id=student.id)

        existing = self._quiz_submission(quiz.id, student.id)
        if existing is not None:
            if existing.status in FINISHED_QUIZ_STATUSES:
                raise Conflict("You have already submitted this quiz")
            return existing

        sub = QuizSubmission(
            quiz_id=quiz.id,
            student_id=student.id,
            status=QuizStatus.IN_PROGRESS.value,
            started_at=now,
        )
        self.db.add(sub)
        try:
            self.db.commit()
        except IntegrityError:
            # a parallel start won; hand back its row
            self.db.rollback()
            existing = self._quiz_submission(quiz.id, student.id)
            if existing is None or existing.status in FINISHED_QUIZ_STATUSES:
                raise Conflict("You have already submitted this quiz")
            return existing

        self.db.refresh(sub)
        logger.info("quiz %s started by student %s", quiz.id, student.id)
        return sub

    def submit_quiz(
        self,
        quiz_id: int,
        student: User,
        answers: Iterable,
        time_taken: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> QuizSubmission:
        now = self._now(now)
        quiz = self._open_quiz(quiz_id, student, now)

        sub = self._quiz_submission(quiz.id, student.id)
        if sub is not None and sub.status in FINISHED_QUIZ_STATUSES:
            raise Conflict("You have already submitted this quiz")

        graded, score = score_answers(quiz, answers)

        if sub is not None and sub.started_at is not None:
            elapsed = now - as_utc(sub.started_at)
            minutes = elapsed.total_seconds() / 60
        else:
            minutes = float(time_taken or 0)

        status = QuizStatus.COMPLETED if minutes <= quiz.time_limit_minutes else QuizStatus.EXPIRED
        result = {
            "score": score,
            "percentage": percentage_of(score, quiz.total_marks),
            "time_taken_minutes": round(minutes, 2),
            "submitted_at": now,
            "status": status.value,
        }

        if sub is None:
            sub = QuizSubmission(quiz_id=quiz.id, student_id=student.id, **result)
            sub.answers = [QuizAnswer(**a) for a in graded]
            self.db.add(sub)
        else:
            # claim the in-progress row; a concurrent submit finds it already finished
            claimed = (
                self.db.query(QuizSubmission)
                .filter(
                    QuizSubmission.id == sub.id,
                    QuizSubmission.status == QuizStatus.IN_PROGRESS.value,
                )
                .update(result, synchronize_session=False)
            )
            if not claimed:
                self.db.rollback()
                raise Conflict("You have already submitted this quiz")
            self.db.add_all(QuizAnswer(submission_id=sub.id, **a) for a in graded)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("You have already submitted this quiz")

        self.db.refresh(sub)
        logger.info(
            "quiz %s submitted by student %s: %s/%s (%s%%, %s)",
            quiz.id,
            student.id,
            sub.score,
            quiz.total_marks,
            sub.percentage,
            sub.status,
        )
        return sub

    def list_quiz_submissions(
        self,
        quiz_id: int,
        requester: User,
        student_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[QuizSubmission]:
        quiz = self.get_quiz(quiz_id)
        visible = self._visible_student_id(quiz.course_id, requester, student_id)
        expire_overdue_attempts(self.db, self._now(now), quiz_id=quiz.id, student_id=visible)

        q = self.db.query(QuizSubmission).filter(QuizSubmission.quiz_id == quiz.id)
        if visible is not None:
            q = q.filter(QuizSubmission.student_id == visible)
        return q.order_by(QuizSubmission.id.asc()).all()
