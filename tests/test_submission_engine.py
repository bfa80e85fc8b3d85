import threading
from datetime import datetime, timedelta, timezone

import pytest

from coursehub.core.clock import as_utc
from coursehub.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from coursehub.models.quiz import QuizSubmission
from coursehub.models.submission import AssignmentSubmission
from coursehub.models.user import User
from coursehub.schemas.quiz import QuizAnswerIn
from coursehub.services.performance import student_performance
from coursehub.services.submissions import SubmissionEngine
from tests.conftest import T0


@pytest.fixture()
def engine(db, clock):
    return SubmissionEngine(db, clock=clock)


@pytest.fixture()
def people(db, users):
    return {key: db.get(User, uid) for key, uid in users.items()}


def _answers(*pairs):
    return [QuizAnswerIn(question_index=qi, selected_option=oi) for qi, oi in pairs]


# ------------------------------------------------------------------ assignments


def test_submit_before_due_is_submitted(engine, people, make_assignment):
    assignment_id = make_assignment()

    sub = engine.submit_assignment(assignment_id, people["student1"], comment="done")

    assert sub.status == "submitted"
    assert sub.marks is None
    assert as_utc(sub.submitted_at) == T0


def test_submit_after_due_is_late(engine, people, make_assignment):
    assignment_id = make_assignment(due_at=datetime(2024, 1, 10, tzinfo=timezone.utc))

    sub = engine.submit_assignment(
        assignment_id,
        people["student1"],
        now=datetime(2024, 1, 11, tzinfo=timezone.utc),
    )

    assert sub.status == "late"


def test_offset_due_date_is_compared_in_utc(engine, people, make_assignment):
    plus_five = timezone(timedelta(hours=5))
    assert as_utc(datetime(2024, 1, 5, 16, 0, tzinfo=plus_five)) == datetime(
        2024, 1, 5, 11, 0, tzinfo=timezone.utc
    )

    due = as_utc(datetime(2024, 1, 5, 16, 0, tzinfo=plus_five))
    assignment_id = make_assignment(due_at=due)

    sub = engine.submit_assignment(assignment_id, people["student1"])

    assert sub.status == "late"


def test_submit_within_grace_is_not_late(db, clock, people, make_assignment):
    assignment_id = make_assignment(due_at=T0 - timedelta(minutes=5))
    engine = SubmissionEngine(db, clock=clock, late_grace=timedelta(minutes=10))

    sub = engine.submit_assignment(assignment_id, people["student1"])

    assert sub.status == "submitted"


def test_second_submission_conflicts_and_keeps_one_row(engine, db, people, make_assignment):
    assignment_id = make_assignment()
    engine.submit_assignment(assignment_id, people["student1"], comment="first")

    with pytest.raises(Conflict):
        engine.submit_assignment(assignment_id, people["student1"], comment="second")

    rows = db.query(AssignmentSubmission).filter_by(assignment_id=assignment_id).all()
    assert [r.comment for r in rows] == ["first"]


def test_unpublished_assignment_is_not_found(engine, people, make_assignment):
    assignment_id = make_assignment(published=False)

    with pytest.raises(NotFound):
        engine.submit_assignment(assignment_id, people["student1"])


def test_submit_requires_enrolled_student(engine, db, people, make_assignment):
    assignment_id = make_assignment()
    outsider = User(email="outsider@example.com", hashed_password="x", role="student")
    db.add(outsider)
    db.commit()

    with pytest.raises(Forbidden):
        engine.submit_assignment(assignment_id, outsider)
    with pytest.raises(Forbidden):
        engine.submit_assignment(assignment_id, people["faculty"])


def test_grade_sets_marks_and_status(engine, people, make_assignment):
    assignment_id = make_assignment()
    sub = engine.submit_assignment(assignment_id, people["student1"])

    graded = engine.grade_assignment(
        assignment_id, sub.id, marks=85, feedback="Good work", grader=people["faculty"]
    )

    assert graded.status == "graded"
    assert graded.marks == 85
    assert graded.feedback == "Good work"
    assert graded.graded_by == people["faculty"].id
    assert graded.graded_at is not None


def test_regrade_overwrites_previous_grade(engine, people, make_assignment):
    assignment_id = make_assignment()
    sub = engine.submit_assignment(assignment_id, people["student1"])
    engine.grade_assignment(assignment_id, sub.id, 60, "ok", people["faculty"])

    regraded = engine.grade_assignment(assignment_id, sub.id, 70, "recounted", people["faculty"])

    assert regraded.marks == 70
    assert regraded.feedback == "recounted"
    assert regraded.status == "graded"


def test_grade_late_submission(engine, people, make_assignment):
    assignment_id = make_assignment(due_at=T0 - timedelta(days=1))
    sub = engine.submit_assignment(assignment_id, people["student1"])
    assert sub.status == "late"

    graded = engine.grade_assignment(assignment_id, sub.id, 50, None, people["faculty"])

    assert graded.status == "graded"


def test_only_course_instructor_can_grade(engine, people, make_assignment):
    assignment_id = make_assignment()
    sub = engine.submit_assignment(assignment_id, people["student1"])

    with pytest.raises(Forbidden):
        engine.grade_assignment(assignment_id, sub.id, 85, None, people["faculty2"])

    refreshed = engine.list_assignment_submissions(assignment_id, people["faculty"])[0]
    assert refreshed.status == "submitted"
    assert refreshed.marks is None


def test_grade_unknown_submission_is_not_found(engine, people, make_assignment):
    assignment_id = make_assignment()

    with pytest.raises(NotFound):
        engine.grade_assignment(assignment_id, 999, 10, None, people["faculty"])


@pytest.mark.parametrize("marks", [-1, 100.5])
def test_grade_outside_total_marks_is_rejected(engine, people, make_assignment, marks):
    assignment_id = make_assignment(total_marks=100)
    sub = engine.submit_assignment(assignment_id, people["student1"])

    with pytest.raises(ValidationFailed):
        engine.grade_assignment(assignment_id, sub.id, marks, None, people["faculty"])


def test_listing_visibility(engine, people, make_assignment):
    assignment_id = make_assignment()
    engine.submit_assignment(assignment_id, people["student1"])
    engine.submit_assignment(assignment_id, people["student2"])

    everyone = engine.list_assignment_submissions(assignment_id, people["faculty"])
    assert [s.student_id for s in everyone] == [people["student1"].id, people["student2"].id]

    one = engine.list_assignment_submissions(
        assignment_id, people["faculty"], student_id=people["student2"].id
    )
    assert [s.student_id for s in one] == [people["student2"].id]

    own = engine.list_assignment_submissions(assignment_id, people["student1"])
    assert [s.student_id for s in own] == [people["student1"].id]

    with pytest.raises(Forbidden):
        engine.list_assignment_submissions(
            assignment_id, people["student1"], student_id=people["student2"].id
        )
    with pytest.raises(Forbidden):
        engine.list_assignment_submissions(assignment_id, people["faculty2"])

    assert len(engine.list_assignment_submissions(assignment_id, people["admin"])) == 2


# ---------------------------------------------------------------------- quizzes


def test_direct_quiz_submit_scores_answers(engine, people, make_quiz):
    quiz_id = make_quiz()

    sub = engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0), (1, 1)), time_taken=10)

    assert sub.score == 5
    assert sub.percentage == 50
    assert sub.status == "completed"
    assert [a.is_correct for a in sub.answers] == [True, False]


def test_started_quiz_submitted_in_time_is_completed(engine, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30)
    started = engine.start_quiz(quiz_id, people["student1"])
    assert started.status == "in-progress"

    clock.advance(minutes=20)
    sub = engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0), (1, 0)))

    assert sub.id == started.id
    assert sub.status == "completed"
    assert sub.score == 10
    assert sub.percentage == 100
    assert sub.time_taken_minutes == 20
    assert len(sub.answers) == 2


def test_quiz_over_time_limit_is_expired_but_scored(engine, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30)
    engine.start_quiz(quiz_id, people["student1"])

    clock.advance(minutes=31)
    sub = engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0)))

    assert sub.status == "expired"
    assert sub.score == 5
    assert sub.percentage == 50


def test_client_reported_time_over_limit_is_expired(engine, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30)

    sub = engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0)), time_taken=45)

    assert sub.status == "expired"


def test_start_is_idempotent_while_in_progress(engine, people, make_quiz):
    quiz_id = make_quiz()

    first = engine.start_quiz(quiz_id, people["student1"])
    second = engine.start_quiz(quiz_id, people["student1"])

    assert first.id == second.id


def test_quiz_cannot_be_submitted_twice(engine, people, make_quiz):
    quiz_id = make_quiz()
    engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0)))

    with pytest.raises(Conflict):
        engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0), (1, 0)))
    with pytest.raises(Conflict):
        engine.start_quiz(quiz_id, people["student1"])


def test_invalid_answer_index_leaves_no_submission(engine, people, make_quiz):
    quiz_id = make_quiz()

    with pytest.raises(ValidationFailed):
        engine.submit_quiz(quiz_id, people["student1"], _answers((5, 0)))

    assert engine.list_quiz_submissions(quiz_id, people["faculty"]) == []


def test_closed_or_unpublished_quiz_is_not_found(engine, people, make_quiz):
    closed = make_quiz(due_at=T0 - timedelta(hours=1))
    hidden = make_quiz(published=False)

    with pytest.raises(NotFound):
        engine.start_quiz(closed, people["student1"])
    with pytest.raises(NotFound):
        engine.submit_quiz(hidden, people["student1"], _answers((0, 0)))


def test_quiz_listing_follows_assignment_rules(engine, people, make_quiz):
    quiz_id = make_quiz()
    engine.submit_quiz(quiz_id, people["student1"], _answers((0, 0)))
    engine.start_quiz(quiz_id, people["student2"])

    assert len(engine.list_quiz_submissions(quiz_id, people["faculty"])) == 2
    own = engine.list_quiz_submissions(quiz_id, people["student2"])
    assert [s.status for s in own] == ["in-progress"]
    with pytest.raises(Forbidden):
        engine.list_quiz_submissions(quiz_id, people["faculty2"])


def test_time_taken_equal_to_limit_is_completed(engine, clock, people, make_quiz):
    reported = make_quiz(time_limit_minutes=30)
    timed = make_quiz(time_limit_minutes=30)

    sub = engine.submit_quiz(reported, people["student1"], _answers((0, 0)), time_taken=30)
    assert sub.status == "completed"

    engine.start_quiz(timed, people["student1"])
    clock.advance(minutes=30)
    sub = engine.submit_quiz(timed, people["student1"], _answers((0, 0)))
    assert sub.status == "completed"


# ------------------------------------------------------------- overdue attempts


def test_attempt_past_time_limit_expires_when_listed(engine, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30, due_at=T0 + timedelta(hours=2))
    engine.start_quiz(quiz_id, people["student1"])

    clock.advance(hours=3)
    [sub] = engine.list_quiz_submissions(quiz_id, people["faculty"])

    assert sub.status == "expired"
    assert sub.score == 0
    assert sub.time_taken_minutes == 180


def test_attempt_expires_when_quiz_window_closes(engine, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=120, due_at=T0 + timedelta(hours=1))
    engine.start_quiz(quiz_id, people["student1"])

    clock.advance(minutes=90)
    [sub] = engine.list_quiz_submissions(quiz_id, people["student1"])

    assert sub.status == "expired"


def test_attempt_within_limit_stays_in_progress(engine, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30)
    engine.start_quiz(quiz_id, people["student1"])

    clock.advance(minutes=10)
    [sub] = engine.list_quiz_submissions(quiz_id, people["faculty"])

    assert sub.status == "in-progress"


def test_restarting_an_overdue_attempt_conflicts(engine, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30)
    engine.start_quiz(quiz_id, people["student1"])

    clock.advance(minutes=31)
    with pytest.raises(Conflict):
        engine.start_quiz(quiz_id, people["student1"])


def test_performance_counts_overdue_attempt_as_expired(engine, db, clock, people, make_quiz):
    quiz_id = make_quiz(time_limit_minutes=30)
    engine.start_quiz(quiz_id, people["student1"])

    clock.advance(hours=1)
    summary = student_performance(db, people["student1"], now=clock())

    [item] = summary["items"]
    assert (item["id"], item["status"], item["obtained_marks"]) == (quiz_id, "expired", 0)


# ------------------------------------------------------------------------ races


def _race(session_factory, clock, users, action):
    """Run ``action(engine, student)`` for student1 from two threads at once."""
    barrier = threading.Barrier(2)
    outcomes = []

    def run():
        session = session_factory()
        try:
            engine = SubmissionEngine(session, clock=clock)
            student = session.get(User, users["student1"])
            barrier.wait()
            action(engine, student)
            outcomes.append("stored")
        except Conflict:
            outcomes.append("conflict")
        except Exception as exc:  # surfaced by the caller's assertion
            outcomes.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return sorted(outcomes, key=str)


def test_concurrent_assignment_submits_store_one_row(
    db, session_factory, clock, users, make_assignment
):
    assignment_id = make_assignment()

    outcomes = _race(
        session_factory,
        clock,
        users,
        lambda engine, student: engine.submit_assignment(assignment_id, student, comment="race"),
    )

    assert outcomes == ["conflict", "stored"]
    assert db.query(AssignmentSubmission).filter_by(assignment_id=assignment_id).count() == 1


def test_concurrent_quiz_submits_store_one_row(db, session_factory, clock, users, make_quiz):
    quiz_id = make_quiz()

    outcomes = _race(
        session_factory,
        clock,
        users,
        lambda engine, student: engine.submit_quiz(quiz_id, student, _answers((0, 0))),
    )

    assert outcomes == ["conflict", "stored"]
    assert db.query(QuizSubmission).filter_by(quiz_id=quiz_id).count() == 1
