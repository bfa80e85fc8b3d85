import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from coursehub.db.base_class import Base


class QuizStatus(str, enum.Enum):
    # as with assignments, "pending" means there is no row yet
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


FINISHED_QUIZ_STATUSES = (QuizStatus.COMPLETED.value, QuizStatus.EXPIRED.value)


class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    time_limit_minutes = Column(Integer, nullable=False, default=30)
    due_at = Column(DateTime(timezone=True), nullable=False)

    is_published = Column(Boolean, nullable=False, default=False)
    # stored for clients; the engine does not interpret them
    allow_review = Column(Boolean, nullable=False, default=True)
    shuffle_questions = Column(Boolean, nullable=False, default=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    course = relationship("Course", back_populates="quizzes")
    questions = relationship(
        "QuizQuestion",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.position",
    )
    submissions = relationship(
        "QuizSubmission",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="QuizSubmission.id",
    )

    @property
    def total_marks(self) -> float:
        return sum(q.marks for q in self.questions)


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    text = Column(Text, nullable=False)
    marks = Column(Float, nullable=False, default=1)
    explanation = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("quiz_id", "position", name="uq_quiz_question_position"),
    )

    quiz = relationship("Quiz", back_populates="questions")
    options = relationship(
        "QuizOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuizOption.position",
    )


class QuizOption(Base):
    __tablename__ = "quiz_options"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("QuizQuestion", back_populates="options")


class QuizSubmission(Base):
    __tablename__ = "quiz_submissions"

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(20), nullable=False, default=QuizStatus.IN_PROGRESS.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    score = Column(Float, nullable=False, default=0)
    percentage = Column(Integer, nullable=False, default=0)
    time_taken_minutes = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", name="uq_quiz_submission_student"),
    )

    quiz = relationship("Quiz", back_populates="submissions")
    answers = relationship(
        "QuizAnswer",
        back_populates="submission",
        cascade="all, delete-orphan",
        order_by="QuizAnswer.question_index",
    )


class QuizAnswer(Base):
    __tablename__ = "quiz_answers"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(Integer, ForeignKey("quiz_submissions.id", ondelete="CASCADE"), nullable=False, index=True)

    question_index = Column(Integer, nullable=False)
    selected_option = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    submission = relationship("QuizSubmission", back_populates="answers")
