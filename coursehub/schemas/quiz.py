from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from coursehub.core.clock import as_utc


class QuizOptionIn(BaseModel):
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuizQuestionIn(BaseModel):
    text: str = Field(min_length=1)
    marks: float = Field(default=1, ge=0)
    explanation: Optional[str] = None
    options: list[QuizOptionIn] = Field(min_length=2)

    @model_validator(mode="after")
    def exactly_one_correct_option(self):
        correct = sum(1 for o in self.options if o.is_correct)
        if correct != 1:
            raise ValueError("each question needs exactly one correct option")
        return self


class QuizCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str
    time_limit_minutes: int = Field(default=30, gt=0)
    due_at: datetime
    allow_review: bool = True
    shuffle_questions: bool = False
    questions: list[QuizQuestionIn] = Field(min_length=1)

    @field_validator("due_at")
    @classmethod
    def due_at_in_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class QuizOptionRead(BaseModel):
    text: str

    class Config:
        from_attributes = True


class QuizQuestionRead(BaseModel):
    position: int
    text: str
    marks: float
    options: list[QuizOptionRead]

    class Config:
        from_attributes = True


class QuizRead(BaseModel):
    id: int
    course_id: int
    title: str
    description: str
    time_limit_minutes: int
    due_at: datetime
    is_published: bool
    allow_review: bool
    shuffle_questions: bool
    total_marks: float
    questions: list[QuizQuestionRead]

    class Config:
        from_attributes = True


class QuizAnswerIn(BaseModel):
    question_index: int = Field(ge=0)
    selected_option: int = Field(ge=0)


class QuizSubmit(BaseModel):
    answers: list[QuizAnswerIn]
    # minutes, reported by the client; only used when the quiz was never started
    time_taken: Optional[float] = Field(default=None, ge=0)


class QuizAnswerRead(BaseModel):
    question_index: int
    selected_option: int
    is_correct: bool

    class Config:
        from_attributes = True


class QuizSubmissionRead(BaseModel):
    id: int
    quiz_id: int
    student_id: int
    status: str
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    score: float
    percentage: int
    time_taken_minutes: Optional[float] = None
    answers: list[QuizAnswerRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class QuizResult(BaseModel):
    score: float
    percentage: int
    total_marks: float
    status: str
