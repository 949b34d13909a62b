"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. JSON field names follow the camelCase
used by the CSV stores.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str = ""
    password: str = ""


class CharacterIn(BaseModel):
    """A character submitted by a client; `id` is optional."""
    id: Optional[str] = None
    character: str = ""
    pinyin: str = ""
    meaning: str = ""
    phrase: str = ""


class QuizHistoryIn(BaseModel):
    """One quiz summary; accuracy is recomputed by the server when omitted or supplied."""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: Optional[int] = None
    quiz_type: str = Field(alias="quizType")
    total_questions: int = Field(alias="totalQuestions", ge=0)
    correct_answers: int = Field(alias="correctAnswers", ge=0)
    accuracy: Optional[float] = None


class QuizTypeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quiz_type: str = Field(alias="quizType")


class QuizCountIn(BaseModel):
    count: int


class QuizAnswerIn(BaseModel):
    """Chosen pinyin (recognition) or chosen character id (multiple choice)."""
    answer: str


class QuizAssessIn(BaseModel):
    correct: bool
