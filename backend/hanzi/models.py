"""Pydantic data models.

These are the records held in the per-user CSV stores. Field names use
Python conventions; the CSV column names and JSON aliases follow the
original camelCase file layout (`characterId`, `quizType`, ...).
"""

import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def accuracy_percent(correct: int, total: int) -> int:
    """Return `correct / total` as a whole percentage, rounding halves up.

    Returns 0 when there were no attempts.
    """
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def now_ms() -> int:
    return int(time.time() * 1000)


class User(BaseModel):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: passlib hash string (never store plaintext)
    """
    username: str
    password_hash: str


class Character(BaseModel):
    """A glyph in a user's study list."""
    id: str
    character: str
    pinyin: str
    meaning: str
    phrase: str = ""


class Counts(BaseModel):
    """Cumulative correct/incorrect tallies for one character."""
    correct: int = Field(default=0, ge=0)
    incorrect: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.correct + self.incorrect

    @property
    def accuracy(self) -> int:
        return accuracy_percent(self.correct, self.total)

    def __add__(self, other: "Counts") -> "Counts":
        return Counts(correct=self.correct + other.correct, incorrect=self.incorrect + other.incorrect)


class QuizHistoryEntry(BaseModel):
    """Summary of one completed quiz session."""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: int
    quiz_type: str = Field(alias="quizType")
    total_questions: int = Field(alias="totalQuestions", ge=0)
    correct_answers: int = Field(alias="correctAnswers", ge=0)
    accuracy: int = Field(ge=0, le=100)

    @classmethod
    def build(cls, quiz_type: str, total_questions: int, correct_answers: int,
              timestamp: Optional[int] = None, attempts: Optional[int] = None) -> "QuizHistoryEntry":
        """Create an entry and compute its accuracy.

        Accuracy is taken over `attempts` when given (a session may answer
        a character more than once), otherwise over `total_questions`.
        """
        denominator = attempts if attempts is not None else total_questions
        return cls(
            timestamp=timestamp if timestamp is not None else now_ms(),
            quiz_type=quiz_type,
            total_questions=total_questions,
            correct_answers=correct_answers,
            accuracy=accuracy_percent(correct_answers, denominator),
        )
