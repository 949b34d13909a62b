"""Quiz session state machine.

A `QuizSession` walks through four stages:

    type-selection -> count-selection -> question -> complete

`back()` returns from count-selection to type-selection and `restart()`
returns from complete to type-selection. Inside the question stage each
question moves through `presented -> (revealed) -> feedback`; the
`revealed` phase only exists for the writing quiz, where the learner
draws the glyph, reveals the answer and then grades themselves.

Leaving `feedback` is done by `advance()`. The session never schedules
that call itself: the session store arms a timer when a question enters
feedback, which keeps this module free of threads and clocks and lets
tests drive it step by step.

Answers are tallied per character in a `SessionTally`. When the last
question is advanced past, the session builds a `CompletionSummary`
which the caller persists (progress merge + one history entry).
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from .errors import InvalidTransition, ValidationError
from .models import Character, Counts, QuizHistoryEntry, accuracy_percent, now_ms

COUNT_OPTIONS = (5, 10, 20, 30)
MAX_OPTIONS = 4


class QuizType(str, Enum):
    RECOGNITION = "recognition"
    REVERSE = "reverse"
    MULTIPLE_CHOICE = "multiple-choice"

    @property
    def label(self) -> str:
        return QUIZ_TYPE_LABELS[self]


QUIZ_TYPE_LABELS = {
    QuizType.RECOGNITION: "Read",
    QuizType.REVERSE: "Writing",
    QuizType.MULTIPLE_CHOICE: "Multiple Choice",
}


class Stage(str, Enum):
    TYPE_SELECTION = "type-selection"
    COUNT_SELECTION = "count-selection"
    QUESTION = "question"
    COMPLETE = "complete"


class Phase(str, Enum):
    PRESENTED = "presented"
    REVEALED = "revealed"
    FEEDBACK = "feedback"


@dataclass
class SessionStat:
    character_id: str
    correct: int = 0
    incorrect: int = 0
    last_attempt: int = 0


@dataclass
class SessionTally:
    """Per-character answer counts for one quiz run."""
    stats: Dict[str, SessionStat] = field(default_factory=dict)

    def record(self, character_id: str, is_correct: bool, at: Optional[int] = None) -> SessionStat:
        stat = self.stats.get(character_id)
        if stat is None:
            stat = self.stats[character_id] = SessionStat(character_id)
        if is_correct:
            stat.correct += 1
        else:
            stat.incorrect += 1
        stat.last_attempt = at if at is not None else now_ms()
        return stat

    @property
    def correct(self) -> int:
        return sum(s.correct for s in self.stats.values())

    @property
    def incorrect(self) -> int:
        return sum(s.incorrect for s in self.stats.values())

    @property
    def attempts(self) -> int:
        return self.correct + self.incorrect

    def increments(self) -> Dict[str, Counts]:
        """Return the tally in the shape the progress store merges."""
        return {cid: Counts(correct=s.correct, incorrect=s.incorrect) for cid, s in self.stats.items()}


@dataclass
class Feedback:
    correct: bool
    selected: Optional[str]
    answer: str
    message: str


@dataclass
class CompletionSummary:
    quiz_type: QuizType
    total_questions: int
    correct_answers: int
    attempts: int
    increments: Dict[str, Counts]

    @property
    def accuracy(self) -> int:
        return accuracy_percent(self.correct_answers, self.attempts)

    def history_entry(self, timestamp: Optional[int] = None) -> QuizHistoryEntry:
        return QuizHistoryEntry.build(
            self.quiz_type.label,
            self.total_questions,
            self.correct_answers,
            timestamp=timestamp,
            attempts=self.attempts,
        )


@dataclass
class Question:
    character: Character
    options: List[Union[str, Character]] = field(default_factory=list)
    hint: str = ""


def phrase_hint(char: Character) -> str:
    """Return the example phrase with the glyph replaced by `(pinyin)`."""
    if not char.phrase:
        return f"({char.pinyin})"
    return char.phrase.replace(char.character, f"({char.pinyin})")


def pinyin_options(target: Character, pool: Sequence[Character], rng: random.Random) -> List[str]:
    """Return the target pinyin plus up to three distinct distractor pinyins, shuffled."""
    options = [target.pinyin]
    others = [c for c in pool if c.id != target.id]
    rng.shuffle(others)
    for c in others:
        if len(options) >= MAX_OPTIONS:
            break
        if c.pinyin not in options:
            options.append(c.pinyin)
    rng.shuffle(options)
    return options


def meaning_options(target: Character, pool: Sequence[Character], rng: random.Random) -> List[Character]:
    """Return the target plus up to three other characters, shuffled."""
    others = [c for c in pool if c.id != target.id]
    options = [target] + rng.sample(others, min(MAX_OPTIONS - 1, len(others)))
    rng.shuffle(options)
    return options


class QuizSession:
    """One quiz run over a snapshot of the user's characters."""

    def __init__(self, pool: Sequence[Character], rng: Optional[random.Random] = None):
        if not pool:
            raise ValidationError("Add some characters before starting a quiz")
        self.pool = list(pool)
        self.rng = rng or random.Random()
        self.stage = Stage.TYPE_SELECTION
        self.phase: Optional[Phase] = None
        self.quiz_type: Optional[QuizType] = None
        self.questions: List[Character] = []
        self.index = 0
        self.current: Optional[Question] = None
        self.feedback: Optional[Feedback] = None
        self.tally = SessionTally()
        self.summary: Optional[CompletionSummary] = None
        self.save_error: Optional[str] = None
        self.saved = False
        # bumped for every question shown; timers compare against it
        self.question_seq = 0

    def _require(self, stage: Stage, phase: Optional[Phase] = None, quiz_type: Optional[QuizType] = None) -> None:
        if self.stage != stage:
            raise InvalidTransition(f"not allowed during {self.stage.value}")
        if phase is not None and self.phase != phase:
            raise InvalidTransition(f"not allowed while question is {self.phase.value if self.phase else 'idle'}")
        if quiz_type is not None and self.quiz_type != quiz_type:
            raise InvalidTransition(f"not available in {self.quiz_type.label} mode")

    def choose_type(self, quiz_type: Union[QuizType, str]) -> None:
        self._require(Stage.TYPE_SELECTION)
        try:
            self.quiz_type = QuizType(quiz_type)
        except ValueError:
            raise ValidationError(f"unknown quiz type: {quiz_type}")
        self.stage = Stage.COUNT_SELECTION

    def back(self) -> None:
        self._require(Stage.COUNT_SELECTION)
        self.quiz_type = None
        self.stage = Stage.TYPE_SELECTION

    def choose_count(self, count: int) -> int:
        """Pick `count` characters (clamped to the pool) and show the first question.

        Returns the number of questions in the session.
        """
        self._require(Stage.COUNT_SELECTION)
        if count not in COUNT_OPTIONS:
            raise ValidationError(f"count must be one of {', '.join(str(c) for c in COUNT_OPTIONS)}")
        shuffled = list(self.pool)
        self.rng.shuffle(shuffled)
        self.questions = shuffled[:min(count, len(shuffled))]
        self.index = 0
        self.tally = SessionTally()
        self.stage = Stage.QUESTION
        self._present()
        return len(self.questions)

    def _present(self) -> None:
        target = self.questions[self.index]
        if self.quiz_type == QuizType.RECOGNITION:
            self.current = Question(target, options=pinyin_options(target, self.pool, self.rng))
        elif self.quiz_type == QuizType.MULTIPLE_CHOICE:
            self.current = Question(target, options=meaning_options(target, self.pool, self.rng))
        else:
            self.current = Question(target, hint=phrase_hint(target))
        self.phase = Phase.PRESENTED
        self.feedback = None
        self.question_seq += 1

    def _score(self, is_correct: bool, selected: Optional[str], answer: str, message: str) -> Feedback:
        self.tally.record(self.current.character.id, is_correct)
        self.feedback = Feedback(correct=is_correct, selected=selected, answer=answer, message=message)
        self.phase = Phase.FEEDBACK
        return self.feedback

    def answer(self, value: str) -> Feedback:
        """Grade a choice in the recognition or multiple-choice quiz.

        `value` is the chosen pinyin (recognition) or the chosen
        character id (multiple choice) and must be one of the options.
        """
        self._require(Stage.QUESTION, Phase.PRESENTED)
        target = self.current.character
        if self.quiz_type == QuizType.RECOGNITION:
            if value not in self.current.options:
                raise ValidationError("answer is not one of the offered options")
            ok = value == target.pinyin
            return self._score(ok, value, target.pinyin,
                               "Correct!" if ok else f"Incorrect. Correct answer: {target.pinyin}")
        if self.quiz_type == QuizType.MULTIPLE_CHOICE:
            if value not in {c.id for c in self.current.options}:
                raise ValidationError("answer is not one of the offered options")
            ok = value == target.id
            return self._score(ok, value, target.meaning,
                               "Correct!" if ok else f"Incorrect. Correct answer: {target.meaning}")
        raise InvalidTransition("the writing quiz is graded with reveal + self-assessment")

    def reveal(self) -> None:
        self._require(Stage.QUESTION, Phase.PRESENTED, QuizType.REVERSE)
        self.phase = Phase.REVEALED

    def self_assess(self, correct: bool) -> Feedback:
        self._require(Stage.QUESTION, Phase.REVEALED, QuizType.REVERSE)
        target = self.current.character
        return self._score(bool(correct), None, target.character,
                           "Great job!" if correct else "Keep practicing!")

    def advance(self) -> bool:
        """Move past the current feedback. Returns True when the quiz just completed."""
        self._require(Stage.QUESTION, Phase.FEEDBACK)
        if self.index < len(self.questions) - 1:
            self.index += 1
            self._present()
            return False
        self.stage = Stage.COMPLETE
        self.phase = None
        self.current = None
        self.feedback = None
        self.summary = CompletionSummary(
            quiz_type=self.quiz_type,
            total_questions=len(self.questions),
            correct_answers=self.tally.correct,
            attempts=self.tally.attempts,
            increments=self.tally.increments(),
        )
        return True

    def restart(self) -> None:
        self._require(Stage.COMPLETE)
        self.stage = Stage.TYPE_SELECTION
        self.quiz_type = None
        self.questions = []
        self.index = 0
        self.tally = SessionTally()
        self.summary = None
        self.save_error = None
        self.saved = False

    def _question_view(self) -> dict:
        q = self.current
        target = q.character
        out = {"number": self.index + 1, "phase": self.phase.value}
        if self.quiz_type == QuizType.RECOGNITION:
            out.update(character=target.character, meaning=target.meaning, options=list(q.options))
        elif self.quiz_type == QuizType.MULTIPLE_CHOICE:
            out.update(character=target.character,
                       options=[{"id": c.id, "meaning": c.meaning} for c in q.options])
        else:
            out.update(hint=q.hint, meaning=target.meaning)
            if self.phase != Phase.PRESENTED:
                out["answer"] = {"character": target.character, "pinyin": target.pinyin, "phrase": target.phrase}
        return out

    def view(self) -> dict:
        """Return a JSON-ready snapshot of everything a client needs to render."""
        out = {
            "stage": self.stage.value,
            "quizType": self.quiz_type.value if self.quiz_type else None,
            "quizLabel": self.quiz_type.label if self.quiz_type else None,
            "poolSize": len(self.pool),
        }
        if self.stage == Stage.COUNT_SELECTION:
            out["countOptions"] = [{"count": c, "available": c <= len(self.pool)} for c in COUNT_OPTIONS]
        if self.stage == Stage.QUESTION:
            out["total"] = len(self.questions)
            out["score"] = {"correct": self.tally.correct, "incorrect": self.tally.incorrect}
            out["question"] = self._question_view()
            if self.feedback is not None:
                out["feedback"] = {
                    "correct": self.feedback.correct,
                    "selected": self.feedback.selected,
                    "answer": self.feedback.answer,
                    "message": self.feedback.message,
                }
        if self.stage == Stage.COMPLETE and self.summary is not None:
            out["summary"] = {
                "totalQuestions": self.summary.total_questions,
                "correctAnswers": self.summary.correct_answers,
                "attempts": self.summary.attempts,
                "accuracy": self.summary.accuracy,
                "saved": self.saved,
                "saveError": self.save_error,
            }
        return out
