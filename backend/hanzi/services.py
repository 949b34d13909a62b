"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
parsers and auxiliary logic. Services are intentionally thin: they
perform validation, execute domain logic and persist records via
repositories. Every per-user service is bound to the authenticated
username it was created for.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import jwt
from passlib.context import CryptContext

from . import models, repositories, storage
from .config import settings
from .errors import InvalidCredentials, Unauthenticated, ValidationError
from .quiz import CompletionSummary
from .utils.parsers import parse_character_csv, render_character_csv

# hex_sha256 verifies hashes written by the original unsalted scheme;
# they are re-hashed with pbkdf2 on the next successful login.
PWD_CTX = CryptContext(schemes=["pbkdf2_sha256", "hex_sha256"], deprecated=["hex_sha256"])
USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{2,20}$")
MIN_PASSWORD_LENGTH = 4

logger = logging.getLogger("hanzi.services")


def validate_credentials(username: str, password: str) -> None:
    """Raise `ValidationError` for usernames/passwords that cannot be registered."""
    if not username or not password:
        raise ValidationError("Username and password are required")
    if len(username) < 2 or len(username) > 20:
        raise ValidationError("Username must be 2-20 characters")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not USERNAME_RE.match(username):
        raise ValidationError("Username can only contain letters, numbers, and underscores")


class AuthService:
    """Authentication related operations (register, authenticate, session tokens)."""
    def __init__(self):
        self.user_repo = repositories.UserRepository()

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password and an empty data area.

        Raises `ValidationError` for bad input and `DuplicateUser` when the
        name is taken.
        """
        validate_credentials(username, password)
        user = models.User(username=username, password_hash=PWD_CTX.hash(password))
        created = self.user_repo.create(user)
        logger.info("registered user %s", username)
        return created

    def authenticate(self, username: str, password: str) -> str:
        """Verify credentials and return a signed session token.

        Raises `InvalidCredentials` for an unknown user or wrong password.
        """
        user = self.user_repo.get(username) if username else None
        if user is None or not password:
            raise InvalidCredentials("Invalid username or password")
        ok, new_hash = PWD_CTX.verify_and_update(password, user.password_hash)
        if not ok:
            raise InvalidCredentials("Invalid username or password")
        if new_hash:
            self.user_repo.update_hash(username, new_hash)
            logger.info("upgraded password hash for %s", username)
        storage.user_dir(username)
        return self.issue_token(username)

    def issue_token(self, username: str) -> str:
        expire = datetime.now(timezone.utc) + timedelta(days=settings.SESSION_MAX_AGE_DAYS)
        payload = {"sub": username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.SESSION_SECRET, algorithm=settings.SESSION_ALGORITHM)

    def resolve(self, token: Optional[str]) -> str:
        """Return the username carried by `token` if it is valid and the user still exists."""
        if not token:
            raise Unauthenticated("Not authenticated")
        try:
            payload = jwt.decode(token, settings.SESSION_SECRET, algorithms=[settings.SESSION_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("session expired")
        except jwt.InvalidTokenError:
            raise Unauthenticated("invalid session")
        username = payload.get("sub")
        if not username or not self.user_repo.exists(username):
            raise Unauthenticated("Not authenticated")
        return username


def _clean(name: str, value: Optional[str], required: bool = True) -> str:
    value = (value or "").strip()
    if required and not value:
        raise ValidationError(f"{name} is required")
    return storage.check_field(name, value)


class CharacterService:
    """Manage a user's character list (manual add, bulk add, CSV import/export)."""
    def __init__(self, username: str):
        self.username = username
        self.repo = repositories.CharacterRepository(username)

    def list(self) -> List[models.Character]:
        return self.repo.list()

    def _build(self, item: dict) -> models.Character:
        return models.Character(
            id=_clean("id", str(item.get("id") or ""), required=False),
            character=_clean("character", item.get("character")),
            pinyin=_clean("pinyin", item.get("pinyin")),
            meaning=_clean("meaning", item.get("meaning")),
            phrase=_clean("phrase", item.get("phrase"), required=False),
        )

    def add_many(self, items: Iterable[dict]) -> dict:
        """Add characters, skipping glyphs the user already has.

        Returns `{success, count, added, skipped}` where `count` is the
        size of the list afterwards.
        """
        chars = [self._build(i) for i in items]
        added, skipped, count = self.repo.add_many(chars)
        logger.info("user=%s added=%d skipped=%d", self.username, added, skipped)
        return {"success": True, "count": count, "added": added, "skipped": skipped}

    def add(self, character: str, pinyin: str, meaning: str, phrase: str = "") -> dict:
        """Add one character entered by hand."""
        result = self.add_many([{"character": character, "pinyin": pinyin, "meaning": meaning, "phrase": phrase}])
        result["duplicate"] = result["skipped"] > 0
        return result

    def import_csv(self, file_bytes: bytes, filename: Optional[str]) -> dict:
        """Parse an uploaded CSV and add its rows.

        Rows that fail to parse or contain unstorable text are reported in
        `errors` and do not block the rest of the file.
        """
        parsed, errors = parse_character_csv(file_bytes, filename)
        chars = []
        for item in parsed:
            try:
                chars.append(self._build(item))
            except ValidationError as e:
                errors.append({"line": item.get("line"), "error": e.detail})
        errors.sort(key=lambda e: e["line"])
        added, skipped, count = self.repo.add_many(chars)
        logger.info("user=%s imported %s added=%d skipped=%d errors=%d",
                    self.username, filename, added, skipped, len(errors))
        return {"success": True, "count": count, "added": added, "skipped": skipped, "errors": errors}

    def export_csv(self) -> str:
        return render_character_csv(self.repo.list())

    def delete(self, character_id: str) -> bool:
        return self.repo.delete(character_id)

    def delete_all(self) -> None:
        self.repo.delete_all()
        logger.info("user=%s cleared all characters", self.username)


class ProgressService:
    """Read, merge and reset cumulative per-character progress."""
    def __init__(self, username: str):
        self.username = username
        self.repo = repositories.ProgressRepository(username)

    def get(self) -> Dict[str, models.Counts]:
        return self.repo.get_all()

    def merge(self, increments: Dict[str, models.Counts]) -> Dict[str, models.Counts]:
        for character_id in increments:
            _clean("characterId", character_id)
        return self.repo.merge(increments)

    def clear(self) -> None:
        self.repo.clear()
        logger.info("user=%s cleared progress", self.username)


class QuizHistoryService:
    """Append and read completed quiz summaries."""
    def __init__(self, username: str):
        self.username = username
        self.repo = repositories.QuizHistoryRepository(username)

    def recent(self, limit: int = 10) -> List[models.QuizHistoryEntry]:
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        return self.repo.recent(limit)

    def record(self, quiz_type: str, total_questions: int, correct_answers: int,
               timestamp: Optional[int] = None) -> models.QuizHistoryEntry:
        """Store one summary; accuracy is always computed here."""
        _clean("quizType", quiz_type)
        if total_questions < 0 or correct_answers < 0:
            raise ValidationError("question counts must be >= 0")
        if correct_answers > total_questions:
            raise ValidationError("correctAnswers cannot exceed totalQuestions")
        entry = models.QuizHistoryEntry.build(quiz_type, total_questions, correct_answers, timestamp=timestamp)
        self.repo.append(entry)
        return entry


class DashboardService:
    """Join the character list with progress into per-character and overall accuracy."""
    def __init__(self, username: str):
        self.username = username

    def summary(self, history_limit: int = 3) -> dict:
        characters = repositories.CharacterRepository(self.username).list()
        progress = repositories.ProgressRepository(self.username).get_all()
        history = repositories.QuizHistoryRepository(self.username).recent(history_limit)
        return build_dashboard(characters, progress, history)


def build_dashboard(characters: List[models.Character], progress: Dict[str, models.Counts],
                    history: Optional[List[models.QuizHistoryEntry]] = None) -> dict:
    """Compute dashboard figures from store snapshots.

    Overall accuracy is attempt-weighted: total correct over total
    attempts across the listed characters, not the mean of their
    percentages. Progress for characters no longer in the list is ignored.
    """
    stats = []
    total_correct = 0
    total_attempts = 0
    for c in characters:
        counts = progress.get(c.id, models.Counts())
        total_correct += counts.correct
        total_attempts += counts.total
        stats.append({
            "id": c.id,
            "character": c.character,
            "pinyin": c.pinyin,
            "meaning": c.meaning,
            "correct": counts.correct,
            "incorrect": counts.incorrect,
            "total": counts.total,
            "accuracy": counts.accuracy,
        })
    return {
        "characters": stats,
        "overall": {
            "totalCharacters": len(characters),
            "totalAttempts": total_attempts,
            "totalCorrect": total_correct,
            "overallAccuracy": models.accuracy_percent(total_correct, total_attempts),
        },
        "recentQuizzes": [e.model_dump(by_alias=True) for e in (history or [])],
    }


def persist_quiz_result(username: str, summary: CompletionSummary) -> None:
    """Merge a finished session into progress and record its history entry."""
    if summary.increments:
        ProgressService(username).merge(summary.increments)
    entry = summary.history_entry()
    repositories.QuizHistoryRepository(username).append(entry)
