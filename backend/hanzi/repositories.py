"""Repository classes encapsulating CSV store operations.

Each repository is small and focused on a single store (users,
characters, progress, quiz history). Repositories return pydantic
models, hold the owning user's lock for every read-modify-write and
replace the file in one step.
"""

import uuid
from typing import Dict, Iterable, List, Optional, Tuple

from . import models, storage
from .errors import DuplicateUser, StorageError

HISTORY_CAP = 50


def _to_int(value: str, store: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise StorageError(f"{store} contains a non-numeric count: {value!r}")


class UserRepository:
    """CRUD operations for `User` records in the global `users.csv`."""

    def _load(self) -> Dict[str, str]:
        users = {}
        for row in storage.read_rows(storage.users_file(), storage.USERS_HEADER):
            if len(row) >= 2 and row[0] and row[1]:
                users[row[0]] = row[1]
        return users

    def _save(self, users: Dict[str, str]) -> None:
        storage.write_rows(storage.users_file(), storage.USERS_HEADER, users.items())

    def get(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        users = self._load()
        if username not in users:
            return None
        return models.User(username=username, password_hash=users[username])

    def exists(self, username: str) -> bool:
        return username in self._load()

    def create(self, user: models.User) -> models.User:
        """Persist a new user and create their data directory."""
        with storage.users_lock():
            users = self._load()
            if user.username in users:
                raise DuplicateUser("Username already exists")
            users[user.username] = user.password_hash
            self._save(users)
        storage.user_dir(user.username)
        return user

    def update_hash(self, username: str, password_hash: str) -> None:
        with storage.users_lock():
            users = self._load()
            if username not in users:
                return
            users[username] = password_hash
            self._save(users)


class CharacterRepository:
    """Per-user character list backed by `characters.csv`."""

    def __init__(self, username: str):
        self.username = username

    @property
    def path(self):
        return storage.user_dir(self.username) / "characters.csv"

    def _load(self) -> List[models.Character]:
        """Read the list; must be called under the user lock.

        Rows stored without an id are given one, and the file is rewritten
        so the id stays stable across reads.
        """
        out = []
        backfilled = False
        for row in storage.read_rows(self.path, storage.CHARACTERS_HEADER):
            if len(row) < 3:
                raise StorageError(f"characters.csv has a row with too few fields: {','.join(row)!r}")
            row = row + [""] * (5 - len(row))
            if not row[0]:
                row[0] = uuid.uuid4().hex
                backfilled = True
            out.append(models.Character(id=row[0], character=row[1],
                                        pinyin=row[2], meaning=row[3], phrase=row[4]))
        if backfilled:
            self._save(out)
        return out

    def _save(self, chars: List[models.Character]) -> None:
        storage.write_rows(self.path, storage.CHARACTERS_HEADER,
                           ((c.id, c.character, c.pinyin, c.meaning, c.phrase) for c in chars))

    def list(self) -> List[models.Character]:
        """Return all characters in insertion order."""
        with storage.user_lock(self.username):
            return self._load()

    def add_many(self, incoming: Iterable[models.Character]) -> Tuple[int, int, int]:
        """Append characters whose glyph is not stored yet.

        Glyphs already on disk, or repeated earlier in the same batch, are
        skipped. Ids that collide are replaced with a fresh one. Returns
        `(added, skipped, total_after)`.
        """
        with storage.user_lock(self.username):
            existing = self._load()
            glyphs = {c.character for c in existing}
            ids = {c.id for c in existing}
            added = []
            skipped = 0
            for c in incoming:
                if c.character in glyphs:
                    skipped += 1
                    continue
                if not c.id or c.id in ids:
                    c = c.model_copy(update={"id": uuid.uuid4().hex})
                glyphs.add(c.character)
                ids.add(c.id)
                added.append(c)
            if added:
                self._save(existing + added)
            return len(added), skipped, len(existing) + len(added)

    def delete(self, character_id: str) -> bool:
        """Remove the character with `character_id`; return whether it existed."""
        with storage.user_lock(self.username):
            chars = self._load()
            kept = [c for c in chars if c.id != character_id]
            if len(kept) == len(chars):
                return False
            self._save(kept)
            return True

    def delete_all(self) -> None:
        with storage.user_lock(self.username):
            self._save([])


class ProgressRepository:
    """Cumulative per-character counts backed by `progress.csv`."""

    def __init__(self, username: str):
        self.username = username

    @property
    def path(self):
        return storage.user_dir(self.username) / "progress.csv"

    def _load(self) -> Dict[str, models.Counts]:
        progress = {}
        for row in storage.read_rows(self.path, storage.PROGRESS_HEADER):
            if not row[0]:
                continue
            row = row + ["0"] * (3 - len(row))
            progress[row[0]] = models.Counts(
                correct=_to_int(row[1] or "0", "progress.csv"),
                incorrect=_to_int(row[2] or "0", "progress.csv"),
            )
        return progress

    def get_all(self) -> Dict[str, models.Counts]:
        return self._load()

    def merge(self, increments: Dict[str, models.Counts]) -> Dict[str, models.Counts]:
        """Add `increments` to the stored counts and write the result back."""
        with storage.user_lock(self.username):
            progress = self._load()
            for character_id, delta in increments.items():
                progress[character_id] = progress.get(character_id, models.Counts()) + delta
            storage.write_rows(self.path, storage.PROGRESS_HEADER,
                               ((cid, c.correct, c.incorrect) for cid, c in progress.items()))
            return progress

    def clear(self) -> None:
        with storage.user_lock(self.username):
            storage.write_rows(self.path, storage.PROGRESS_HEADER, [])


class QuizHistoryRepository:
    """Completed quiz summaries backed by `quiz-history.csv`."""

    def __init__(self, username: str):
        self.username = username

    @property
    def path(self):
        return storage.user_dir(self.username) / "quiz-history.csv"

    def _load(self) -> List[models.QuizHistoryEntry]:
        out = []
        for row in storage.read_rows(self.path, storage.HISTORY_HEADER):
            if len(row) < 5:
                raise StorageError(f"quiz-history.csv has a row with too few fields: {','.join(row)!r}")
            try:
                accuracy = round(float(row[4]))
            except ValueError:
                raise StorageError(f"quiz-history.csv contains a bad accuracy: {row[4]!r}")
            out.append(models.QuizHistoryEntry(
                timestamp=_to_int(row[0], "quiz-history.csv"),
                quiz_type=row[1],
                total_questions=_to_int(row[2], "quiz-history.csv"),
                correct_answers=_to_int(row[3], "quiz-history.csv"),
                accuracy=accuracy,
            ))
        return out

    def recent(self, limit: int = 10) -> List[models.QuizHistoryEntry]:
        """Return up to `limit` entries, newest first."""
        entries = sorted(self._load(), key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def append(self, entry: models.QuizHistoryEntry) -> int:
        """Store `entry`, evicting the oldest entries beyond `HISTORY_CAP`.

        Returns the number of entries kept.
        """
        with storage.user_lock(self.username):
            entries = self._load()
            entries.append(entry)
            if len(entries) > HISTORY_CAP:
                entries = sorted(entries, key=lambda e: e.timestamp, reverse=True)[:HISTORY_CAP]
            storage.write_rows(self.path, storage.HISTORY_HEADER, (
                (e.timestamp, e.quiz_type, e.total_questions, e.correct_answers, e.accuracy)
                for e in entries
            ))
            return len(entries)
