"""Flat CSV storage and per-user locking.

Every store is a UTF-8 file with a fixed header row followed by one
comma-joined record per line. Fields are never quoted or escaped, so
values containing a delimiter are rejected before they reach disk.

Reads return an empty list when the file does not exist yet and raise
`StorageError` when it exists but cannot be read or parsed. Writes
replace the whole file atomically (temporary sibling + `os.replace`).

Read-modify-write cycles must run inside `user_lock(username)` (or
`users_lock()` for the global user table). The locks serialize access
within one process; they do not coordinate separate processes.
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
import threading
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence

from .config import data_root
from .errors import StorageError, ValidationError

USERS_HEADER = ("username", "passwordHash")
CHARACTERS_HEADER = ("id", "character", "pinyin", "meaning", "phrase")
PROGRESS_HEADER = ("characterId", "correct", "incorrect")
HISTORY_HEADER = ("timestamp", "quizType", "totalQuestions", "correctAnswers", "accuracy")

_FORBIDDEN = (",", '"', "\r", "\n")

_logger = logging.getLogger("hanzi.storage")
_registry_lock = threading.Lock()
_user_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
_users_lock = threading.Lock()


def users_file() -> Path:
    return data_root() / "users.csv"


def user_dir(username: str, create: bool = True) -> Path:
    """Return `<data>/users/<username>`, creating it unless `create` is False."""
    path = data_root() / "users" / username
    if create:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _logger.exception("cannot create user directory %s", path)
            raise StorageError(f"cannot create data directory for {username}") from exc
    return path


@contextmanager
def user_lock(username: str) -> Iterator[None]:
    with _registry_lock:
        lock = _user_locks[username]
    with lock:
        yield


@contextmanager
def users_lock() -> Iterator[None]:
    with _users_lock:
        yield


def check_field(name: str, value: str) -> str:
    """Raise `ValidationError` if `value` cannot be stored unquoted."""
    for ch in _FORBIDDEN:
        if ch in value:
            shown = {"\r": "line break", "\n": "line break"}.get(ch, repr(ch))
            raise ValidationError(f"{name} may not contain {shown}")
    return value


def read_rows(path: Path, header: Sequence[str]) -> List[List[str]]:
    """Return data rows of `path` with the header row removed.

    Blank lines are skipped and every field is stripped. A missing file
    is an empty store.
    """
    if not path.exists():
        return []
    try:
        # utf-8-sig drops a BOM left behind by spreadsheet editors
        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            lines = list(csv.reader(fh, quoting=csv.QUOTE_NONE))
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        _logger.exception("failed reading %s", path)
        raise StorageError(f"failed to read {path.name}") from exc
    if not lines:
        return []
    found = [c.strip() for c in lines[0]]
    if found != list(header):
        _logger.error("unexpected header in %s: %s", path, found)
        raise StorageError(f"{path.name} has an unexpected header")
    rows = []
    for raw in lines[1:]:
        fields = [c.strip() for c in raw]
        if not any(fields):
            continue
        rows.append(fields)
    return rows


def write_rows(path: Path, header: Sequence[str], rows: Iterable[Sequence[object]]) -> None:
    """Replace `path` with `header` followed by `rows`."""
    lines = [",".join(header)]
    for row in rows:
        fields = [str(v) for v in row]
        for name, value in zip(header, fields):
            check_field(name, value)
        lines.append(",".join(fields))
    content = "\n".join(lines) + "\n"
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        _logger.exception("failed writing %s", path)
        raise StorageError(f"failed to write {path.name}") from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
