"""Application settings and validation."""

import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


class Settings:
    ENV: str
    SESSION_SECRET: str
    SESSION_ALGORITHM: str
    SESSION_MAX_AGE_DAYS: int
    ALLOW_INSECURE_SESSION: bool
    COOKIE_SECURE: bool
    ALLOW_DEV_CORS: bool
    MAX_UPLOAD_BYTES: int
    QUIZ_AUTO_ADVANCE_SECONDS: float
    QUIZ_SESSION_TTL_SECONDS: int
    QUIZ_MAX_SESSIONS: int
    LOGIN_RATE_LIMIT_PER_MIN: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.SESSION_SECRET = os.getenv("SESSION_SECRET", "change_me_for_prod")
        self.SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
        self.SESSION_MAX_AGE_DAYS = _int_env("SESSION_MAX_AGE_DAYS", 30)
        self.ALLOW_INSECURE_SESSION = os.getenv("ALLOW_INSECURE_SESSION", "false").lower() == "true"
        default_secure = "false" if self.ENV == "dev" else "true"
        self.COOKIE_SECURE = os.getenv("COOKIE_SECURE", default_secure).lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.MAX_UPLOAD_BYTES = _int_env("MAX_UPLOAD_BYTES", 1024 * 1024)  # 1 MB default
        self.QUIZ_AUTO_ADVANCE_SECONDS = _float_env("QUIZ_AUTO_ADVANCE_SECONDS", 2.0)
        self.QUIZ_SESSION_TTL_SECONDS = _int_env("QUIZ_SESSION_TTL_SECONDS", 3600)
        self.QUIZ_MAX_SESSIONS = _int_env("QUIZ_MAX_SESSIONS", 1000)
        self.LOGIN_RATE_LIMIT_PER_MIN = _int_env("LOGIN_RATE_LIMIT_PER_MIN", 20)
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_SESSION and self.SESSION_SECRET == "change_me_for_prod":
            raise RuntimeError("SESSION_SECRET must be set to a non-default value in non-dev environments")
        if self.QUIZ_AUTO_ADVANCE_SECONDS < 0:
            raise RuntimeError("QUIZ_AUTO_ADVANCE_SECONDS must be >= 0")
        if self.SESSION_MAX_AGE_DAYS <= 0:
            raise RuntimeError("SESSION_MAX_AGE_DAYS must be > 0")


def data_root() -> Path:
    """Return the directory holding `users.csv` and per-user folders.

    Resolved on every call so `HANZI_DATA_DIR` can be changed at runtime
    (tests point it at a temporary directory).
    """
    raw = os.getenv("HANZI_DATA_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path(__file__).resolve().parent.parent / "data"


settings = Settings()
