"""Domain exceptions and their HTTP status codes.

Services and repositories raise these; `main` installs one exception
handler for the base class so every failure becomes a JSON response of
the form `{"detail": "..."}`.
"""


class HanziError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(HanziError, ValueError):
    """Bad input shape, length or content."""
    status_code = 400


class DuplicateUser(HanziError):
    status_code = 409


class InvalidCredentials(HanziError):
    status_code = 401


class Unauthenticated(HanziError):
    status_code = 401


class NotFound(HanziError):
    status_code = 404


class InvalidTransition(HanziError):
    """A quiz action that the session's current state does not allow."""
    status_code = 409


class StorageError(HanziError):
    """Filesystem read/write failure or a store file that cannot be parsed."""
    status_code = 500
