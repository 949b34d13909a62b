"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints used by the Hanzi study backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses.

Endpoints implemented:
- POST /auth/register, POST /auth/login, POST /auth/logout, GET /auth/me
- GET/POST/DELETE /characters, POST /characters/manual,
  POST /characters/import, GET /characters/export, GET /characters/template,
  DELETE /characters/{id}
- GET/POST/DELETE /progress
- GET/POST /quiz-history
- GET /dashboard
- POST /quiz/sessions and the per-session actions under /quiz/sessions/{id}
- GET /health
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import services
from .auth import clear_session_cookie, get_current_user, set_session_cookie
from .config import settings
from .errors import HanziError, InvalidCredentials, ValidationError
from .models import Counts
from .schemas import (CharacterIn, QuizAnswerIn, QuizAssessIn, QuizCountIn,
                      QuizHistoryIn, QuizTypeIn, RegisterIn)
from .utils.parsers import TEMPLATE_CSV, export_filename
from .utils.quiz_sessions import QuizSessionStore
from .utils.rate_limit import FailedLoginThrottle

logger = logging.getLogger("hanzi.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

_login_throttle = FailedLoginThrottle()
_quiz_sessions = QuizSessionStore(
    on_complete=services.persist_quiz_result,
    auto_advance_seconds=settings.QUIZ_AUTO_ADVANCE_SECONDS,
    max_sessions=settings.QUIZ_MAX_SESSIONS,
    ttl_seconds=settings.QUIZ_SESSION_TTL_SECONDS,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # pending auto-advance timers must not fire after shutdown
    _quiz_sessions.close()


app = FastAPI(title="Hanzi Study API", lifespan=lifespan)

# Wide-open CORS keeps local frontends on another port working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    client = request.client.host if request.client else "unknown"
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": client,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": client,
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(HanziError)
async def hanzi_error_handler(request: Request, exc: HanziError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def _client_key(request: Request, username: str) -> str:
    return f"{request.client.host if request.client else 'unknown'}:{username}"


@app.post('/auth/register')
def register(payload: RegisterIn, response: Response):
    """Register a new user and start a session for them.

    Fails with 400 for an invalid username/password and 409 when the
    username is already taken.
    """
    auth = services.AuthService()
    user = auth.register(payload.username, payload.password)
    set_session_cookie(response, auth.issue_token(user.username))
    return {'success': True, 'username': user.username}


@app.post('/auth/login')
def login(payload: RegisterIn, request: Request, response: Response):
    """Authenticate a user and set the session cookie.

    The token is also returned in the body for clients that prefer a
    bearer header. Repeated failures from one client are throttled.
    """
    key = _client_key(request, payload.username)
    allowed, retry_after = _login_throttle.check(key, settings.LOGIN_RATE_LIMIT_PER_MIN)
    if not allowed:
        return JSONResponse(
            status_code=429,
            content={'detail': f'too many failed logins; retry after {retry_after}s'},
            headers={'Retry-After': str(retry_after)},
        )
    try:
        token = services.AuthService().authenticate(payload.username, payload.password)
    except InvalidCredentials:
        _login_throttle.record_failure(key)
        logger.warning("failed login for %r", payload.username)
        raise
    _login_throttle.reset(key)
    set_session_cookie(response, token)
    return {'success': True, 'username': payload.username, 'access_token': token}


@app.post('/auth/logout')
def logout(response: Response):
    """Clear the session cookie."""
    clear_session_cookie(response)
    return {'success': True}


@app.get('/auth/me')
def current_user(request: Request, response: Response):
    """Return the logged-in username, or null (clearing a stale cookie)."""
    try:
        username = get_current_user(request, None)
    except HanziError:
        if request.cookies.get('user'):
            clear_session_cookie(response)
        return {'user': None}
    return {'user': username}


@app.get('/characters')
def list_characters(user: str = Depends(get_current_user)):
    """List the authenticated user's characters in insertion order."""
    return [c.model_dump() for c in services.CharacterService(user).list()]


@app.post('/characters')
def add_characters(payload: List[CharacterIn], user: str = Depends(get_current_user)):
    """Bulk add characters; glyphs already stored are skipped and counted."""
    return services.CharacterService(user).add_many(p.model_dump() for p in payload)


@app.post('/characters/manual')
def add_character(payload: CharacterIn, user: str = Depends(get_current_user)):
    """Add one character; character, pinyin and meaning are required."""
    return services.CharacterService(user).add(payload.character, payload.pinyin, payload.meaning, payload.phrase)


@app.post('/characters/import')
def import_characters(file: UploadFile = File(...), user: str = Depends(get_current_user)):
    """Upload a `Character,Pinyin,Meaning,Phrase` CSV and add its rows.

    Returns added/skipped counts plus any row errors.
    """
    if not file.filename:
        raise ValidationError('no file')
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError('file too large')
    return services.CharacterService(user).import_csv(content, file.filename)


@app.get('/characters/export')
def export_characters(user: str = Depends(get_current_user)):
    """Download the character list in the upload format."""
    body = services.CharacterService(user).export_csv()
    return Response(
        content=body,
        media_type='text/csv; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename="{export_filename()}"'},
    )


@app.get('/characters/template')
def character_template():
    """Download an example CSV showing the upload columns."""
    return Response(
        content=TEMPLATE_CSV,
        media_type='text/csv; charset=utf-8',
        headers={'Content-Disposition': 'attachment; filename="character-template.csv"'},
    )


@app.delete('/characters')
def delete_all_characters(user: str = Depends(get_current_user)):
    services.CharacterService(user).delete_all()
    return {'success': True}


@app.delete('/characters/{character_id}')
def delete_character(character_id: str, user: str = Depends(get_current_user)):
    """Delete one character by id; the id `all` clears the whole list."""
    svc = services.CharacterService(user)
    if character_id == 'all':
        svc.delete_all()
        return {'success': True}
    return {'success': True, 'deleted': svc.delete(character_id)}


@app.get('/progress')
def get_progress(user: str = Depends(get_current_user)):
    """Return `{characterId: {correct, incorrect}}` for the user."""
    return {cid: c.model_dump() for cid, c in services.ProgressService(user).get().items()}


@app.post('/progress')
def merge_progress(payload: Dict[str, Counts], user: str = Depends(get_current_user)):
    """Add the submitted counts to the stored ones."""
    services.ProgressService(user).merge(payload)
    return {'success': True}


@app.delete('/progress')
def clear_progress(user: str = Depends(get_current_user)):
    services.ProgressService(user).clear()
    return {'success': True}


@app.get('/quiz-history')
def quiz_history(limit: int = Query(10, ge=1, le=50), user: str = Depends(get_current_user)):
    """Return the most recent quiz summaries, newest first."""
    return [e.model_dump(by_alias=True) for e in services.QuizHistoryService(user).recent(limit)]


@app.post('/quiz-history')
def add_quiz_history(payload: QuizHistoryIn, user: str = Depends(get_current_user)):
    """Append one quiz summary. Accuracy is computed from the counts."""
    entry = services.QuizHistoryService(user).record(
        payload.quiz_type, payload.total_questions, payload.correct_answers, timestamp=payload.timestamp)
    return {'success': True, 'entry': entry.model_dump(by_alias=True)}


@app.get('/dashboard')
def dashboard(user: str = Depends(get_current_user)):
    """Per-character and overall accuracy plus the three latest quizzes."""
    return services.DashboardService(user).summary()


@app.post('/quiz/sessions', status_code=201)
def start_quiz(user: str = Depends(get_current_user)):
    """Start a quiz over a snapshot of the user's current characters."""
    pool = services.CharacterService(user).list()
    session_id, view = _quiz_sessions.create(user, pool)
    return {'session_id': session_id, **view}


@app.get('/quiz/sessions/{session_id}')
def get_quiz(session_id: str, user: str = Depends(get_current_user)):
    """Poll a session; after feedback it moves on by itself."""
    return {'session_id': session_id, **_quiz_sessions.get(user, session_id)}


@app.post('/quiz/sessions/{session_id}/type')
def choose_quiz_type(session_id: str, payload: QuizTypeIn, user: str = Depends(get_current_user)):
    view = _quiz_sessions.apply(user, session_id, lambda s: s.choose_type(payload.quiz_type))
    return {'session_id': session_id, **view}


@app.post('/quiz/sessions/{session_id}/count')
def choose_quiz_count(session_id: str, payload: QuizCountIn, user: str = Depends(get_current_user)):
    view = _quiz_sessions.apply(user, session_id, lambda s: s.choose_count(payload.count))
    return {'session_id': session_id, **view}


@app.post('/quiz/sessions/{session_id}/back')
def quiz_back(session_id: str, user: str = Depends(get_current_user)):
    view = _quiz_sessions.apply(user, session_id, lambda s: s.back())
    return {'session_id': session_id, **view}


@app.post('/quiz/sessions/{session_id}/answer')
def quiz_answer(session_id: str, payload: QuizAnswerIn, user: str = Depends(get_current_user)):
    """Answer a recognition (pinyin) or multiple-choice (character id) question."""
    view = _quiz_sessions.apply(user, session_id, lambda s: s.answer(payload.answer))
    return {'session_id': session_id, **view}


@app.post('/quiz/sessions/{session_id}/reveal')
def quiz_reveal(session_id: str, user: str = Depends(get_current_user)):
    """Writing quiz: show the glyph so the learner can check their drawing."""
    view = _quiz_sessions.apply(user, session_id, lambda s: s.reveal())
    return {'session_id': session_id, **view}


@app.post('/quiz/sessions/{session_id}/assess')
def quiz_assess(session_id: str, payload: QuizAssessIn, user: str = Depends(get_current_user)):
    """Writing quiz: record the learner's own verdict."""
    view = _quiz_sessions.apply(user, session_id, lambda s: s.self_assess(payload.correct))
    return {'session_id': session_id, **view}


@app.post('/quiz/sessions/{session_id}/restart')
def quiz_restart(session_id: str, user: str = Depends(get_current_user)):
    view = _quiz_sessions.apply(user, session_id, lambda s: s.restart())
    return {'session_id': session_id, **view}


@app.delete('/quiz/sessions/{session_id}')
def abandon_quiz(session_id: str, user: str = Depends(get_current_user)):
    """Abandon a session; a pending auto-advance is cancelled."""
    _quiz_sessions.discard(user, session_id)
    return {'success': True}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
