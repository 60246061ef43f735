import logging
import os
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from dxchat import config, i18n
from dxchat.attachments import AttachmentError, read_uploads
from dxchat.llm import DiagnosticClient, DiagnosticServiceError, MissingApiKeyError, QuotaExceededError
from dxchat.models import ApiKeyRequest, CreateSessionRequest, LanguageRequest, SessionView
from dxchat.session import (
    ChatSession,
    EmptyMessageError,
    SessionBusyError,
    SessionNotFoundError,
    SessionStore,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("dxchat")

# NOTE: sessions live in process memory; run a single worker.
app = FastAPI(title=config.APP_NAME)

_ROOT = os.path.dirname(__file__).rsplit(os.sep, 1)[0]
app.mount("/static", StaticFiles(directory=_ROOT + "/static"), name="static")
templates = Jinja2Templates(directory=_ROOT + "/templates")

sessions = SessionStore(max_sessions=config.MAX_SESSIONS)
diagnostic_client = DiagnosticClient()


# ---------
# Helpers
# ---------
def _has_api_key(session: ChatSession) -> bool:
    if not diagnostic_client.requires_api_key:
        return True
    return bool(diagnostic_client.resolve_api_key(session.state.api_key))


def _view(session: ChatSession) -> SessionView:
    return session.view(has_api_key=_has_api_key(session))


def _error(status_code: int, detail: str, session: Optional[ChatSession] = None) -> JSONResponse:
    body = {"detail": detail}
    if session is not None:
        body["session"] = _view(session).model_dump(mode="json")
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(SessionNotFoundError)
async def _session_not_found(request: Request, exc: SessionNotFoundError):
    return _error(404, str(exc))


# ---------
# Routes
# ---------
@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    return templates.TemplateResponse(request, "index.html", {
        "app_name": config.APP_NAME,
        "languages": i18n.LANGUAGES,
        "default_language": config.DEFAULT_LANGUAGE,
        "require_api_key": diagnostic_client.requires_api_key and not diagnostic_client.default_api_key,
        "ui_text": i18n.ui_copy(config.DEFAULT_LANGUAGE),
    })


@app.post("/api/sessions", response_model=SessionView)
async def create_session(req: Optional[CreateSessionRequest] = None):
    language = (req.language if req else None) or config.DEFAULT_LANGUAGE
    session = sessions.create(language=language)
    logger.info("Session created id=%s language=%s", session.id, language)
    return _view(session)


@app.get("/api/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    return _view(sessions.get(session_id))


@app.post("/api/sessions/{session_id}/messages", response_model=SessionView)
def send_message(
    session_id: str,
    text: str = Form(""),
    files: Optional[List[UploadFile]] = File(None),
):
    # Plain def: FastAPI runs it in the threadpool while the model call and its backoff block.
    session = sessions.get(session_id)

    try:
        attachments = read_uploads(files or [])
    except AttachmentError as e:
        return _error(400, str(e), session)

    api_key = session.state.api_key
    if not _has_api_key(session):
        return _error(401, "API Key is missing", session)

    try:
        history, user_msg = session.begin_turn(text, attachments)
    except EmptyMessageError as e:
        return _error(400, str(e), session)
    except SessionBusyError as e:
        return _error(409, str(e), session)

    language = session.state.language
    if config.ALLOW_LOGGING:
        # NOTE: logging PHI is dangerous; keep off by default
        logger.info("CHAT_REQUEST %s", {
            "session": session.id,
            "phase": session.state.phase,
            "text": user_msg.content[:200],
            "attachments": [a.name for a in attachments],
        })

    try:
        reply = diagnostic_client.send(history, user_msg.content, attachments, language, api_key)
    except QuotaExceededError:
        session.fail_quota()
        logger.warning("Quota exhausted for session=%s; key cleared", session.id)
        return _error(429, session.state.api_key_error, session)
    except MissingApiKeyError as e:
        session.cancel_turn()
        return _error(401, str(e), session)
    except DiagnosticServiceError:
        session.fail_turn()
        return _error(502, "The diagnostic model could not process the request.", session)

    session.complete_turn(reply)
    logger.info("Turn completed session=%s phase=%s progress=%s", session.id, reply.phase, reply.progress)
    return _view(session)


@app.put("/api/sessions/{session_id}/language", response_model=SessionView)
async def change_language(session_id: str, req: LanguageRequest):
    session = sessions.get(session_id)
    language = req.language.strip()
    if not language:
        return _error(400, "Language is required.", session)
    session.change_language(language)
    return _view(session)


@app.put("/api/sessions/{session_id}/api-key", response_model=SessionView)
async def set_api_key(session_id: str, req: ApiKeyRequest):
    session = sessions.get(session_id)
    if not req.api_key.strip():
        return _error(400, "API key must not be blank.", session)
    session.set_api_key(req.api_key)
    return _view(session)


@app.delete("/api/sessions/{session_id}/api-key", response_model=SessionView)
async def clear_api_key(session_id: str):
    session = sessions.get(session_id)
    session.clear_api_key()
    return _view(session)


@app.post("/api/sessions/{session_id}/reset", response_model=SessionView)
async def reset_session(session_id: str):
    session = sessions.get(session_id)
    try:
        session.reset()
    except SessionBusyError as e:
        return _error(409, str(e), session)
    return _view(session)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


def run() -> None:
    uvicorn.run("dxchat.main:app", host=config.HOST, port=config.PORT)
