"""
Conversation state machine and the in-memory session registry.

Phase progression: intro -> questioning / lab_analysis / final_report. The phase
only leaves ``intro`` through a model reply and only returns to it through
``reset``; between model phases it follows whatever the model reports.
"""
import threading
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from dxchat import i18n
from dxchat.models import (
    Attachment,
    AttachmentView,
    ChatState,
    DiagnosisProbability,
    DiagnosticReply,
    Message,
    MessageView,
    SessionView,
)

GREETING_ID = "init-1"
CHART_LIMIT = 6

PHASE_DESCRIPTIONS = {
    "intro": "Initializing comprehensive diagnostic protocol.",
    "questioning": "Conducting differential diagnosis via structured questioning.",
    "lab_analysis": "Analyzing laboratory and genetic results.",
    "final_report": "Ranked diagnosis and treatment strategy generated.",
}


class SessionError(Exception):
    pass


class SessionNotFoundError(SessionError):
    pass


class SessionBusyError(SessionError):
    pass


class EmptyMessageError(SessionError):
    pass


def _message_id() -> str:
    return uuid.uuid4().hex


def greeting(language: str) -> Message:
    return Message(id=GREETING_ID, role="assistant", content=i18n.text("greeting", language))


def rank_probabilities(probabilities: Sequence[DiagnosisProbability],
                       limit: int = CHART_LIMIT) -> List[DiagnosisProbability]:
    return sorted(probabilities, key=lambda p: p.percentage, reverse=True)[:limit]


class ChatSession:
    def __init__(self, session_id: Optional[str] = None, language: str = "en"):
        self.id = session_id or uuid.uuid4().hex
        self.state = ChatState(language=language, messages=[greeting(language)])
        self.updated_at = datetime.now(timezone.utc)
        self._lock = threading.Lock()

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def change_language(self, language: str) -> None:
        with self._lock:
            state = self.state
            # nothing said yet: greet again in the new language
            if len(state.messages) <= 1 and state.phase == "intro":
                state.messages = [greeting(language)]
            state.language = language
            self._touch()

    def set_api_key(self, api_key: str) -> None:
        with self._lock:
            self.state.api_key = api_key.strip() or None
            self.state.api_key_error = None
            self._touch()

    def clear_api_key(self) -> None:
        with self._lock:
            self.state.api_key = None
            self._touch()

    def begin_turn(self, text: str, attachments: Sequence[Attachment] = ()) -> Tuple[List[Message], Message]:
        """
        Append the user's message and mark the session busy.

        Returns the history as it was before this message (what the model sees as
        prior turns) and the new message.
        """
        if not (text or "").strip() and not attachments:
            raise EmptyMessageError("Type a message or attach a file.")
        with self._lock:
            state = self.state
            if state.is_loading:
                raise SessionBusyError("A reply is still being generated.")
            history = list(state.messages)
            user_msg = Message(
                id=_message_id(),
                role="user",
                content=text or "",
                attachments=list(attachments) or None,
            )
            state.messages.append(user_msg)
            state.is_loading = True
            self._touch()
        return history, user_msg

    def complete_turn(self, reply: DiagnosticReply) -> Message:
        with self._lock:
            state = self.state
            ai_msg = Message(
                id=_message_id(),
                role="assistant",
                content=reply.reply,
                probabilities=reply.probabilities,
            )
            state.messages.append(ai_msg)
            state.is_loading = False
            if reply.probabilities is not None:
                state.current_probabilities = list(reply.probabilities)
            state.phase = reply.phase
            state.progress = reply.progress
            self._touch()
        return ai_msg

    def fail_quota(self) -> None:
        """The key is spent: forget it and ask for a new one. No chat message is added."""
        with self._lock:
            state = self.state
            state.is_loading = False
            state.api_key = None
            state.api_key_error = i18n.text("quota", state.language)
            self._touch()

    def fail_turn(self) -> Message:
        with self._lock:
            state = self.state
            error_msg = Message(
                id=_message_id(),
                role="assistant",
                content=i18n.text("error", state.language),
                is_error=True,
            )
            state.messages.append(error_msg)
            state.is_loading = False
            self._touch()
        return error_msg

    def cancel_turn(self) -> None:
        with self._lock:
            self.state.is_loading = False
            self._touch()

    def reset(self) -> None:
        with self._lock:
            state = self.state
            if state.is_loading:
                raise SessionBusyError("Wait for the current reply before starting a new diagnosis.")
            self.state = ChatState(
                language=state.language,
                messages=[greeting(state.language)],
                api_key=state.api_key,
                api_key_error=state.api_key_error,
            )
            self._touch()

    def view(self, has_api_key: bool) -> SessionView:
        with self._lock:
            return self._view(self.state, has_api_key)

    def _view(self, state: ChatState, has_api_key: bool) -> SessionView:
        return SessionView(
            session_id=self.id,
            phase=state.phase,
            phase_label=state.phase.replace("_", " "),
            phase_description=PHASE_DESCRIPTIONS[state.phase],
            progress=state.progress,
            language=state.language,
            is_loading=state.is_loading,
            has_api_key=has_api_key,
            api_key_error=state.api_key_error,
            probabilities=rank_probabilities(state.current_probabilities),
            messages=[_message_view(m) for m in state.messages],
            ui_text=i18n.ui_copy(state.language),
        )


def _message_view(msg: Message) -> MessageView:
    return MessageView(
        id=msg.id,
        role=msg.role,
        content=msg.content,
        timestamp=msg.timestamp,
        is_error=msg.is_error,
        attachments=[
            AttachmentView(mime_type=a.mime_type, name=a.name, uri=a.uri if a.is_image else None)
            for a in msg.attachments or ()
        ],
    )


class SessionStore:
    """Process-local sessions, least recently used evicted past ``max_sessions``."""

    def __init__(self, max_sessions: int = 500):
        self.max_sessions = max(1, max_sessions)
        self._sessions: "OrderedDict[str, ChatSession]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, language: str = "en") -> ChatSession:
        session = ChatSession(language=language)
        with self._lock:
            self._sessions[session.id] = session
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
        return session

    def get(self, session_id: str) -> ChatSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(f"Unknown session '{session_id}'")
            self._sessions.move_to_end(session_id)
        return session

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
