"""
Client for the external model: builds the schema-constrained request, wraps the
call in a bounded exponential backoff, classifies provider errors and parses the
structured reply.
"""
import json
import logging
import re
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from openai import OpenAI
from pydantic import ValidationError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from dxchat import config
from dxchat.models import Attachment, DiagnosticReply, Message
from dxchat.prompts import RESPONSE_SCHEMA, build_system_prompt

logger = logging.getLogger(__name__)


class DiagnosticServiceError(RuntimeError):
    """Base class for everything the model client raises."""


class MissingApiKeyError(DiagnosticServiceError):
    pass


class EmptyResponseError(DiagnosticServiceError):
    pass


class MalformedResponseError(DiagnosticServiceError):
    pass


class QuotaExceededError(DiagnosticServiceError):
    """Rate limit or quota still failing after the retries; the key needs replacing."""


class ModelCallError(DiagnosticServiceError):
    pass


class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    OVERLOADED = "overloaded"
    OTHER = "other"


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    body = getattr(exc, "body", None)
    if body is not None:
        parts.append(json.dumps(body, default=str))
    return " ".join(parts)


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Providers report limits inconsistently (status codes, gRPC status names, or
    only in the message text), so both the status and the text are inspected.
    Quota/billing wins over everything else: it is a hard limit.
    """
    if isinstance(exc, DiagnosticServiceError):
        return ErrorKind.OTHER
    status = getattr(exc, "status_code", None)
    code = getattr(exc, "code", None)
    text = _error_text(exc)
    lowered = text.lower()

    if "quota" in lowered or "billing" in lowered:
        return ErrorKind.QUOTA
    if status == 429 or code == 429 or "429" in text or "RESOURCE_EXHAUSTED" in text:
        return ErrorKind.RATE_LIMIT
    if status == 503 or code == 503 or "503" in text or "Overloaded" in text:
        return ErrorKind.OVERLOADED
    return ErrorKind.OTHER


def is_transient(exc: BaseException) -> bool:
    return classify_error(exc) in (ErrorKind.RATE_LIMIT, ErrorKind.OVERLOADED)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception()
    logger.warning(
        "Model call attempt %d failed (%s), retrying in %.0fs: %s",
        retry_state.attempt_number,
        classify_error(exc).value,
        retry_state.next_action.sleep,
        exc,
    )


# ---------
# Request building
# ---------
def _content_parts(text: str, attachments: Optional[Sequence[Attachment]]) -> List[Dict[str, Any]]:
    parts: List[Dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    for att in attachments or ():
        if att.is_image:
            parts.append({"type": "image_url", "image_url": {"url": att.uri}})
        else:
            # OpenAI-style file part; whether PDFs are accepted depends on the provider's endpoint
            parts.append({"type": "file", "file": {"filename": att.name or "attachment", "file_data": att.uri}})
    return parts


def build_messages(history: Sequence[Message], user_message: str,
                   attachments: Sequence[Attachment] = (), language: str = "en") -> List[Dict[str, Any]]:
    """Chat history in OpenAI-style format, current turn last."""
    messages: List[Dict[str, Any]] = [{"role": "system", "content": build_system_prompt(language)}]
    for msg in history:
        if msg.is_error:
            continue
        if msg.role == "assistant":
            messages.append({"role": "assistant", "content": msg.content})
        else:
            messages.append({"role": "user", "content": _content_parts(msg.content, msg.attachments)})
    messages.append({"role": "user", "content": _content_parts(user_message, attachments)})
    return messages


# ---------
# Response parsing
# ---------
_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_reply(text: str) -> DiagnosticReply:
    """
    Accepts either pure JSON or a text blob containing a JSON object
    (some models wrap schema output in markdown fences).
    """
    text = (text or "").strip()
    if not text:
        raise EmptyResponseError("Empty response from AI")
    try:
        payload = json.loads(text)
    except ValueError:
        m = _JSON_RE.search(text)
        if not m:
            raise MalformedResponseError("Model response is not JSON")
        try:
            payload = json.loads(m.group(0))
        except ValueError as exc:
            raise MalformedResponseError("Model response is not JSON") from exc
    try:
        return DiagnosticReply.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"Model response does not match the schema: {exc.error_count()} error(s)") from exc


# ---------
# Mock provider
# ---------
MOCK_FINAL_TURN = 5


def _mock_completion(history: Sequence[Message], attachments: Sequence[Attachment]) -> str:
    # Useful for testing the UI without an API key.
    turn = sum(1 for m in history if m.role == "user" and not m.is_error) + 1
    if attachments:
        phase = "lab_analysis"
        reply = "This is a mock response. The uploaded file would be interpreted here and correlated with your history."
    elif turn >= MOCK_FINAL_TURN:
        phase = "final_report"
        reply = ("This is a mock final report.\n\n"
                 "1. **Viral upper respiratory infection** - most likely\n"
                 "2. **Seasonal allergies**\n\n"
                 "_Demo only. Not a medical diagnosis._")
    else:
        phase = "questioning"
        reply = "This is a mock response. How long have the symptoms been present?"
    return json.dumps({
        "reply": reply,
        "probabilities": [
            {"condition": "Viral upper respiratory infection", "percentage": min(90, 40 + turn * 10)},
            {"condition": "Seasonal allergies", "percentage": max(5, 35 - turn * 5)},
            {"condition": "Bacterial sinusitis", "percentage": 10},
        ],
        "phase": phase,
        "progress": min(100, turn * 20),
    }, ensure_ascii=False)


# ---------
# Client
# ---------
class DiagnosticClient:
    def __init__(
        self,
        provider: str = config.LLM_PROVIDER,
        model: str = config.MODEL_NAME,
        base_url: Optional[str] = config.LLM_BASE_URL,
        temperature: float = config.LLM_TEMPERATURE,
        max_attempts: int = config.LLM_MAX_ATTEMPTS,
        backoff_seconds: float = config.LLM_BACKOFF_SECONDS,
        default_api_key: Optional[str] = None,
        client_factory: Callable[..., Any] = OpenAI,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if provider not in ("gemini", "openai", "mock"):
            raise ValueError(f"Unknown LLM_PROVIDER '{provider}'")
        if base_url is None and provider == "gemini":
            base_url = config.GEMINI_BASE_URL
        self.provider = provider
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.default_api_key = config.default_api_key(provider) if default_api_key is None else default_api_key
        self.client_factory = client_factory
        self.sleep = sleep

    @property
    def requires_api_key(self) -> bool:
        return self.provider != "mock"

    def resolve_api_key(self, api_key: Optional[str] = None) -> str:
        return (api_key or "").strip() or self.default_api_key

    def send(self, history: Sequence[Message], user_message: str,
             attachments: Sequence[Attachment] = (), language: str = "en",
             api_key: Optional[str] = None) -> DiagnosticReply:
        if self.provider == "mock":
            return parse_reply(_mock_completion(history, attachments))

        key = self.resolve_api_key(api_key)
        if not key:
            raise MissingApiKeyError("API Key is missing")

        messages = build_messages(history, user_message, attachments, language)
        logger.debug("Sending %d messages (%d new attachments) to %s", len(messages), len(attachments), self.model)

        # The SDK's own retries are disabled; backoff is handled here.
        client = self.client_factory(api_key=key, base_url=self.base_url, max_retries=0)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        try:
            return retrying(self._complete, client, messages)
        except DiagnosticServiceError as exc:
            logger.error("Model call failed: %s", exc)
            raise
        except Exception as exc:
            kind = classify_error(exc)
            logger.error("Model call failed (%s): %s", kind.value, exc)
            if kind in (ErrorKind.QUOTA, ErrorKind.RATE_LIMIT):
                raise QuotaExceededError(str(exc)) from exc
            raise ModelCallError(str(exc)) from exc

    def _complete(self, client: Any, messages: List[Dict[str, Any]]) -> DiagnosticReply:
        completion = client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=messages,
            response_format={"type": "json_schema", "json_schema": RESPONSE_SCHEMA},
        )
        text = completion.choices[0].message.content if completion.choices else None
        if not text:
            raise EmptyResponseError("Empty response from AI")
        return parse_reply(text)
