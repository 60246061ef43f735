from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from dxchat import main
from dxchat.llm import DiagnosticClient
from dxchat.session import SessionStore

VALID_JSON = (
    '{"reply": "How long have you had the fever?",'
    ' "probabilities": [{"condition": "Influenza", "percentage": 55},'
    ' {"condition": "Common cold", "percentage": 30}],'
    ' "phase": "questioning", "progress": 15}'
)


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _api_error(cls, status, message, body=None):
    request = httpx.Request("POST", "https://example.test/v1/chat/completions")
    return cls(message, response=httpx.Response(status, request=request), body=body)


@pytest.fixture
def completion():
    """Build a chat-completions response object whose first choice carries ``text``."""
    return _completion


@pytest.fixture
def api_error():
    """Build a real openai status error with the given status code."""
    return _api_error


@pytest.fixture
def fake_openai():
    """An OpenAI client double; ``factory`` records how the client was constructed."""
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(VALID_JSON)
    factory = MagicMock(return_value=client)
    return SimpleNamespace(client=client, factory=factory, create=client.chat.completions.create)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def gemini_client(fake_openai, sleeps):
    return DiagnosticClient(
        provider="gemini",
        model="gemini-2.5-flash",
        default_api_key="env-key",
        client_factory=fake_openai.factory,
        sleep=sleeps.append,
    )


@pytest.fixture
def app_client(monkeypatch):
    """TestClient over the app with fresh sessions and the mock model provider."""
    from fastapi.testclient import TestClient

    monkeypatch.setattr(main, "sessions", SessionStore(max_sessions=10))
    monkeypatch.setattr(main, "diagnostic_client", DiagnosticClient(provider="mock"))
    return TestClient(main.app)


@pytest.fixture
def valid_json():
    return VALID_JSON
