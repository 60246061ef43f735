import os

from dotenv import load_dotenv

load_dotenv()


def _bool_env(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _int_env(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return int(v)


def _float_env(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return float(v)


APP_NAME = os.getenv("APP_NAME", "Abdulloh AI")

# "gemini" (OpenAI-compatible endpoint), "openai" or "mock"
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini").strip().lower()
MODEL_NAME = os.getenv("MODEL_NAME", "gemini-2.5-flash")
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "").strip() or None
GEMINI_API_KEY = (os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "").strip()
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
LLM_TEMPERATURE = _float_env("LLM_TEMPERATURE", 0.2)

# Backoff between attempts is LLM_BACKOFF_SECONDS * 2**attempt: 3s, 6s, 12s, 24s.
LLM_MAX_ATTEMPTS = _int_env("LLM_MAX_ATTEMPTS", 5)
LLM_BACKOFF_SECONDS = _float_env("LLM_BACKOFF_SECONDS", 3.0)

MAX_SESSIONS = _int_env("MAX_SESSIONS", 500)
MAX_ATTACHMENT_BYTES = _int_env("MAX_ATTACHMENT_BYTES", 10 * 1024 * 1024)
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en").strip() or "en"

HOST = os.getenv("HOST", "127.0.0.1")
PORT = _int_env("PORT", 8000)

ALLOW_LOGGING = _bool_env("ALLOW_LOGGING", default=False)  # patient text stays out of logs by default
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def default_api_key(provider: str = LLM_PROVIDER) -> str:
    """Key from the environment for the given provider, '' when unset."""
    if provider == "openai":
        return OPENAI_API_KEY
    if provider == "gemini":
        return GEMINI_API_KEY
    return ""
