"""Centralized configuration for the Frontdesk assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/frontdesk/<VARIABLE_NAME>``.
Optional integrations (Google Calendar, knowledge index, identity) resolve to
``None`` when unset; the components that need them report "not connected"
instead of failing at import time.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to keep boto3 out of test startup

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/frontdesk/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str, default: str | None = None) -> str | None:
    """Return a config value from env-var or SSM, or *default*."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value
    return default


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /frontdesk/{name} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")

# Cheap models for classification, slot parsing and guardrail checks
ROUTER_MODEL_NAME: str = os.getenv("ROUTER_MODEL_NAME", "claude-haiku-4-5")
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")
GUARDRAIL_MODEL_NAME: str = os.getenv("GUARDRAIL_MODEL_NAME", FAST_MODEL_NAME)

# ── Business rules ──────────────────────────────────────────────────
BUSINESS_NAME: str = os.getenv("BUSINESS_NAME", "our team")
CANONICAL_TIMEZONE: str = os.getenv("CANONICAL_TIMEZONE", "America/Los_Angeles")
MEETING_DURATION_MINUTES: int = 60
BUSINESS_HOURS_START: int = int(os.getenv("BUSINESS_HOURS_START", "9"))
BUSINESS_HOURS_END: int = int(os.getenv("BUSINESS_HOURS_END", "17"))

# ── Guardrails ──────────────────────────────────────────────────────
JAILBREAK_CONFIDENCE_THRESHOLD: float = float(
    os.getenv("JAILBREAK_CONFIDENCE_THRESHOLD", "0.7")
)

# ── Google Calendar ─────────────────────────────────────────────────
GOOGLE_OAUTH_CLIENT_ID: str | None = _optional_env("GOOGLE_OAUTH_CLIENT_ID")
GOOGLE_OAUTH_CLIENT_SECRET: str | None = _optional_env("GOOGLE_OAUTH_CLIENT_SECRET")
GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
GOOGLE_AUTH_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_REDIRECT_URI: str | None = _optional_env("OAUTH_REDIRECT_URI")
# Where the browser lands after a successful connect; plain text reply if unset
POST_OAUTH_REDIRECT_URL: str | None = _optional_env("POST_OAUTH_REDIRECT_URL")
CALENDAR_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar",
]
CALENDAR_BASE_URL: str = os.getenv(
    "CALENDAR_BASE_URL", "https://www.googleapis.com/calendar/v3",
)

# ── Identity ────────────────────────────────────────────────────────
FIREBASE_WEB_API_KEY: str | None = _optional_env("FIREBASE_WEB_API_KEY")
DEFAULT_USER_ID: str = os.getenv("DEFAULT_USER_ID", "demo-user")

# ── Knowledge ───────────────────────────────────────────────────────
KNOWLEDGE_API_KEY: str | None = _optional_env("KNOWLEDGE_API_KEY")
KNOWLEDGE_BASE_URL: str = os.getenv("KNOWLEDGE_BASE_URL", "https://api.openai.com/v1")
KNOWLEDGE_BASE_PATH: str = os.getenv(
    "KNOWLEDGE_BASE_PATH",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "KNOWLEDGE_BASE.md"),
)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
