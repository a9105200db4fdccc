"""Shared test fixtures for the Frontdesk test suite."""

from __future__ import annotations

import os
from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ["METRICS_ENABLED"] = "false"
    os.environ.pop("FIREBASE_WEB_API_KEY", None)
    os.environ.pop("KNOWLEDGE_API_KEY", None)
    os.environ.pop("GOOGLE_OAUTH_CLIENT_ID", None)
    os.environ.pop("OAUTH_REDIRECT_URI", None)
    os.environ.pop("POST_OAUTH_REDIRECT_URL", None)


# Monday 19 Oct 2026, 10:00 PT
FIXED_NOW = datetime(2026, 10, 19, 10, 0, tzinfo=ZoneInfo("America/Los_Angeles"))


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def mock_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data: dict | None = None, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data if data is not None else {}
        mock.text = str(data)
        mock.content = b"{}" if data is not None else b""
        return mock

    return _make


@pytest.fixture
def llm_reply():
    """Factory for a mock chat model whose ``invoke`` returns fixed replies."""
    from langchain_core.messages import AIMessage

    def _make(*contents: str):
        llm = MagicMock()
        if len(contents) == 1:
            llm.invoke.return_value = AIMessage(content=contents[0])
        else:
            llm.invoke.side_effect = [AIMessage(content=c) for c in contents]
        return llm

    return _make
