"""Model builders and helpers for reading model replies.

Every model-backed component receives its chat model through its
constructor; the builders below are what the production wiring passes in.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, TypeVar

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AnyMessage, HumanMessage
from pydantic import BaseModel

from frontdesk.config import (
    ANTHROPIC_API_KEY,
    FAST_MODEL_NAME,
    GUARDRAIL_MODEL_NAME,
    MODEL_NAME,
    ROUTER_MODEL_NAME,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


# ── LLM builders ────────────────────────────────────────────────────


def build_router_llm() -> ChatAnthropic:
    """Intent classifier: deterministic, one word back."""
    return ChatAnthropic(
        model=ROUTER_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=10,
    )


def build_parser_llm() -> ChatAnthropic:
    """Slot parsing and sub-intent extraction: deterministic JSON."""
    return ChatAnthropic(
        model=FAST_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=512,
    )


def build_guardrail_llm() -> ChatAnthropic:
    return ChatAnthropic(
        model=GUARDRAIL_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=256,
    )


def build_responder_llm() -> ChatAnthropic:
    """Information answers: low temperature, grounded in retrieved snippets."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.2,
        max_tokens=1024,
    )


# ── Reply helpers ───────────────────────────────────────────────────


def reply_text(message: Any) -> str:
    """Return the plain text of a model reply.

    Anthropic replies may carry a list of content blocks; only text blocks
    are kept.
    """
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts).strip()
    return str(content).strip()


def parse_json_reply(message: Any, model: type[ModelT]) -> ModelT:
    """Validate a JSON object reply against *model*.

    Tolerates Markdown code fences and leading prose before the object.
    Raises ``ValueError`` (pydantic's ``ValidationError`` is a subclass)
    when no valid object is found.
    """
    text = _FENCE_RE.sub("", reply_text(message)).strip()
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("model reply contains no JSON object")
    return model.model_validate(json.loads(text[start : end + 1]))


def build_history_context(
    history: tuple[AnyMessage, ...] | list[AnyMessage],
    max_turns: int = 3,
) -> str:
    """Summarise the last ``max_turns`` exchanges for a classification prompt.

    Each message is truncated to 200 characters.
    """
    recent = list(history)[-(max_turns * 2):]
    if not recent:
        return ""

    lines = ["Recent conversation:\n"]
    for msg in recent:
        if isinstance(msg, HumanMessage):
            lines.append(f"  User: {reply_text(msg)[:200]}")
        elif getattr(msg, "content", None):
            lines.append(f"  Assistant: {reply_text(msg)[:200]}")
    lines.append("")
    return "\n".join(lines)
