"""Information Responder: answers factual questions from known material only.

Knowledge comes from the user's remote index when they have one, otherwise
from the local ``KNOWLEDGE_BASE.md`` (Q&A sections under ``###`` headings,
matched by keyword overlap).  With nothing relevant found the reply is the
fixed fallback phrase; the model is never asked to answer from thin air.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from frontdesk.config import KNOWLEDGE_BASE_PATH
from frontdesk.knowledge import KnowledgeIndexer
from frontdesk.llm import reply_text
from frontdesk.models import ConversationTurn
from frontdesk.prompts import INFORMATION_FALLBACK, INFORMATION_PROMPT, NO_INFORMATION_SENTINEL
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({
    "the", "and", "are", "you", "your", "what", "when", "where", "which", "who",
    "how", "can", "does", "for", "with", "about", "have", "has", "our", "this",
    "that", "there", "any", "tell", "please", "would", "could", "get",
})


def _keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 2 and w not in _STOPWORDS}


def split_into_sections(content: str) -> list[dict[str, str]]:
    """Split a markdown FAQ into ``{"heading", "body"}`` Q&A sections."""
    sections: list[dict[str, str]] = []
    parts = re.split(r"###\s+(.+?)(?=\n)", content)

    # parts[0] is the preamble, then alternating heading/body pairs
    for i in range(1, len(parts), 2):
        heading = parts[i].strip()
        body = parts[i + 1].strip() if i + 1 < len(parts) else ""
        body = re.sub(r"\n---\s*$", "", body).strip()
        sections.append({"heading": heading, "body": body})
    return sections


class LocalKnowledgeBase:
    """Keyword search over a markdown Q&A file."""

    def __init__(self, content: str):
        self._sections = split_into_sections(content)

    @classmethod
    def from_path(cls, path: str | Path = KNOWLEDGE_BASE_PATH) -> LocalKnowledgeBase:
        try:
            return cls(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.error("Knowledge base not found at %s", path)
            return cls("")

    def search(self, query: str, max_results: int = 3) -> list[str]:
        query_words = _keywords(query)
        if not query_words:
            return []

        scored: list[tuple[int, dict[str, str]]] = []
        for section in self._sections:
            heading_words = _keywords(section["heading"])
            body_words = _keywords(section["body"])
            matches = len(query_words & (heading_words | body_words))
            # Heading hits count extra
            matches += 2 * len(query_words & heading_words)
            if matches:
                scored.append((matches, section))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [f"{s['heading']}\n{s['body']}" for _, s in scored[:max_results]]


class InformationResponder:
    def __init__(
        self,
        llm: Any,
        *,
        local_knowledge: LocalKnowledgeBase | None = None,
        indexer: KnowledgeIndexer | None = None,
    ):
        self._llm = llm
        self._local = local_knowledge if local_knowledge is not None else LocalKnowledgeBase.from_path()
        self._indexer = indexer

    def answer(self, turn: ConversationTurn) -> str:
        snippets = self._lookup(turn.user_id, turn.text)
        if not snippets:
            logger.info("No knowledge matched; returning fallback")
            return INFORMATION_FALLBACK

        system = INFORMATION_PROMPT.format(knowledge="\n\n".join(snippets))
        with metrics.timed("anthropic", "information_answer"):
            response = self._llm.invoke(
                [SystemMessage(content=system), HumanMessage(content=turn.text)],
            )
        text = reply_text(response)
        if not text or NO_INFORMATION_SENTINEL in text:
            return INFORMATION_FALLBACK
        return text

    def _lookup(self, user_id: str, query: str) -> list[str]:
        try:
            if self._indexer is not None and self._indexer.has_index(user_id):
                return self._indexer.search(user_id, query)
            return self._local.search(query)
        except Exception as exc:
            logger.warning("Knowledge lookup failed, treating as no match: %s", exc)
            return []
