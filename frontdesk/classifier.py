"""Intent Classifier: forces one of three labels per turn.

A cheap, temperature-0 model call classifies the latest message with a
little recent context.  Labels are memoised on (message, context), so
identical input always yields the identical label within a process even if
the backend were to drift.  Anything the classifier cannot map cleanly
resolves to ``else``; it never falls through to ``appointment_related``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from langchain_core.messages import HumanMessage

from frontdesk.llm import build_history_context, reply_text
from frontdesk.models import Classification, ConversationTurn
from frontdesk.prompts import CLASSIFIER_PROMPT
from frontdesk.services.cache import LRUCache, make_key
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"[a-z_]+")


def parse_label(raw: str) -> Classification:
    """Map a raw model reply onto a :class:`Classification`.

    The reply must contain exactly one known label; zero or several
    labels are ambiguous and resolve to ``else``.
    """
    tokens = set(_LABEL_RE.findall(raw.lower()))
    found = [label for label in Classification if label.value in tokens]
    if len(found) == 1:
        return found[0]
    return Classification.ELSE


class IntentClassifier:
    """Deterministic three-way intent classification."""

    def __init__(self, llm: Any, *, cache: LRUCache | None = None, max_turns: int = 3):
        self._llm = llm
        self._cache = cache or LRUCache()
        self._max_turns = max_turns

    def classify(self, turn: ConversationTurn) -> Classification:
        context = build_history_context(turn.history, self._max_turns)
        key = make_key("intent", turn.text, context)
        cached = self._cache.get(key)
        if cached is not None:
            return Classification(cached)

        prompt = CLASSIFIER_PROMPT.format(context=context, message=turn.text)
        try:
            with metrics.timed("anthropic", "intent_classify"):
                response = self._llm.invoke([HumanMessage(content=prompt)])
        except Exception as exc:
            # Not cached: a later identical turn gets a fresh attempt.
            logger.warning("Intent classifier failed, defaulting to else: %s", exc)
            return Classification.ELSE

        raw = reply_text(response)
        label = parse_label(raw)
        logger.debug("Classified as %s (raw: %r)", label, raw)
        self._cache.put(key, label.value)
        return label
