"""Tests for the Intent Classifier."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from frontdesk.classifier import IntentClassifier, parse_label
from frontdesk.models import Classification, ConversationTurn


def _turn(text: str, *history) -> ConversationTurn:
    return ConversationTurn(text=text, user_id="u1", history=tuple(history))


class TestParseLabel:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("appointment_related", Classification.APPOINTMENT_RELATED),
            (" get_information\n", Classification.GET_INFORMATION),
            ("Label: else", Classification.ELSE),
            ("APPOINTMENT_RELATED", Classification.APPOINTMENT_RELATED),
        ],
    )
    def test_single_label(self, raw, expected):
        assert parse_label(raw) == expected

    def test_two_labels_resolve_to_else(self):
        assert parse_label("appointment_related or get_information") == Classification.ELSE

    def test_garbage_resolves_to_else(self):
        assert parse_label("booking!") == Classification.ELSE


class TestIntentClassifier:
    def test_scheduling_message(self, llm_reply):
        classifier = IntentClassifier(llm_reply("appointment_related"))
        assert classifier.classify(_turn("Can we meet next Tuesday at 9am?")) == (
            Classification.APPOINTMENT_RELATED
        )

    def test_identical_input_is_memoised(self, llm_reply):
        llm = llm_reply("get_information")
        classifier = IntentClassifier(llm)
        labels = {classifier.classify(_turn("What are your hours?")) for _ in range(5)}
        assert labels == {Classification.GET_INFORMATION}
        assert llm.invoke.call_count == 1

    def test_different_context_is_classified_again(self, llm_reply):
        llm = llm_reply("appointment_related")
        classifier = IntentClassifier(llm)
        classifier.classify(_turn("Yes"))
        classifier.classify(_turn("Yes", HumanMessage(content="Book me"), AIMessage(content="Confirm?")))
        assert llm.invoke.call_count == 2

    def test_prompt_includes_recent_history(self, llm_reply):
        llm = llm_reply("appointment_related")
        IntentClassifier(llm).classify(
            _turn("jane@example.com", AIMessage(content="What's the guest's email?")),
        )
        prompt = llm.invoke.call_args[0][0][0].content
        assert "Assistant: What's the guest's email?" in prompt
        assert "Latest message: jane@example.com" in prompt

    def test_backend_failure_defaults_to_else_and_is_not_cached(self):
        llm = MagicMock()
        llm.invoke.side_effect = [RuntimeError("overloaded"), AIMessage(content="appointment_related")]
        classifier = IntentClassifier(llm)
        assert classifier.classify(_turn("Book me")) == Classification.ELSE
        assert classifier.classify(_turn("Book me")) == Classification.APPOINTMENT_RELATED

    def test_ambiguous_reply_never_becomes_appointment(self, llm_reply):
        classifier = IntentClassifier(llm_reply("maybe appointment_related, maybe else"))
        assert classifier.classify(_turn("hmm")) == Classification.ELSE
