"""Tests for the Slot Parser and PT normalization."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError as PydanticValidationError

from frontdesk.models import TimeSlotUnderstanding
from frontdesk.slots import SlotParser, _RawSlot, normalize_slot
from frontdesk.timeutil import format_pt, parse_iso


class TestTimeSlotUnderstanding:
    def test_fields_must_be_empty_when_not_understood(self):
        with pytest.raises(PydanticValidationError):
            TimeSlotUnderstanding(understood=False, start="2026-10-27T09:00:00-07:00")

    def test_not_understood_keeps_notes(self):
        slot = TimeSlotUnderstanding.not_understood("sometime soon")
        assert slot.understood is False
        assert slot.notes == "sometime soon"


class TestNormalizeSlot:
    def test_naive_start_is_taken_as_pt(self):
        slot = normalize_slot(_RawSlot(understood=True, start="2026-10-27T09:00:00"))
        assert slot.understood is True
        assert slot.start == "2026-10-27T09:00:00-07:00"
        assert slot.date_only == "2026-10-27"

    def test_utc_start_is_converted_to_pt(self):
        slot = normalize_slot(_RawSlot(understood=True, start="2026-10-27T16:00:00Z"))
        assert slot.start == "2026-10-27T09:00:00-07:00"

    def test_end_before_start_is_dropped(self):
        slot = normalize_slot(_RawSlot(
            understood=True, start="2026-10-27T10:00:00", end="2026-10-27T09:00:00",
        ))
        assert slot.end == ""

    def test_date_only(self):
        slot = normalize_slot(_RawSlot(understood=True, date_only="2026-10-28"))
        assert slot.understood is True
        assert slot.start == ""
        assert slot.date_only == "2026-10-28"

    def test_garbage_clears_everything(self):
        slot = normalize_slot(_RawSlot(
            understood=True, start="next tuesday", date_only="the 28th", notes="vague",
        ))
        assert slot == TimeSlotUnderstanding.not_understood("vague")

    def test_model_not_understood_wins(self):
        slot = normalize_slot(_RawSlot(understood=False, start="2026-10-27T09:00:00"))
        assert slot.understood is False
        assert slot.start == ""


class TestSlotParser:
    def test_parses_concrete_time(self, llm_reply, fixed_now):
        llm = llm_reply('{"understood": true, "start": "2026-10-27T09:00:00-07:00"}')
        slot = SlotParser(llm).parse("next Tuesday at 9am", now=fixed_now)
        assert slot.start == "2026-10-27T09:00:00-07:00"

        prompt = llm.invoke.call_args[0][0][0].content
        assert "2026-10-19T10:00:00-07:00" in prompt
        assert "Monday" in prompt

    def test_model_failure_degrades_to_not_understood(self, fixed_now):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("timeout")
        assert SlotParser(llm).parse("tomorrow", now=fixed_now).understood is False

    def test_non_json_reply_degrades(self, llm_reply, fixed_now):
        slot = SlotParser(llm_reply("Tuesday at nine")).parse("Tuesday 9", now=fixed_now)
        assert slot.understood is False


class TestFormatPt:
    def test_formats_in_pt(self):
        assert format_pt("2026-10-27T16:00:00Z") == "Tue 27 Oct 2026 at 09:00 PT"

    def test_parse_iso_rejects_date_without_time(self):
        with pytest.raises(ValueError):
            parse_iso("2026-10-27")
