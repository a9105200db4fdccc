"""Slot Parser: best-effort date/time understanding of a message.

The model proposes a reading; this module decides whether to trust it.
Only a valid PT instant or an explicit ``YYYY-MM-DD`` date counts as
understood.  Everything else comes back as ``understood=False`` with empty
fields, which downstream code treats as "ask a clarifying question".
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from langchain_core.messages import HumanMessage
from pydantic import BaseModel

from frontdesk.llm import parse_json_reply
from frontdesk.models import TimeSlotUnderstanding
from frontdesk.prompts import SLOT_PARSER_PROMPT
from frontdesk.services.metrics import metrics
from frontdesk.timeutil import now_pt, parse_date, parse_iso, to_iso

logger = logging.getLogger(__name__)


class _RawSlot(BaseModel):
    understood: bool = False
    start: str = ""
    end: str = ""
    date_only: str = ""
    notes: str = ""


def normalize_slot(raw: _RawSlot) -> TimeSlotUnderstanding:
    """Validate a raw model reading and convert its times to PT."""
    if not raw.understood:
        return TimeSlotUnderstanding.not_understood(raw.notes)

    start = end = date_only = ""
    if raw.start:
        try:
            start_dt = parse_iso(raw.start)
            start = to_iso(start_dt)
        except ValueError:
            logger.debug("Discarding unparseable start %r", raw.start)
        else:
            if raw.end:
                try:
                    end_dt = parse_iso(raw.end)
                    if end_dt > start_dt:
                        end = to_iso(end_dt)
                except ValueError:
                    logger.debug("Discarding unparseable end %r", raw.end)
    if raw.date_only:
        try:
            date_only = parse_date(raw.date_only).isoformat()
        except ValueError:
            logger.debug("Discarding unparseable date %r", raw.date_only)
    if start and not date_only:
        date_only = start[:10]

    if not start and not date_only:
        return TimeSlotUnderstanding.not_understood(raw.notes)
    return TimeSlotUnderstanding(
        understood=True, start=start, end=end, date_only=date_only, notes=raw.notes,
    )


class SlotParser:
    """Extracts a :class:`TimeSlotUnderstanding` from free text."""

    def __init__(self, llm: Any):
        self._llm = llm

    def parse(self, text: str, *, now: datetime | None = None) -> TimeSlotUnderstanding:
        now = now or now_pt()
        prompt = SLOT_PARSER_PROMPT.format(
            now=to_iso(now), weekday=now.strftime("%A"), message=text,
        )
        try:
            with metrics.timed("anthropic", "slot_parse"):
                response = self._llm.invoke([HumanMessage(content=prompt)])
            raw = parse_json_reply(response, _RawSlot)
        except Exception as exc:
            logger.warning("Slot parse failed, treating as not understood: %s", exc)
            return TimeSlotUnderstanding.not_understood()

        slot = normalize_slot(raw)
        if raw.understood and not slot.understood:
            logger.info("Slot parser reading rejected during normalization")
        return slot
