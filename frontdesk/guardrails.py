"""Guardrail Gate: screens inbound and outbound text.

The gate is configured with an ordered list of named checks.  A
collaborator (:class:`GuardrailClassifier`) evaluates them and returns one
:class:`CheckResult` per evaluated check; the gate folds those results into
a :class:`GuardrailVerdict`.  Any tripped check makes the verdict a
tripwire.  The gate fails closed: if the collaborator itself fails, the
verdict is a tripwire too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from frontdesk.config import JAILBREAK_CONFIDENCE_THRESHOLD
from frontdesk.errors import GuardrailBlocked
from frontdesk.llm import parse_json_reply
from frontdesk.models import CheckResult, GuardrailVerdict
from frontdesk.prompts import JAILBREAK_PROMPT, MODERATION_PROMPT
from frontdesk.services.metrics import metrics

logger = logging.getLogger(__name__)

MODERATION_CATEGORIES = [
    "sexual/minors",
    "hate/threatening",
    "harassment/threatening",
    "self-harm/instructions",
    "violence/graphic",
    "illicit/violent",
]

UNAVAILABLE_CATEGORY = "guardrail_unavailable"


@dataclass(frozen=True)
class CheckConfig:
    """One named check and its parameters."""

    name: str
    config: dict[str, Any] = field(default_factory=dict)


INPUT_CHECKS: tuple[CheckConfig, ...] = (
    CheckConfig("Jailbreak", {"confidence_threshold": JAILBREAK_CONFIDENCE_THRESHOLD}),
    CheckConfig("Moderation", {"categories": MODERATION_CATEGORIES}),
)
OUTPUT_CHECKS: tuple[CheckConfig, ...] = (
    CheckConfig("Moderation", {"categories": MODERATION_CATEGORIES}),
)


class GuardrailClassifier(Protocol):
    """Evaluates checks in order; may stop after the first tripped one."""

    def classify(self, text: str, checks: tuple[CheckConfig, ...]) -> list[CheckResult]: ...


# ── Gate ─────────────────────────────────────────────────────────────


def fold_results(results: list[CheckResult]) -> GuardrailVerdict:
    """Short-circuit over *results*: the first tripped check decides."""
    for result in results:
        if result.tripwire_triggered:
            return GuardrailVerdict(
                tripwire=True,
                categories=list(result.categories),
                checks=[result.check_name],
            )
    return GuardrailVerdict(tripwire=False)


class GuardrailGate:
    """Symmetric input/output screen around every turn."""

    def __init__(
        self,
        classifier: GuardrailClassifier,
        *,
        input_checks: tuple[CheckConfig, ...] = INPUT_CHECKS,
        output_checks: tuple[CheckConfig, ...] = OUTPUT_CHECKS,
    ):
        self._classifier = classifier
        self._input_checks = input_checks
        self._output_checks = output_checks

    def check_input(self, text: str) -> GuardrailVerdict:
        return self._check("input", text, self._input_checks)

    def check_output(self, text: str) -> GuardrailVerdict:
        return self._check("output", text, self._output_checks)

    def enforce_input(self, text: str) -> None:
        """Raise :class:`GuardrailBlocked` if the input trips a check."""
        self._enforce("input", self.check_input(text))

    def enforce_output(self, text: str) -> None:
        self._enforce("output", self.check_output(text))

    def _check(
        self, stage: str, text: str, checks: tuple[CheckConfig, ...],
    ) -> GuardrailVerdict:
        if not checks:
            return GuardrailVerdict(tripwire=False)
        try:
            results = self._classifier.classify(text, checks)
        except Exception:
            # Fail closed; the text itself is never logged.
            logger.exception("Guardrail classifier failed on %s; blocking", stage)
            return GuardrailVerdict(
                tripwire=True, categories=[UNAVAILABLE_CATEGORY], checks=[],
            )
        return fold_results(results)

    @staticmethod
    def _enforce(stage: str, verdict: GuardrailVerdict) -> None:
        if verdict.tripwire:
            logger.info(
                "Guardrail tripped on %s: checks=%s categories=%s",
                stage, verdict.checks, verdict.categories,
            )
            raise GuardrailBlocked(stage, verdict.categories)


# ── Model-backed classifier ──────────────────────────────────────────


class _JailbreakReply(BaseModel):
    jailbreak: bool = False
    confidence: float = 0.0


class _ModerationReply(BaseModel):
    flagged: list[str] = Field(default_factory=list)


class LLMGuardrailClassifier:
    """Runs each configured check as a deterministic model call.

    Checks are evaluated in order and evaluation stops at the first
    tripped check.  Unknown check names raise ``ValueError`` so that a
    misconfiguration blocks rather than silently passing.
    """

    def __init__(self, llm: Any):
        self._llm = llm

    def classify(self, text: str, checks: tuple[CheckConfig, ...]) -> list[CheckResult]:
        results: list[CheckResult] = []
        for check in checks:
            if check.name == "Jailbreak":
                result = self._jailbreak(text, check.config)
            elif check.name == "Moderation":
                result = self._moderation(text, check.config)
            else:
                raise ValueError(f"Unknown guardrail check: {check.name}")
            results.append(result)
            if result.tripwire_triggered:
                break
        return results

    def _jailbreak(self, text: str, config: dict[str, Any]) -> CheckResult:
        threshold = float(config.get("confidence_threshold", JAILBREAK_CONFIDENCE_THRESHOLD))
        with metrics.timed("anthropic", "guardrail_jailbreak"):
            response = self._llm.invoke(
                [HumanMessage(content=JAILBREAK_PROMPT.format(text=text))]
            )
        reply = parse_json_reply(response, _JailbreakReply)
        tripped = reply.jailbreak and reply.confidence >= threshold
        return CheckResult(
            check_name="Jailbreak",
            tripwire_triggered=tripped,
            categories=["jailbreak"] if tripped else [],
        )

    def _moderation(self, text: str, config: dict[str, Any]) -> CheckResult:
        categories = list(config.get("categories", MODERATION_CATEGORIES))
        prompt = MODERATION_PROMPT.format(
            categories="\n".join(f"- {c}" for c in categories), text=text,
        )
        with metrics.timed("anthropic", "guardrail_moderation"):
            response = self._llm.invoke([HumanMessage(content=prompt)])
        reply = parse_json_reply(response, _ModerationReply)
        flagged = [c for c in reply.flagged if c in categories]
        return CheckResult(
            check_name="Moderation",
            tripwire_triggered=bool(flagged),
            categories=flagged,
        )
