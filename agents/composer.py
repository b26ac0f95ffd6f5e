"""
Module: agents.composer

Alert message composition. The LLM composer only rewords figures computed by the
engine; the template composer renders the same alerts deterministically and is the
fallback whenever the LLM is disabled, failing or too slow.
"""

import logging
import os
from datetime import datetime
from typing import Protocol

from openai import AsyncOpenAI

from config.config import ComposerConfig
from models.enums import ReplenishmentAction, Severity, Urgency
from models.exceptions import ComposerUnavailableError
from models.notifications import ComposedAlert, NotificationState, PendingAlert
from models.sales import SalesVelocity
from models.state import ReplenishmentRecommendation, StockState
from utils.openai_utils import completion_text, safe_chat_completion

from .prompts import (
    ALERT_SYSTEM_PROMPT,
    EXPLAIN_SYSTEM_PROMPT,
    build_alert_context,
    build_channel_message_prompt,
    build_digest_prompt,
    build_explain_decision_prompt,
    build_explanation_prompt,
    build_full_message_prompt,
    build_short_message_prompt,
)

logger = logging.getLogger(__name__)

AlertPair = tuple[StockState, ReplenishmentRecommendation]

SEVERITY_LABELS = {
    Severity.CRITICAL: "[CRITICAL]",
    Severity.WARNING: "[WARNING]",
    Severity.INFO: "[INFO]",
    Severity.OK: "[OK]",
}

ACTION_LABELS = {
    ReplenishmentAction.ORDER: "Order",
    ReplenishmentAction.TRANSFER: "Transfer from another location",
}

LANGUAGE_NAMES = {"en": "English", "es": "Spanish"}

URGENCY_LABELS = {
    Urgency.IMMEDIATE: "URGENT",
    Urgency.TODAY: "TODAY",
    Urgency.PLANNED: "Planned",
}


class AlertComposer(Protocol):
    async def compose(
        self,
        state: StockState,
        recommendation: ReplenishmentRecommendation,
        velocity: SalesVelocity | None = None,
    ) -> ComposedAlert: ...


class TemplateAlertComposer:
    """
    Deterministic templates. Wording comes from the state's numeric fields plus the
    stored item and location display names; no velocity narrative or free text.
    """

    def short_message(self, state: StockState) -> str:
        return f"{SEVERITY_LABELS[state.severity]} {state.item_name}: {state.available} units"

    def full_message(self, state: StockState, rec: ReplenishmentRecommendation) -> str:
        action = ACTION_LABELS[rec.action]
        if state.severity == Severity.CRITICAL:
            return (
                f"URGENT: {state.item_name} at {state.location_name} has only {state.available} units. "
                f"{action} {rec.suggested_qty} units immediately."
            )
        if state.severity == Severity.WARNING:
            return (
                f"{state.item_name} at {state.location_name} is running low ({state.available} units). "
                f"{action} {rec.suggested_qty} units before the next shift."
            )
        return (
            f"{state.item_name} at {state.location_name} is trending down ({state.available} units). "
            f"Plan an order of {rec.suggested_qty} units."
        )

    def channel_message(self, state: StockState, rec: ReplenishmentRecommendation) -> str:
        return (
            f"{SEVERITY_LABELS[state.severity]} *{state.item_name}* ({state.location_name})\n"
            f"Stock: {state.available} units\n"
            f"{URGENCY_LABELS[rec.urgency]}: order {rec.suggested_qty} units"
        )

    async def compose(
        self,
        state: StockState,
        recommendation: ReplenishmentRecommendation,
        velocity: SalesVelocity | None = None,
    ) -> ComposedAlert:
        return self.render(state, recommendation)

    def render(self, state: StockState, recommendation: ReplenishmentRecommendation) -> ComposedAlert:
        return ComposedAlert(
            short_message=self.short_message(state),
            full_message=self.full_message(state, recommendation),
            channel_message=self.channel_message(state, recommendation),
            explanation=recommendation.reasoning,
            from_template=True,
        )

    def compose_digest(self, alerts: list[AlertPair], now: datetime) -> str:
        """Summary grouped by severity, critical first. Empty string when there is nothing to report."""
        if not alerts:
            return ""
        by_severity: dict[Severity, list[AlertPair]] = {Severity.CRITICAL: [], Severity.WARNING: [], Severity.INFO: []}
        for state, rec in alerts:
            if state.severity in by_severity:
                by_severity[state.severity].append((state, rec))

        lines = [f"STOCK SUMMARY - {now:%Y-%m-%d %H:%M}"]
        if by_severity[Severity.CRITICAL]:
            lines.append(f"CRITICAL ({len(by_severity[Severity.CRITICAL])}):")
            lines.extend(
                f"  - {s.item_name} @ {s.location_name}: {s.available} units -> order {r.suggested_qty}"
                for s, r in by_severity[Severity.CRITICAL]
            )
        if by_severity[Severity.WARNING]:
            lines.append(f"WARNINGS ({len(by_severity[Severity.WARNING])}):")
            lines.extend(
                f"  - {s.item_name} @ {s.location_name}: {s.available} units" for s, _ in by_severity[Severity.WARNING]
            )
        if by_severity[Severity.INFO]:
            lines.append(f"INFO ({len(by_severity[Severity.INFO])}):")
            lines.extend(
                f"  - {s.item_name} @ {s.location_name}: coverage {_hours(s.coverage_hours)}"
                for s, _ in by_severity[Severity.INFO]
            )
        return "\n".join(lines)

    def compose_aggregate(self, alerts: list[PendingAlert]) -> tuple[str, str]:
        """Title and body for several alerts at one location, most severe first."""
        ordered = sorted(alerts, key=lambda a: a.severity.rank, reverse=True)
        worst = ordered[0]
        title = f"{SEVERITY_LABELS[worst.severity]} {len(alerts)} stock alerts at {worst.state.location_name}"
        body = "\n".join(
            f"- {SEVERITY_LABELS[a.severity]} {a.state.item_name}: {a.state.available} units, "
            f"order {a.recommendation.suggested_qty}"
            for a in ordered
        )
        return title, body

    def compose_escalation(self, notification: NotificationState, minutes: int) -> tuple[str, str]:
        title = f"[ESCALATION] {notification.item_id} at {notification.location_id}"
        body = (
            f"Critical stock alert for {notification.item_id} at {notification.location_id} "
            f"has not been acknowledged for {minutes} minutes."
        )
        return title, body

    def explain(self, recommendation: ReplenishmentRecommendation) -> str:
        return f"Based on the data: {recommendation.reasoning}"


class LLMAlertComposer:
    """
    Words alerts with an OpenAI chat model.

    Raises ComposerUnavailableError when disabled, without a client, on failure or on
    empty output, so callers can fall back to templates.
    """

    def __init__(
        self,
        config: ComposerConfig | None = None,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        templates: TemplateAlertComposer | None = None,
    ):
        self.config = config or ComposerConfig()
        self.templates = templates or TemplateAlertComposer()
        if client is None and self.config.enabled:
            resolved_key = api_key or os.getenv("OPENAI_API_KEY")
            if resolved_key and resolved_key != "YOUR_API_KEY_HERE":
                client = AsyncOpenAI(api_key=resolved_key)
                logger.info("AsyncOpenAI client initialized for alert composition.")
            else:
                logger.warning("OpenAI API key missing or placeholder. Alerts will use templates.")
        self.client = client

    @property
    def _language(self) -> str:
        return LANGUAGE_NAMES.get(self.config.language, self.config.language)

    async def _complete(self, prompt: str, system_prompt: str) -> str:
        if not self.config.enabled:
            raise ComposerUnavailableError("LLM composer disabled")
        if self.client is None:
            raise ComposerUnavailableError("OpenAI client is not initialised")
        try:
            completion = await safe_chat_completion(
                self.client,
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt.format(language=self._language)},
                    {"role": "user", "content": prompt},
                ],
                logger=logger,
                retry_attempts=self.config.retry_attempts,
                retry_backoff=self.config.retry_backoff,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except Exception as e:
            raise ComposerUnavailableError(f"LLM call failed: {e}") from e
        return completion_text(completion)

    async def compose(
        self,
        state: StockState,
        recommendation: ReplenishmentRecommendation,
        velocity: SalesVelocity | None = None,
    ) -> ComposedAlert:
        velocity = velocity or SalesVelocity(item_id=state.item_id, ewma=state.ewma, trend=state.trend)
        context = build_alert_context(state, recommendation, velocity)

        short = await self._complete(build_short_message_prompt(context), ALERT_SYSTEM_PROMPT)
        full = await self._complete(build_full_message_prompt(context), ALERT_SYSTEM_PROMPT)
        channel = await self._complete(build_channel_message_prompt(context), ALERT_SYSTEM_PROMPT)
        explanation = await self._complete(build_explanation_prompt(context, recommendation), ALERT_SYSTEM_PROMPT)

        if not any([short, full, channel, explanation]):
            raise ComposerUnavailableError("LLM returned empty output")
        return ComposedAlert(
            short_message=short or self.templates.short_message(state),
            full_message=full or self.templates.full_message(state, recommendation),
            channel_message=channel or self.templates.channel_message(state, recommendation),
            explanation=explanation or recommendation.reasoning,
        )

    async def compose_digest(self, alerts: list[AlertPair], now: datetime) -> str:
        summary = self.templates.compose_digest(alerts, now)
        if not summary:
            return ""
        try:
            text = await self._complete(build_digest_prompt(summary), ALERT_SYSTEM_PROMPT)
        except ComposerUnavailableError as e:
            logger.warning(f"Digest composition fell back to template: {e}")
            return summary
        return text or summary

    async def explain_decision(
        self,
        question: str,
        state: StockState,
        recommendation: ReplenishmentRecommendation,
        velocity: SalesVelocity,
    ) -> str:
        """Answer a staff question ("why?") about a recommendation."""
        try:
            text = await self._complete(
                build_explain_decision_prompt(question, state, recommendation, velocity),
                EXPLAIN_SYSTEM_PROMPT,
            )
        except ComposerUnavailableError as e:
            logger.warning(f"Explanation fell back to template: {e}")
            return self.templates.explain(recommendation)
        return text or self.templates.explain(recommendation)


def _hours(value: int | None) -> str:
    return f"{value}h" if value is not None else "N/A"
