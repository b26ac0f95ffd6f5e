"""Prompt builders for the LLM alert composer.

Builders only format the user-visible parts of prompts. Every figure in a prompt comes
from the deterministic engine; the model is told to reword, never to calculate.

All builders return **plain strings** without role metadata.
"""

from __future__ import annotations

from models.sales import SalesVelocity
from models.state import ReplenishmentRecommendation, StockState

__all__ = [
    "ALERT_SYSTEM_PROMPT",
    "EXPLAIN_SYSTEM_PROMPT",
    "build_alert_context",
    "build_short_message_prompt",
    "build_full_message_prompt",
    "build_channel_message_prompt",
    "build_explanation_prompt",
    "build_digest_prompt",
    "build_explain_decision_prompt",
]

ALERT_SYSTEM_PROMPT = """You write inventory alerts for bar and nightclub staff.
STRICT RULES:
1. NEVER invent numbers. Use ONLY the data provided.
2. NEVER hedge ("I think", "maybe"); the data is exact.
3. Answer in {language}, at most 2 sentences.
4. Be direct and actionable.
Your job is to WORD clear messages, not to calculate or decide."""

EXPLAIN_SYSTEM_PROMPT = """You explain inventory decisions to staff.
Use ONLY the data provided to answer.
If the data does not answer the question, say "I don't have that information".
Answer in {language}, at most 3 sentences."""


def build_alert_context(
    state: StockState,
    recommendation: ReplenishmentRecommendation,
    velocity: SalesVelocity,
) -> str:
    """Return the data block shared by every alert prompt."""
    coverage = f"{state.coverage_hours} hours" if state.coverage_hours is not None else "N/A"
    return f"""DATA (exact, do not modify):
- Product: {state.item_name}
- Location: {state.location_name}
- Current stock: {state.available} units
- Severity: {state.severity.value.upper()}
- Coverage: {coverage}
- Current velocity: {velocity.ewma:.1f} units/hour
- Trend: {velocity.trend.value}
- Recommended action: {recommendation.action.value}
- Quantity to order: {recommendation.suggested_qty} units
- Urgency: {recommendation.urgency.value}"""


def build_short_message_prompt(context: str) -> str:
    return f"{context}\n\nWrite ONE short push notification message (at most 80 characters)."


def build_full_message_prompt(context: str) -> str:
    return f"{context}\n\nWrite a complete message (2-3 sentences) explaining the situation and what to do."


def build_channel_message_prompt(context: str) -> str:
    return f"""{context}

Write a chat message with:
1. The severity
2. Product and stock
3. A clear action
At most 3 lines."""


def build_explanation_prompt(context: str, recommendation: ReplenishmentRecommendation) -> str:
    return f"""{context}
System reasoning: {recommendation.reasoning}

Briefly explain why ordering {recommendation.suggested_qty} units is recommended.
Use the data provided, do not invent."""


def build_digest_prompt(summary: str) -> str:
    return f"""Summary data:
{summary}

Write a brief summary message for the staff on shift.
Put critical items first and mention how many warnings there are.
At most 5 lines."""


def build_explain_decision_prompt(
    question: str,
    state: StockState,
    recommendation: ReplenishmentRecommendation,
    velocity: SalesVelocity,
) -> str:
    coverage = state.coverage_hours if state.coverage_hours is not None else "N/A"
    return f"""SYSTEM DATA:
- Product: {state.item_name}
- Stock: {state.available} units
- Velocity: {velocity.ewma:.1f} units/hour ({velocity.trend.value})
- Coverage: {coverage} hours
- Recommendation: {recommendation.suggested_qty} units
- Reasoning: {recommendation.reasoning}

USER QUESTION: {question}"""
