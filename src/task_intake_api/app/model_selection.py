"""Keyword heuristic that picks a Gemini model for a task description.

Matching is plain substring containment on the lower-cased text, so it is
predictable and cheap, not a guarantee of actual task difficulty.
"""

from __future__ import annotations

from collections.abc import Mapping

from .models import Complexity

COMPLEX_PATTERNS: tuple[str, ...] = (
    "analyze",
    "compare",
    "calculate",
    "process data",
    "machine learning",
    "artificial intelligence",
    "complex logic",
    "multiple conditions",
    "workflow",
    "integration",
    "transform",
    "parse",
    "extract and process",
)

EASY_PATTERNS: tuple[str, ...] = (
    "send email",
    "post message",
    "simple notification",
    "basic alert",
    "reminder",
    "daily message",
    "weekly update",
    "fetch data",
)

DEFAULT_TIER_MODELS: dict[str, str] = {
    "easy": "gemini-2.5-flash",
    "intermediate": "gemini-2.5-flash",
    "complex": "gemini-2.5-pro",
}


def analyze_complexity(task_text: str) -> Complexity:
    text = task_text.lower()
    complex_score = sum(1 for pattern in COMPLEX_PATTERNS if pattern in text)
    easy_score = sum(1 for pattern in EASY_PATTERNS if pattern in text)

    if complex_score >= 2:
        return "complex"
    if easy_score >= 1 and complex_score == 0:
        return "easy"
    return "intermediate"


def select_model(task_text: str, tier_models: Mapping[str, str] | None = None) -> str:
    """Return the model id for the tier chosen by ``analyze_complexity``."""
    models = tier_models or DEFAULT_TIER_MODELS
    complexity = analyze_complexity(task_text)
    return models.get(complexity, DEFAULT_TIER_MODELS[complexity])
