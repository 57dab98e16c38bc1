"""Top-k ranking and report formatting for classifier output."""

from __future__ import annotations

from typing import TYPE_CHECKING

from photolabel.ml.image_classifier import ClassificationResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

DEFAULT_TOP_K = 4
FAILURE_MARKER = "Error"


def rank_predictions(probabilities: Mapping[str, float], top_k: int = DEFAULT_TOP_K) -> list[ClassificationResult]:
    """Return the ``top_k`` labels sorted by probability, highest first.

    Equal probabilities are ordered by label so the result does not depend on
    mapping iteration order.
    """
    ordered = sorted(probabilities.items(), key=lambda item: (-item[1], item[0]))
    return [ClassificationResult(label=label, confidence=float(prob)) for label, prob in ordered[:top_k]]


def format_prediction(result: ClassificationResult) -> str:
    return f"{result.label} ({result.confidence * 100:.2f}%)"


def format_report(primary_label: str, ranked: Sequence[ClassificationResult]) -> str:
    """Render the multi-line report shown to the user.

    Example::

        Result: cat

        1. cat (72.31%)
        2. dog (15.01%)
    """
    lines = [f"Result: {primary_label}", ""]
    lines.extend(f"{position}. {format_prediction(result)}" for position, result in enumerate(ranked, start=1))
    return "\n".join(lines)


def format_failure(error: BaseException) -> str:
    description = str(error) or type(error).__name__
    return f"{FAILURE_MARKER}: {description}"
