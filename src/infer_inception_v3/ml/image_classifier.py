"""Ranking of classification probabilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float
    class_id: int


def class_label(class_id: int, class_names: Sequence[str]) -> str:
    if 0 <= class_id < len(class_names):
        return class_names[class_id]
    return f"unknown {class_id}"


def rank(probabilities: NDArray[np.float32], class_names: Sequence[str]) -> list[ClassificationResult]:
    """Sort a 1 x n probability vector in descending order.

    Ties keep their original index order.
    """
    scores = np.asarray(probabilities, dtype=np.float32).reshape(-1)
    order = np.argsort(-scores, kind="stable")
    return [
        ClassificationResult(
            label=class_label(int(class_id), class_names),
            confidence=float(scores[class_id]),
            class_id=int(class_id),
        )
        for class_id in order
    ]


def format_label(result: ClassificationResult) -> str:
    return f"{result.label} : {result.confidence:.6f}"
