from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from torch import Tensor

Scores = Sequence[float]


class Classifier(Protocol):
    def __call__(self, tensor: Tensor) -> Scores: ...


@dataclass(frozen=True)
class PredictionResult:
    predicted_index: int
    confidence: float
    scores: tuple[float, ...]


@dataclass(frozen=True)
class LabeledPrediction:
    result: PredictionResult
    label: str
    model_id: str
    uncertain: bool
    latency_ms: int
    visual_png: bytes | None = None
