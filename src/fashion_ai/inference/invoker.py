from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from torch import Tensor

from ..errors import ClassifierInvocationError, EmptyScoreVectorError
from .types import Classifier, PredictionResult


def predict(tensor: Tensor, classifier: Classifier) -> PredictionResult:
    """Run ``classifier`` once on ``tensor`` and reduce its scores to a prediction.

    The classifier is expected to emit probabilities already; no softmax is
    applied here. Failures from the classifier are wrapped, never retried.
    """
    try:
        raw = classifier(tensor)
    except Exception as exc:
        raise ClassifierInvocationError(f"classifier raised {type(exc).__name__}: {exc}") from exc
    scores = _coerce_scores(raw)
    if len(scores) == 0:
        raise EmptyScoreVectorError()
    idx = argmax(scores)
    return PredictionResult(predicted_index=idx, confidence=float(scores[idx]), scores=scores)


def argmax(scores: Sequence[float]) -> int:
    """Index of the first maximum, scanning left to right."""
    if len(scores) == 0:
        raise EmptyScoreVectorError()
    top_idx = 0
    best = scores[0]
    for i in range(1, len(scores)):
        if scores[i] > best:
            best = scores[i]
            top_idx = i
    return top_idx


def _coerce_scores(raw: object) -> tuple[float, ...]:
    if isinstance(raw, Tensor):
        raw = raw.detach().flatten().tolist()
    if not isinstance(raw, Iterable) or isinstance(raw, str | bytes):
        raise ClassifierInvocationError(
            f"classifier returned {type(raw).__name__}, expected a sequence of floats"
        )
    try:
        scores = tuple(float(x) for x in raw)
    except (TypeError, ValueError) as exc:
        raise ClassifierInvocationError("classifier returned non-numeric scores") from exc
    if any(math.isnan(s) for s in scores):
        raise ClassifierInvocationError("classifier returned NaN scores")
    return scores
