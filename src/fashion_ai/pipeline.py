from __future__ import annotations

import time

from .errors import LabelMismatchError
from .inference.invoker import predict
from .inference.types import Classifier, LabeledPrediction, PredictionResult
from .labels import FASHION_MNIST_LABELS, ClassLabels
from .logging import log_event
from .normalize import NormalizeOptions, normalize, visualize_png
from .raster import RasterImage


def classify_image(
    image: RasterImage,
    classifier: Classifier,
    labels: ClassLabels = FASHION_MNIST_LABELS,
    *,
    opts: NormalizeOptions | None = None,
    uncertain_threshold: float = 0.70,
    model_id: str = "unknown",
    visualize_scale: int | None = None,
) -> LabeledPrediction:
    """Normalize ``image``, run ``classifier`` once, and attach a label.

    The normalized tensor is local to this call and is released on return.
    When ``visualize_scale`` is set, the tensor is also rendered to PNG.
    """
    t0 = time.perf_counter()
    tensor = normalize(image, opts if opts is not None else NormalizeOptions())
    result = predict(tensor, classifier)
    visual = visualize_png(tensor, visualize_scale) if visualize_scale else None
    del tensor
    if len(result.scores) != len(labels):
        raise LabelMismatchError(
            f"classifier returned {len(result.scores)} scores for {len(labels)} labels"
        )
    dt_ms = int((time.perf_counter() - t0) * 1000.0)
    label = labels.name_for(result.predicted_index)
    uncertain = result.confidence < float(uncertain_threshold)
    log_event(
        "classify_finished",
        fields={
            "latency_ms": dt_ms,
            "class_index": int(result.predicted_index),
            "label": label,
            "confidence": float(result.confidence),
            "model_id": model_id,
            "uncertain": bool(uncertain),
        },
    )
    return LabeledPrediction(
        result=result,
        label=label,
        model_id=model_id,
        uncertain=uncertain,
        latency_ms=dt_ms,
        visual_png=visual,
    )


def format_probabilities(result: PredictionResult, labels: ClassLabels) -> list[str]:
    lines: list[str] = []
    for i, name in enumerate(labels):
        pct = result.scores[i] * 100.0 if i < len(result.scores) else 0.0
        lines.append(f"{i}: {name} {pct:.2f}%")
    return lines
