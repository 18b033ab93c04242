from __future__ import annotations

from pydantic.dataclasses import dataclass as pydantic_dataclass

from .inference.types import LabeledPrediction


@pydantic_dataclass(frozen=True)
class PredictResponse:
    class_index: int
    label: str
    confidence: float
    probs: list[float]
    model_id: str
    uncertain: bool
    latency_ms: int
    visual_png_b64: str | None = None

    @staticmethod
    def from_prediction(
        pred: LabeledPrediction, visual_png_b64: str | None = None
    ) -> PredictResponse:
        return PredictResponse(
            class_index=int(pred.result.predicted_index),
            label=pred.label,
            confidence=float(pred.result.confidence),
            probs=[float(p) for p in pred.result.scores],
            model_id=pred.model_id,
            uncertain=bool(pred.uncertain),
            latency_ms=int(pred.latency_ms),
            visual_png_b64=visual_png_b64,
        )


@pydantic_dataclass(frozen=True)
class ErrorBody:
    code: str
    message: str
