from __future__ import annotations

import io
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
import torch
from torch import Tensor

from fashion_ai.errors import LabelMismatchError
from fashion_ai.inference.types import PredictionResult, Scores
from fashion_ai.labels import FASHION_MNIST_LABELS, ClassLabels
from fashion_ai.logging import _JsonFormatter, get_logger
from fashion_ai.pipeline import classify_image, format_probabilities
from fashion_ai.raster import RasterImage

_STUB_SCORES: list[float] = [0.9, 0.02] + [0.01] * 8


def _white_rgb() -> RasterImage:
    return RasterImage(width=28, height=28, channels=3, pixels=bytes([255] * (28 * 28 * 3)))


def test_end_to_end_white_image() -> None:
    seen: list[Tensor] = []

    def _clf(t: Tensor) -> Scores:
        seen.append(t.clone())
        return _STUB_SCORES

    out = classify_image(_white_rgb(), _clf, FASHION_MNIST_LABELS, model_id="stub")
    assert len(seen) == 1
    assert tuple(seen[0].shape) == (1, 28, 28, 1)
    assert int(torch.count_nonzero(seen[0])) == 0
    assert out.result.predicted_index == 0
    assert out.result.confidence == pytest.approx(0.9)
    assert out.label == "T-shirt/top"
    assert out.model_id == "stub"
    assert out.uncertain is False
    assert out.visual_png is None
    assert len(out.result.scores) == len(FASHION_MNIST_LABELS)


def test_low_confidence_flagged_uncertain() -> None:
    scores = [0.05] * 9 + [0.55]
    out = classify_image(_white_rgb(), lambda _t: scores, uncertain_threshold=0.7)
    assert out.result.predicted_index == 9
    assert out.label == "Ankle boot"
    assert out.uncertain is True


def test_score_length_must_match_labels() -> None:
    with pytest.raises(LabelMismatchError):
        classify_image(_white_rgb(), lambda _t: [0.1, 0.05, 0.7, 0.15], FASHION_MNIST_LABELS)
    toy = ClassLabels(names=("a", "b", "c", "d"))
    out = classify_image(_white_rgb(), lambda _t: [0.1, 0.05, 0.7, 0.15], toy)
    assert out.label == "c"


def test_visualize_scale_attaches_png() -> None:
    out = classify_image(_white_rgb(), lambda _t: _STUB_SCORES, visualize_scale=2)
    assert out.visual_png is not None and out.visual_png.startswith(b"\x89PNG")


def test_classify_emits_structured_event() -> None:
    buf = io.StringIO()
    h = logging.StreamHandler(buf)
    h.setFormatter(_JsonFormatter())
    logger = get_logger()
    old_level = logger.level
    logger.setLevel(logging.INFO)
    logger.addHandler(h)
    try:
        classify_image(_white_rgb(), lambda _t: _STUB_SCORES, model_id="m1")
    finally:
        logger.removeHandler(h)
        logger.setLevel(old_level)
    out = buf.getvalue()
    assert '"message": "classify_finished"' in out
    assert '"class_index": 0' in out
    assert '"label": "T-shirt/top"' in out
    assert '"model_id": "m1"' in out and '"uncertain": false' in out


def test_format_probabilities_lines() -> None:
    res = PredictionResult(predicted_index=0, confidence=0.9, scores=tuple(_STUB_SCORES))
    lines = format_probabilities(res, FASHION_MNIST_LABELS)
    assert len(lines) == 10
    assert lines[0] == "0: T-shirt/top 90.00%"
    assert lines[9] == "9: Ankle boot 1.00%"


def test_concurrent_calls_are_independent() -> None:
    def _clf(t: Tensor) -> Scores:
        # Dark images invert to bright tensors; route them to class 1
        bright = float(t.mean()) > 0.5
        return [0.1, 0.9] + [0.0] * 8 if bright else _STUB_SCORES

    white = _white_rgb()
    black = RasterImage(width=40, height=40, channels=1, pixels=bytes(40 * 40))
    images = [white, black] * 8
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda im: classify_image(im, _clf), images))
    for img, res in zip(images, results, strict=True):
        expected = 0 if img is white else 1
        assert res.result.predicted_index == expected
