from __future__ import annotations

import pytest
import torch
from torch import Tensor

from fashion_ai.errors import ClassifierInvocationError, EmptyScoreVectorError, ErrorCode
from fashion_ai.inference.invoker import argmax, predict
from fashion_ai.inference.types import Scores

_ZEROS = torch.zeros((1, 28, 28, 1), dtype=torch.float32)


def test_toy_four_class_prediction() -> None:
    out = predict(_ZEROS, lambda _t: [0.1, 0.05, 0.7, 0.15])
    assert out.predicted_index == 2
    assert out.confidence == pytest.approx(0.7)
    assert out.scores == (0.1, 0.05, 0.7, 0.15)


def test_ties_resolve_to_lowest_index() -> None:
    scores = [0.5, 0.5] + [0.0] * 8
    out = predict(_ZEROS, lambda _t: scores)
    assert out.predicted_index == 0
    assert out.confidence == 0.5


def test_all_negative_scores_still_pick_maximum() -> None:
    assert argmax([-3.0, -1.0, -2.0]) == 1


def test_empty_scores_raise() -> None:
    with pytest.raises(EmptyScoreVectorError) as ei:
        predict(_ZEROS, lambda _t: [])
    assert ei.value.code is ErrorCode.empty_scores
    with pytest.raises(EmptyScoreVectorError):
        argmax([])


def test_classifier_called_exactly_once() -> None:
    calls: list[Tensor] = []

    def _clf(t: Tensor) -> Scores:
        calls.append(t)
        return [0.2, 0.8]

    _ = predict(_ZEROS, _clf)
    assert len(calls) == 1
    assert calls[0] is _ZEROS


def test_classifier_failure_wrapped_with_cause() -> None:
    boom = ValueError("weights exploded")

    def _clf(_t: Tensor) -> Scores:
        raise boom

    with pytest.raises(ClassifierInvocationError) as ei:
        predict(_ZEROS, _clf)
    assert ei.value.__cause__ is boom
    assert "weights exploded" in ei.value.message


def test_malformed_outputs_rejected() -> None:
    bad_outputs: list[object] = [None, "0.1,0.9", ["a", "b"], [0.1, float("nan")]]
    for bad in bad_outputs:
        with pytest.raises(ClassifierInvocationError):
            predict(_ZEROS, lambda _t, b=bad: b)  # type: ignore[misc]


def test_tensor_output_is_flattened() -> None:
    logits = torch.tensor([[0.1, 0.6, 0.3]], dtype=torch.float32)
    out = predict(_ZEROS, lambda _t: logits)  # type: ignore[arg-type,return-value]
    assert out.predicted_index == 1
    assert len(out.scores) == 3
    assert out.confidence == pytest.approx(0.6)


def test_predict_is_deterministic() -> None:
    def _clf(t: Tensor) -> Scores:
        return [float(t.sum()), 0.25, 0.25, 0.5]

    first = predict(_ZEROS, _clf)
    for _ in range(5):
        assert predict(_ZEROS, _clf) == first
