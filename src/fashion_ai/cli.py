from __future__ import annotations

import argparse
import base64
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter
from torch import Tensor

from .config import Limits, Settings
from .errors import AppError, ErrorCode, error_response, exit_code_for
from .inference.engine import load_classifier
from .inference.types import LabeledPrediction, Scores
from .labels import FASHION_MNIST_LABELS
from .logging import get_logger, init_logging
from .normalize import NormalizeOptions, ResizeMethod
from .pipeline import classify_image, format_probabilities
from .raster import load_raster
from .version import get_build_info
from .schemas import ErrorBody, PredictResponse


class LoadedClassifier(Protocol):
    @property
    def model_id(self) -> str: ...
    def __call__(self, tensor: Tensor) -> Scores: ...


Loader = Callable[[Settings, NormalizeOptions], LoadedClassifier]


@dataclass(frozen=True)
class ClassifyArgs:
    image: Path
    resize: ResizeMethod | None
    as_json: bool
    visualize: Path | None


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="fashion-ai", description="Classify garment images")
    ap.add_argument(
        "--version", action="store_true", help="Print the installed version and exit"
    )
    sub = ap.add_subparsers(dest="command")

    cp = sub.add_parser("classify", help="Classify one image file")
    cp.add_argument("image", help="Path to a PNG/JPEG/GIF/BMP/WEBP image")
    cp.add_argument(
        "--resize",
        choices=[m.value for m in ResizeMethod],
        default=None,
        help="Resize method (defaults to configured resize_method)",
    )
    cp.add_argument("--json", action="store_true", dest="as_json", help="Emit JSON")
    cp.add_argument("--visualize", default=None, help="Write the normalized 28x28 input as PNG")

    sub.add_parser("labels", help="Print the class label table")
    return ap


def parse_classify_args(ns: argparse.Namespace) -> ClassifyArgs:
    return ClassifyArgs(
        image=Path(str(ns.image)),
        resize=ResizeMethod(str(ns.resize)) if ns.resize is not None else None,
        as_json=bool(ns.as_json),
        visualize=Path(str(ns.visualize)) if ns.visualize is not None else None,
    )


def _default_loader(settings: Settings, opts: NormalizeOptions) -> LoadedClassifier:
    return load_classifier(settings, opts)


def main(argv: Sequence[str] | None = None, *, loader: Loader = _default_loader) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    if ns.version:
        print(get_build_info().describe())
        return 0
    if ns.command is None:
        parser.error("a command is required (classify or labels)")
    if ns.command == "labels":
        for i, name in enumerate(FASHION_MNIST_LABELS):
            print(f"{i}: {name}")
        return 0
    args = parse_classify_args(ns)
    init_logging()
    try:
        return _classify(args, loader)
    except AppError as exc:
        get_logger().info("classify_failed code=%s", exc.code.value)
        body = error_response(exc)
        if args.as_json:
            err = ErrorBody(code=body.code.value, message=body.message)
            print(TypeAdapter(ErrorBody).dump_json(err).decode("utf-8"))
        else:
            print(f"error: {body.code.value}: {body.message}", file=sys.stderr)
        return exit_code_for(exc.code)


def _classify(args: ClassifyArgs, loader: Loader) -> int:
    try:
        settings = Settings.load()
    except RuntimeError as exc:
        raise AppError(ErrorCode.internal_error, f"Invalid configuration: {exc}") from exc
    cfg = settings.classifier
    opts = NormalizeOptions(resize=args.resize or ResizeMethod(cfg.resize_method))
    raster = load_raster(args.image, Limits.from_settings(settings))
    clf = loader(settings, opts)
    pred = classify_image(
        raster,
        clf,
        FASHION_MNIST_LABELS,
        opts=opts,
        uncertain_threshold=cfg.uncertain_threshold,
        model_id=clf.model_id,
        visualize_scale=cfg.visualize_scale if args.visualize is not None else None,
    )
    if args.visualize is not None and pred.visual_png is not None:
        args.visualize.parent.mkdir(parents=True, exist_ok=True)
        args.visualize.write_bytes(pred.visual_png)
    if args.as_json:
        visual_b64 = (
            base64.b64encode(pred.visual_png).decode("ascii") if pred.visual_png else None
        )
        resp = PredictResponse.from_prediction(pred, visual_b64)
        print(TypeAdapter(PredictResponse).dump_json(resp).decode("utf-8"))
    else:
        _print_text(pred)
    return 0


def _print_text(pred: LabeledPrediction) -> None:
    idx = pred.result.predicted_index
    print(f"Prediction: {idx}: {pred.label}")
    flag = " (uncertain)" if pred.uncertain else ""
    print(f"Confidence: {pred.result.confidence * 100.0:.2f}%{flag}")
    for line in format_probabilities(pred.result, FASHION_MNIST_LABELS):
        print(f"  {line}")


def run() -> None:  # pragma: no cover - console script glue
    sys.exit(main())
