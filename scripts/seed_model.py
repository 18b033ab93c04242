from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import torch

from fashion_ai.inference.engine import build_fresh_state_dict
from fashion_ai.inference.manifest import ModelManifest
from fashion_ai.labels import FASHION_MNIST_LABELS
from fashion_ai.normalize import NormalizeOptions, ResizeMethod, normalize_signature


@dataclass(frozen=True)
class SeedArgs:
    model_id: str
    to_dir: Path
    resize: ResizeMethod
    seed: int


def parse_args(argv: list[str] | None = None) -> SeedArgs:
    ap = argparse.ArgumentParser(
        description="Write an untrained model and manifest for local smoke tests"
    )
    ap.add_argument("--model-id", default="fashion_resnet18_v1", help="Model id folder name")
    ap.add_argument("--to-dir", default="./artifacts/fashion/models", help="Models root")
    ap.add_argument(
        "--resize",
        choices=[m.value for m in ResizeMethod],
        default=ResizeMethod.bilinear.value,
        help="Resize convention recorded in the manifest",
    )
    ap.add_argument("--seed", type=int, default=0, help="Torch RNG seed for initial weights")
    a = ap.parse_args(argv)
    return SeedArgs(
        model_id=str(a.model_id),
        to_dir=Path(str(a.to_dir)),
        resize=ResizeMethod(str(a.resize)),
        seed=int(a.seed),
    )


def write_seed_model(args: SeedArgs) -> Path:
    dst = args.to_dir / args.model_id
    dst.mkdir(parents=True, exist_ok=True)
    torch.manual_seed(args.seed)
    sd = build_fresh_state_dict("resnet18", len(FASHION_MNIST_LABELS))
    torch.save(sd, (dst / "model.pt").as_posix())
    manifest = ModelManifest(
        schema_version="v1",
        model_id=args.model_id,
        arch="resnet18",
        n_classes=len(FASHION_MNIST_LABELS),
        version="0.0.0",
        created_at=datetime.now(UTC),
        preprocess_hash=normalize_signature(NormalizeOptions(resize=args.resize)),
        val_acc=0.0,
        temperature=1.0,
    )
    (dst / "manifest.json").write_text(json.dumps(manifest.to_dict(), indent=2), encoding="utf-8")
    logging.getLogger("fashion_ai").info(
        "seed_model_written model_id=%s dst=%s", args.model_id, dst.as_posix()
    )
    return dst


def main(argv: list[str] | None = None) -> None:  # pragma: no cover - tiny glue
    from fashion_ai.logging import init_logging

    init_logging()
    write_seed_model(parse_args(argv))


if __name__ == "__main__":
    main()
