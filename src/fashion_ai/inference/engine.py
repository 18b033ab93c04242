from __future__ import annotations

import pickle
import time
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

import torch
from torch import Tensor

from ..config import Settings
from ..errors import ModelLoadError
from ..logging import get_logger, log_event
from ..normalize import TENSOR_SHAPE, NormalizeOptions, normalize_signature
from .manifest import ModelManifest

_SUPPORTED_ARCHS: Final[tuple[str, ...]] = ("resnet18",)
_LOAD_ERRORS: Final[tuple[type[BaseException], ...]] = (
    OSError,
    RuntimeError,
    TypeError,
    EOFError,
    pickle.UnpicklingError,
    zipfile.BadZipFile,
)


class TorchModel(Protocol):
    def eval(self) -> object: ...
    def __call__(self, x: Tensor) -> Tensor: ...
    def load_state_dict(self, sd: dict[str, Tensor]) -> object: ...


class TorchClassifier:
    """Callable ``tensor -> probabilities`` backed by a read-only Torch model.

    Accepts the NHWC ``[1, 28, 28, 1]`` tensor produced by ``normalize`` and
    feeds the model NCHW. Safe for concurrent calls: inference runs under
    ``no_grad`` and the model is never mutated after construction.
    """

    def __init__(self, model: TorchModel, manifest: ModelManifest) -> None:
        model.eval()
        self._model = model
        self._manifest = manifest

    @property
    def manifest(self) -> ModelManifest:
        return self._manifest

    @property
    def model_id(self) -> str:
        return self._manifest.model_id

    def __call__(self, tensor: Tensor) -> tuple[float, ...]:
        batch = _to_nchw(tensor)
        with torch.no_grad():
            logits = self._model(batch)
        return tuple(_softmax(logits, float(self._manifest.temperature)))


def load_classifier(
    settings: Settings,
    opts: NormalizeOptions | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> TorchClassifier:
    """Load the active model, retrying transient failures with linear backoff.

    Attempt ``n`` that fails with a transient error (missing files, unreadable
    weights) sleeps ``retry_backoff_seconds * n`` before the next attempt.
    Incompatible manifests or weights fail immediately.
    """
    logger = get_logger()
    cfg = settings.classifier
    norm = opts if opts is not None else NormalizeOptions.from_settings(settings)
    _apply_threads(settings)
    model_dir = cfg.model_dir / cfg.active_model
    last_reason = ""
    for attempt in range(1, cfg.max_load_retries + 1):
        try:
            clf = _load_once(model_dir, normalize_signature(norm))
        except _TransientLoadError as exc:
            last_reason = str(exc)
            logger.info(
                "model_load_failed attempt=%d of=%d reason=%s",
                attempt,
                cfg.max_load_retries,
                last_reason.replace(" ", "_"),
            )
            if attempt < cfg.max_load_retries:
                sleep(cfg.retry_backoff_seconds * attempt)
            continue
        log_event("model_loaded", fields={"model_id": clf.model_id, "attempt": attempt})
        return clf
    raise ModelLoadError(
        f"Model {cfg.active_model} not loaded after {cfg.max_load_retries} attempts: {last_reason}"
    )


class _TransientLoadError(Exception):
    pass


def _load_once(model_dir: Path, signature: str) -> TorchClassifier:
    manifest_path = model_dir / "manifest.json"
    model_path = model_dir / "model.pt"
    if not (manifest_path.exists() and model_path.exists()):
        raise _TransientLoadError(f"artifacts missing under {model_dir.as_posix()}")
    try:
        manifest = ModelManifest.from_path(manifest_path)
    except OSError as exc:
        raise _TransientLoadError("manifest unreadable") from exc
    except (ValueError, KeyError) as exc:
        raise ModelLoadError(f"Invalid manifest: {exc}") from exc
    if manifest.preprocess_hash != signature:
        raise ModelLoadError(
            f"Preprocess signature mismatch: model expects {manifest.preprocess_hash}, "
            f"normalizer produces {signature}"
        )
    if manifest.arch not in _SUPPORTED_ARCHS:
        raise ModelLoadError(f"Unsupported architecture: {manifest.arch}")
    try:
        sd = _load_state_dict_file(model_path)
    except ValueError as exc:
        raise ModelLoadError(f"Invalid model file: {exc}") from exc
    except _LOAD_ERRORS as exc:
        raise _TransientLoadError(f"state dict unreadable: {type(exc).__name__}") from exc
    model = _build_model(arch=manifest.arch, n_classes=int(manifest.n_classes))
    try:
        _validate_state_dict(sd, manifest.arch, int(manifest.n_classes))
        model.load_state_dict(sd)
    except (ValueError, RuntimeError) as exc:
        raise ModelLoadError(f"Invalid model weights: {exc}") from exc
    clf = TorchClassifier(model, manifest)
    _warmup(clf)
    return clf


def _warmup(clf: TorchClassifier) -> None:
    try:
        out = clf(torch.zeros(TENSOR_SHAPE, dtype=torch.float32))
    except RuntimeError as exc:
        raise ModelLoadError(f"Warmup inference failed: {exc}") from exc
    if len(out) != int(clf.manifest.n_classes):
        raise ModelLoadError("Warmup output size does not match n_classes")


def _apply_threads(settings: Settings) -> None:
    if settings.app.threads > 0:
        torch.set_num_threads(int(settings.app.threads))


def _to_nchw(x: Tensor) -> Tensor:
    t = x
    if t.ndim == 3:
        t = t.unsqueeze(0)
    if t.ndim == 4 and int(t.shape[-1]) == 1 and int(t.shape[1]) != 1:
        t = t.permute(0, 3, 1, 2)
    return t.to(dtype=torch.float32).contiguous()


def _softmax(logits: Tensor, temperature: float) -> list[float]:
    probs = torch.softmax(logits / temperature, dim=1)[0]
    return [float(probs[i].item()) for i in range(int(probs.shape[0]))]


if TYPE_CHECKING:

    def _build_model(arch: str, n_classes: int) -> TorchModel: ...
else:

    def _build_model(arch: str, n_classes: int) -> TorchModel:
        import importlib

        import torch.nn as nn

        tv_models = importlib.import_module("torchvision.models")
        fn_obj = getattr(tv_models, arch, None)
        if not callable(fn_obj):
            raise RuntimeError(f"torchvision.models.{arch} is not callable")
        inner = fn_obj(weights=None, num_classes=int(n_classes))
        # Small-image stem for 1-channel 28x28 input
        if hasattr(inner, "conv1"):
            inner.conv1 = nn.Conv2d(1, 64, kernel_size=3, stride=1, padding=1, bias=False)
        if hasattr(inner, "maxpool"):
            inner.maxpool = nn.Identity()
        return inner


if TYPE_CHECKING:

    def build_fresh_state_dict(arch: str, n_classes: int) -> dict[str, Tensor]: ...
else:

    def build_fresh_state_dict(arch: str, n_classes: int) -> dict[str, Tensor]:
        m = _build_model(arch=arch, n_classes=n_classes)
        sd_obj = m.state_dict()
        out: dict[str, Tensor] = {}
        for k, v in sd_obj.items():
            if isinstance(k, str) and torch.is_tensor(v):
                out[k] = v
            else:
                raise RuntimeError("invalid state dict entry from model")
        return out


if TYPE_CHECKING:

    def _load_state_dict_file(path: Path) -> dict[str, Tensor]: ...
else:

    def _load_state_dict_file(path: Path) -> dict[str, Tensor]:
        obj = torch.load(path.as_posix(), map_location=torch.device("cpu"), weights_only=True)
        sd_obj = obj["state_dict"] if isinstance(obj, dict) and "state_dict" in obj else obj
        if not isinstance(sd_obj, dict):
            raise ValueError("state dict file did not contain a dict")
        out: dict[str, Tensor] = {}
        for k, v in sd_obj.items():
            if isinstance(k, str) and torch.is_tensor(v):
                out[k] = v
            else:
                raise ValueError("invalid state dict entry")
        return out


def _validate_state_dict(sd: dict[str, Tensor], arch: str, n_classes: int) -> None:
    w = sd.get("fc.weight")
    b = sd.get("fc.bias")
    if w is None or b is None:
        raise ValueError("missing classifier weights in state dict")
    if w.ndim != 2 or b.ndim != 1:
        raise ValueError("invalid classifier tensor dimensions")
    if int(w.shape[0]) != n_classes or int(b.shape[0]) != n_classes:
        raise ValueError("classifier head size does not match n_classes")
    # ResNet-18 feature dimension
    if int(w.shape[1]) != 512:
        raise ValueError("classifier head in_features does not match backbone")
    conv1 = sd.get("conv1.weight")
    if conv1 is None or conv1.ndim != 4:
        raise ValueError("missing or invalid conv1.weight")
    if int(conv1.shape[0]) != 64 or int(conv1.shape[1]) != 1:
        raise ValueError("unexpected conv1 shape for 1-channel stem")
    if "bn1.weight" not in sd or "bn1.bias" not in sd:
        raise ValueError("missing bn1 parameters")
    has_layers = all(any(k.startswith(f"layer{i}.") for k in sd) for i in range(1, 5))
    if not has_layers:
        raise ValueError(f"missing {arch} layer blocks")
