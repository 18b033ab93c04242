from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Final

_DEFAULT_CONFIG_PATH: Final[Path] = Path("config/fashion.toml")
_RESIZE_METHODS: Final[frozenset[str]] = frozenset({"nearest", "bilinear"})


@dataclass(frozen=True)
class AppConfig:
    threads: int = 0


@dataclass(frozen=True)
class ClassifierConfig:
    model_dir: Path = Path("./artifacts/fashion/models")
    active_model: str = "fashion_resnet18_v1"
    resize_method: str = "bilinear"
    max_load_retries: int = 3
    retry_backoff_seconds: float = 1.0
    uncertain_threshold: float = 0.70
    max_image_mb: int = 5
    max_image_side_px: int = 4096
    visualize_scale: int = 10


@dataclass(frozen=True)
class Settings:
    app: AppConfig
    classifier: ClassifierConfig

    @staticmethod
    def _toml_path() -> Path:
        env_val = os.getenv("FASHION_CONFIG")
        if env_val:
            return Path(env_val)
        return _DEFAULT_CONFIG_PATH

    @classmethod
    def default(cls) -> Settings:
        return cls(app=AppConfig(), classifier=ClassifierConfig())

    @classmethod
    def load(cls) -> Settings:
        # Load env first, then override from TOML if present.
        base = cls(app=_load_app_from_env(), classifier=_load_classifier_from_env())
        cfg_path = cls._toml_path()
        if not cfg_path.exists():
            return _validated(base)
        try:
            raw: object = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise RuntimeError(f"Failed to read config TOML: {cfg_path}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise RuntimeError(f"Invalid TOML config: {cfg_path}") from exc
        app_in = _toml_table(raw, "app")
        classifier_in = _toml_table(raw, "classifier")
        merged = cls(
            app=_merge_app(base.app, app_in),
            classifier=_merge_classifier(base.classifier, classifier_in),
        )
        return _validated(merged)


def _load_app_from_env() -> AppConfig:
    a = AppConfig()
    th = os.getenv("APP__THREADS")
    if th is not None and th.isdigit():
        a = replace(a, threads=int(th))
    return a


def _load_classifier_from_env() -> ClassifierConfig:
    c = ClassifierConfig()
    md = os.getenv("CLASSIFIER__MODEL_DIR")
    am = os.getenv("CLASSIFIER__ACTIVE_MODEL")
    rm = os.getenv("CLASSIFIER__RESIZE_METHOD")
    mr = os.getenv("CLASSIFIER__MAX_LOAD_RETRIES")
    rb = os.getenv("CLASSIFIER__RETRY_BACKOFF_SECONDS")
    ut = os.getenv("CLASSIFIER__UNCERTAIN_THRESHOLD")
    mb = os.getenv("CLASSIFIER__MAX_IMAGE_MB")
    mx = os.getenv("CLASSIFIER__MAX_IMAGE_SIDE_PX")
    vs = os.getenv("CLASSIFIER__VISUALIZE_SCALE")
    if md:
        c = replace(c, model_dir=Path(md))
    if am:
        c = replace(c, active_model=am)
    if rm:
        c = replace(c, resize_method=rm.strip().lower())
    if mr is not None:
        c = replace(c, max_load_retries=_parse_int("CLASSIFIER__MAX_LOAD_RETRIES", mr))
    if rb is not None:
        c = replace(c, retry_backoff_seconds=_parse_float("CLASSIFIER__RETRY_BACKOFF_SECONDS", rb))
    if ut is not None:
        c = replace(c, uncertain_threshold=_parse_float("CLASSIFIER__UNCERTAIN_THRESHOLD", ut))
    if mb is not None:
        c = replace(c, max_image_mb=_parse_int("CLASSIFIER__MAX_IMAGE_MB", mb))
    if mx is not None:
        c = replace(c, max_image_side_px=_parse_int("CLASSIFIER__MAX_IMAGE_SIDE_PX", mx))
    if vs is not None:
        c = replace(c, visualize_scale=_parse_int("CLASSIFIER__VISUALIZE_SCALE", vs))
    return c


def _merge_app(base: AppConfig, data: dict[str, object]) -> AppConfig:
    out = base
    if "threads" in data:
        out = replace(out, threads=_parse_int("threads", str(data["threads"])))
    return out


def _merge_classifier(base: ClassifierConfig, data: dict[str, object]) -> ClassifierConfig:
    out = base
    if "model_dir" in data:
        out = replace(out, model_dir=Path(str(data["model_dir"])))
    if "active_model" in data:
        out = replace(out, active_model=str(data["active_model"]))
    if "resize_method" in data:
        out = replace(out, resize_method=str(data["resize_method"]).strip().lower())
    if "max_load_retries" in data:
        out = replace(
            out, max_load_retries=_parse_int("max_load_retries", str(data["max_load_retries"]))
        )
    if "retry_backoff_seconds" in data:
        val = str(data["retry_backoff_seconds"])
        out = replace(out, retry_backoff_seconds=_parse_float("retry_backoff_seconds", val))
    if "uncertain_threshold" in data:
        val = str(data["uncertain_threshold"])
        out = replace(out, uncertain_threshold=_parse_float("uncertain_threshold", val))
    if "max_image_mb" in data:
        out = replace(out, max_image_mb=_parse_int("max_image_mb", str(data["max_image_mb"])))
    if "max_image_side_px" in data:
        val = str(data["max_image_side_px"])
        out = replace(out, max_image_side_px=_parse_int("max_image_side_px", val))
    if "visualize_scale" in data:
        val = str(data["visualize_scale"])
        out = replace(out, visualize_scale=_parse_int("visualize_scale", val))
    return out


def _validated(s: Settings) -> Settings:
    c = s.classifier
    if c.resize_method not in _RESIZE_METHODS:
        raise RuntimeError(f"resize_method must be one of nearest|bilinear, got {c.resize_method}")
    if c.max_load_retries < 1:
        raise RuntimeError("max_load_retries must be >= 1")
    if c.retry_backoff_seconds < 0.0:
        raise RuntimeError("retry_backoff_seconds must be >= 0")
    if not (0.0 <= c.uncertain_threshold <= 1.0):
        raise RuntimeError("uncertain_threshold must be within [0,1]")
    if c.max_image_mb <= 0 or c.max_image_side_px <= 0:
        raise RuntimeError("image limits must be positive")
    if c.visualize_scale < 1:
        raise RuntimeError("visualize_scale must be >= 1")
    return s


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number") from exc


def _toml_table(raw: object, key: str) -> dict[str, object]:
    if isinstance(raw, dict):
        tab: object = raw.get(key, {})
        if isinstance(tab, dict):
            return {str(k): v for k, v in tab.items()}
    return {}


@dataclass(frozen=True)
class Limits:
    max_bytes: int
    max_side_px: int

    @staticmethod
    def from_settings(s: Settings) -> Limits:
        return Limits(
            max_bytes=int(s.classifier.max_image_mb) * 1024 * 1024,
            max_side_px=int(s.classifier.max_image_side_px),
        )
