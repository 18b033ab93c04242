from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final


class ErrorCode(str, Enum):
    invalid_image = "invalid_image"
    too_large = "too_large"
    preprocessing_failed = "preprocessing_failed"
    empty_scores = "empty_scores"
    classifier_failed = "classifier_failed"
    label_mismatch = "label_mismatch"
    model_not_loaded = "model_not_loaded"
    internal_error = "internal_error"


_DEFAULT_MESSAGE: Final[dict[ErrorCode, str]] = {
    ErrorCode.invalid_image: "Failed to decode image.",
    ErrorCode.too_large: "File exceeds size limit.",
    ErrorCode.preprocessing_failed: "Image normalization failed.",
    ErrorCode.empty_scores: "Classifier returned no scores.",
    ErrorCode.classifier_failed: "Classifier invocation failed.",
    ErrorCode.label_mismatch: "Score vector does not match the label table.",
    ErrorCode.model_not_loaded: "Model not loaded. Seed or copy a model first.",
    ErrorCode.internal_error: "Internal error.",
}


@dataclass(frozen=True)
class ErrorResponse:
    code: ErrorCode
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class AppError(Exception):
    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        msg = message if message is not None else _DEFAULT_MESSAGE.get(code, "")
        super().__init__(msg)
        self.code = code
        self.message = msg


class InvalidImageError(AppError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.invalid_image, message)


class ImageTooLargeError(AppError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.too_large, message)


class NormalizationError(AppError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.preprocessing_failed, message)


class EmptyScoreVectorError(AppError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.empty_scores, message)


class ClassifierInvocationError(AppError):
    """Failure raised by (or malformed output returned from) the injected classifier.

    The original exception is always chained as ``__cause__``.
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.classifier_failed, message)


class LabelMismatchError(AppError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.label_mismatch, message)


class ModelLoadError(AppError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.model_not_loaded, message)


def new_error(code: ErrorCode, message: str | None = None) -> ErrorResponse:
    msg = message if message is not None else _DEFAULT_MESSAGE.get(code, "")
    return ErrorResponse(code=code, message=msg)


def error_response(exc: AppError) -> ErrorResponse:
    return new_error(exc.code, exc.message)


def exit_code_for(code: ErrorCode) -> int:
    if code is ErrorCode.invalid_image:
        return 2
    if code is ErrorCode.too_large:
        return 2
    if code is ErrorCode.preprocessing_failed:
        return 2
    if code is ErrorCode.model_not_loaded:
        return 3
    if code is ErrorCode.empty_scores:
        return 4
    if code is ErrorCode.classifier_failed:
        return 4
    if code is ErrorCode.label_mismatch:
        return 4
    return 1
