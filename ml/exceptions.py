"""
Error taxonomy for the navigation prediction pipeline.

Serving code absorbs every one of these into a fallback response; only the
offline training and evaluation entry points let them reach their caller.
"""

from typing import Any, Dict, Optional


class NavigationPredictionError(Exception):
    """Base exception for all navigation prediction errors."""

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


class DataUnavailableError(NavigationPredictionError):
    """Raised when session, event or history data cannot be read in time."""

    def __init__(
        self,
        message: str,
        *,
        source: str,
        key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        ctx["source"] = source
        if key is not None:
            ctx["key"] = key
        super().__init__(message, context=ctx)
        self.source = source
        self.key = key


class ModelNotLoadedError(NavigationPredictionError):
    """Raised when no active model or model artifact is available."""

    def __init__(
        self,
        message: str,
        *,
        version: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        if version is not None:
            ctx["version"] = version
        super().__init__(message, context=ctx)
        self.version = version


class TrainingError(NavigationPredictionError):
    """Raised when training data is malformed or insufficient."""

    def __init__(
        self,
        message: str,
        *,
        n_samples: Optional[int] = None,
        required: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        if n_samples is not None:
            ctx["n_samples"] = n_samples
        if required is not None:
            ctx["required"] = required
        super().__init__(message, context=ctx)
        self.n_samples = n_samples
        self.required = required


class EvaluationError(NavigationPredictionError):
    """Raised when a validation set is too degenerate to score."""

    def __init__(
        self,
        message: str,
        *,
        n_samples: int,
        n_classes: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = context or {}
        ctx["n_samples"] = n_samples
        ctx["n_classes"] = n_classes
        super().__init__(message, context=ctx)
        self.n_samples = n_samples
        self.n_classes = n_classes
