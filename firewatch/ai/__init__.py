from __future__ import annotations

from .errors import DecodeError, DetectorError, InferenceError, LoadFailure, NotReady
from .types import (
    ClassificationResult,
    Classifier,
    DetectionMode,
    DetectorState,
    RiskLevel,
)

__all__ = [
    "ClassificationResult",
    "Classifier",
    "DetectionMode",
    "DetectorState",
    "RiskLevel",
    "DetectorError",
    "LoadFailure",
    "NotReady",
    "DecodeError",
    "InferenceError",
    "ColorRatioHeuristic",
    "FireDetector",
    "TFLiteModelProvider",
]


def __getattr__(name: str):
    if name == "ColorRatioHeuristic":
        from .heuristic import ColorRatioHeuristic

        return ColorRatioHeuristic
    if name == "FireDetector":
        from .detector import FireDetector

        return FireDetector
    if name == "TFLiteModelProvider":
        from .runtime import TFLiteModelProvider

        return TFLiteModelProvider
    raise AttributeError(f"module 'firewatch.ai' has no attribute {name!r}")
