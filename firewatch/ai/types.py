from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

# Decision threshold applied to model output.
MODEL_THRESHOLD: float = 0.5
# The colour heuristic is noisier, so it fires on a lower score.
FALLBACK_THRESHOLD: float = 0.3
# Square RGB input expected by the bundled model.
MODEL_INPUT_SIZE: int = 224
DEFAULT_MODEL_PATH: str = "models/fire_detection_model.tflite"

HIGH_RISK_CONFIDENCE: float = 0.8
MEDIUM_RISK_CONFIDENCE: float = 0.6


class DetectionMode(str, Enum):
    MODEL = "model"
    FALLBACK = "fallback"


class DetectorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    MODEL_BACKED = "model_backed"
    FALLBACK_ONLY = "fallback_only"


class RiskLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    SAFE = "Safe"


class Classifier(Protocol):
    def classify(self, image_bytes: bytes) -> "ClassificationResult": ...


@dataclass(frozen=True)
class ClassificationResult:
    is_positive: bool
    confidence: float
    threshold: float
    mode: DetectionMode = DetectionMode.MODEL

    @classmethod
    def from_confidence(
        cls,
        confidence: float,
        threshold: float,
        mode: DetectionMode = DetectionMode.MODEL,
    ) -> "ClassificationResult":
        # Strict comparison: a score equal to the threshold is negative.
        return cls(
            is_positive=confidence > threshold,
            confidence=confidence,
            threshold=threshold,
            mode=mode,
        )

    @classmethod
    def negative(cls, threshold: float = MODEL_THRESHOLD) -> "ClassificationResult":
        """Default answer when neither path could look at the image."""
        return cls(
            is_positive=False,
            confidence=0.0,
            threshold=threshold,
            mode=DetectionMode.FALLBACK,
        )

    @property
    def confidence_percentage(self) -> float:
        return self.confidence * 100.0

    @property
    def risk_level(self) -> RiskLevel:
        if not self.is_positive:
            return RiskLevel.SAFE
        if self.confidence > HIGH_RISK_CONFIDENCE:
            return RiskLevel.HIGH
        if self.confidence > MEDIUM_RISK_CONFIDENCE:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def summary(self) -> str:
        label = "fire" if self.is_positive else "no fire"
        return (
            f"{label} (confidence {self.confidence_percentage:.1f}%, "
            f"risk {self.risk_level.value}, mode {self.mode.value})"
        )


__all__ = [
    "Classifier",
    "ClassificationResult",
    "DetectionMode",
    "DetectorState",
    "RiskLevel",
    "MODEL_THRESHOLD",
    "FALLBACK_THRESHOLD",
    "MODEL_INPUT_SIZE",
    "DEFAULT_MODEL_PATH",
]
