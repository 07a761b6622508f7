from __future__ import annotations

from pydantic import BaseModel, Field

from ..ai.types import ClassificationResult


class DetectionRequest(BaseModel):
    image_base64: str = Field(..., description="Base64 encoded photo")
    source: str | None = Field(None, description="Optional label for the photo origin")


class DetectionResponse(BaseModel):
    is_fire: bool
    confidence: float
    confidence_percentage: float
    threshold: float
    risk_level: str
    mode: str
    source: str | None = None

    @classmethod
    def from_result(
        cls, result: ClassificationResult, source: str | None = None
    ) -> "DetectionResponse":
        return cls(
            is_fire=result.is_positive,
            confidence=result.confidence,
            confidence_percentage=result.confidence_percentage,
            threshold=result.threshold,
            risk_level=result.risk_level.value,
            mode=result.mode.value,
            source=source,
        )


class DetectorStatusResponse(BaseModel):
    state: str
    model_loaded: bool
    fallback_active: bool
    fallback_reason: str | None = None
    model_path: str
    input_size: int
    threshold: float
    fallback_threshold: float


__all__ = ["DetectionRequest", "DetectionResponse", "DetectorStatusResponse"]
