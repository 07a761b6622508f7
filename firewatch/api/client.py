from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

import requests

from ..ai.types import ClassificationResult, DetectionMode


@dataclass
class FireDetectionHttpClient:
    base_url: str
    timeout: float = 20.0
    session: requests.Session = field(default_factory=requests.Session)

    def detect(self, image_bytes: bytes, source: str | None = None) -> ClassificationResult:
        payload: dict[str, Any] = {
            "image_base64": base64.b64encode(image_bytes).decode("ascii"),
            "source": source,
        }
        try:
            response = self.session.post(
                f"{self.base_url.rstrip('/')}/v1/detections",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as exc:  # pragma: no cover - network conditions
            raise RuntimeError("Timed out waiting for detection response") from exc
        except requests.RequestException as exc:
            raise RuntimeError(f"Failed to call Firewatch API: {exc}") from exc
        except ValueError as exc:
            raise RuntimeError("Firewatch API response was not valid JSON") from exc
        return self._parse_result(data)

    def classify(self, image_bytes: bytes) -> ClassificationResult:
        return self.detect(image_bytes)

    def _parse_result(self, data: Any) -> ClassificationResult:
        try:
            return ClassificationResult(
                is_positive=bool(data["is_fire"]),
                confidence=float(data["confidence"]),
                threshold=float(data["threshold"]),
                mode=DetectionMode(data.get("mode", DetectionMode.MODEL.value)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise RuntimeError("Unexpected response format from Firewatch API") from exc


__all__ = ["FireDetectionHttpClient"]
