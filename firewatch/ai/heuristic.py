from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .imaging import decode_image
from .types import FALLBACK_THRESHOLD, ClassificationResult, DetectionMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColorRatioStats:
    red: int
    orange: int
    total: int

    @property
    def fire_pixels(self) -> int:
        return self.red + self.orange

    @property
    def ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.fire_pixels / self.total


@dataclass
class ColorRatioHeuristic:
    """Fallback fire detector counting flame-coloured pixels on a sparse grid."""

    threshold: float = FALLBACK_THRESHOLD
    stride: int = 10
    gain: float = 2.0

    def analyze(self, image_bytes: bytes) -> ColorRatioStats:
        image = decode_image(image_bytes)
        # Rows then columns, both starting at 0.
        grid = np.asarray(image, dtype=np.int16)[:: self.stride, :: self.stride]
        r, g, b = grid[..., 0], grid[..., 1], grid[..., 2]
        fire_like = (r > 150) & (g > 50) & (b < 100) & (r > g) & (r > b)
        orange = fire_like & (g > 100)
        red = fire_like & ~(g > 100)
        return ColorRatioStats(
            red=int(red.sum()),
            orange=int(orange.sum()),
            total=int(grid.shape[0] * grid.shape[1]),
        )

    def classify(self, image_bytes: bytes) -> ClassificationResult:
        stats = self.analyze(image_bytes)
        confidence = float(max(0.0, min(1.0, stats.ratio * self.gain)))
        logger.debug(
            "Colour heuristic red=%d orange=%d total=%d ratio=%.3f confidence=%.3f",
            stats.red,
            stats.orange,
            stats.total,
            stats.ratio,
            confidence,
        )
        return ClassificationResult.from_confidence(
            confidence, self.threshold, mode=DetectionMode.FALLBACK
        )


__all__ = ["ColorRatioHeuristic", "ColorRatioStats"]
