from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .errors import DecodeError, InferenceError, LoadFailure, NotReady
from .heuristic import ColorRatioHeuristic
from .imaging import decode_image, to_input_tensor, uniform_tensor
from .runtime import ModelHandle, ModelProvider, TFLiteModelProvider
from .types import (
    DEFAULT_MODEL_PATH,
    MODEL_INPUT_SIZE,
    MODEL_THRESHOLD,
    ClassificationResult,
    Classifier,
    DetectionMode,
    DetectorState,
)

logger = logging.getLogger(__name__)


@dataclass
class FireDetector(Classifier):
    """Classify photos as fire / no fire, degrading to a colour heuristic.

    ``load()`` never raises: a missing or broken model leaves the detector in
    ``FALLBACK_ONLY`` state, which is kept until the next ``load()``. Failures on
    a single ``classify()`` call fall back for that call only unless
    ``sticky_inference_failures`` is set. The only error ``classify()`` surfaces
    is :class:`NotReady`.

    Calls on one instance are serialised by an internal lock; inference blocks
    the calling thread.
    """

    provider: ModelProvider = field(default_factory=TFLiteModelProvider)
    model_path: str = DEFAULT_MODEL_PATH
    input_size: int = MODEL_INPUT_SIZE
    threshold: float = MODEL_THRESHOLD
    fallback: ColorRatioHeuristic = field(default_factory=ColorRatioHeuristic)
    sticky_inference_failures: bool = False
    _state: DetectorState = field(init=False, default=DetectorState.UNINITIALIZED)
    _handle: ModelHandle | None = field(init=False, default=None, repr=False)
    _fallback_reason: str | None = field(init=False, default=None)
    _lock: threading.RLock = field(init=False, default_factory=threading.RLock, repr=False)

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def model_loaded(self) -> bool:
        return self._state is not DetectorState.UNINITIALIZED

    @property
    def fallback_active(self) -> bool:
        return self._state is DetectorState.FALLBACK_ONLY

    @property
    def fallback_reason(self) -> str | None:
        return self._fallback_reason

    def load(self) -> DetectorState:
        with self._lock:
            self._release_locked()
            self._fallback_reason = None
            logger.info("Loading fire detection model %s", self.model_path)
            try:
                handle = self.provider.load(self.model_path)
            except Exception as exc:
                self._enter_fallback(f"model load failed: {exc}")
                return self._state

            try:
                self._check_input_shape(handle)
                self._self_test(handle)
            except Exception as exc:
                _close_quietly(handle)
                self._enter_fallback(f"model self-test failed: {exc}")
                return self._state

            self._handle = handle
            self._state = DetectorState.MODEL_BACKED
            logger.info("Fire detection model ready path=%s", self.model_path)
            return self._state

    def classify(self, image_bytes: bytes) -> ClassificationResult:
        with self._lock:
            if self._state is DetectorState.UNINITIALIZED:
                raise NotReady("Fire detector is not loaded; call load() first")
            if self._state is DetectorState.FALLBACK_ONLY or self._handle is None:
                return self._classify_fallback(image_bytes)
            try:
                return self._classify_with_model(self._handle, image_bytes)
            except DecodeError as exc:
                # Bad input, not a bad model: never sticky.
                logger.warning("Image not decodable for model, using colour heuristic: %s", exc)
                return self._classify_fallback(image_bytes)
            except InferenceError as exc:
                logger.warning("Model detection failed, using colour heuristic: %s", exc)
                if self.sticky_inference_failures:
                    self._release_locked()
                    self._enter_fallback(f"inference failed: {exc}")
                return self._classify_fallback(image_bytes)

    def close(self) -> None:
        with self._lock:
            self._release_locked()
            self._state = DetectorState.UNINITIALIZED
            self._fallback_reason = None

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "model_loaded": self.model_loaded,
                "fallback_active": self.fallback_active,
                "fallback_reason": self._fallback_reason,
                "model_path": self.model_path,
                "input_size": self.input_size,
                "threshold": self.threshold,
                "fallback_threshold": self.fallback.threshold,
            }

    def _classify_with_model(
        self, handle: ModelHandle, image_bytes: bytes
    ) -> ClassificationResult:
        image = decode_image(image_bytes)
        tensor = to_input_tensor(image, self.input_size)
        confidence = self._infer(handle, tensor)
        result = ClassificationResult.from_confidence(
            confidence, self.threshold, mode=DetectionMode.MODEL
        )
        logger.debug(
            "Model detection is_fire=%s confidence=%.3f",
            result.is_positive,
            result.confidence,
        )
        return result

    def _classify_with_heuristic(self, image_bytes: bytes) -> ClassificationResult:
        return self.fallback.classify(image_bytes)

    def _classify_fallback(self, image_bytes: bytes) -> ClassificationResult:
        try:
            return self._classify_with_heuristic(image_bytes)
        except Exception as exc:
            logger.warning("Fallback detection failed, reporting no fire: %s", exc)
            return ClassificationResult.negative(self.threshold)

    def _infer(self, handle: ModelHandle, tensor: np.ndarray) -> float:
        try:
            output = np.asarray(handle.run(tensor), dtype=np.float64).reshape(-1)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"Model execution failed: {exc}") from exc
        if output.size == 0:
            raise InferenceError("Model returned an empty output tensor")
        score = float(output[0])
        if not math.isfinite(score):
            raise InferenceError(f"Model returned a non-finite score: {score}")
        return max(0.0, min(1.0, score))

    def _self_test(self, handle: ModelHandle) -> None:
        self._infer(handle, uniform_tensor(self.input_size))
        logger.info("Model self-test passed")

    def _check_input_shape(self, handle: ModelHandle) -> None:
        expected = (1, self.input_size, self.input_size, 3)
        actual = tuple(handle.input_shape)
        if actual != expected:
            raise LoadFailure(f"Model input shape {actual} does not match {expected}")

    def _enter_fallback(self, reason: str) -> None:
        logger.warning("Switching to colour heuristic fallback: %s", reason)
        self._state = DetectorState.FALLBACK_ONLY
        self._fallback_reason = reason

    def _release_locked(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            _close_quietly(handle)


def _close_quietly(handle: ModelHandle) -> None:
    try:
        handle.close()
    except Exception as exc:
        logger.warning("Failed to release model handle: %s", exc)


__all__ = ["FireDetector"]
