from __future__ import annotations

import io
import tempfile
import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
from PIL import Image

from firewatch.ai.detector import FireDetector
from firewatch.ai.errors import LoadFailure, NotReady
from firewatch.ai.runtime import TFLiteModelProvider
from firewatch.ai.types import (
    FALLBACK_THRESHOLD,
    MODEL_THRESHOLD,
    DetectionMode,
    DetectorState,
)


def _png(color: tuple[int, int, int], size: tuple[int, int] = (40, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


FLAME = _png((200, 80, 20))
DARK = _png((0, 0, 0))


class _FakeHandle:
    def __init__(
        self,
        score: float = 0.9,
        *,
        input_shape: tuple[int, ...] = (1, 224, 224, 3),
        fail_on_call: int | None = None,
    ) -> None:
        self.score = score
        self.input_shape = input_shape
        self.fail_on_call = fail_on_call
        self.inputs: list[np.ndarray] = []
        self.close_calls = 0

    def run(self, input_tensor: np.ndarray) -> np.ndarray:
        self.inputs.append(input_tensor)
        if self.fail_on_call is not None and len(self.inputs) >= self.fail_on_call:
            raise RuntimeError("delegate crashed")
        return np.array([[self.score]], dtype=np.float32)

    def close(self) -> None:
        self.close_calls += 1


class _RaisingCloseHandle(_FakeHandle):
    def close(self) -> None:
        super().close()
        raise RuntimeError("close boom")


class _SlowHandle(_FakeHandle):
    def __init__(self) -> None:
        super().__init__()
        self._guard = threading.Lock()
        self.active = 0
        self.max_active = 0

    def run(self, input_tensor: np.ndarray) -> np.ndarray:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.01)
        with self._guard:
            self.active -= 1
        return super().run(input_tensor)


class _FakeProvider:
    def __init__(self, *handles: _FakeHandle, error: Exception | None = None) -> None:
        self._handles = list(handles)
        self._error = error
        self.requested: list[str] = []

    def load(self, identifier: str) -> _FakeHandle:
        self.requested.append(identifier)
        if self._error is not None:
            raise self._error
        return self._handles.pop(0)


class FireDetectorLifecycleTests(unittest.TestCase):
    def test_classify_before_load_raises_not_ready(self) -> None:
        detector = FireDetector(provider=_FakeProvider(_FakeHandle()))

        self.assertFalse(detector.model_loaded)
        with self.assertRaises(NotReady):
            detector.classify(FLAME)

    def test_missing_model_degrades_to_fallback(self) -> None:
        provider = _FakeProvider(error=LoadFailure("Model artifact not found"))
        detector = FireDetector(provider=provider, model_path="assets/fire.tflite")

        state = detector.load()

        self.assertEqual(state, DetectorState.FALLBACK_ONLY)
        self.assertTrue(detector.model_loaded)
        self.assertTrue(detector.fallback_active)
        self.assertIn("not found", detector.fallback_reason)
        self.assertEqual(provider.requested, ["assets/fire.tflite"])

    def test_unexpected_provider_error_degrades_to_fallback(self) -> None:
        detector = FireDetector(provider=_FakeProvider(error=MemoryError("oom")))

        detector.load()

        self.assertTrue(detector.model_loaded)
        self.assertTrue(detector.fallback_active)

    def test_tflite_provider_with_missing_file_falls_back(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            detector = FireDetector(
                provider=TFLiteModelProvider(search_root=Path(tmp)),
                model_path="missing.tflite",
            )
            detector.load()

        self.assertTrue(detector.model_loaded)
        self.assertTrue(detector.fallback_active)
        result = detector.classify(FLAME)
        self.assertTrue(result.is_positive)
        self.assertEqual(result.mode, DetectionMode.FALLBACK)

    def test_successful_load_runs_mid_grey_self_test(self) -> None:
        handle = _FakeHandle()
        detector = FireDetector(provider=_FakeProvider(handle))

        state = detector.load()

        self.assertEqual(state, DetectorState.MODEL_BACKED)
        self.assertFalse(detector.fallback_active)
        self.assertEqual(len(handle.inputs), 1)
        probe = handle.inputs[0]
        self.assertEqual(probe.shape, (1, 224, 224, 3))
        self.assertEqual(probe.dtype, np.float32)
        self.assertTrue(np.all(probe == 0.5))

    def test_self_test_failure_switches_to_fallback_and_releases_model(self) -> None:
        handle = _FakeHandle(fail_on_call=1)
        detector = FireDetector(provider=_FakeProvider(handle))

        detector.load()

        self.assertTrue(detector.model_loaded)
        self.assertTrue(detector.fallback_active)
        self.assertIn("self-test", detector.fallback_reason)
        self.assertEqual(handle.close_calls, 1)

    def test_failing_close_during_self_test_still_falls_back(self) -> None:
        handle = _RaisingCloseHandle(fail_on_call=1)
        detector = FireDetector(provider=_FakeProvider(handle))

        state = detector.load()

        self.assertEqual(state, DetectorState.FALLBACK_ONLY)
        self.assertTrue(detector.model_loaded)
        self.assertEqual(handle.close_calls, 1)

    def test_failing_close_on_reload_still_loads(self) -> None:
        first = _RaisingCloseHandle()
        detector = FireDetector(provider=_FakeProvider(first, _FakeHandle()))
        detector.load()

        state = detector.load()

        self.assertEqual(state, DetectorState.MODEL_BACKED)
        self.assertEqual(first.close_calls, 1)
        self.assertEqual(detector.classify(DARK).mode, DetectionMode.MODEL)

    def test_input_shape_mismatch_is_a_load_failure(self) -> None:
        handle = _FakeHandle(input_shape=(1, 128, 128, 3))
        detector = FireDetector(provider=_FakeProvider(handle))

        detector.load()

        self.assertTrue(detector.fallback_active)
        self.assertEqual(handle.inputs, [])
        self.assertEqual(handle.close_calls, 1)

    def test_close_releases_model_once_and_blocks_classify(self) -> None:
        handle = _FakeHandle()
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()

        detector.close()
        detector.close()

        self.assertEqual(handle.close_calls, 1)
        self.assertFalse(detector.model_loaded)
        with self.assertRaises(NotReady):
            detector.classify(FLAME)

    def test_reload_resets_state_and_replaces_model(self) -> None:
        first = _FakeHandle(fail_on_call=2)
        second = _FakeHandle(score=0.2)
        detector = FireDetector(
            provider=_FakeProvider(first, second), sticky_inference_failures=True
        )
        detector.load()
        detector.classify(FLAME)
        self.assertTrue(detector.fallback_active)

        state = detector.load()

        self.assertEqual(state, DetectorState.MODEL_BACKED)
        self.assertIsNone(detector.fallback_reason)
        self.assertEqual(first.close_calls, 1)
        self.assertEqual(detector.classify(FLAME).mode, DetectionMode.MODEL)

    def test_load_after_close_is_usable(self) -> None:
        detector = FireDetector(provider=_FakeProvider(_FakeHandle(), _FakeHandle()))
        detector.load()
        detector.close()

        detector.load()

        self.assertTrue(detector.model_loaded)
        self.assertEqual(detector.classify(DARK).mode, DetectionMode.MODEL)

    def test_status_snapshot(self) -> None:
        detector = FireDetector(provider=_FakeProvider(_FakeHandle()), model_path="m.tflite")
        detector.load()

        status = detector.status()

        self.assertEqual(status["state"], "model_backed")
        self.assertTrue(status["model_loaded"])
        self.assertFalse(status["fallback_active"])
        self.assertEqual(status["model_path"], "m.tflite")
        self.assertEqual(status["threshold"], MODEL_THRESHOLD)
        self.assertEqual(status["fallback_threshold"], FALLBACK_THRESHOLD)


class FireDetectorClassifyTests(unittest.TestCase):
    def test_model_path_uses_model_threshold(self) -> None:
        handle = _FakeHandle(score=0.9)
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()

        result = detector.classify(DARK)

        self.assertTrue(result.is_positive)
        self.assertAlmostEqual(result.confidence, 0.9, places=5)
        self.assertEqual(result.threshold, MODEL_THRESHOLD)
        self.assertEqual(result.mode, DetectionMode.MODEL)

    def test_model_input_is_resized_and_normalised(self) -> None:
        handle = _FakeHandle()
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()

        detector.classify(_png((255, 0, 51), size=(640, 480)))

        tensor = handle.inputs[-1]
        self.assertEqual(tensor.shape, (1, 224, 224, 3))
        self.assertTrue(tensor.flags["C_CONTIGUOUS"])
        np.testing.assert_allclose(tensor[0, 100, 100], [1.0, 0.0, 0.2], atol=1e-6)

    def test_score_equal_to_threshold_is_negative(self) -> None:
        detector = FireDetector(provider=_FakeProvider(_FakeHandle(score=0.5)))
        detector.load()

        result = detector.classify(FLAME)

        self.assertFalse(result.is_positive)
        self.assertEqual(result.risk_level.value, "Safe")

    def test_out_of_range_score_is_clamped(self) -> None:
        detector = FireDetector(provider=_FakeProvider(_FakeHandle(score=3.5)))
        detector.load()

        self.assertEqual(detector.classify(DARK).confidence, 1.0)

    def test_fallback_mode_uses_heuristic_threshold(self) -> None:
        detector = FireDetector(provider=_FakeProvider(error=LoadFailure("missing")))
        detector.load()

        flame = detector.classify(FLAME)
        dark = detector.classify(DARK)

        self.assertTrue(flame.is_positive)
        self.assertEqual(flame.confidence, 1.0)
        self.assertEqual(flame.threshold, FALLBACK_THRESHOLD)
        self.assertFalse(dark.is_positive)
        self.assertEqual(dark.confidence, 0.0)

    def test_inference_failure_falls_back_for_that_call_only(self) -> None:
        handle = _FakeHandle(score=0.1, fail_on_call=2)
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()

        result = detector.classify(FLAME)

        self.assertEqual(result.mode, DetectionMode.FALLBACK)
        self.assertTrue(result.is_positive)
        self.assertEqual(result.threshold, FALLBACK_THRESHOLD)
        self.assertEqual(detector.state, DetectorState.MODEL_BACKED)
        self.assertEqual(handle.close_calls, 0)

        handle.fail_on_call = None
        self.assertEqual(detector.classify(FLAME).mode, DetectionMode.MODEL)

    def test_sticky_inference_failure_stays_in_fallback(self) -> None:
        handle = _FakeHandle(fail_on_call=2)
        detector = FireDetector(provider=_FakeProvider(handle), sticky_inference_failures=True)
        detector.load()

        detector.classify(FLAME)

        self.assertTrue(detector.fallback_active)
        self.assertTrue(detector.model_loaded)
        self.assertEqual(handle.close_calls, 1)
        calls_before = len(handle.inputs)
        self.assertEqual(detector.classify(FLAME).mode, DetectionMode.FALLBACK)
        self.assertEqual(len(handle.inputs), calls_before)

    def test_undecodable_image_does_not_make_fallback_sticky(self) -> None:
        handle = _FakeHandle()
        detector = FireDetector(provider=_FakeProvider(handle), sticky_inference_failures=True)
        detector.load()

        result = detector.classify(b"garbage")

        self.assertFalse(result.is_positive)
        self.assertEqual(detector.state, DetectorState.MODEL_BACKED)
        self.assertEqual(handle.close_calls, 0)
        self.assertEqual(detector.classify(FLAME).mode, DetectionMode.MODEL)

    def test_non_finite_score_falls_back(self) -> None:
        handle = _FakeHandle()
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()
        handle.score = float("nan")

        result = detector.classify(FLAME)

        self.assertEqual(result.mode, DetectionMode.FALLBACK)
        self.assertTrue(result.is_positive)

    def test_undecodable_image_yields_default_negative(self) -> None:
        handle = _FakeHandle()
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()

        result = detector.classify(b"\x89PNG garbage")

        self.assertFalse(result.is_positive)
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.threshold, MODEL_THRESHOLD)
        self.assertEqual(len(handle.inputs), 1)

    def test_undecodable_image_in_fallback_mode_never_raises(self) -> None:
        detector = FireDetector(provider=_FakeProvider(error=LoadFailure("missing")))
        detector.load()

        result = detector.classify(b"")

        self.assertFalse(result.is_positive)
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.threshold, MODEL_THRESHOLD)


class FireDetectorConcurrencyTests(unittest.TestCase):
    def test_concurrent_classify_calls_are_serialised(self) -> None:
        handle = _SlowHandle()
        detector = FireDetector(provider=_FakeProvider(handle))
        detector.load()

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(detector.classify, [DARK] * 16))

        self.assertEqual(len(results), 16)
        self.assertTrue(all(result.mode == DetectionMode.MODEL for result in results))
        self.assertEqual(len(handle.inputs), 17)
        self.assertEqual(handle.max_active, 1)


if __name__ == "__main__":
    unittest.main()
