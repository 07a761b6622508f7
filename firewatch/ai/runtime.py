from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from .errors import InferenceError, LoadFailure

logger = logging.getLogger(__name__)


class ModelHandle(Protocol):
    @property
    def input_shape(self) -> tuple[int, ...]: ...

    def run(self, input_tensor: np.ndarray) -> np.ndarray: ...

    def close(self) -> None: ...


class ModelProvider(Protocol):
    def load(self, identifier: str) -> ModelHandle: ...


class TFLiteModelHandle:
    """Single-input, single-output TFLite interpreter."""

    def __init__(self, interpreter: Any, path: Path) -> None:
        self._interpreter = interpreter
        self._path = path
        self._input = interpreter.get_input_details()[0]
        self._output = interpreter.get_output_details()[0]

    @property
    def path(self) -> Path:
        return self._path

    @property
    def input_shape(self) -> tuple[int, ...]:
        return tuple(int(dim) for dim in self._input["shape"])

    @property
    def input_dtype(self) -> np.dtype:
        return np.dtype(self._input["dtype"])

    def run(self, input_tensor: np.ndarray) -> np.ndarray:
        if self._interpreter is None:
            raise InferenceError(f"Interpreter for {self._path} has been closed")
        try:
            self._interpreter.set_tensor(self._input["index"], input_tensor)
            self._interpreter.invoke()
            return np.array(self._interpreter.get_tensor(self._output["index"]))
        except Exception as exc:
            raise InferenceError(f"TFLite inference failed: {exc}") from exc

    def close(self) -> None:
        if self._interpreter is not None:
            logger.debug("Releasing TFLite interpreter path=%s", self._path)
            self._interpreter = None


class TFLiteModelProvider:
    """Load ``.tflite`` artifacts from disk with tflite-runtime."""

    def __init__(
        self,
        search_root: Path | None = None,
        *,
        num_threads: int | None = None,
    ) -> None:
        self._search_root = search_root
        self._num_threads = num_threads

    def resolve(self, identifier: str) -> Path:
        path = Path(identifier).expanduser()
        if not path.is_absolute() and self._search_root is not None:
            path = self._search_root / path
        return path

    def load(self, identifier: str) -> TFLiteModelHandle:
        path = self.resolve(identifier)
        if not path.is_file():
            raise LoadFailure(f"Model artifact not found: {path}")
        try:
            from tflite_runtime.interpreter import Interpreter  # type: ignore
        except ImportError as exc:
            raise LoadFailure(
                "tflite-runtime is required to run the fire detection model"
            ) from exc

        logger.info(
            "Loading TFLite model path=%s size=%d bytes",
            path,
            path.stat().st_size,
        )
        try:
            interpreter = Interpreter(model_path=str(path), num_threads=self._num_threads)
            interpreter.allocate_tensors()
        except Exception as exc:
            raise LoadFailure(f"Failed to initialise interpreter for {path}: {exc}") from exc

        handle = TFLiteModelHandle(interpreter, path)
        if handle.input_dtype != np.float32:
            handle.close()
            raise LoadFailure(
                f"Model {path} expects {handle.input_dtype.name} input; only float32 is supported"
            )
        return handle


__all__ = ["ModelHandle", "ModelProvider", "TFLiteModelHandle", "TFLiteModelProvider"]
