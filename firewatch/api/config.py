"""Configuration for the fire detection service and scanner.

Settings come from a JSON file (see ``config/firewatch.example.json``) and can be
overridden by environment variables, which the entry points load from ``.env``:

- ``FIREWATCH_MODEL_PATH``: model artifact to load
- ``FIREWATCH_STICKY_FAILURES``: ``1``/``true`` to stay in fallback after a failed call
- ``FIREWATCH_HOST`` / ``FIREWATCH_PORT``: API bind address

Malformed values are replaced with defaults and logged rather than rejected.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from ..ai.detector import FireDetector
from ..ai.heuristic import ColorRatioHeuristic
from ..ai.runtime import ModelProvider, TFLiteModelProvider
from ..ai.types import (
    DEFAULT_MODEL_PATH,
    FALLBACK_THRESHOLD,
    MODEL_INPUT_SIZE,
    MODEL_THRESHOLD,
)

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class DetectorSettings:
    model_path: str = DEFAULT_MODEL_PATH
    input_size: int = MODEL_INPUT_SIZE
    threshold: float = MODEL_THRESHOLD
    fallback_threshold: float = FALLBACK_THRESHOLD
    sample_stride: int = 10
    sticky_inference_failures: bool = False
    num_threads: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectorSettings":
        defaults = cls()
        model_path = data.get("model_path")
        if not isinstance(model_path, str) or not model_path.strip():
            model_path = defaults.model_path
        num_threads = _sanitize_int(data.get("num_threads"), None, minimum=1)
        return cls(
            model_path=model_path.strip(),
            input_size=_sanitize_int(data.get("input_size"), defaults.input_size, minimum=1),
            threshold=_sanitize_unit(data.get("threshold"), defaults.threshold),
            fallback_threshold=_sanitize_unit(
                data.get("fallback_threshold"), defaults.fallback_threshold
            ),
            sample_stride=_sanitize_int(
                data.get("sample_stride"), defaults.sample_stride, minimum=1
            ),
            sticky_inference_failures=_sanitize_flag(data.get("sticky_inference_failures")),
            num_threads=num_threads,
        )


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerSettings":
        defaults = cls()
        host = data.get("host")
        if not isinstance(host, str) or not host.strip():
            host = defaults.host
        return cls(
            host=host.strip(),
            port=_sanitize_int(data.get("port"), defaults.port, minimum=1, maximum=65535),
        )


@dataclass
class AppConfig:
    detector: DetectorSettings = field(default_factory=DetectorSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        detector_data = data.get("detector", {})
        server_data = data.get("server", {})
        return cls(
            detector=DetectorSettings.from_dict(
                detector_data if isinstance(detector_data, dict) else {}
            ),
            server=ServerSettings.from_dict(
                server_data if isinstance(server_data, dict) else {}
            ),
        )


def load_config(path: Path | None) -> AppConfig:
    """Read configuration from ``path``; defaults when missing or unreadable."""
    if path is None or not path.exists():
        if path is not None:
            logger.info("No config file at %s; using defaults", path)
        return AppConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to load config from %s: %s; using defaults", path, exc)
        return AppConfig()
    if not isinstance(data, dict):
        logger.warning("Config in %s is not a JSON object; using defaults", path)
        return AppConfig()

    config = AppConfig.from_dict(data)
    logger.info(
        "Loaded config from %s: model_path=%s input_size=%d sticky=%s",
        path,
        config.detector.model_path,
        config.detector.input_size,
        config.detector.sticky_inference_failures,
    )
    return config


def apply_env_overrides(
    config: AppConfig, environ: Mapping[str, str] | None = None
) -> AppConfig:
    env = os.environ if environ is None else environ

    model_path = env.get("FIREWATCH_MODEL_PATH", "").strip()
    if model_path:
        config.detector.model_path = model_path
    sticky = env.get("FIREWATCH_STICKY_FAILURES")
    if sticky is not None:
        config.detector.sticky_inference_failures = _sanitize_flag(sticky)
    host = env.get("FIREWATCH_HOST", "").strip()
    if host:
        config.server.host = host
    port = env.get("FIREWATCH_PORT")
    if port is not None:
        config.server.port = _sanitize_int(
            port, config.server.port, minimum=1, maximum=65535
        )
    return config


def build_detector(
    settings: DetectorSettings,
    provider: ModelProvider | None = None,
    search_root: Path | None = None,
) -> FireDetector:
    return FireDetector(
        provider=provider
        or TFLiteModelProvider(search_root=search_root, num_threads=settings.num_threads),
        model_path=settings.model_path,
        input_size=settings.input_size,
        threshold=settings.threshold,
        fallback=ColorRatioHeuristic(
            threshold=settings.fallback_threshold, stride=settings.sample_stride
        ),
        sticky_inference_failures=settings.sticky_inference_failures,
    )


def _sanitize_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _sanitize_unit(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric threshold %r", value)
        return default
    if not 0.0 <= number <= 1.0:
        logger.warning("Ignoring threshold %r outside [0, 1]", value)
        return default
    return number


def _sanitize_int(
    value: Any,
    default: int | None,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer setting %r", value)
        return default
    if (minimum is not None and number < minimum) or (
        maximum is not None and number > maximum
    ):
        logger.warning("Ignoring out-of-range setting %r", value)
        return default
    return number


__all__ = [
    "AppConfig",
    "DetectorSettings",
    "ServerSettings",
    "load_config",
    "apply_env_overrides",
    "build_detector",
]
