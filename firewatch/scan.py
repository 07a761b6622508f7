from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence, TextIO

from dotenv import load_dotenv

from firewatch.ai.types import ClassificationResult, Classifier
from firewatch.api.client import FireDetectionHttpClient
from firewatch.api.config import apply_env_overrides, build_detector, load_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DETECTION_FAILED = 1
EXIT_UNREADABLE_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check photos for fire")
    parser.add_argument("images", nargs="+", type=Path, help="image files to classify")
    parser.add_argument(
        "--backend",
        choices=["local", "http"],
        default="local",
        help="classify in-process or through a running Firewatch API",
    )
    parser.add_argument(
        "--api-url",
        default="http://127.0.0.1:8000",
        help="Firewatch API base URL (http backend)",
    )
    parser.add_argument(
        "--api-timeout",
        type=float,
        default=20.0,
        help="HTTP timeout in seconds (http backend)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/firewatch.json"),
        help="JSON configuration file (local backend)",
    )
    parser.add_argument("--model", default=None, help="override the model artifact path")
    parser.add_argument(
        "--sticky-failures",
        action="store_true",
        help="stay in heuristic mode after the first failed model call",
    )
    parser.add_argument("--json", action="store_true", help="print one JSON object per image")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def format_result(path: Path, result: ClassificationResult, as_json: bool) -> str:
    if as_json:
        return json.dumps(
            {
                "path": str(path),
                "is_fire": result.is_positive,
                "confidence": round(result.confidence, 4),
                "threshold": result.threshold,
                "risk_level": result.risk_level.value,
                "mode": result.mode.value,
            }
        )
    return f"{path}: {result.summary()}"


def scan_images(
    classifier: Classifier,
    paths: Sequence[Path],
    as_json: bool = False,
    out: TextIO | None = None,
) -> int:
    stream = out or sys.stdout
    exit_code = EXIT_OK
    for path in paths:
        try:
            image_bytes = path.read_bytes()
        except OSError as exc:
            logger.error("Cannot read %s: %s", path, exc)
            exit_code = max(exit_code, EXIT_UNREADABLE_INPUT)
            continue
        try:
            result = classifier.classify(image_bytes)
        except RuntimeError as exc:
            logger.error("Detection failed for %s: %s", path, exc)
            exit_code = max(exit_code, EXIT_DETECTION_FAILED)
            continue
        print(format_result(path, result, as_json), file=stream)
    return exit_code


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s [%(name)s] %(message)s",
        )

    if args.backend == "http":
        client = FireDetectionHttpClient(base_url=args.api_url, timeout=args.api_timeout)
        return scan_images(client, args.images, as_json=args.json)

    cfg = apply_env_overrides(load_config(args.config))
    if args.model:
        cfg.detector.model_path = args.model
    if args.sticky_failures:
        cfg.detector.sticky_inference_failures = True

    detector = build_detector(cfg.detector)
    detector.load()
    if detector.fallback_active:
        logger.info("Using colour heuristic: %s", detector.fallback_reason)
    try:
        return scan_images(detector, args.images, as_json=args.json)
    finally:
        detector.close()


if __name__ == "__main__":
    sys.exit(main())
