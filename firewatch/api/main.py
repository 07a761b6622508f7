from __future__ import annotations

import argparse
import logging
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from .config import apply_env_overrides, build_detector, load_config
from .server import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the Firewatch detection API server",
        epilog="Configuration is loaded from config/firewatch.json. "
        "Environment variables and CLI arguments override config file settings.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/firewatch.json"),
        help="Path to JSON configuration file (default: config/firewatch.json)",
    )
    parser.add_argument("--host", type=str, default=None, help="Override server host")
    parser.add_argument("--port", type=int, default=None, help="Override server port")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s [%(name)s] %(message)s",
        )

    cfg = apply_env_overrides(load_config(args.config))
    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port

    logger.info("Server configuration: %s:%d", cfg.server.host, cfg.server.port)
    logger.info("Model path: %s", cfg.detector.model_path)

    detector = build_detector(cfg.detector)
    app = create_app(detector=detector)
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port, log_level="info")


if __name__ == "__main__":
    main()
