from __future__ import annotations

import base64
import binascii
import contextlib
import logging
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException
from starlette.concurrency import run_in_threadpool

from .. import __version__
from ..ai.detector import FireDetector
from ..ai.errors import NotReady
from .config import DetectorSettings, build_detector
from .schemas import DetectionRequest, DetectionResponse, DetectorStatusResponse


logger = logging.getLogger(__name__)


def create_app(
    detector: FireDetector | None = None,
    load_on_startup: bool = True,
) -> FastAPI:
    selected_detector = detector or build_detector(DetectorSettings())

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if load_on_startup and not selected_detector.model_loaded:
            state = await run_in_threadpool(selected_detector.load)
            logger.info("Detector loaded on startup state=%s", state.value)
        try:
            yield
        finally:
            selected_detector.close()
            logger.info("Detector released on shutdown")

    app = FastAPI(title="Firewatch API", version=__version__, lifespan=lifespan)
    app.state.detector = selected_detector

    logger.info(
        "API server initialised model_path=%s input_size=%d load_on_startup=%s",
        selected_detector.model_path,
        selected_detector.input_size,
        load_on_startup,
    )

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/detector", response_model=DetectorStatusResponse)
    def detector_status() -> DetectorStatusResponse:
        return DetectorStatusResponse(**selected_detector.status())

    @app.post("/v1/detector/reload", response_model=DetectorStatusResponse)
    async def reload_detector() -> DetectorStatusResponse:
        state = await run_in_threadpool(selected_detector.load)
        logger.info("Detector reloaded state=%s", state.value)
        return DetectorStatusResponse(**selected_detector.status())

    @app.post("/v1/detections", response_model=DetectionResponse)
    async def create_detection(request: DetectionRequest) -> DetectionResponse:
        try:
            image_bytes = base64.b64decode(request.image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            logger.warning("Rejected detection with invalid base64 source=%s", request.source)
            raise HTTPException(status_code=400, detail="image_base64 is not valid base64") from exc

        logger.info(
            "Detection requested source=%s payload_bytes=%d",
            request.source,
            len(image_bytes),
        )
        try:
            result = await run_in_threadpool(selected_detector.classify, image_bytes)
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

        logger.info(
            "Detection processed source=%s is_fire=%s confidence=%.2f mode=%s",
            request.source,
            result.is_positive,
            result.confidence,
            result.mode.value,
        )
        return DetectionResponse.from_result(result, source=request.source)

    return app


__all__ = ["create_app"]
