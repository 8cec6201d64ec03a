from contextlib import asynccontextmanager
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

load_dotenv(Path(ROOT_DIR) / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

from backend import config
from backend.schemas import (
    ErrorResponse,
    ProcessResponse,
    ReelResolveRequest,
    ReelResolveResponse,
    TranscribeResponse,
)
from backend.services.process_manager import ProcessBusyError, ProcessInputError, ProcessManager
from pipeline.errors import TranscriberError, user_message
from pipeline.file_processor import FileProcessor, TranscriptionResult
from pipeline.pipeline_config import PipelineConfig
from services.openai_provider import OpenAITranscriptionProvider
from services.relay_protocol import (
    MALFORMED_INPUT,
    REQUEST_TOO_LARGE,
    STATUS_BY_CATEGORY,
    UNKNOWN,
    InProcessRelayTransport,
    ProviderError,
)
from sources.decoder import Decoder, FfmpegDecoder, MediaDecoder
from sources.reel_resolver import ReelResolver

logger = logging.getLogger(__name__)

PROCESS_STATUS_BY_CATEGORY = {
    "unsupported_format": 415,
    "decode_failed": 422,
    "encode_failed": 500,
    "chunk_split_failed": 503,
    "transcription_failed": 502,
    "invalid_reel_url": 400,
    "reel_not_found": 404,
    "reel_rate_limited": 429,
    "reel_failed": 502,
    "cancelled": 409,
}


def _provider_from_env() -> Optional[OpenAITranscriptionProvider]:
    try:
        return OpenAITranscriptionProvider.from_env()
    except ValueError:
        logger.warning("OPENAI_API_KEY is not set; /api/transcribe will report a configuration error")
        return None


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _raise_for_result(result: TranscriptionResult) -> None:
    if result.error is None:
        return
    exc = result.error
    status = PROCESS_STATUS_BY_CATEGORY.get(exc.category, 500)
    raise _error(status, exc.category, user_message(exc)) from exc


def create_app(
    provider: Any = None,
    reel_resolver: ReelResolver | None = None,
    decoder: Decoder | None = None,
    pipeline_config: PipelineConfig | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        os.makedirs(config.TEMP_DECODE_DIR, exist_ok=True)

        active_provider = provider if provider is not None else _provider_from_env()
        resolver = reel_resolver or ReelResolver(request_timeout=config.REEL_REQUEST_TIMEOUT)
        settings = pipeline_config or PipelineConfig.from_env()

        processor = None
        if active_provider is not None:
            processor = FileProcessor.build(
                transport=InProcessRelayTransport(active_provider),
                config=settings,
                decoder=decoder or MediaDecoder(fallback=FfmpegDecoder(temp_dir=config.TEMP_DECODE_DIR)),
                reel_resolver=resolver,
            )

        app.state.provider = active_provider
        app.state.reel_resolver = resolver
        app.state.pipeline_config = settings
        app.state.process_manager = (
            ProcessManager(processor, max_upload_bytes=config.MAX_PROCESS_UPLOAD_BYTES)
            if processor is not None
            else None
        )
        yield

    app = FastAPI(title="Reel Transcriber API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=config.CORS_ORIGIN_REGEX,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _require_process_manager(request: Request) -> ProcessManager:
        manager = request.app.state.process_manager
        if manager is None:
            raise _error(500, "configuration_error", "OpenAI API key is not configured")
        return manager

    @app.get("/api/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    @app.post(
        "/api/transcribe",
        response_model=TranscribeResponse,
        responses={code: {"model": ErrorResponse} for code in sorted(set(STATUS_BY_CATEGORY.values()))},
    )
    async def transcribe(
        request: Request,
        language: Optional[str] = Query(default=None, max_length=16),
    ) -> TranscribeResponse:
        active_provider = request.app.state.provider
        if active_provider is None:
            raise _error(500, "configuration_error", "OpenAI API key is not configured")

        body = await request.body()
        if not body:
            raise _error(400, MALFORMED_INPUT, "Request body is missing")
        if len(body) > config.MAX_UPLOAD_BYTES:
            raise _error(
                413,
                REQUEST_TOO_LARGE,
                f"File size exceeds maximum of {config.MAX_UPLOAD_BYTES} bytes",
            )

        mime_type = request.headers.get("content-type", "audio/wav").split(";", 1)[0].strip()
        filename = request.headers.get("x-filename", "audio.wav")
        language = language or request.app.state.pipeline_config.default_language or None

        logger.info("Relaying %s (%d bytes, %s) to provider", filename, len(body), mime_type)
        try:
            text = await run_in_threadpool(
                active_provider.transcribe,
                audio=body,
                filename=filename,
                mime_type=mime_type,
                language=language,
            )
        except ProviderError as exc:
            status = STATUS_BY_CATEGORY.get(exc.category, STATUS_BY_CATEGORY[UNKNOWN])
            logger.warning("Provider rejected %s: %s (%s)", filename, exc.message, exc.category)
            raise _error(status, exc.category, exc.message) from exc

        return TranscribeResponse(text=text)

    @app.post(
        "/api/reels/resolve",
        response_model=ReelResolveResponse,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    )
    def resolve_reel(payload: ReelResolveRequest, request: Request) -> ReelResolveResponse:
        try:
            video_url = request.app.state.reel_resolver.resolve(payload.url)
        except TranscriberError as exc:
            status = PROCESS_STATUS_BY_CATEGORY.get(exc.category, 500)
            raise _error(status, exc.category, user_message(exc)) from exc
        return ReelResolveResponse(video_url=video_url)

    @app.post(
        "/api/process",
        response_model=ProcessResponse,
        responses={code: {"model": ErrorResponse} for code in (400, 409, 415, 422, 500, 502, 503)},
    )
    def process_file(
        request: Request,
        file: UploadFile = File(...),
        language: Optional[str] = Query(default=None, max_length=16),
    ) -> ProcessResponse:
        manager = _require_process_manager(request)
        try:
            result = manager.process_upload(file, language=language)
        except ProcessBusyError as exc:
            raise _error(409, "PROCESS_BUSY", str(exc)) from exc
        except ProcessInputError as exc:
            raise _error(400, "INVALID_UPLOAD", str(exc)) from exc

        _raise_for_result(result)
        return ProcessResponse.from_result(result)

    @app.post(
        "/api/reels/transcribe",
        response_model=ProcessResponse,
        responses={code: {"model": ErrorResponse} for code in (400, 404, 409, 429, 502)},
    )
    def transcribe_reel(
        payload: ReelResolveRequest,
        request: Request,
        language: Optional[str] = Query(default=None, max_length=16),
    ) -> ProcessResponse:
        manager = _require_process_manager(request)
        try:
            result = manager.process_reel(payload.url, language=language)
        except ProcessBusyError as exc:
            raise _error(409, "PROCESS_BUSY", str(exc)) from exc

        _raise_for_result(result)
        return ProcessResponse.from_result(result)

    return app


app = create_app()
