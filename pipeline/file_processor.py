import logging
import mimetypes
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from pipeline.chunk_planner import ChunkPlanner, ChunkPlannerConfig
from pipeline.downmix import to_mono_target_rate
from pipeline.errors import (
    DecodeError,
    EncodeError,
    ProcessingCancelled,
    TranscriberError,
    UnsupportedFormat,
    user_message,
)
from pipeline.pipeline_config import PipelineConfig
from pipeline.segment_encoder import EncodedSegment, WavSegmentEncoder
from pipeline.silence_detector import SilenceDetector
from pipeline.transcript_stitcher import TranscriptPiece, TranscriptStitcher
from services.relay_protocol import RelayTransport
from services.retry import RetryPolicy
from services.transcription_client import TranscriptionClient
from sources.decoder import Decoder, MediaDecoder
from sources.reel_resolver import ReelResolver, extract_reel_id

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".webm", ".mkv", ".m4v"}
AUDIO_EXTENSIONS = {".mp3", ".wav", ".ogg", ".flac", ".m4a"}
AUDIO_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/ogg",
    "audio/flac",
    "audio/x-flac",
    "audio/mp4",
    "audio/x-m4a",
}

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class SourceFile:
    name: str
    data: bytes
    mime_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: str) -> "SourceFile":
        src = Path(path)
        if not src.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        mime_type, _ = mimetypes.guess_type(src.name)
        return cls(name=src.name, data=src.read_bytes(), mime_type=mime_type)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class TranscriptionResult:
    text: Optional[str] = None
    error: Optional[TranscriberError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.text is not None

    @property
    def message(self) -> Optional[str]:
        return user_message(self.error) if self.error is not None else None


def classify_source(source: SourceFile) -> str:
    """Return "video" or "audio"; raise UnsupportedFormat for anything else."""
    mime = (source.mime_type or "").split(";", 1)[0].strip().lower()

    if mime.startswith("video/") or source.extension in VIDEO_EXTENSIONS:
        return "video"
    if mime in AUDIO_MIME_TYPES or source.extension in AUDIO_EXTENSIONS:
        return "audio"
    raise UnsupportedFormat(f"Unsupported file format: {source.mime_type or source.extension or source.name}")


class FileProcessor:
    def __init__(
        self,
        client: TranscriptionClient,
        decoder: Decoder | None = None,
        config: PipelineConfig | None = None,
        encoder: WavSegmentEncoder | None = None,
        planner: ChunkPlanner | None = None,
        stitcher: TranscriptStitcher | None = None,
        reel_resolver: ReelResolver | None = None,
    ):
        self.config = config or PipelineConfig()
        self.client = client
        self.decoder = decoder or MediaDecoder()
        self.encoder = encoder or WavSegmentEncoder()
        self.planner = planner or self._build_planner()
        self.stitcher = stitcher or TranscriptStitcher(window_words=self.config.stitch_window_words)
        self.reel_resolver = reel_resolver

    @classmethod
    def build(
        cls,
        transport: RelayTransport,
        config: PipelineConfig | None = None,
        decoder: Decoder | None = None,
        reel_resolver: ReelResolver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "FileProcessor":
        config = config or PipelineConfig()
        client = TranscriptionClient(
            transport=transport,
            retry_policy=RetryPolicy(
                max_attempts=config.retry_max_attempts,
                base_delay_seconds=config.retry_base_delay_seconds,
                backoff=config.retry_backoff,
            ),
            max_upload_bytes=config.max_upload_bytes,
            sleep=sleep,
        )
        return cls(client=client, decoder=decoder, config=config, reel_resolver=reel_resolver)

    # --------------------
    # Public surface
    # --------------------

    def process_file(
        self,
        source: SourceFile,
        language: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        try:
            text = self.transcribe(source, language, cancel_event, on_progress)
        except TranscriberError as exc:
            logger.error("Processing %s failed: %s", source.name, exc)
            return TranscriptionResult(error=exc)
        return TranscriptionResult(text=text)

    def process_reel(
        self,
        url: str,
        language: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        try:
            source = self.fetch_reel(url)
        except TranscriberError as exc:
            logger.error("Reel %s could not be fetched: %s", url, exc)
            return TranscriptionResult(error=exc)
        return self.process_file(source, language, cancel_event, on_progress)

    def fetch_reel(self, url: str) -> SourceFile:
        resolver = self.reel_resolver or ReelResolver()
        media_url = resolver.resolve(url)
        data, content_type = resolver.download(media_url)
        mime_type = content_type if content_type.startswith("video/") else "video/mp4"
        return SourceFile(
            name=f"instagram-reel-{extract_reel_id(url)}.mp4",
            data=data,
            mime_type=mime_type,
        )

    def transcribe(
        self,
        source: SourceFile,
        language: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Raising variant of process_file."""
        kind = classify_source(source)
        language = language or self.config.default_language or None
        logger.info("Processing %s (%s, %.2f MB)", source.name, kind, source.size / (1024 * 1024))

        if kind == "audio" and source.size <= self.config.max_chunk_bytes:
            return self._transcribe_passthrough(source, language, cancel_event, on_progress)

        samples = self._decode_to_mono(source)
        chunks = self.planner.plan(samples, self.config.target_sample_rate)
        del samples

        pieces: List[TranscriptPiece] = []
        total = len(chunks)
        while chunks:
            self._check_cancelled(cancel_event)
            chunk = chunks.pop(0)

            segment = self.encoder.encode(chunk, source.name)
            if segment.size > self.config.max_chunk_bytes:
                raise EncodeError(
                    f"{segment.filename} is {segment.size} bytes, above the "
                    f"{self.config.max_chunk_bytes} byte chunk ceiling"
                )

            text = self.client.transcribe(segment, language)
            pieces.append(TranscriptPiece(text=text, start_time=segment.start_time))
            logger.info(
                "Transcribed part %d/%d (%.1fs-%.1fs, %d chars)",
                chunk.id + 1,
                total,
                chunk.start_time,
                chunk.end_time,
                len(text),
            )

            if on_progress is not None:
                on_progress(total - len(chunks), total)

        merged = self.stitcher.merge(pieces)
        logger.info("Transcription complete: %d parts, %d words", total, len(merged.split()))
        return merged

    # --------------------
    # Internals
    # --------------------

    def _transcribe_passthrough(
        self,
        source: SourceFile,
        language: Optional[str],
        cancel_event: Optional[threading.Event],
        on_progress: Optional[ProgressCallback],
    ) -> str:
        self._check_cancelled(cancel_event)
        mime_type = source.mime_type or mimetypes.guess_type(source.name)[0] or "application/octet-stream"
        segment = EncodedSegment(
            data=source.data,
            mime_type=mime_type,
            filename=source.name,
            chunk_id=0,
            start_time=0.0,
        )
        text = self.client.transcribe(segment, language)
        if on_progress is not None:
            on_progress(1, 1)
        return self.stitcher.merge([TranscriptPiece(text=text, start_time=0.0)])

    def _decode_to_mono(self, source: SourceFile) -> np.ndarray:
        pcm = self.decoder.decode(source.data, source.name)
        samples = to_mono_target_rate(
            pcm,
            target_rate=self.config.target_sample_rate,
            method=self.config.resample_method,
        )
        if samples.size == 0:
            raise DecodeError(f"{source.name} contains no audio")

        logger.info(
            "Decoded %s: %.1fs, %d channel(s) at %d Hz -> mono %d Hz",
            source.name,
            pcm.duration,
            pcm.channels,
            pcm.sample_rate,
            self.config.target_sample_rate,
        )
        return samples

    def _build_planner(self) -> ChunkPlanner:
        cfg = self.config
        planner_config = ChunkPlannerConfig(
            max_chunk_bytes=cfg.max_chunk_bytes,
            bytes_per_second=self.encoder.bytes_per_second(cfg.target_sample_rate),
            container_overhead_bytes=self.encoder.HEADER_BYTES,
            min_chunk_seconds=cfg.min_chunk_seconds,
            overlap_seconds=cfg.overlap_seconds,
            silence_tolerance_seconds=cfg.silence_tolerance_seconds,
            min_silence_seconds=cfg.min_silence_seconds,
            fade_samples=cfg.fade_samples,
            zero_crossing_search_samples=cfg.zero_crossing_search_samples,
        )
        detector = SilenceDetector(
            threshold_db=cfg.silence_threshold_db,
            window_ms=cfg.silence_window_ms,
        )
        return ChunkPlanner(config=planner_config, detector=detector)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ProcessingCancelled("Processing was cancelled")
