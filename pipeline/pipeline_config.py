import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class PipelineConfig:
    target_sample_rate: int = 16000
    resample_method: str = "nearest"
    max_chunk_bytes: int = 4 * 1024 * 1024
    max_upload_bytes: int = 25 * 1024 * 1024
    min_chunk_seconds: float = 5.0
    overlap_seconds: float = 1.0
    silence_threshold_db: float = -50.0
    silence_window_ms: float = 20.0
    min_silence_seconds: float = 0.5
    silence_tolerance_seconds: float = 10.0
    fade_samples: int = 100
    zero_crossing_search_samples: int = 1000
    stitch_window_words: int = 5
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 2.0
    retry_backoff: str = "linear"
    request_timeout_seconds: float = 120.0
    default_language: str = "de"

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        defaults = cls()
        return cls(
            target_sample_rate=_env_int("TARGET_SAMPLE_RATE", defaults.target_sample_rate),
            resample_method=os.getenv("RESAMPLE_METHOD", defaults.resample_method).strip() or defaults.resample_method,
            max_chunk_bytes=_env_int("CHUNK_MAX_BYTES", defaults.max_chunk_bytes),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
            min_chunk_seconds=_env_float("MIN_CHUNK_SECONDS", defaults.min_chunk_seconds),
            overlap_seconds=_env_float("CHUNK_OVERLAP_SECONDS", defaults.overlap_seconds),
            silence_threshold_db=_env_float("SILENCE_THRESHOLD_DB", defaults.silence_threshold_db),
            silence_window_ms=_env_float("SILENCE_WINDOW_MS", defaults.silence_window_ms),
            min_silence_seconds=_env_float("MIN_SILENCE_SECONDS", defaults.min_silence_seconds),
            silence_tolerance_seconds=_env_float("SILENCE_TOLERANCE_SECONDS", defaults.silence_tolerance_seconds),
            fade_samples=_env_int("FADE_SAMPLES", defaults.fade_samples),
            zero_crossing_search_samples=_env_int(
                "ZERO_CROSSING_SEARCH_SAMPLES", defaults.zero_crossing_search_samples
            ),
            stitch_window_words=_env_int("STITCH_WINDOW_WORDS", defaults.stitch_window_words),
            retry_max_attempts=_env_int("RETRY_MAX_ATTEMPTS", defaults.retry_max_attempts),
            retry_base_delay_seconds=_env_float("RETRY_BASE_DELAY_SECONDS", defaults.retry_base_delay_seconds),
            retry_backoff=os.getenv("RETRY_BACKOFF", defaults.retry_backoff).strip() or defaults.retry_backoff,
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds),
            default_language=os.getenv("TRANSCRIPTION_LANGUAGE", defaults.default_language).strip(),
        )
