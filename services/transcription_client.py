import logging
import time
from enum import Enum
from typing import Callable, Optional, Sequence

from pipeline.errors import (
    FatalTranscriptionFailure,
    TranscriptionFailed,
    TransientTranscriptionFailure,
)
from pipeline.segment_encoder import EncodedSegment
from pipeline.transcript_stitcher import DEFAULT_FILLER_PHRASES, clean_transcript, is_valid_transcript
from services.relay_protocol import (
    REQUEST_TOO_LARGE,
    TRANSIENT_CATEGORIES,
    EmptyRelayResponse,
    ProviderError,
    RelayNetworkError,
    RelayTransport,
)
from services.retry import RetryError, RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)


class SegmentState(str, Enum):
    PENDING = "pending"
    SUBMITTING = "submitting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def is_transient_failure(exc: BaseException) -> bool:
    return isinstance(exc, TransientTranscriptionFailure)


class TranscriptionClient:
    def __init__(
        self,
        transport: RelayTransport,
        retry_policy: RetryPolicy | None = None,
        max_upload_bytes: int = 25 * 1024 * 1024,
        filler_phrases: Sequence[str] = DEFAULT_FILLER_PHRASES,
        sleep: Callable[[float], None] = time.sleep,
        on_state: Optional[Callable[[EncodedSegment, SegmentState], None]] = None,
    ):
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_upload_bytes = max_upload_bytes
        self.filler_phrases = tuple(filler_phrases)
        self.sleep = sleep
        self.on_state = on_state
        self.attempts_made = 0

    def transcribe(self, segment: EncodedSegment, language: Optional[str] = None) -> str:
        """
        Submit one segment, retrying transient failures with backoff.
        Returns the cleaned transcript text.
        """
        self.attempts_made = 0
        self._set_state(segment, SegmentState.PENDING)

        if segment.size > self.max_upload_bytes:
            self._set_state(segment, SegmentState.FAILED)
            raise FatalTranscriptionFailure(
                f"{segment.filename} is {segment.size} bytes, above the {self.max_upload_bytes} byte limit",
                status_category=REQUEST_TOO_LARGE,
            )

        def _attempt() -> str:
            self.attempts_made += 1
            self._set_state(segment, SegmentState.SUBMITTING)
            return self._submit_once(segment, language)

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            self._set_state(segment, SegmentState.RETRYING)

        try:
            text = retry_with_backoff(
                _attempt,
                self.retry_policy,
                is_transient=is_transient_failure,
                sleep=self.sleep,
                on_retry=_on_retry,
            )
        except RetryError as exc:
            self._set_state(segment, SegmentState.FAILED)
            raise TranscriptionFailed(
                f"Transcription failed for {segment.filename} after {exc.attempts} attempts",
                last_cause=exc.last_error,
                attempts=exc.attempts,
            ) from exc.last_error
        except FatalTranscriptionFailure:
            self._set_state(segment, SegmentState.FAILED)
            raise

        self._set_state(segment, SegmentState.SUCCEEDED)
        return text

    def _submit_once(self, segment: EncodedSegment, language: Optional[str]) -> str:
        try:
            raw = self.transport.submit(
                audio=segment.data,
                mime_type=segment.mime_type,
                filename=segment.filename,
                language=language,
            )
        except ProviderError as exc:
            if exc.category in TRANSIENT_CATEGORIES:
                raise TransientTranscriptionFailure(exc.message, status_category=exc.category) from exc
            raise FatalTranscriptionFailure(exc.message, status_category=exc.category) from exc
        except RelayNetworkError as exc:
            raise TransientTranscriptionFailure(str(exc), status_category="network_error") from exc
        except EmptyRelayResponse as exc:
            raise TransientTranscriptionFailure(str(exc), status_category="empty_transcript") from exc

        if not is_valid_transcript(raw, self.filler_phrases):
            raise TransientTranscriptionFailure(
                f"No usable speech in transcript for {segment.filename}",
                status_category="empty_transcript",
            )
        return clean_transcript(raw, self.filler_phrases)

    def _set_state(self, segment: EncodedSegment, state: SegmentState) -> None:
        logger.debug("Segment %s -> %s", segment.filename, state.value)
        if self.on_state is not None:
            self.on_state(segment, state)
