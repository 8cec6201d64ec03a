class TranscriberError(Exception):
    category = "processing_failed"

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class UnsupportedFormat(TranscriberError):
    category = "unsupported_format"


class DecodeError(TranscriberError):
    category = "decode_failed"


class EncodeError(TranscriberError):
    category = "encode_failed"


class ChunkSplitFailure(TranscriberError):
    category = "chunk_split_failed"


class TranscriptionFailure(TranscriberError):
    category = "transcription_failed"

    def __init__(
        self,
        message: str,
        status_category: str = "unknown",
        detail: str | None = None,
    ):
        super().__init__(message, detail=detail)
        self.status_category = status_category


class TransientTranscriptionFailure(TranscriptionFailure):
    pass


class FatalTranscriptionFailure(TranscriptionFailure):
    pass


class TranscriptionFailed(TranscriptionFailure):
    """Raised once a segment has used up its retry budget."""

    def __init__(self, message: str, last_cause: BaseException | None, attempts: int):
        status_category = getattr(last_cause, "status_category", "unknown")
        super().__init__(
            message,
            status_category=status_category,
            detail=str(last_cause) if last_cause is not None else None,
        )
        self.last_cause = last_cause
        self.attempts = attempts


class ReelError(TranscriberError):
    category = "reel_failed"


class InvalidReelUrl(ReelError):
    category = "invalid_reel_url"


class ReelNotFound(ReelError):
    category = "reel_not_found"


class ReelRateLimited(ReelError):
    category = "reel_rate_limited"


class ProcessingCancelled(TranscriberError):
    category = "cancelled"


USER_MESSAGES = {
    "unsupported_format": "Unsupported file format.",
    "decode_failed": "The file could not be decoded. It may be corrupt or use an unsupported codec.",
    "encode_failed": "Audio could not be prepared for transcription.",
    "chunk_split_failed": "The audio could not be split into parts. Audio decoding is unavailable.",
    "invalid_reel_url": "Invalid Instagram reel URL. Please enter a valid URL.",
    "reel_not_found": "The video could not be found. It may be private or no longer available.",
    "reel_rate_limited": "The API limit was reached. Please wait a moment and try again.",
    "cancelled": "Processing was cancelled.",
}

TRANSCRIPTION_MESSAGES = {
    "request_too_large": "The file is too large to process.",
    "malformed_input": "The transcription service rejected the audio.",
    "invalid_credentials": "The transcription service is not configured correctly.",
    "rate_limited": "The API limit was reached. Please wait a moment and try again.",
    "timeout": "The transcription timed out. Please try a shorter file.",
    "upstream_error": "The transcription service is unavailable. Please try again later.",
    "network_error": "Network error while uploading. Please check your connection.",
    "empty_transcript": "No speech was recognized in the audio.",
}

GENERIC_MESSAGE = "Processing failed"


def user_message(error: BaseException) -> str:
    """Human-readable message for any error surfaced by the pipeline."""
    if isinstance(error, TranscriptionFailure):
        message = TRANSCRIPTION_MESSAGES.get(error.status_category)
        if message is not None:
            return message
    elif isinstance(error, TranscriberError):
        message = USER_MESSAGES.get(error.category)
        if message is not None:
            return message

    detail = getattr(error, "detail", None) or str(error)
    if detail:
        return f"{GENERIC_MESSAGE}: {detail}"
    return f"{GENERIC_MESSAGE}."
