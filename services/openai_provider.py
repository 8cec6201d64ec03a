import io
import logging
import os
from typing import Any, Optional

import openai
from openai import OpenAI

from services.relay_protocol import (
    INVALID_CREDENTIALS,
    MALFORMED_INPUT,
    RATE_LIMITED,
    REQUEST_TOO_LARGE,
    TIMEOUT,
    UNKNOWN,
    UPSTREAM_ERROR,
    ProviderError,
)

logger = logging.getLogger(__name__)


class OpenAITranscriptionProvider:
    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        request_timeout: float = 120.0,
        client: Any = None,
    ):
        if not api_key and client is None:
            raise ValueError("OPENAI_API_KEY is required")

        self.model = model
        self.request_timeout = request_timeout
        self._api_key = api_key
        self._client = client

    @classmethod
    def from_env(cls) -> "OpenAITranscriptionProvider":
        return cls(
            api_key=(os.getenv("OPENAI_API_KEY") or os.getenv("openai_api_key") or "").strip(),
            model=os.getenv("TRANSCRIPTION_MODEL", "whisper-1").strip() or "whisper-1",
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key, timeout=self.request_timeout, max_retries=0)
        return self._client

    def transcribe(
        self,
        audio: bytes,
        filename: str = "audio.wav",
        mime_type: str = "audio/wav",
        language: Optional[str] = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "file": (filename, io.BytesIO(audio), mime_type),
        }
        if language:
            kwargs["language"] = language

        try:
            response = self.client.audio.transcriptions.create(**kwargs)
        except Exception as exc:
            raise self.classify(exc) from exc

        if isinstance(response, str):
            return response.strip()
        text = getattr(response, "text", None)
        if isinstance(text, str):
            return text.strip()
        return str(response).strip()

    @staticmethod
    def classify(exc: Exception) -> ProviderError:
        """Map an OpenAI SDK exception onto a relay status category."""
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__

        if isinstance(exc, openai.APITimeoutError):
            return ProviderError(TIMEOUT, message)
        if isinstance(exc, openai.APIConnectionError):
            return ProviderError(UPSTREAM_ERROR, message)
        if isinstance(exc, openai.RateLimitError):
            return ProviderError(RATE_LIMITED, message)
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ProviderError(INVALID_CREDENTIALS, message)
        if isinstance(exc, openai.APIStatusError):
            status = exc.status_code
            if status == 413:
                return ProviderError(REQUEST_TOO_LARGE, message)
            if status in (400, 415, 422):
                return ProviderError(MALFORMED_INPUT, message)
            if status >= 500:
                return ProviderError(UPSTREAM_ERROR, message)

        logger.error("Unclassified provider error: %r", exc)
        return ProviderError(UNKNOWN, message)
