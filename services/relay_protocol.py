import http.client
import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Optional


REQUEST_TOO_LARGE = "request_too_large"
MALFORMED_INPUT = "malformed_input"
INVALID_CREDENTIALS = "invalid_credentials"
RATE_LIMITED = "rate_limited"
TIMEOUT = "timeout"
UPSTREAM_ERROR = "upstream_error"
UNKNOWN = "unknown"

STATUS_BY_CATEGORY = {
    REQUEST_TOO_LARGE: 413,
    MALFORMED_INPUT: 400,
    INVALID_CREDENTIALS: 401,
    RATE_LIMITED: 429,
    TIMEOUT: 504,
    UPSTREAM_ERROR: 502,
    UNKNOWN: 500,
}

TRANSIENT_CATEGORIES = frozenset({RATE_LIMITED, TIMEOUT, UPSTREAM_ERROR})

# Relay error codes outside the provider categories.
CODE_ALIASES = {"configuration_error": INVALID_CREDENTIALS}


def category_for_status(status: int) -> str:
    """Category for a bare HTTP status. A plain 500 counts as an upstream failure."""
    for category, code in STATUS_BY_CATEGORY.items():
        if code == status and category != UNKNOWN:
            return category
    if status == 408:
        return TIMEOUT
    if status == 403:
        return INVALID_CREDENTIALS
    if 500 <= status < 600:
        return UPSTREAM_ERROR
    if 400 <= status < 500:
        return MALFORMED_INPUT
    return UNKNOWN


class ProviderError(Exception):
    """A classified failure reported by the speech-to-text provider or the relay."""

    def __init__(self, category: str, message: str):
        super().__init__(message)
        self.category = category
        self.message = message


class RelayNetworkError(Exception):
    pass


class EmptyRelayResponse(Exception):
    pass


class RelayTransport(ABC):
    @abstractmethod
    def submit(
        self,
        audio: bytes,
        mime_type: str,
        filename: str,
        language: Optional[str] = None,
    ) -> str:
        """
        Send one encoded segment and return the raw transcript text.
        Raise ProviderError, RelayNetworkError or EmptyRelayResponse on failure.
        """
        pass


class HttpRelayTransport(RelayTransport):
    def __init__(self, base_url: str, request_timeout: float = 120.0):
        if not base_url:
            raise ValueError("relay base_url is required")
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout

    def submit(
        self,
        audio: bytes,
        mime_type: str,
        filename: str,
        language: Optional[str] = None,
    ) -> str:
        params = {"language": language} if language else {}
        query = urllib.parse.urlencode(params)
        url = f"{self.base_url}/api/transcribe"
        if query:
            url = f"{url}?{query}"

        req = urllib.request.Request(
            url,
            data=audio,
            headers={
                "Content-Type": mime_type,
                "X-Filename": filename,
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.request_timeout) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise self._error_from_response(exc.code, exc.read().decode("utf-8", "replace")) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise ProviderError(TIMEOUT, f"Relay request timed out after {self.request_timeout}s") from exc
        except urllib.error.URLError as exc:
            raise RelayNetworkError(f"Relay unreachable: {exc.reason}") from exc
        except (http.client.HTTPException, ConnectionError, OSError) as exc:
            raise RelayNetworkError(f"Relay connection failed: {exc!r}") from exc

        if not body.strip():
            raise EmptyRelayResponse("Relay returned an empty body")

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProviderError(UNKNOWN, f"Relay returned invalid JSON: {body[:200]}") from exc

        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise EmptyRelayResponse("Relay response carried no text")
        return text

    @staticmethod
    def _error_from_response(status: int, body: str) -> ProviderError:
        category = category_for_status(status)
        message = body.strip() or f"HTTP {status}"

        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError:
            payload = None

        if isinstance(payload, dict):
            detail = payload.get("detail")
            if isinstance(detail, dict):
                category = str(detail.get("code") or category)
                message = str(detail.get("message") or message)
            elif isinstance(detail, str):
                message = detail

        category = CODE_ALIASES.get(category, category)
        if category not in STATUS_BY_CATEGORY:
            category = category_for_status(status)
        return ProviderError(category, message)


class InProcessRelayTransport(RelayTransport):
    """Calls a provider object directly instead of going through HTTP."""

    def __init__(self, provider: Any):
        self.provider = provider

    def submit(
        self,
        audio: bytes,
        mime_type: str,
        filename: str,
        language: Optional[str] = None,
    ) -> str:
        text = self.provider.transcribe(
            audio=audio,
            filename=filename,
            mime_type=mime_type,
            language=language,
        )
        if text is None or not str(text).strip():
            raise EmptyRelayResponse("Provider returned an empty transcript")
        return str(text)
