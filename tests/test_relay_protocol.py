import http.client
import io
import json
import socket
import threading
import unittest
import urllib.error
from pathlib import Path
from unittest.mock import patch
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pipeline.errors import TranscriptionFailed
from pipeline.file_processor import FileProcessor, SourceFile
from pipeline.pipeline_config import PipelineConfig

from services.relay_protocol import (
    INVALID_CREDENTIALS,
    MALFORMED_INPUT,
    RATE_LIMITED,
    REQUEST_TOO_LARGE,
    TIMEOUT,
    UNKNOWN,
    UPSTREAM_ERROR,
    EmptyRelayResponse,
    HttpRelayTransport,
    InProcessRelayTransport,
    ProviderError,
    RelayNetworkError,
    category_for_status,
)

RELAY = "http://relay.local:8000/"


class FakeResponse:
    def __init__(self, body: bytes):
        self._body = body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def read(self):
        return self._body


def http_error(status: int, body: bytes) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(RELAY + "api/transcribe", status, "error", {}, io.BytesIO(body))


class FakeProvider:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def transcribe(self, audio, filename, mime_type, language=None):
        self.calls.append((filename, mime_type, language))
        return self.text


class HangUpServer:
    """Accepts each request in full, then closes the socket without replying."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(5)
        self.sock.settimeout(0.2)
        self.requests = 0
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def url(self) -> str:
        host, port = self.sock.getsockname()
        return f"http://{host}:{port}"

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._stopped.set()
        self._thread.join(timeout=2)
        self.sock.close()
        return False

    def _serve(self) -> None:
        while not self._stopped.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            with conn:
                conn.settimeout(5)
                self._read_request(conn)
                self.requests += 1

    @staticmethod
    def _read_request(conn: socket.socket) -> None:
        data = b""
        while b"\r\n\r\n" not in data:
            chunk = conn.recv(4096)
            if not chunk:
                return
            data += chunk
        head, body = data.split(b"\r\n\r\n", 1)
        length = 0
        for line in head.split(b"\r\n")[1:]:
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                length = int(value.strip())
        while len(body) < length:
            chunk = conn.recv(4096)
            if not chunk:
                return
            body += chunk


class TestCategoryForStatus(unittest.TestCase):
    def test_mapping(self) -> None:
        self.assertEqual(category_for_status(413), REQUEST_TOO_LARGE)
        self.assertEqual(category_for_status(400), MALFORMED_INPUT)
        self.assertEqual(category_for_status(422), MALFORMED_INPUT)
        self.assertEqual(category_for_status(401), INVALID_CREDENTIALS)
        self.assertEqual(category_for_status(403), INVALID_CREDENTIALS)
        self.assertEqual(category_for_status(429), RATE_LIMITED)
        self.assertEqual(category_for_status(408), TIMEOUT)
        self.assertEqual(category_for_status(504), TIMEOUT)
        self.assertEqual(category_for_status(502), UPSTREAM_ERROR)
        self.assertEqual(category_for_status(503), UPSTREAM_ERROR)
        self.assertEqual(category_for_status(500), UPSTREAM_ERROR)
        self.assertEqual(category_for_status(302), UNKNOWN)


class TestHttpRelayTransport(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = HttpRelayTransport(RELAY, request_timeout=5)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_submit_posts_audio(self, mock_urlopen) -> None:
        mock_urlopen.return_value = FakeResponse(json.dumps({"text": "Hallo"}).encode("utf-8"))

        text = self.transport.submit(b"RIFF", "audio/wav", "talk_part1.wav", language="de")

        self.assertEqual(text, "Hallo")
        req = mock_urlopen.call_args.args[0]
        self.assertEqual(req.full_url, "http://relay.local:8000/api/transcribe?language=de")
        self.assertEqual(req.get_method(), "POST")
        self.assertEqual(req.data, b"RIFF")
        self.assertEqual(req.get_header("Content-type"), "audio/wav")
        self.assertEqual(req.get_header("X-filename"), "talk_part1.wav")
        self.assertEqual(mock_urlopen.call_args.kwargs["timeout"], 5)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_structured_error_detail(self, mock_urlopen) -> None:
        body = json.dumps({"detail": {"code": "rate_limited", "message": "slow down"}}).encode("utf-8")
        mock_urlopen.side_effect = http_error(429, body)

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, RATE_LIMITED)
        self.assertEqual(ctx.exception.message, "slow down")

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_plain_error_body_uses_status(self, mock_urlopen) -> None:
        mock_urlopen.side_effect = http_error(503, b"Service Unavailable")

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, UPSTREAM_ERROR)
        self.assertEqual(ctx.exception.message, "Service Unavailable")

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_unknown_detail_code_falls_back_to_status(self, mock_urlopen) -> None:
        body = json.dumps({"detail": {"code": "configuration_error", "message": "no key"}}).encode("utf-8")
        mock_urlopen.side_effect = http_error(401, body)

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, INVALID_CREDENTIALS)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_unreachable_relay(self, mock_urlopen) -> None:
        mock_urlopen.side_effect = urllib.error.URLError("connection refused")

        with self.assertRaises(RelayNetworkError):
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_timeout(self, mock_urlopen) -> None:
        mock_urlopen.side_effect = TimeoutError("timed out")

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, TIMEOUT)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_empty_and_invalid_bodies(self, mock_urlopen) -> None:
        mock_urlopen.return_value = FakeResponse(b"  ")
        with self.assertRaises(EmptyRelayResponse):
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        mock_urlopen.return_value = FakeResponse(b"{}")
        with self.assertRaises(EmptyRelayResponse):
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        mock_urlopen.return_value = FakeResponse(b"<html>")
        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")
        self.assertEqual(ctx.exception.category, UNKNOWN)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_bare_internal_error_is_upstream(self, mock_urlopen) -> None:
        mock_urlopen.side_effect = http_error(500, b"Internal Server Error")

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, UPSTREAM_ERROR)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_structured_unknown_code_stays_unknown(self, mock_urlopen) -> None:
        body = json.dumps({"detail": {"code": "unknown", "message": "odd failure"}}).encode("utf-8")
        mock_urlopen.side_effect = http_error(500, body)

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, UNKNOWN)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_missing_relay_key_is_credentials_error(self, mock_urlopen) -> None:
        body = json.dumps({"detail": {"code": "configuration_error", "message": "no key"}}).encode("utf-8")
        mock_urlopen.side_effect = http_error(500, body)

        with self.assertRaises(ProviderError) as ctx:
            self.transport.submit(b"RIFF", "audio/wav", "a.wav")

        self.assertEqual(ctx.exception.category, INVALID_CREDENTIALS)

    @patch("services.relay_protocol.urllib.request.urlopen")
    def test_connection_dropped_while_reading(self, mock_urlopen) -> None:
        for error in (
            http.client.RemoteDisconnected("Remote end closed connection without response"),
            http.client.IncompleteRead(b"par", 10),
            ConnectionResetError("reset by peer"),
        ):
            mock_urlopen.side_effect = error
            with self.subTest(error=type(error).__name__):
                with self.assertRaises(RelayNetworkError):
                    self.transport.submit(b"RIFF", "audio/wav", "a.wav")

    def test_requires_base_url(self) -> None:
        with self.assertRaises(ValueError):
            HttpRelayTransport("")


class TestRelayHangUp(unittest.TestCase):
    def test_hang_up_is_retried_then_reported(self) -> None:
        sleeps = []
        with HangUpServer() as server:
            processor = FileProcessor.build(
                transport=HttpRelayTransport(server.url, request_timeout=5),
                config=PipelineConfig(),
                sleep=sleeps.append,
            )
            result = processor.process_file(SourceFile("voice.wav", b"RIFF" + b"\x00" * 64, "audio/wav"))
            requests = server.requests

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, TranscriptionFailed)
        self.assertEqual(result.error.status_category, "network_error")
        self.assertEqual(result.error.attempts, 3)
        self.assertEqual(requests, 3)
        self.assertEqual(sleeps, [2.0, 4.0])


class TestInProcessRelayTransport(unittest.TestCase):
    def test_passes_through_to_provider(self) -> None:
        provider = FakeProvider("Text")

        text = InProcessRelayTransport(provider).submit(b"RIFF", "audio/wav", "a.wav", "en")

        self.assertEqual(text, "Text")
        self.assertEqual(provider.calls, [("a.wav", "audio/wav", "en")])

    def test_empty_transcript(self) -> None:
        with self.assertRaises(EmptyRelayResponse):
            InProcessRelayTransport(FakeProvider("   ")).submit(b"RIFF", "audio/wav", "a.wav")


if __name__ == "__main__":
    unittest.main()
