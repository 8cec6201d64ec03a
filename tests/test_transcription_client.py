import unittest
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pipeline.errors import FatalTranscriptionFailure, TranscriptionFailed, user_message
from pipeline.segment_encoder import EncodedSegment
from services.relay_protocol import (
    MALFORMED_INPUT,
    RATE_LIMITED,
    UPSTREAM_ERROR,
    EmptyRelayResponse,
    ProviderError,
    RelayNetworkError,
    RelayTransport,
)
from services.retry import RetryPolicy
from services.transcription_client import SegmentState, TranscriptionClient


class FakeTransport(RelayTransport):
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def submit(self, audio, mime_type, filename, language=None):
        self.calls.append({"filename": filename, "mime_type": mime_type, "language": language})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_segment(size: int = 100) -> EncodedSegment:
    return EncodedSegment(
        data=b"\x00" * size,
        mime_type="audio/wav",
        filename="talk_part1.wav",
        chunk_id=0,
        start_time=0.0,
    )


class TestTranscriptionClient(unittest.TestCase):
    def setUp(self) -> None:
        self.sleeps = []

    def make_client(self, transport, **kwargs) -> TranscriptionClient:
        return TranscriptionClient(
            transport=transport,
            retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=2.0),
            sleep=self.sleeps.append,
            **kwargs,
        )

    def test_rate_limit_is_retried_until_success(self) -> None:
        transport = FakeTransport([
            ProviderError(RATE_LIMITED, "slow down"),
            ProviderError(RATE_LIMITED, "slow down"),
            "Hallo Welt",
        ])
        client = self.make_client(transport)

        text = client.transcribe(make_segment(), language="de")

        self.assertEqual(text, "Hallo Welt")
        self.assertEqual(len(transport.calls), 3)
        self.assertEqual(client.attempts_made, 3)
        self.assertEqual(self.sleeps, [2.0, 4.0])
        self.assertEqual(transport.calls[0]["language"], "de")

    def test_malformed_input_is_not_retried(self) -> None:
        transport = FakeTransport([ProviderError(MALFORMED_INPUT, "bad audio"), "unused"])
        client = self.make_client(transport)

        with self.assertRaises(FatalTranscriptionFailure) as ctx:
            client.transcribe(make_segment())

        self.assertEqual(ctx.exception.status_category, MALFORMED_INPUT)
        self.assertEqual(len(transport.calls), 1)
        self.assertEqual(self.sleeps, [])

    def test_exhausted_retries_raise_transcription_failed(self) -> None:
        transport = FakeTransport([ProviderError(UPSTREAM_ERROR, "502")] * 3)
        client = self.make_client(transport)

        with self.assertRaises(TranscriptionFailed) as ctx:
            client.transcribe(make_segment())

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(ctx.exception.status_category, UPSTREAM_ERROR)
        self.assertEqual(len(transport.calls), 3)
        self.assertEqual(len(self.sleeps), 2)
        self.assertIn("unavailable", user_message(ctx.exception))

    def test_network_errors_and_empty_bodies_are_transient(self) -> None:
        transport = FakeTransport([
            RelayNetworkError("connection reset"),
            EmptyRelayResponse("empty"),
            "Guten Morgen",
        ])

        text = self.make_client(transport).transcribe(make_segment())

        self.assertEqual(text, "Guten Morgen")
        self.assertEqual(len(transport.calls), 3)

    def test_filler_only_transcript_is_retried(self) -> None:
        transport = FakeTransport([
            "Untertitel im Auftrag des ZDF, 2017",
            "Das ist der echte Text. Thanks for watching!",
        ])

        text = self.make_client(transport).transcribe(make_segment())

        self.assertEqual(text, "Das ist der echte Text.")
        self.assertEqual(len(transport.calls), 2)

    def test_oversized_segment_fails_before_submitting(self) -> None:
        transport = FakeTransport(["unused"])
        client = self.make_client(transport, max_upload_bytes=10)

        with self.assertRaises(FatalTranscriptionFailure) as ctx:
            client.transcribe(make_segment(size=11))

        self.assertEqual(ctx.exception.status_category, "request_too_large")
        self.assertEqual(transport.calls, [])

    def test_reports_segment_states(self) -> None:
        states = []
        transport = FakeTransport([ProviderError(RATE_LIMITED, "busy"), "ok then"])
        client = self.make_client(transport, on_state=lambda segment, state: states.append(state))

        client.transcribe(make_segment())

        self.assertEqual(
            states,
            [
                SegmentState.PENDING,
                SegmentState.SUBMITTING,
                SegmentState.RETRYING,
                SegmentState.SUBMITTING,
                SegmentState.SUCCEEDED,
            ],
        )

    def test_failed_state_on_fatal_error(self) -> None:
        states = []
        transport = FakeTransport([ProviderError("invalid_credentials", "bad key")])
        client = self.make_client(transport, on_state=lambda segment, state: states.append(state))

        with self.assertRaises(FatalTranscriptionFailure):
            client.transcribe(make_segment())

        self.assertEqual(states[-1], SegmentState.FAILED)


if __name__ == "__main__":
    unittest.main()
