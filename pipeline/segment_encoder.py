import io
import logging
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from pipeline.errors import EncodeError
from sources.audio_chunk import AudioChunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedSegment:
    data: bytes
    mime_type: str
    filename: str
    chunk_id: int
    start_time: float

    @property
    def size(self) -> int:
        return len(self.data)


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1]; negatives scale by 0x8000, the rest by 0x7FFF."""
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return np.trunc(scaled).astype("<i2")


class WavSegmentEncoder:
    HEADER_BYTES = 44
    SAMPLE_WIDTH = 2
    MIME_TYPE = "audio/wav"

    def bytes_per_second(self, sample_rate: int) -> float:
        return float(sample_rate * self.SAMPLE_WIDTH)

    def encoded_size(self, num_samples: int) -> int:
        return self.HEADER_BYTES + num_samples * self.SAMPLE_WIDTH

    def encode(self, chunk: AudioChunk, source_name: str = "audio") -> EncodedSegment:
        if chunk.samples is None or len(chunk.samples) == 0:
            raise EncodeError(f"Chunk {chunk.id} has no samples")
        if chunk.sample_rate <= 0:
            raise EncodeError(f"Chunk {chunk.id} has invalid sample rate {chunk.sample_rate}")

        pcm16 = float_to_pcm16(chunk.samples)

        raw = io.BytesIO()
        with wave.open(raw, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(self.SAMPLE_WIDTH)
            wf.setframerate(chunk.sample_rate)
            wf.writeframes(pcm16.tobytes())

        data = raw.getvalue()
        stem = Path(source_name).stem or "audio"
        segment = EncodedSegment(
            data=data,
            mime_type=self.MIME_TYPE,
            filename=f"{stem}_part{chunk.id + 1}.wav",
            chunk_id=chunk.id,
            start_time=chunk.start_time,
        )
        logger.debug(
            "Encoded chunk %d: %d bytes, %.2fs from %.2fs",
            chunk.id,
            segment.size,
            chunk.duration,
            chunk.start_time,
        )
        return segment
