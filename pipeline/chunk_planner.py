import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from pipeline.silence_detector import SilenceDetector
from sources.audio_chunk import AudioChunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkPlannerConfig:
    max_chunk_bytes: int = 4 * 1024 * 1024
    bytes_per_second: float = 32000.0     # 16-bit mono PCM at 16 kHz
    container_overhead_bytes: int = 44    # canonical WAV header
    min_chunk_seconds: float = 5.0
    overlap_seconds: float = 1.0
    silence_tolerance_seconds: float = 10.0
    min_silence_seconds: float = 0.5
    fade_samples: int = 100
    zero_crossing_search_samples: int = 1000
    zero_crossing_threshold: float = 0.001

    def __post_init__(self) -> None:
        if self.bytes_per_second <= 0:
            raise ValueError("bytes_per_second must be positive")
        if self.overlap_seconds < 0 or self.min_chunk_seconds < 0:
            raise ValueError("overlap_seconds and min_chunk_seconds must not be negative")
        if not 0 <= self.fade_samples <= 100:
            raise ValueError("fade_samples must be between 0 and 100")
        if self.target_seconds <= 0:
            raise ValueError(
                f"max_chunk_bytes {self.max_chunk_bytes} leaves no room for audio "
                f"after the {self.overlap_seconds}s overlap"
            )
        if self.target_seconds < 2 * self.min_chunk_seconds:
            raise ValueError(
                f"Chunk budget {self.target_seconds:.2f}s is shorter than twice "
                f"min_chunk_seconds {self.min_chunk_seconds:.2f}s"
            )

    @property
    def target_seconds(self) -> float:
        """Nominal chunk length; the overlap tail is reserved inside the byte ceiling."""
        usable = self.max_chunk_bytes - self.container_overhead_bytes
        return usable / self.bytes_per_second - self.overlap_seconds


class ChunkPlanner:
    def __init__(
        self,
        config: ChunkPlannerConfig | None = None,
        detector: SilenceDetector | None = None,
    ):
        self.config = config or ChunkPlannerConfig()
        self.detector = detector or SilenceDetector()

    def plan(
        self,
        samples: np.ndarray,
        sample_rate: int,
        silence_points: Optional[Sequence[float]] = None,
    ) -> List[AudioChunk]:
        """
        Split mono samples into ordered chunks. silence_points are candidate cut
        times in seconds, each the centre of a stretch at least min_silence_seconds
        long; they are detected from the samples when not given.
        """
        if samples.ndim != 1:
            raise ValueError("ChunkPlanner expects mono samples")
        total = len(samples)
        if total == 0:
            raise ValueError("Cannot plan chunks for an empty stream")

        cfg = self.config
        budget = int(np.floor(cfg.target_seconds * sample_rate))
        overlap = int(np.floor(cfg.overlap_seconds * sample_rate))
        min_samples = int(np.ceil(cfg.min_chunk_seconds * sample_rate))

        if total < min_samples or total <= budget + overlap:
            return [self._make_chunk(0, samples, 0, total, sample_rate, first=True, last=True)]

        if silence_points is None:
            silence_points = self.detector.silence_points(samples, sample_rate, cfg.min_silence_seconds)
        points = sorted(silence_points)

        cuts: List[int] = []
        start = 0
        while total - start > budget + overlap:
            nominal = start + budget
            cut = self._silence_cut(samples, sample_rate, points, start + min_samples, nominal)
            if cut is None:
                cut = nominal
            if total - cut < min_samples:
                cut = total - min_samples
            cuts.append(cut)
            start = cut

        bounds = list(zip([0] + cuts, cuts + [total]))
        chunks: List[AudioChunk] = []
        for idx, (begin, end) in enumerate(bounds):
            last = idx == len(bounds) - 1
            stop = total if last else min(end + overlap, total)
            chunks.append(
                self._make_chunk(idx, samples, begin, stop, sample_rate, first=idx == 0, last=last)
            )

        logger.info(
            "Planned %d chunks for %.1fs of audio (budget %.1fs, %d silence candidates)",
            len(chunks),
            total / float(sample_rate),
            cfg.target_seconds,
            len(points),
        )
        return chunks

    def _silence_cut(
        self,
        samples: np.ndarray,
        sample_rate: int,
        points: Sequence[float],
        earliest: int,
        nominal: int,
    ) -> int | None:
        """
        Nearest qualifying silence centre inside [nominal - tolerance, nominal],
        refined to a near-zero sample no further than half the minimum silence
        length from the centre, which keeps the cut inside the quiet stretch.
        """
        tolerance = int(np.floor(self.config.silence_tolerance_seconds * sample_rate))
        lo = max(earliest, nominal - tolerance)
        if lo > nominal:
            return None

        best: int | None = None
        for point in points:
            center = int(round(point * sample_rate))
            if center < lo or center > nominal:
                continue
            if best is None or abs(nominal - center) < abs(nominal - best):
                best = center

        if best is None:
            return None

        half_silence = int(np.floor(self.config.min_silence_seconds * sample_rate / 2))
        search_lo = max(lo, best - half_silence)
        search_hi = min(nominal, best + half_silence)
        return self._nearest_zero_crossing(samples, best, search_lo, search_hi)

    def _nearest_zero_crossing(self, samples: np.ndarray, index: int, lo: int, hi: int) -> int:
        threshold = self.config.zero_crossing_threshold
        hi = min(hi, len(samples) - 1)
        for offset in range(self.config.zero_crossing_search_samples + 1):
            for candidate in (index + offset, index - offset):
                if lo <= candidate <= hi and abs(samples[candidate]) < threshold:
                    return candidate
        return index

    def _make_chunk(
        self,
        chunk_id: int,
        samples: np.ndarray,
        begin: int,
        end: int,
        sample_rate: int,
        first: bool,
        last: bool,
    ) -> AudioChunk:
        data = np.array(samples[begin:end], dtype=np.float32, copy=True)
        fade = min(self.config.fade_samples, len(data) // 2)

        faded_in = not first and fade > 0
        faded_out = not last and fade > 0
        if fade > 0:
            ramp = np.arange(fade, dtype=np.float32) / float(fade)
            if faded_in:
                data[:fade] *= ramp
            if faded_out:
                data[-fade:] *= ramp[::-1]

        data.flags.writeable = False
        return AudioChunk(
            id=chunk_id,
            samples=data,
            sample_rate=sample_rate,
            start_time=begin / float(sample_rate),
            faded_in=faded_in,
            faded_out=faded_out,
        )
