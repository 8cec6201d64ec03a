from dataclasses import dataclass
from typing import List

import numpy as np


@dataclass(frozen=True)
class SilenceRegion:
    start: float   # seconds
    end: float     # seconds

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def center(self) -> float:
        return (self.start + self.end) / 2.0


class SilenceDetector:
    def __init__(
        self,
        threshold_db: float = -50.0,
        window_ms: float = 20.0,
    ):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.threshold_db = threshold_db
        self.window_ms = window_ms

    def window_rms_db(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """
        RMS level of each full analysis window, in dBFS.
        A trailing partial window is analysed on the samples it has.
        """
        window = max(1, int(round(sample_rate * self.window_ms / 1000.0)))
        n = len(samples)
        if n == 0:
            return np.zeros((0,), dtype=np.float64)

        num_windows = int(np.ceil(n / window))
        padded = np.zeros(num_windows * window, dtype=np.float64)
        padded[:n] = samples

        frames = padded.reshape(num_windows, window)
        counts = np.full(num_windows, window, dtype=np.float64)
        counts[-1] = n - (num_windows - 1) * window

        rms = np.sqrt((frames ** 2).sum(axis=1) / counts)
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(rms)

    def detect(self, samples: np.ndarray, sample_rate: int) -> List[SilenceRegion]:
        """
        Return the contiguous quiet stretches of the stream, in order.
        """
        levels = self.window_rms_db(samples, sample_rate)
        if levels.size == 0:
            return []

        window = max(1, int(round(sample_rate * self.window_ms / 1000.0)))
        total_seconds = len(samples) / float(sample_rate)
        quiet = levels < self.threshold_db

        regions: List[SilenceRegion] = []
        run_start: int | None = None

        for i, is_quiet in enumerate(quiet):
            if is_quiet and run_start is None:
                run_start = i
            elif not is_quiet and run_start is not None:
                regions.append(self._region(run_start, i, window, sample_rate, total_seconds))
                run_start = None

        if run_start is not None:
            regions.append(self._region(run_start, len(quiet), window, sample_rate, total_seconds))

        return regions

    def silence_points(
        self,
        samples: np.ndarray,
        sample_rate: int,
        min_silence_seconds: float = 0.0,
    ) -> List[float]:
        """Centres (seconds) of quiet stretches at least min_silence_seconds long."""
        return [
            region.center
            for region in self.detect(samples, sample_rate)
            if region.duration >= min_silence_seconds
        ]

    @staticmethod
    def _region(
        first_window: int,
        end_window: int,
        window: int,
        sample_rate: int,
        total_seconds: float,
    ) -> SilenceRegion:
        start = first_window * window / float(sample_rate)
        end = min(end_window * window / float(sample_rate), total_seconds)
        return SilenceRegion(start=start, end=end)
