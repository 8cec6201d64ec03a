# sources/audio_chunk.py
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AudioChunk:
    id: int                  # ordinal position in the planned sequence
    samples: np.ndarray      # mono float32 PCM, read-only
    sample_rate: int
    start_time: float        # offset in seconds from stream start
    faded_in: bool = False
    faded_out: bool = False

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration
