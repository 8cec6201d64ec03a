import io
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import soundfile as sf

from pipeline.errors import ChunkSplitFailure, DecodeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PcmAudio:
    samples: np.ndarray   # float32, shape (frames, channels)
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1]) if self.samples.ndim == 2 else 1

    @property
    def duration(self) -> float:
        return self.samples.shape[0] / float(self.sample_rate)


class Decoder(ABC):
    @abstractmethod
    def decode(self, data: bytes, filename: str = "input") -> PcmAudio:
        """
        Turn a media container into linear PCM.
        Raise DecodeError if the container or codec cannot be read.
        """
        pass


class SoundFileDecoder(Decoder):
    """Decodes containers libsndfile reads natively (WAV, FLAC, OGG)."""

    def decode(self, data: bytes, filename: str = "input") -> PcmAudio:
        if not data:
            raise DecodeError(f"{filename} is empty")

        try:
            samples, sr = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
        except (sf.LibsndfileError, RuntimeError) as exc:
            raise DecodeError(f"Could not decode {filename}", detail=str(exc)) from exc

        if samples.shape[0] == 0:
            raise DecodeError(f"{filename} contains no audio frames")

        return PcmAudio(samples=samples, sample_rate=int(sr))


class FfmpegDecoder(Decoder):
    def __init__(self, ffmpeg_bin: str = "ffmpeg", temp_dir: str | None = None):
        self.ffmpeg_bin = ffmpeg_bin
        self.temp_dir = temp_dir

    def decode(self, data: bytes, filename: str = "input") -> PcmAudio:
        if not data:
            raise DecodeError(f"{filename} is empty")

        if shutil.which(self.ffmpeg_bin) is None:
            raise ChunkSplitFailure(f"ffmpeg binary not found: {self.ffmpeg_bin}")

        suffix = Path(filename).suffix or ".bin"

        with tempfile.TemporaryDirectory(dir=self.temp_dir) as tmp:
            input_path = Path(tmp) / f"input{suffix}"
            output_path = Path(tmp) / "decoded.wav"
            input_path.write_bytes(data)

            cmd = [
                self.ffmpeg_bin,
                "-loglevel",
                "error",
                "-i",
                str(input_path),
                "-vn",
                "-f",
                "wav",
                "-acodec",
                "pcm_f32le",
                "-y",
                str(output_path),
            ]

            result = subprocess.run(cmd, capture_output=True, text=True)
            if result.returncode != 0 or not output_path.exists() or output_path.stat().st_size == 0:
                message = result.stderr.strip() or "ffmpeg produced no audio"
                raise DecodeError(f"Could not decode {filename}", detail=message)

            try:
                samples, sr = sf.read(str(output_path), dtype="float32", always_2d=True)
            except (sf.LibsndfileError, RuntimeError) as exc:
                raise DecodeError(f"Could not read decoded audio for {filename}", detail=str(exc)) from exc

        if samples.shape[0] == 0:
            raise DecodeError(f"{filename} contains no audio frames")

        return PcmAudio(samples=samples, sample_rate=int(sr))


class MediaDecoder(Decoder):
    """Reads WAV/FLAC/OGG in memory with libsndfile; everything else goes through ffmpeg."""

    NATIVE_EXTENSIONS = {".wav", ".flac", ".ogg"}

    def __init__(self, native: Decoder | None = None, fallback: Decoder | None = None):
        self.native = native or SoundFileDecoder()
        self.fallback = fallback or FfmpegDecoder()

    def decode(self, data: bytes, filename: str = "input") -> PcmAudio:
        if Path(filename).suffix.lower() in self.NATIVE_EXTENSIONS:
            try:
                return self.native.decode(data, filename)
            except DecodeError as exc:
                logger.info("libsndfile could not read %s (%s); trying ffmpeg", filename, exc.detail or exc)
        return self.fallback.decode(data, filename)
