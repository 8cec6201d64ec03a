import numpy as np

from sources.decoder import PcmAudio


TARGET_SAMPLE_RATE = 16000


def downmix_to_mono(samples: np.ndarray) -> np.ndarray:
    """Average all channels per frame. Accepts (frames,) or (frames, channels)."""
    if samples.ndim == 1:
        return samples.astype(np.float32, copy=False)
    if samples.shape[1] == 1:
        return samples[:, 0].astype(np.float32, copy=False)
    return samples.mean(axis=1, dtype=np.float64).astype(np.float32)


def resample(
    samples: np.ndarray,
    source_rate: int,
    target_rate: int = TARGET_SAMPLE_RATE,
    method: str = "nearest",
) -> np.ndarray:
    """
    Resample mono PCM.

    "nearest" picks source index floor(i * source_rate / target_rate) for each
    target index i. "linear" interpolates between neighbouring source samples.
    """
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError("sample rates must be positive")
    if source_rate == target_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)

    target_len = int(np.floor(len(samples) * target_rate / source_rate))
    target_idx = np.arange(target_len, dtype=np.int64)

    if method == "nearest":
        source_idx = (target_idx * source_rate) // target_rate
        source_idx = np.minimum(source_idx, len(samples) - 1)
        return samples[source_idx].astype(np.float32, copy=False)

    if method == "linear":
        positions = target_idx * (source_rate / float(target_rate))
        return np.interp(positions, np.arange(len(samples)), samples).astype(np.float32)

    raise ValueError(f"Unknown resample method: {method}")


def to_mono_target_rate(
    pcm: PcmAudio,
    target_rate: int = TARGET_SAMPLE_RATE,
    method: str = "nearest",
) -> np.ndarray:
    mono = downmix_to_mono(pcm.samples)
    return resample(mono, pcm.sample_rate, target_rate, method=method)
