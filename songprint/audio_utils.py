import logging
import numpy as np
from scipy import signal as sp_signal
from scipy.ndimage import maximum_filter

from .config import FingerprintConfig
from .constellation import ConstellationMap, Peak
from .logging_config import setup_logger

logger = setup_logger(__name__)

# 16-bit full scale for float -> integer conversion
PCM_SCALE = 32767


def to_signal(samples):
    """
    Convert decoded samples into the canonical integer signal.

    Floating point input is treated as normalised audio in [-1, 1] and
    scaled to 16-bit integers; integer input is kept as is. The constant
    (DC) bias is removed in both cases.

    Args:
        samples: 1-D sequence of samples (mono)

    Returns:
        signal: 1-D int64 numpy array
    """
    samples = np.asarray(samples)
    if samples.ndim != 1:
        raise ValueError(f"Expected a mono 1-D signal, got shape {samples.shape}")
    if samples.size == 0:
        return np.zeros(0, dtype=np.int64)

    if np.issubdtype(samples.dtype, np.floating):
        samples = np.clip(samples, -1.0, 1.0) * PCM_SCALE
    else:
        samples = samples.astype(np.float64)

    samples = samples - samples.mean()
    return np.rint(samples).astype(np.int64)


def load_audio(filepath, sample_rate=None):
    """
    Load audio file and convert to the canonical signal.

    Decoding is done by librosa (wav, mp3, flac, ...), resampled to the
    target rate and mixed down to mono.

    Args:
        filepath: Path to audio file
        sample_rate: Target sample rate (defaults to the configured one)

    Returns:
        signal: int64 numpy array of samples
        sr: sample rate
    """
    import librosa

    sr = sample_rate or FingerprintConfig().sample_rate
    audio, sr = librosa.load(filepath, sr=sr, mono=True)
    signal = to_signal(audio)

    logger.info(f"✓ Loaded: {filepath}")
    logger.debug(f"  Duration: {len(signal) / sr:.2f} seconds")
    logger.debug(f"  Sample rate: {sr} Hz")
    logger.debug(f"  Samples: {len(signal)}")

    return signal, sr


def generate_spectrogram(signal, config=None):
    """
    Generate a magnitude spectrogram from a signal.

    The signal is cut into windows of `window_size` samples advancing by
    `hop_size`; the trailing partial window is dropped. Each window is
    weighted by a Hann taper, transformed, and only the first
    window_size / 2 bins are kept.

    Args:
        signal: 1-D integer signal
        config: FingerprintConfig

    Returns:
        spec: int64 array of shape (time chunks, frequency bins), or (0, 0)
            when the signal is too short
    """
    config = config or FingerprintConfig()
    samples = np.asarray(signal, dtype=np.float64)
    if samples.ndim != 1:
        raise ValueError(f"Expected a mono 1-D signal, got shape {samples.shape}")

    window_size = config.window_size
    hop_size = config.hop_size
    num_chunks = (len(samples) - window_size) // hop_size if len(samples) >= window_size else 0

    if num_chunks <= 0:
        logger.debug(f"Signal too short for a spectrogram ({len(samples)} samples)")
        return np.zeros((0, 0), dtype=np.int64)

    frames = np.lib.stride_tricks.sliding_window_view(samples, window_size)[::hop_size]
    frames = frames[:num_chunks]

    window = sp_signal.get_window("hann", window_size)
    spectrum = np.fft.rfft(frames * window, axis=1)[:, : window_size // 2]
    spec = np.rint(np.abs(spectrum)).astype(np.int64)

    logger.debug(f"✓ Spectrogram generated: {spec.shape} (time chunks × frequency bins)")

    return spec


def find_peaks(spec, config=None):
    """
    Find local maxima (peaks) in the spectrogram.

    A cell is a candidate when it equals the maximum of its neighbourhood
    [t - peak_time_radius, t + peak_time_radius] x
    [f - peak_freq_radius, f + peak_freq_radius], clipped to the matrix.
    Equal maxima inside one neighbourhood all qualify. Candidates below
    `min_amplitude` are ignored, then density control thins each chunk.
    The default `min_amplitude` of 1 means zero-magnitude maxima (silent
    stretches) are never peaks; pass `min_amplitude=0` to keep them.

    Args:
        spec: Spectrogram (time chunks × frequency bins)
        config: FingerprintConfig

    Returns:
        peaks: List of Peak, ordered by time chunk then loudest first
    """
    config = config or FingerprintConfig()
    spec = np.asarray(spec)
    if spec.size == 0:
        return []

    size = (2 * config.peak_time_radius + 1, 2 * config.peak_freq_radius + 1)
    # "nearest" padding only repeats edge cells, so the max equals the clipped one
    local_max = maximum_filter(spec, size=size, mode="nearest")

    peak_mask = (spec == local_max) & (spec >= config.min_amplitude)
    peak_coords = np.argwhere(peak_mask)

    logger.debug(f"Initial peaks found: {len(peak_coords)}")

    peaks = apply_density_control(peak_coords, spec, config.peaks_per_chunk)

    logger.debug(f"After density control: {len(peaks)} peaks")

    return peaks


def apply_density_control(peak_coords, spec, peaks_per_chunk):
    """
    Keep at most `peaks_per_chunk` peaks in each time chunk.

    Within a chunk the survivors are the first ones in Peak order
    (loudest first, lower frequency bin on ties).

    Args:
        peak_coords: Array of (time_idx, freq_idx) coordinates
        spec: Spectrogram for amplitude values
        peaks_per_chunk: Cap per time chunk

    Returns:
        filtered_peaks: List of Peak
    """
    if len(peak_coords) == 0:
        return []

    times = peak_coords[:, 0]
    freqs = peak_coords[:, 1]
    amps = spec[times, freqs]

    # Primary key time, then descending amplitude, then frequency
    order = np.lexsort((freqs, -amps, times))
    times, freqs, amps = times[order], freqs[order], amps[order]

    # Rank of each peak inside its chunk
    chunk_start = np.searchsorted(times, times, side="left")
    rank = np.arange(len(times)) - chunk_start
    keep = rank < peaks_per_chunk

    return [
        Peak(amplitude=int(a), frequency_bin=int(f), time_chunk=int(t))
        for t, f, a in zip(times[keep], freqs[keep], amps[keep])
    ]


def create_constellation_map(signal, config=None):
    """
    Complete pipeline: Signal → Spectrogram → Peaks → Constellation map

    Args:
        signal: 1-D integer signal
        config: FingerprintConfig

    Returns:
        constellation: ConstellationMap of the retained peaks
        spec: Spectrogram
    """
    config = config or FingerprintConfig()

    spec = generate_spectrogram(signal, config)
    peaks = find_peaks(spec, config)
    constellation = ConstellationMap(peaks)

    if logger.isEnabledFor(logging.DEBUG) and spec.shape[0]:
        duration = spec.shape[0] * config.chunk_duration
        logger.debug(f"✓ Constellation map created: {len(constellation)} peaks")
        logger.debug(f"  Peak density: {len(constellation) / duration:.1f} peaks/second")

    return constellation, spec
