"""Pytest configuration and fixtures."""

import os

# Headless plotting for the visualize tests
os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pytest

from songprint.audio_utils import to_signal
from songprint.config import FingerprintConfig

SAMPLE_RATE = 8000
HOP_SIZE = 256


def make_song(seed, duration=6.0, sample_rate=SAMPLE_RATE):
    """Synthetic "song": a sequence of short chords of random pitch plus a noise floor."""
    rng = np.random.default_rng(seed)
    n = int(duration * sample_rate)
    t = np.arange(n) / sample_rate
    audio = np.zeros(n)

    note_len = int(0.15 * sample_rate)
    for start in range(0, n, note_len):
        seg = slice(start, start + note_len)
        for _ in range(3):
            freq = rng.uniform(200.0, 3500.0)
            amp = rng.uniform(0.2, 1.0)
            audio[seg] += amp * np.sin(2 * np.pi * freq * t[seg])

    audio += rng.normal(0.0, 0.05, n)
    return to_signal(audio / np.max(np.abs(audio)))


@pytest.fixture
def config():
    """Small, fast configuration matching the synthetic songs."""
    return FingerprintConfig(
        sample_rate=SAMPLE_RATE,
        window_size=512,
        hop_size=HOP_SIZE,
        peak_freq_radius=4,
        peak_time_radius=4,
        peaks_per_chunk=3,
        target_t_min=1,
        target_t_max=16,
        target_f_radius=40,
        fan_out=5,
        score_coefficient=25.0,
        max_matches=5,
    )


@pytest.fixture(scope="session")
def songs():
    """Three unrelated reference signals keyed by song id."""
    return {name: make_song(seed) for seed, name in enumerate(["A", "B", "C"], start=1)}


@pytest.fixture
def excerpt(songs):
    """2.5 s of song A starting at chunk 64."""
    start = 64 * HOP_SIZE
    return songs["A"][start : start + int(2.5 * SAMPLE_RATE)]
