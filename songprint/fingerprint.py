import logging
from collections import Counter
from typing import NamedTuple

from .config import FingerprintConfig
from .constellation import Peak
from .audio_utils import create_constellation_map
from .logging_config import setup_logger

logger = setup_logger(__name__)


class FingerprintKey(NamedTuple):
    """Index key derived from a peak pair. delta_time is never negative."""

    anchor_freq: int
    target_freq: int
    delta_time: int

    def pack(self):
        """
        Pack the key into one integer for display and diagnostics.

        Layout (MSB → LSB): [10 bits anchor][10 bits target][12 bits delta].
        Values wider than their field are masked, so distinct keys may pack
        to the same integer; the index never keys on the packed form.
        """
        return (
            (self.anchor_freq & 0x3FF) << 22
            | (self.target_freq & 0x3FF) << 12
            | (self.delta_time & 0xFFF)
        )


class PeakPair(NamedTuple):
    """Anchor peak and a later (or simultaneous) target peak."""

    anchor: Peak
    target: Peak

    @property
    def key(self):
        return FingerprintKey(
            self.anchor.frequency_bin,
            self.target.frequency_bin,
            self.target.time_chunk - self.anchor.time_chunk,
        )


def generate_pairs(constellation, config=None):
    """
    Generate anchor → target peak pairs from a constellation map.

    For each anchor point, the target zone spans
    [t + target_t_min, t + target_t_max] in time and
    [f - target_f_radius, f + target_f_radius] in frequency. The zone is
    read with one range query; the loudest `fan_out` peaks in it (Peak
    order) become targets.

    Args:
        constellation: ConstellationMap
        config: FingerprintConfig

    Returns:
        pairs: List of PeakPair, grouped by anchor in (time, frequency) order
    """
    config = config or FingerprintConfig()

    pairs = []
    for anchor in constellation:
        targets = constellation.range_query(
            anchor.time_chunk + config.target_t_min,
            anchor.time_chunk + config.target_t_max,
            anchor.frequency_bin - config.target_f_radius,
            anchor.frequency_bin + config.target_f_radius,
        )
        targets = sorted(t for t in targets if t != anchor)

        for target in targets[: config.fan_out]:
            pairs.append(PeakPair(anchor, target))

    logger.debug(f"Generated {len(pairs)} pairs from {len(constellation)} peaks")

    return pairs


def analyze_hash_distribution(pairs):
    """
    Analyze the key distribution of a pair list to check for good entropy.

    Args:
        pairs: List of PeakPair

    Returns:
        stats: Dict with totals, collisions and uniqueness ratio
    """
    key_counts = Counter(pair.key for pair in pairs)

    total = len(pairs)
    unique = len(key_counts)
    duplicates = {k: c for k, c in key_counts.items() if c > 1}

    stats = {
        "total_keys": total,
        "unique_keys": unique,
        "collisions": len(duplicates),
        "max_collision": max(duplicates.values(), default=0),
        "uniqueness": unique / total if total else 0.0,
    }

    if total == 0:
        logger.info("No keys to analyze")
        return stats

    entropy_score = stats["uniqueness"]
    if entropy_score > 0.95:
        assessment = "EXCELLENT (high specificity, low false positive risk)"
    elif entropy_score > 0.85:
        assessment = "GOOD"
    elif entropy_score > 0.70:
        assessment = "MODERATE (consider a wider target zone)"
    else:
        assessment = "LOW (too many collisions, adjust parameters)"
    stats["assessment"] = assessment.split()[0]

    logger.info(f"Keys: {total} total, {unique} unique, {len(duplicates)} collisions")
    logger.info(f"  Uniqueness: {entropy_score * 100:.1f}% → {assessment}")

    return stats


def fingerprint_signal(signal, config=None):
    """
    Complete pipeline: Signal → Spectrogram → Constellation → Peak pairs

    This is what you'd call to fingerprint a song for the index, or a
    query clip before matching.

    Args:
        signal: 1-D integer signal
        config: FingerprintConfig

    Returns:
        pairs: List of PeakPair
        metadata: Dict with additional info
    """
    config = config or FingerprintConfig()

    constellation, spec = create_constellation_map(signal, config)
    pairs = generate_pairs(constellation, config)

    num_chunks = spec.shape[0]
    metadata = {
        "num_chunks": num_chunks,
        "num_peaks": len(constellation),
        "num_pairs": len(pairs),
        "duration": len(signal) / config.sample_rate,
        "pairs_per_peak": len(pairs) / len(constellation) if len(constellation) else 0.0,
    }

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            f"✓ Fingerprinted {metadata['duration']:.2f}s: "
            f"{num_chunks} chunks, {metadata['num_peaks']} peaks, "
            f"{metadata['num_pairs']} pairs"
        )

    return pairs, metadata
