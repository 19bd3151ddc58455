import math
import time
from collections import Counter, defaultdict
from typing import NamedTuple

from .config import FingerprintConfig
from .fingerprint import fingerprint_signal
from .logging_config import setup_logger

# setting up logger
logger = setup_logger(__name__)

# Largest float below 100, tanh() rounds to exactly 1.0 for large inputs
MAX_SCORE = math.nextafter(100.0, 0.0)


class Match(NamedTuple):
    """A candidate song and its confidence score in (0, 100)."""

    song_id: object
    score: float


def match_pairs(query_pairs, index):
    """
    Look up every query pair and collect time offsets per candidate song.

    The key insight: if the query is a time-shifted excerpt of a song, then
        indexed_time = query_time + offset (constant)
    so true matches pile up on one offset while collisions scatter.

    Args:
        query_pairs: List of PeakPair from the query clip
        index: SongIndex (read-only here)

    Returns:
        song_offsets: Dict mapping song_id to a Counter of offsets (>= 0)
    """
    song_offsets = defaultdict(Counter)

    for pair in query_pairs:
        query_time = pair.anchor.time_chunk
        for indexed_time, song_id in index.lookup(pair.key):
            offset = indexed_time - query_time
            # the query cannot start before the song does
            if offset >= 0:
                song_offsets[song_id][offset] += 1

    return dict(song_offsets)


def find_peak_offset(offsets):
    """
    Find the most common offset (the mode of the offset histogram).
    This detects the "diagonal line" in the time-vs-time scatterplot.

    Args:
        offsets: Counter (or any iterable) of offset values

    Returns:
        peak_offset: Most common offset value, smallest one on ties
        peak_count: Number of matches at this offset
    """
    histogram = offsets if isinstance(offsets, Counter) else Counter(offsets)
    if not histogram:
        return None, 0

    peak_offset, peak_count = min(histogram.items(), key=lambda item: (-item[1], item[0]))
    return peak_offset, peak_count


def confidence_score(mode_count, score_coefficient):
    """
    Map the height of the offset-histogram peak to a score in (0, 100).

    Args:
        mode_count: Number of pairs agreeing on the best offset (>= 1)
        score_coefficient: Sensitivity, larger means slower saturation

    Returns:
        score: tanh(mode_count / score_coefficient) * 100
    """
    return min(math.tanh(mode_count / score_coefficient) * 100.0, MAX_SCORE)


def confidence_label(mode_count, min_matches=None):
    """
    Human-readable confidence level for a histogram peak height.

    Args:
        mode_count: Number of pairs agreeing on the best offset
        min_matches: Threshold below which the level is NONE

    Returns:
        confidence: NONE, LOW, MEDIUM, HIGH or VERY HIGH
    """
    if min_matches is None:
        min_matches = FingerprintConfig().min_matches

    if mode_count >= 50:
        return "VERY HIGH"
    elif mode_count >= 20:
        return "HIGH"
    elif mode_count >= 10:
        return "MEDIUM"
    elif mode_count >= min_matches:
        return "LOW"
    return "NONE"


def score_offsets(song_offsets, config=None):
    """
    Score every candidate song from its offset histogram.

    Args:
        song_offsets: Dict from match_pairs()
        config: FingerprintConfig

    Returns:
        song_confidence: Dict mapping song_id to a score in (0, 100)
    """
    config = config or FingerprintConfig()

    song_confidence = {}
    for song_id, offsets in song_offsets.items():
        peak_offset, peak_count = find_peak_offset(offsets)

        # Only keep if meets minimum threshold
        if peak_count < max(1, config.min_matches):
            continue

        song_confidence[song_id] = confidence_score(peak_count, config.score_coefficient)
        logger.debug(
            f"  Song {song_id!r}: offset={peak_offset}, aligned={peak_count}, "
            f"score={song_confidence[song_id]:.2f}"
        )

    return song_confidence


def rank_matches(song_confidence, config=None):
    """
    Sort candidates by score (best first) and keep the top `max_matches`.

    Args:
        song_confidence: Dict from score_offsets()
        config: FingerprintConfig

    Returns:
        matches: List of Match, descending by score, ties by song id
    """
    config = config or FingerprintConfig()

    ranked = sorted(
        song_confidence.items(), key=lambda item: (-item[1], str(item[0]))
    )
    return [Match(song_id, score) for song_id, score in ranked[: config.max_matches]]


def match_query(query_pairs, index, config=None):
    """
    Match a query against the index.

    This is the main search function that identifies which song
    a query clip came from.

    Args:
        query_pairs: List of PeakPair from the query
        index: SongIndex
        config: FingerprintConfig

    Returns:
        matches: List of Match, sorted by score (best first); empty when
            nothing matches
    """
    config = config or FingerprintConfig()
    start_time = time.time()

    song_offsets = match_pairs(query_pairs, index)
    logger.debug(
        f"Query pairs: {len(query_pairs)}, candidates: {len(song_offsets)} song(s)"
    )

    song_confidence = score_offsets(song_offsets, config)
    matches = rank_matches(song_confidence, config)

    query_time = time.time() - start_time

    if matches:
        best = matches[0]
        logger.info(
            f"✓ BEST MATCH: {best.song_id!r} (score {best.score:.1f}) "
            f"among {len(song_confidence)} candidate(s) in {query_time * 1000:.1f} ms"
        )
    else:
        logger.info(f"✗ NO MATCH FOUND ({query_time * 1000:.1f} ms)")

    return matches


def identify_signal(signal, index, config=None):
    """
    Complete identification pipeline:
    Signal → Fingerprint → Match → Ranked results

    Args:
        signal: 1-D integer query signal
        index: SongIndex
        config: FingerprintConfig

    Returns:
        matches: List of Match, best first
    """
    config = config or FingerprintConfig()

    query_pairs, metadata = fingerprint_signal(signal, config)
    logger.debug(f"Generated {len(query_pairs)} pairs from query")

    return match_query(query_pairs, index, config)
