import heapq
import threading
import time
from collections import defaultdict
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from operator import attrgetter
from typing import NamedTuple

from .config import FingerprintConfig
from .fingerprint import fingerprint_signal
from .logging_config import setup_logger

# setting up logger
logger = setup_logger(__name__)

_anchor_time = attrgetter("anchor_time")


class Posting(NamedTuple):
    """Occurrence of a fingerprint key inside an indexed song."""

    anchor_time: int
    song_id: object


def build_fragment(pairs, song_id):
    """
    Build the index fragment of a single song.

    Args:
        pairs: List of PeakPair for the song
        song_id: Identifier stored in every posting

    Returns:
        fragment: Dict mapping FingerprintKey to a tuple of Posting sorted by
            anchor time
    """
    fragment = defaultdict(list)
    for pair in pairs:
        fragment[pair.key].append(Posting(pair.anchor.time_chunk, song_id))

    # stable, so equal anchor times keep pair order
    return {
        key: tuple(sorted(postings, key=_anchor_time))
        for key, postings in fragment.items()
    }


class SongIndex:
    """
    In-memory fingerprint index shared by indexing and matching.

    Structure:
        hash_table: {FingerprintKey: (Posting(anchor_time, song_id), ...)}
        song_metadata: {song_id: {num_pairs, indexed_at, ...}}

    Consistency: there is a single writer at a time. Every change (posting
    merge plus song metadata) happens under one lock. Posting lists are
    immutable tuples; a merge builds the new sorted tuple first and then
    swaps it into the table, so a concurrent reader sees either the old or
    the new list for a key, never a partial one, and every list it sees is
    sorted by anchor time. The index is append-only.
    """

    def __init__(self):
        """Initialize empty index"""
        self.hash_table = {}
        self.song_metadata = {}
        self.next_song_id = 1
        # ids handed out by reserve_song_id() whose song is not indexed yet
        self._reserved = set()
        self._write_lock = threading.Lock()

    def reserve_song_id(self, exclude=()):
        """
        Return a fresh integer song id.

        The id is neither indexed nor reserved, and is not in `exclude`
        (ids the caller is about to use explicitly). It stays reserved
        until a song is added under it.
        """
        with self._write_lock:
            while (
                self.next_song_id in self.song_metadata
                or self.next_song_id in self._reserved
                or self.next_song_id in exclude
            ):
                self.next_song_id += 1
            song_id = self.next_song_id
            self.next_song_id += 1
            self._reserved.add(song_id)
            return song_id

    def is_reserved(self, song_id):
        """True if `song_id` was reserved and nothing is indexed under it yet."""
        with self._write_lock:
            return song_id in self._reserved

    def merge(self, fragment):
        """
        Merge a song fragment into the index.

        Args:
            fragment: Dict from build_fragment()

        Returns:
            Number of postings added
        """
        with self._write_lock:
            return self._merge_locked(fragment)

    def _merge_locked(self, fragment):
        added = 0
        for key, postings in fragment.items():
            current = self.hash_table.get(key)
            if current is None:
                merged = tuple(postings)
            else:
                merged = tuple(heapq.merge(current, postings, key=_anchor_time))
            self.hash_table[key] = merged
            added += len(postings)
        return added

    def add_song(self, pairs, song_id=None, metadata=None):
        """
        Add a song to the index.

        Args:
            pairs: List of PeakPair for the song
            song_id: Identifier for the song; assigned automatically if None
            metadata: Optional dict with additional info (title, artist, etc.)

        Returns:
            song_id: Identifier of the indexed song
        """
        if song_id is None:
            song_id = self.reserve_song_id()

        fragment = build_fragment(pairs, song_id)
        return self.add_fragment(fragment, song_id, metadata, num_pairs=len(pairs))

    def add_fragment(self, fragment, song_id, metadata=None, num_pairs=None):
        """
        Merge a prebuilt fragment and record its song metadata.

        Args:
            fragment: Dict from build_fragment()
            song_id: Identifier used in the fragment postings
            metadata: Optional dict with additional info
            num_pairs: Pair count for the metadata (defaults to postings added)

        Returns:
            song_id
        """
        with self._write_lock:
            previous = self.song_metadata.get(song_id)
            if previous is not None:
                logger.warning(f"Song {song_id!r} is already indexed, appending postings")

            added = self._merge_locked(fragment)

            info = dict(metadata or {})
            info.update(
                {
                    "song_id": song_id,
                    "num_pairs": (previous or {}).get("num_pairs", 0)
                    + (added if num_pairs is None else num_pairs),
                    "indexed_at": time.time(),
                }
            )
            self.song_metadata[song_id] = info
            self._reserved.discard(song_id)

        logger.info(f"✓ Added song {song_id!r}: {added} postings")

        return song_id

    def lookup(self, key):
        """
        Look up a fingerprint key.

        Args:
            key: FingerprintKey

        Returns:
            Tuple of Posting sorted by anchor time, empty if not found
        """
        return self.hash_table.get(key, ())

    def fragment(self):
        """Snapshot of the current contents as a plain dict."""
        return dict(self.hash_table)

    def get_song_info(self, song_id):
        """Get metadata for a song by ID"""
        return self.song_metadata.get(song_id)

    def get_all_songs(self):
        """Get list of all songs in the index"""
        return list(self.song_metadata.values())

    def get_stats(self):
        """Get index statistics"""
        table = self.fragment()
        total_postings = sum(len(v) for v in table.values())
        unique_keys = len(table)

        return {
            "num_songs": len(self.song_metadata),
            "unique_keys": unique_keys,
            "total_postings": total_postings,
            "avg_postings_per_song": total_postings / max(1, len(self.song_metadata)),
            "avg_collisions": total_postings / max(1, unique_keys),
        }

    def print_stats(self):
        """Log index statistics"""
        stats = self.get_stats()

        logger.info(f"{'='*60}")
        logger.info(f"INDEX STATISTICS")
        logger.info(f"{'='*60}")
        logger.info(f"Songs in index:        {stats['num_songs']}")
        logger.info(f"Unique keys:           {stats['unique_keys']:,}")
        logger.info(f"Total postings:        {stats['total_postings']:,}")
        logger.info(f"Avg postings per song: {stats['avg_postings_per_song']:.1f}")
        logger.info(f"Avg collision rate:    {stats['avg_collisions']:.2f} postings/key")
        logger.info(f"{'='*60}")

        for song_id, info in list(self.song_metadata.items()):
            title = str(info.get("title", song_id))
            title = title[:28] + ".." if len(title) > 30 else title
            logger.info(f"{str(song_id):<8} {title:<30} {info['num_pairs']:<10}")

    def __len__(self):
        return len(self.hash_table)

    def __contains__(self, key):
        return key in self.hash_table


def _fingerprint_job(job):
    song_id, signal, config = job
    pairs, metadata = fingerprint_signal(signal, config)
    return song_id, build_fragment(pairs, song_id), metadata


def index_signal(index, signal, config=None, song_id=None, metadata=None):
    """
    Fingerprint one signal and add it to the index.

    Args:
        index: SongIndex
        signal: 1-D integer signal
        config: FingerprintConfig
        song_id: Identifier for the song; assigned by the index if None
        metadata: Optional dict with title, artist, etc.

    Returns:
        song_id: ID assigned to this song
    """
    config = config or FingerprintConfig()
    pairs, fp_metadata = fingerprint_signal(signal, config)

    info = dict(metadata or {})
    info.setdefault("duration", fp_metadata["duration"])
    info.setdefault("num_peaks", fp_metadata["num_peaks"])

    return index.add_song(pairs, song_id=song_id, metadata=info)


def index_signals(index, signals, config=None, max_workers=None, use_processes=False):
    """
    Index many songs, fingerprinting them in parallel.

    Each song's signal → pairs → fragment work runs in a worker; the
    fragments are then merged by the calling thread in input order, so the
    resulting index is the same as indexing the songs one by one.

    Args:
        index: SongIndex
        signals: Mapping or iterable of (song_id, signal) items
        config: FingerprintConfig
        max_workers: Pool size (executor default if None)
        use_processes: Use a process pool instead of threads

    Returns:
        List of indexed song ids, in input order

    Raises:
        ValueError: An explicit song id is reserved for another song that
            is not indexed yet
    """
    config = config or FingerprintConfig()
    items = list(signals.items() if hasattr(signals, "items") else signals)
    if not items:
        return []

    explicit_ids = {song_id for song_id, _ in items if song_id is not None}
    for song_id in explicit_ids:
        if index.is_reserved(song_id):
            raise ValueError(f"Song id {song_id!r} is reserved for another song")

    logger.info(f"{'='*60}")
    logger.info(f"INDEXING {len(items)} SONGS")
    logger.info(f"{'='*60}")

    start_time = time.time()
    jobs = [
        (index.reserve_song_id(explicit_ids) if song_id is None else song_id, signal, config)
        for song_id, signal in items
    ]

    executor_cls = ProcessPoolExecutor if use_processes else ThreadPoolExecutor
    with executor_cls(max_workers=max_workers) as executor:
        results = list(executor.map(_fingerprint_job, jobs))

    indexed_ids = []
    for song_id, fragment, fp_metadata in results:
        metadata = {
            "duration": fp_metadata["duration"],
            "num_peaks": fp_metadata["num_peaks"],
        }
        index.add_fragment(fragment, song_id, metadata, num_pairs=fp_metadata["num_pairs"])
        indexed_ids.append(song_id)

    elapsed = time.time() - start_time
    logger.info(f"✓ INDEXING COMPLETE")
    logger.info(f"  Successfully indexed: {len(indexed_ids)}/{len(items)} songs")
    logger.info(f"  Time taken: {elapsed:.1f} seconds")

    return indexed_ids
