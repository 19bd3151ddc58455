"""Tests for songprint.database: fragments, the shared index, parallel indexing."""

from __future__ import annotations

import logging
import threading

import numpy as np
import pytest

from songprint.constellation import Peak
from songprint.database import Posting, SongIndex, build_fragment, index_signal, index_signals
from songprint.fingerprint import FingerprintKey, PeakPair, fingerprint_signal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

KEY = FingerprintKey(10, 20, 2)


def _pair(anchor_time: int, anchor_freq: int = 10, target_freq: int = 20, dt: int = 2) -> PeakPair:
    return PeakPair(Peak(5, anchor_freq, anchor_time), Peak(3, target_freq, anchor_time + dt))


def _is_sorted(postings) -> bool:
    times = [p.anchor_time for p in postings]
    return times == sorted(times)


# ---------------------------------------------------------------------------
# Fragments
# ---------------------------------------------------------------------------

class TestBuildFragment:
    """One song's key → postings map."""

    def test_groups_and_sorts_postings(self) -> None:
        fragment = build_fragment([_pair(9), _pair(3), _pair(5, anchor_freq=11)], "song")

        assert fragment[KEY] == (Posting(3, "song"), Posting(9, "song"))
        assert fragment[FingerprintKey(11, 20, 2)] == (Posting(5, "song"),)

    def test_empty(self) -> None:
        assert build_fragment([], "song") == {}


# ---------------------------------------------------------------------------
# SongIndex
# ---------------------------------------------------------------------------

class TestSongIndex:
    """Append-only, sorted posting lists."""

    def test_lookup_miss_is_empty(self) -> None:
        assert SongIndex().lookup(KEY) == ()

    def test_postings_stay_sorted_across_songs(self) -> None:
        index = SongIndex()
        index.add_song([_pair(5), _pair(12)], song_id="x")
        index.add_song([_pair(2), _pair(8)], song_id="y")

        assert index.lookup(KEY) == (
            Posting(2, "y"),
            Posting(5, "x"),
            Posting(8, "y"),
            Posting(12, "x"),
        )

    def test_equal_anchor_times_keep_insertion_order(self) -> None:
        index = SongIndex()
        index.add_song([_pair(4)], song_id="first")
        index.add_song([_pair(4)], song_id="second")
        assert [p.song_id for p in index.lookup(KEY)] == ["first", "second"]

    def test_auto_assigned_ids(self) -> None:
        index = SongIndex()
        assert index.add_song([_pair(1)]) == 1
        assert index.add_song([_pair(1)]) == 2
        assert index.add_song([_pair(1)], song_id=3) == 3
        assert index.add_song([_pair(1)]) == 4

    def test_metadata_and_stats(self) -> None:
        index = SongIndex()
        index.add_song([_pair(1), _pair(2), _pair(3, anchor_freq=11)], song_id="a", metadata={"title": "Alpha"})
        index.add_song([_pair(7)], song_id="b")

        info = index.get_song_info("a")
        assert info["title"] == "Alpha"
        assert info["num_pairs"] == 3
        assert "indexed_at" in info
        assert index.get_song_info("missing") is None
        assert {s["song_id"] for s in index.get_all_songs()} == {"a", "b"}

        stats = index.get_stats()
        assert stats["num_songs"] == 2
        assert stats["unique_keys"] == 2
        assert stats["total_postings"] == 4
        assert len(index) == 2
        assert KEY in index

        index.print_stats()

    def test_readding_a_song_appends_and_warns(self, caplog) -> None:
        index = SongIndex()
        index.add_song([_pair(1)], song_id="a")

        with caplog.at_level(logging.WARNING):
            index.add_song([_pair(2)], song_id="a")

        assert "already indexed" in caplog.text
        assert len(index.lookup(KEY)) == 2
        assert index.get_song_info("a")["num_pairs"] == 2

    def test_empty_song_adds_no_postings(self, config) -> None:
        index = SongIndex()
        index_signal(index, np.zeros(0, dtype=np.int64), config, song_id="silence")
        assert len(index) == 0
        assert index.get_stats()["total_postings"] == 0

    def test_reserved_ids_are_not_handed_out_twice(self) -> None:
        index = SongIndex()
        first = index.reserve_song_id()
        second = index.reserve_song_id(exclude={3})
        third = index.reserve_song_id(exclude={3})

        assert (first, second, third) == (1, 2, 4)
        assert index.is_reserved(first)

        index.add_song([_pair(1)], song_id=first)
        assert not index.is_reserved(first)

    def test_concurrent_writers_keep_every_pair(self) -> None:
        index = SongIndex()
        barrier = threading.Barrier(8)

        def writer(offset: int) -> None:
            pairs = [_pair(offset * 100 + t) for t in range(25)]
            barrier.wait()
            index.add_song(pairs, song_id="shared")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert index.get_song_info("shared")["num_pairs"] == 8 * 25
        assert len(index.lookup(KEY)) == 8 * 25
        assert _is_sorted(index.lookup(KEY))

    def test_readers_only_see_sorted_lists(self) -> None:
        index = SongIndex()
        rng = np.random.default_rng(3)
        stop = threading.Event()
        unsorted = []

        def reader() -> None:
            while not stop.is_set():
                postings = index.lookup(KEY)
                if not _is_sorted(postings):
                    unsorted.append(postings)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for song in range(200):
                times = rng.integers(0, 1000, 20)
                index.add_song([_pair(int(t)) for t in times], song_id=song)
        finally:
            stop.set()
            thread.join()

        assert unsorted == []
        assert len(index.lookup(KEY)) == 200 * 20
        assert _is_sorted(index.lookup(KEY))


# ---------------------------------------------------------------------------
# Indexing signals
# ---------------------------------------------------------------------------

class TestIndexSignals:
    """Whole-signal indexing, sequential and parallel."""

    def test_determinism(self, songs, config) -> None:
        first, second = SongIndex(), SongIndex()
        index_signal(first, songs["A"], config, song_id="A")
        index_signal(second, songs["A"], config, song_id="A")
        assert first.fragment() == second.fragment()

    def test_fragment_matches_pairs(self, songs, config) -> None:
        index = SongIndex()
        index_signal(index, songs["A"], config, song_id="A", metadata={"title": "Song A"})
        pairs, metadata = fingerprint_signal(songs["A"], config)

        assert index.fragment() == build_fragment(pairs, "A")
        info = index.get_song_info("A")
        assert info["title"] == "Song A"
        assert info["num_pairs"] == len(pairs)
        assert info["num_peaks"] == metadata["num_peaks"]

    def test_parallel_threads_equal_sequential(self, songs, config) -> None:
        sequential = SongIndex()
        for song_id, signal in songs.items():
            index_signal(sequential, signal, config, song_id=song_id)

        parallel = SongIndex()
        ids = index_signals(parallel, songs, config, max_workers=3)

        assert ids == list(songs)
        assert parallel.fragment() == sequential.fragment()
        assert all(_is_sorted(postings) for postings in parallel.fragment().values())

    def test_parallel_processes_equal_sequential(self, songs, config) -> None:
        sequential = SongIndex()
        for song_id, signal in songs.items():
            index_signal(sequential, signal, config, song_id=song_id)

        parallel = SongIndex()
        index_signals(parallel, list(songs.items()), config, max_workers=2, use_processes=True)

        assert parallel.fragment() == sequential.fragment()

    def test_missing_ids_are_assigned(self, songs, config) -> None:
        index = SongIndex()
        ids = index_signals(index, [(None, songs["A"]), (None, songs["B"])], config)
        assert ids == [1, 2]

    def test_assigned_ids_avoid_explicit_ids_in_the_batch(self, songs, config) -> None:
        index = SongIndex()
        ids = index_signals(index, [(None, songs["A"]), (1, songs["B"])], config)

        assert ids == [2, 1]
        assert len(set(ids)) == 2
        assert {p.song_id for postings in index.fragment().values() for p in postings} == {1, 2}

    def test_explicit_id_cannot_take_a_pending_reservation(self, songs, config) -> None:
        index = SongIndex()
        pending = index.reserve_song_id()

        with pytest.raises(ValueError, match="reserved"):
            index_signals(index, [(pending, songs["A"])], config)
        assert len(index) == 0

    def test_no_signals(self, config) -> None:
        index = SongIndex()
        assert index_signals(index, {}, config) == []
        assert len(index) == 0
