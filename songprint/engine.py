from .audio_utils import load_audio
from .config import FingerprintConfig
from .database import SongIndex, index_signal, index_signals
from .matcher import identify_signal
from .logging_config import setup_logger

logger = setup_logger(__name__)


class FingerprintEngine:
    """
    Index service tying one configuration to one SongIndex.

    Indexing and matching always use the same configuration, so the keys of
    a query line up with the keys in the index. The underlying SongIndex is
    append-only and safe to query while other songs are being added
    (see SongIndex for the guarantees).

    Example:
        engine = FingerprintEngine(FingerprintConfig(fan_out=5))
        engine.add_song(reference_signal, song_id="track-1")
        matches = engine.identify(query_signal)
    """

    def __init__(self, config=None, index=None):
        self._config = config or FingerprintConfig()
        self._index = index if index is not None else SongIndex()

    @property
    def config(self):
        return self._config

    @property
    def index(self):
        return self._index

    def add_song(self, signal, song_id=None, metadata=None):
        """Fingerprint a reference signal and index it. Returns its song id."""
        return index_signal(self._index, signal, self._config, song_id, metadata)

    def add_songs(self, signals, max_workers=None, use_processes=False):
        """Index many (song_id, signal) items in parallel. Returns the ids."""
        return index_signals(
            self._index,
            signals,
            self._config,
            max_workers=max_workers,
            use_processes=use_processes,
        )

    def add_song_file(self, filepath, song_id=None, metadata=None):
        """Decode an audio file and index it."""
        signal, sr = load_audio(filepath, self._config.sample_rate)
        info = {"filepath": str(filepath)}
        info.update(metadata or {})
        return self.add_song(signal, song_id, info)

    def identify(self, signal):
        """Rank indexed songs against a query signal (list of Match)."""
        return identify_signal(signal, self._index, self._config)

    def identify_file(self, filepath):
        """Decode an audio file and identify it."""
        signal, sr = load_audio(filepath, self._config.sample_rate)
        return self.identify(signal)

    def get_stats(self):
        return self._index.get_stats()

    def __repr__(self):
        return f"FingerprintEngine({len(self._index.song_metadata)} songs)"
