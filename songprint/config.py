from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ConfigurationError(ValueError):
    """Raised when a fingerprinting option is missing, unknown or out of range."""


class AudioConfig:
    """Configuration parameters for spectrogram and peak extraction"""

    # Signal
    SAMPLE_RATE = 11025

    # Spectrogram parameters
    FFT_WINDOW_SIZE = 1024
    HOP_SIZE = 512

    # Peak detection parameters (radius in bins / chunks)
    PEAK_FREQ_RADIUS = 10
    PEAK_TIME_RADIUS = 10
    PEAKS_PER_CHUNK = 5
    MIN_AMPLITUDE = 1


class HashConfig:
    """Configuration for peak pairing"""

    # Target zone, in time chunks ahead of the anchor
    TARGET_T_MIN = 1
    TARGET_T_MAX = 32

    # Target zone half-height, in frequency bins
    TARGET_F_RADIUS = 100

    # Fan-out: max number of target points per anchor
    FAN_OUT = 10


class MatchConfig:
    """Configuration for matching algorithm"""

    # Confidence scoring
    SCORE_COEFFICIENT = 25.0

    # Matching thresholds
    MIN_MATCHES = 1

    # Result list size
    MAX_MATCHES = 5


class FingerprintConfig(BaseModel):
    """
    Validated set of options for the whole indexing and matching pipeline.

    Defaults come from AudioConfig, HashConfig and MatchConfig. Any option can
    be overridden by keyword; malformed values raise ConfigurationError here so
    that nothing is discovered halfway through a pipeline run.

    Example:
        config = FingerprintConfig(window_size=2048, hop_size=1024, fan_out=5)
    """

    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)

    # Spectrogram
    sample_rate: int = Field(gt=0, default=AudioConfig.SAMPLE_RATE)
    window_size: int = Field(gt=0, default=AudioConfig.FFT_WINDOW_SIZE)
    hop_size: int = Field(gt=0, default=AudioConfig.HOP_SIZE)

    # Peaks
    peak_freq_radius: int = Field(ge=0, default=AudioConfig.PEAK_FREQ_RADIUS)
    peak_time_radius: int = Field(ge=0, default=AudioConfig.PEAK_TIME_RADIUS)
    peaks_per_chunk: int = Field(gt=0, default=AudioConfig.PEAKS_PER_CHUNK)
    min_amplitude: int = Field(ge=0, default=AudioConfig.MIN_AMPLITUDE)

    # Pairing
    target_t_min: int = Field(ge=0, default=HashConfig.TARGET_T_MIN)
    target_t_max: int = Field(ge=0, default=HashConfig.TARGET_T_MAX)
    target_f_radius: int = Field(ge=0, default=HashConfig.TARGET_F_RADIUS)
    fan_out: int = Field(gt=0, default=HashConfig.FAN_OUT)

    # Matching
    score_coefficient: float = Field(gt=0, allow_inf_nan=False, default=MatchConfig.SCORE_COEFFICIENT)
    min_matches: int = Field(gt=0, default=MatchConfig.MIN_MATCHES)
    max_matches: int = Field(gt=0, default=MatchConfig.MAX_MATCHES)

    def __init__(self, **overrides):
        try:
            super().__init__(**overrides)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @model_validator(mode="after")
    def _check_shapes(self):
        if self.window_size % 2:
            raise ValueError(f"window_size must be even, got {self.window_size}")
        if self.target_t_max < self.target_t_min:
            raise ValueError(
                f"target_t_max ({self.target_t_max}) is smaller than "
                f"target_t_min ({self.target_t_min})"
            )
        return self

    def replace(self, **changes):
        """Return a new validated config with some options changed."""
        return FingerprintConfig(**self.model_copy(update=changes).as_dict())

    def as_dict(self):
        return self.model_dump()

    @property
    def chunk_duration(self):
        """Seconds between two consecutive time chunks"""
        return self.hop_size / self.sample_rate
