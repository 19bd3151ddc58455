import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Rectangle

from .config import FingerprintConfig
from .matcher import find_peak_offset
from .logging_config import setup_logger

logger = setup_logger(__name__)


def _finish(fig, save_path, show):
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        logger.info(f"✓ Visualization saved to: {save_path}")

    # the returned figure is detached from pyplot unless it is being shown
    if show:
        plt.show()
    else:
        plt.close(fig)

    return fig


def visualize_constellation_map(spec, constellation, config=None, save_path=None, show=False):
    """
    Visualize the constellation map (peaks on spectrogram).
    This should look like a "star field".

    Args:
        spec: Spectrogram (time chunks × frequency bins)
        constellation: ConstellationMap built from spec
        config: FingerprintConfig, for axis units
        save_path: Optional path to save figure
        show: Call plt.show() when done

    Returns:
        fig: matplotlib Figure, closed in pyplot unless `show` is set
            (it can still be saved with fig.savefig)
    """
    config = config or FingerprintConfig()
    spec = np.asarray(spec)

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(14, 8))

    # Log magnitude for display only
    log_spec = 20 * np.log10(spec.T + 1.0) if spec.size else np.zeros((1, 1))
    extent = [0, max(spec.shape[0], 1) * config.chunk_duration, 0, max(spec.shape[1], 1)]

    im = ax1.imshow(log_spec, origin="lower", aspect="auto", extent=extent, cmap="viridis")
    ax1.set_ylabel("Frequency bin")
    ax1.set_xlabel("Time (s)")
    ax1.set_title("Spectrogram (Log Scale)")
    fig.colorbar(im, ax=ax1, label="Magnitude (dB)")

    ax2.imshow(log_spec, origin="lower", aspect="auto", extent=extent, cmap="gray", alpha=0.3)

    peaks = list(constellation)
    if peaks:
        peak_times = [p.time_chunk * config.chunk_duration for p in peaks]
        peak_freqs = [p.frequency_bin for p in peaks]
        ax2.scatter(peak_times, peak_freqs, c="red", s=5, alpha=0.8, label=f"{len(peaks)} peaks")
        ax2.legend()

    ax2.set_ylabel("Frequency bin")
    ax2.set_xlabel("Time (s)")
    ax2.set_title('Constellation Map ("Star Field")')

    return _finish(fig, save_path, show)


def visualize_peak_pairs(constellation, pairs, config=None, num_examples=5, save_path=None, show=False):
    """
    Visualize how peak pairs are formed.
    Shows a few anchor points, their target zones and their targets.

    Args:
        constellation: ConstellationMap
        pairs: List of PeakPair generated from it
        config: FingerprintConfig used for pairing
        num_examples: Number of anchor points to highlight
        save_path: Optional path to save figure
        show: Call plt.show() when done

    Returns:
        fig: matplotlib Figure, closed in pyplot unless `show` is set
            (it can still be saved with fig.savefig)
    """
    config = config or FingerprintConfig()

    fig, ax = plt.subplots(figsize=(14, 6))

    peaks = list(constellation)
    ax.scatter(
        [p.time_chunk for p in peaks],
        [p.frequency_bin for p in peaks],
        c="gray", s=20, alpha=0.5, label="All peaks",
    )

    by_anchor = {}
    for pair in pairs:
        by_anchor.setdefault(pair.anchor, []).append(pair.target)

    anchors = list(by_anchor)
    step = max(1, len(anchors) // max(1, num_examples))
    colors = plt.cm.tab10(np.linspace(0, 1, max(1, num_examples)))

    for n, (anchor, color) in enumerate(zip(anchors[::step], colors), 1):
        ax.scatter(
            [anchor.time_chunk], [anchor.frequency_bin],
            c=[color], s=200, marker="*", edgecolors="black", linewidths=1.5,
            label=f"Anchor {n}", zorder=5,
        )

        ax.add_patch(
            Rectangle(
                (anchor.time_chunk + config.target_t_min,
                 anchor.frequency_bin - config.target_f_radius),
                config.target_t_max - config.target_t_min,
                2 * config.target_f_radius,
                linewidth=2, edgecolor=color, facecolor="none", linestyle="--", alpha=0.7,
            )
        )

        for target in by_anchor[anchor]:
            ax.plot(
                [anchor.time_chunk, target.time_chunk],
                [anchor.frequency_bin, target.frequency_bin],
                color=color, alpha=0.3, linewidth=1, zorder=3,
            )

    ax.set_xlabel("Time chunk", fontsize=12)
    ax.set_ylabel("Frequency bin", fontsize=12)
    ax.set_title(
        "Peak Pair Generation\n(Stars = Anchors, Lines = Pairs, Dashed boxes = Target Zones)",
        fontsize=13,
    )
    if peaks:
        ax.legend(loc="upper right", fontsize=9)
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path, show)


def visualize_offset_histogram(song_offsets, song_id, save_path=None, show=False):
    """
    Visualize the offset histogram of one candidate song.
    A true match shows one tall bar; collisions spread out flat.

    Args:
        song_offsets: Dict from match_pairs()
        song_id: Candidate to plot
        save_path: Optional path to save figure
        show: Call plt.show() when done

    Returns:
        fig: matplotlib Figure, closed in pyplot unless `show` is set
            (it can still be saved with fig.savefig)
    """
    offsets = song_offsets.get(song_id, {})
    peak_offset, peak_count = find_peak_offset(offsets)

    fig, ax = plt.subplots(figsize=(10, 5))

    if offsets:
        values = sorted(offsets)
        ax.bar(values, [offsets[v] for v in values], width=1.0, color="steelblue", edgecolor="black")
        ax.axvline(
            peak_offset, color="red", linestyle="--", linewidth=2,
            label=f"Peak at {peak_offset} ({peak_count} pairs)",
        )
        ax.legend()

    ax.set_xlabel("Time offset (indexed chunk - query chunk)", fontsize=11)
    ax.set_ylabel("Number of Matches", fontsize=11)
    ax.set_title(f"Offset Histogram\nSong: {song_id}", fontsize=12)
    ax.grid(True, alpha=0.3, axis="y")

    return _finish(fig, save_path, show)
