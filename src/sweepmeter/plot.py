import matplotlib.pyplot as plt
from matplotlib.ticker import FixedLocator, FuncFormatter, NullLocator

from sweepmeter.constants import DEFAULT_PLOT_WIDTH, FREQUENCY_TICKS, MAX_DB, MIN_DB, PLOT_F_MAX, PLOT_F_MIN
from sweepmeter.models import ResponseCurve

MAX_LABEL = "Max Value (dB)"
RMS_LABEL = "RMS Value (dB)"
MAX_COLOR = (239 / 255, 68 / 255, 68 / 255)
RMS_COLOR = (59 / 255, 130 / 255, 246 / 255)


def format_frequency_tick(value: float, position=None) -> str:
    """Label for a frequency axis tick, blank unless value is one of FREQUENCY_TICKS (1% tolerance)"""
    tolerance = 0.01
    if not any(abs(value - tick) < tolerance * tick for tick in FREQUENCY_TICKS):
        return ""
    if value >= 1000:
        return f"{value / 1000:g}k"
    return f"{value:g}"


def format_point(label: str, frequency: float, level_db: float) -> str:
    return f"{label}: {frequency:.1f} Hz, {level_db:.1f} dB"


def plot_width(ax=None) -> int:
    """Horizontal size of the plot area in pixels, one response point per pixel"""
    if ax is None:
        fig, ax = plt.subplots(figsize=(9, 5))
        fig.tight_layout()
        width = ax.get_window_extent().width
        plt.close(fig)
    else:
        width = ax.get_window_extent().width
    return max(1, int(width)) if width else DEFAULT_PLOT_WIDTH


def plot_response(curve: ResponseCurve, ax=None, title: str | None = None):
    """Scatter the peak and RMS envelopes on a log frequency axis, 20 Hz to 20 kHz, -100 to 0 dB."""
    if ax is None:
        fig, ax = plt.subplots(figsize=(9, 5))

    frequencies = curve.frequencies()
    ax.scatter(frequencies, curve.peak_db(), s=1, color=MAX_COLOR, alpha=0.5, label=MAX_LABEL)
    ax.scatter(frequencies, curve.rms_db(), s=1, color=RMS_COLOR, alpha=0.5, label=RMS_LABEL)

    ax.set_xscale("log")
    ax.set_xlim(PLOT_F_MIN, PLOT_F_MAX)
    ax.set_ylim(MIN_DB, MAX_DB)
    ax.xaxis.set_major_locator(FixedLocator(FREQUENCY_TICKS))
    ax.xaxis.set_minor_locator(NullLocator())
    ax.xaxis.set_major_formatter(FuncFormatter(format_frequency_tick))
    ax.set_xlabel("Frequency (Hz)")
    ax.set_ylabel("Magnitude (dB)")
    ax.grid(True, which="both", color=(200 / 255, 200 / 255, 200 / 255), alpha=0.2)
    ax.legend(loc="upper center", bbox_to_anchor=(0.5, 1.12), ncol=2, fontsize=10, markerscale=6)
    if title:
        ax.set_title(title, pad=30)
    return ax


def save_plot(curve: ResponseCurve, file_path, title: str | None = None) -> None:
    fig, ax = plt.subplots(figsize=(9, 5))
    plot_response(curve, ax, title)
    fig.tight_layout()
    fig.savefig(file_path)
    plt.close(fig)
