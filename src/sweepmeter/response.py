import logging

import numpy as np

from sweepmeter.chirp import frequency_at
from sweepmeter.constants import DEFAULT_PLOT_WIDTH
from sweepmeter.level import to_decibels
from sweepmeter.models import PCMBuffer, ResponseCurve, ResponsePoint, SweepSpec

logger = logging.getLogger(__name__)


def bin_edges(num_samples: int, width: int) -> tuple[np.ndarray, np.ndarray]:
    """Start index and sample count of each bin when num_samples are split for width pixels.

    Bins hold max(1, num_samples // width) samples; the last one may be shorter, never empty."""
    width = max(1, int(width))
    samples_per_bin = max(1, num_samples // width)
    starts = np.arange(0, num_samples, samples_per_bin)
    counts = np.minimum(samples_per_bin, num_samples - starts)
    return starts, counts


def reduce_response(buffer: PCMBuffer, spec: SweepSpec, width: int = DEFAULT_PLOT_WIDTH) -> ResponseCurve:
    """Reduce a sweep capture to peak and RMS level envelopes against sweep frequency.

    Each bin's frequency is taken from the time of its middle sample, trusting that
    sample n was recorded n / sample_rate seconds into the sweep."""
    samples = buffer.samples
    num_samples = samples.size
    logger.info(f"Processing {num_samples} samples, sample rate: {buffer.sample_rate} Hz")
    if num_samples == 0:
        return ResponseCurve.empty()

    starts, counts = bin_edges(num_samples, width)
    logger.debug(f"Width: {max(1, int(width))}px, samples per bin: {counts[0]}")

    # reduceat walks each bin in index order, so sums are reproducible
    peak_values = np.maximum.reduceat(np.abs(samples), starts)
    rms_values = np.sqrt(np.add.reduceat(samples * samples, starts) / counts)

    times = np.clip((starts + counts // 2) / buffer.sample_rate, 0.0, spec.duration)
    frequencies = frequency_at(times, spec)
    peak_db = to_decibels(peak_values)
    rms_db = to_decibels(rms_values)

    in_sweep = (frequencies >= spec.f0) & (frequencies <= spec.f1)
    peak = tuple(ResponsePoint(float(f), float(db)) for f, db in zip(frequencies[in_sweep], peak_db[in_sweep]))
    rms = tuple(ResponsePoint(float(f), float(db)) for f, db in zip(frequencies[in_sweep], rms_db[in_sweep]))

    logger.info(f"Generated {len(peak)} max points and {len(rms)} RMS points")
    return ResponseCurve(peak, rms)
