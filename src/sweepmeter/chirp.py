import logging

import numpy as np
import numpy.typing as npt
import scipy.signal

from sweepmeter.constants import FS, SWEEP_AMPLITUDE
from sweepmeter.errors import InternalOscillatorFailure
from sweepmeter.models import SweepSpec

logger = logging.getLogger(__name__)


def frequency_at(t, spec: SweepSpec):
    """Instantaneous frequency of the sweep at elapsed time t (seconds).

    Exponential interpolation from spec.f0 to spec.f1, with t clamped to [0, spec.duration].
    Accepts a scalar or an array of times."""
    clamped = np.clip(t, 0.0, spec.duration)
    frequency = spec.f0 * (spec.f1 / spec.f0) ** (clamped / spec.duration)
    # Pin the end points so they compare equal to f0 and f1 exactly
    frequency = np.where(clamped <= 0.0, spec.f0, np.where(clamped >= spec.duration, spec.f1, frequency))
    if np.ndim(frequency) == 0:
        return float(frequency)
    return frequency


def sweep_times(spec: SweepSpec, fs: int = FS) -> npt.NDArray[np.float64]:
    return np.arange(int(round(spec.duration * fs))) / fs


def generate_sweep(spec: SweepSpec, fs: int = FS, amplitude: float = SWEEP_AMPLITUDE) -> npt.NDArray[np.float32]:
    """Synthesize the exponential sine sweep described by spec.

    Instantaneous frequency follows frequency_at exactly, so a capture can be mapped
    back to frequency from sample index alone."""
    # Exponential ramps are undefined through zero, check even though SweepSpec validates
    if not (spec.f0 > 0 and spec.f1 > 0):
        raise InternalOscillatorFailure(f"Sweep frequencies must be positive, got {spec.f0} and {spec.f1}")
    times = sweep_times(spec, fs)
    # phi=-90 turns the cosine chirp into a sine starting at zero phase
    sweep = scipy.signal.chirp(times, f0=spec.f0, t1=spec.duration, f1=spec.f1, method="logarithmic", phi=-90)
    return (amplitude * sweep).astype(np.float32)


def instantaneous_frequency(signal: npt.NDArray[np.float64], fs: int = FS) -> npt.NDArray[np.float64]:
    """Estimate instantaneous frequency from the analytic signal's phase.
    Returns one value per sample interval, len(signal) - 1 values."""
    phase = np.unwrap(np.angle(scipy.signal.hilbert(signal)))
    return np.diff(phase) * fs / (2 * np.pi)


class Oscillator:
    """Sample-synthesized sweep player.

    start(at_time) anchors the sweep to a clock time; the sweep stops at
    at_time + spec.duration because the buffer holds exactly that many samples.
    next_block is called from the output stream callback."""

    def __init__(self, spec: SweepSpec, fs: int = FS, amplitude: float = SWEEP_AMPLITUDE):
        self.spec = spec
        self.fs = fs
        self.signal = generate_sweep(spec, fs, amplitude)
        self.start_time: float | None = None
        self._position = 0

    def start(self, at_time: float) -> None:
        if self.start_time is not None:
            raise InternalOscillatorFailure("Oscillator already started")
        self.start_time = at_time
        self._position = 0
        logger.debug(f"Oscillator started at {at_time:.3f}, stops at {self.stop_time:.3f}")

    @property
    def stop_time(self) -> float | None:
        if self.start_time is None:
            return None
        return self.start_time + self.spec.duration

    @property
    def finished(self) -> bool:
        return self._position >= self.signal.size

    def stop(self) -> None:
        """Silence the oscillator immediately"""
        self._position = self.signal.size

    def next_block(self, frames: int) -> npt.NDArray[np.float32]:
        """Next frames samples of the sweep, zero padded once the sweep has ended"""
        block = np.zeros(frames, dtype=np.float32)
        if self.start_time is None:
            return block
        chunk = self.signal[self._position : self._position + frames]
        block[: chunk.size] = chunk
        self._position += chunk.size
        return block
