"""Shared data models."""

from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt

from sweepmeter.constants import SWEEP_DURATION, SWEEP_F0, SWEEP_F1
from sweepmeter.errors import InvalidSweep


@dataclass(frozen=True)
class SweepSpec:
    """Exponential sweep from f0 to f1 Hz lasting duration seconds."""

    duration: float
    f0: float
    f1: float

    def __post_init__(self):
        if not self.duration > 0:
            raise InvalidSweep(f"Sweep duration must be positive, got {self.duration}")
        if not 0 < self.f0 < self.f1:
            raise InvalidSweep(f"Sweep needs 0 < f0 < f1, got f0={self.f0}, f1={self.f1}")

    @classmethod
    def default(cls) -> "SweepSpec":
        return cls(duration=SWEEP_DURATION, f0=SWEEP_F0, f1=SWEEP_F1)


@dataclass(frozen=True)
class PCMBuffer:
    """Mono capture at a known sample rate. Samples are copied and frozen on construction."""

    sample_rate: int
    samples: npt.NDArray[np.float64]

    def __post_init__(self):
        if int(self.sample_rate) != self.sample_rate or self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be a positive integer, got {self.sample_rate}")
        samples = np.array(self.samples, dtype=np.float64).reshape(-1)
        samples.setflags(write=False)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))
        object.__setattr__(self, "samples", samples)

    @classmethod
    def from_channels(cls, sample_rate: int, channel_samples: npt.ArrayLike) -> "PCMBuffer":
        """Build a buffer from a (frames, channels) capture, keeping channel 0 only"""
        channel_samples = np.asarray(channel_samples)
        if channel_samples.ndim == 2:
            channel_samples = channel_samples[:, 0]
        return cls(sample_rate, channel_samples)

    def __len__(self) -> int:
        return self.samples.size

    @property
    def duration(self) -> float:
        return self.samples.size / self.sample_rate


@dataclass(frozen=True)
class ResponsePoint:
    frequency: float
    level_db: float


@dataclass(frozen=True)
class ResponseCurve:
    """Peak and RMS envelopes, index-aligned: point i of both shares one time bin."""

    peak: tuple[ResponsePoint, ...] = field(default_factory=tuple)
    rms: tuple[ResponsePoint, ...] = field(default_factory=tuple)

    def __post_init__(self):
        assert len(self.peak) == len(self.rms), f"Curves differ in length: {len(self.peak)} != {len(self.rms)}"

    @classmethod
    def empty(cls) -> "ResponseCurve":
        return cls((), ())

    def __len__(self) -> int:
        return len(self.peak)

    def frequencies(self) -> npt.NDArray[np.float64]:
        return np.array([point.frequency for point in self.peak], dtype=np.float64)

    def peak_db(self) -> npt.NDArray[np.float64]:
        return np.array([point.level_db for point in self.peak], dtype=np.float64)

    def rms_db(self) -> npt.NDArray[np.float64]:
        return np.array([point.level_db for point in self.rms], dtype=np.float64)
