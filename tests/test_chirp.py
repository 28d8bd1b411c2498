import numpy as np
import pytest

from sweepmeter import chirp
from sweepmeter.errors import InternalOscillatorFailure, InvalidSweep
from sweepmeter.models import SweepSpec

SPECS = (
    SweepSpec(duration=10, f0=20, f1=20000),
    SweepSpec(duration=1.5, f0=100, f1=8000),
    SweepSpec(duration=0.25, f0=440, f1=441),
)


@pytest.mark.parametrize("spec", SPECS)
def test_frequency_at_clamps_outside_sweep(spec: SweepSpec):
    for t in (-5.0, -1e-9, 0.0):
        assert chirp.frequency_at(t, spec) == spec.f0
    for t in (spec.duration, spec.duration + 1e-9, spec.duration * 3):
        assert chirp.frequency_at(t, spec) == spec.f1


@pytest.mark.parametrize("spec", SPECS)
def test_frequency_at_strictly_increasing(spec: SweepSpec):
    times = np.linspace(0, spec.duration, 1001)[1:-1]
    frequencies = chirp.frequency_at(times, spec)
    assert np.all(np.diff(frequencies) > 0)
    assert np.all((frequencies > spec.f0) & (frequencies < spec.f1))


def test_frequency_at_is_exponential():
    spec = SweepSpec(duration=10, f0=20, f1=20000)
    # Halfway through a 3 decade sweep is the geometric mean
    assert chirp.frequency_at(5.0, spec) == pytest.approx(np.sqrt(20 * 20000))
    assert chirp.frequency_at(10 / 3, spec) == pytest.approx(200)
    assert isinstance(chirp.frequency_at(1.0, spec), float)


@pytest.mark.parametrize(
    "duration, f0, f1",
    ((10, 0, 20000), (10, -20, 20000), (10, 20000, 20), (10, 100, 100), (0, 20, 20000), (-1, 20, 20000)),
)
def test_invalid_sweep_rejected(duration, f0, f1):
    with pytest.raises(InvalidSweep):
        SweepSpec(duration=duration, f0=f0, f1=f1)


def test_generate_sweep_shape_and_amplitude():
    spec = SweepSpec(duration=0.5, f0=100, f1=4000)
    sweep = chirp.generate_sweep(spec, fs=48000, amplitude=0.5)
    assert sweep.dtype == np.float32
    assert sweep.size == 24000
    assert sweep[0] == pytest.approx(0.0, abs=1e-6)
    assert np.max(np.abs(sweep)) == pytest.approx(0.5, abs=1e-3)


def test_generate_sweep_follows_frequency_at():
    spec = SweepSpec(duration=1.0, f0=100, f1=5000)
    fs = 48000
    sweep = chirp.generate_sweep(spec, fs=fs, amplitude=1.0)
    measured = chirp.instantaneous_frequency(sweep.astype(np.float64), fs)
    times = (np.arange(measured.size) + 0.5) / fs
    expected = chirp.frequency_at(times, spec)

    # Analytic signal is unreliable near the ends of the buffer
    middle = slice(int(0.1 * fs), int(0.9 * fs))
    np.testing.assert_allclose(measured[middle], expected[middle], rtol=0.01)


def test_generate_sweep_rejects_non_positive_frequencies():
    spec = SweepSpec(duration=1.0, f0=100, f1=5000)
    object.__setattr__(spec, "f0", 0.0)
    with pytest.raises(InternalOscillatorFailure):
        chirp.generate_sweep(spec)


def test_oscillator_stops_after_duration():
    spec = SweepSpec(duration=0.1, f0=100, f1=1000)
    oscillator = chirp.Oscillator(spec, fs=8000)
    assert oscillator.stop_time is None
    assert not np.any(oscillator.next_block(256))  # silent until started

    oscillator.start(12.0)
    assert oscillator.stop_time == pytest.approx(12.1)
    blocks = [oscillator.next_block(256) for _ in range(5)]
    played = np.concatenate(blocks)
    np.testing.assert_array_equal(played[:800], oscillator.signal)
    assert not np.any(played[800:])
    assert oscillator.finished


def test_oscillator_cannot_start_twice():
    oscillator = chirp.Oscillator(SweepSpec(duration=0.1, f0=100, f1=1000), fs=8000)
    oscillator.start(0.0)
    with pytest.raises(InternalOscillatorFailure):
        oscillator.start(1.0)
