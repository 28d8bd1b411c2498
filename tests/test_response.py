import numpy as np
import pytest

from sweepmeter.chirp import frequency_at, generate_sweep
from sweepmeter.constants import MAX_DB, MIN_DB
from sweepmeter.models import PCMBuffer, ResponseCurve, SweepSpec
from sweepmeter.response import bin_edges, reduce_response

SPEC = SweepSpec(duration=10, f0=20, f1=20000)
FS = 48000


def test_all_zero_buffer_is_min_db():
    buffer = PCMBuffer(FS, np.zeros(480000))
    curve = reduce_response(buffer, SPEC, width=600)
    assert len(curve) == 600
    assert np.all(curve.peak_db() == MIN_DB)
    assert np.all(curve.rms_db() == MIN_DB)


def test_full_scale_buffer_is_max_db():
    buffer = PCMBuffer(FS, np.ones(48000))
    curve = reduce_response(buffer, SPEC, width=100)
    assert len(curve) == 100
    assert np.all(curve.peak_db() == MAX_DB)
    assert np.all(curve.rms_db() == MAX_DB)


def test_alternating_full_scale_is_max_db():
    samples = np.tile([1.0, -1.0], 24000)
    curve = reduce_response(PCMBuffer(FS, samples), SPEC, width=300)
    assert np.all(curve.peak_db() == MAX_DB)
    assert np.all(curve.rms_db() == MAX_DB)


def test_end_to_end_binning():
    spec = SweepSpec.default()
    buffer = PCMBuffer(FS, generate_sweep(spec, FS))
    starts, counts = bin_edges(len(buffer), 600)
    assert counts[0] == 800
    assert starts.size == 600

    curve = reduce_response(buffer, spec, width=600)
    assert len(curve) == 600
    first = curve.peak[0].frequency
    assert first == pytest.approx(20 * 1000 ** (400 / 48000 / 10))
    assert first == pytest.approx(20.12, abs=0.01)
    assert curve.rms[0].frequency == first
    assert np.all(np.diff(curve.frequencies()) > 0)

    # Above 200 Hz each bin spans several periods of the 0.5 amplitude sine
    np.testing.assert_allclose(curve.peak_db()[200:], 20 * np.log10(0.5), atol=0.5)
    np.testing.assert_allclose(curve.rms_db()[200:], 20 * np.log10(0.5 / np.sqrt(2)), atol=0.5)


def test_peak_and_rms_per_bin():
    samples = np.array([0.1, -0.4, 0.2, 0.0, 0.5, -0.5, 0.5, -0.5])
    curve = reduce_response(PCMBuffer(8, samples), SweepSpec(duration=1, f0=100, f1=200), width=2)
    assert len(curve) == 2
    assert curve.peak[0].level_db == pytest.approx(20 * np.log10(0.4), abs=1e-6)
    assert curve.rms[0].level_db == pytest.approx(20 * np.log10(np.sqrt(0.21 / 4)), abs=1e-6)
    assert curve.peak[1].level_db == pytest.approx(20 * np.log10(0.5), abs=1e-6)
    assert curve.rms[1].level_db == pytest.approx(20 * np.log10(0.5), abs=1e-6)
    # Middle samples at index 2 and 6 of an 8 Hz capture
    assert curve.peak[0].frequency == pytest.approx(100 * 2 ** 0.25)
    assert curve.peak[1].frequency == pytest.approx(100 * 2 ** 0.75)


def test_short_last_bin_kept():
    starts, counts = bin_edges(10, 3)
    np.testing.assert_array_equal(starts, [0, 3, 6, 9])
    np.testing.assert_array_equal(counts, [3, 3, 3, 1])

    curve = reduce_response(PCMBuffer(10, np.full(10, 0.1)), SweepSpec(duration=1, f0=10, f1=20), width=3)
    assert len(curve) == 4
    np.testing.assert_allclose(curve.rms_db(), -20.0, atol=1e-6)


def test_samples_after_sweep_map_to_end_frequency():
    spec = SweepSpec(duration=1, f0=100, f1=1000)
    buffer = PCMBuffer(1000, np.full(1500, 0.25))
    curve = reduce_response(buffer, spec, width=15)
    frequencies = curve.frequencies()
    assert len(curve) == 15
    assert np.all(frequencies <= spec.f1)
    assert np.all(frequencies >= spec.f0)
    assert np.all(frequencies[10:] == spec.f1)
    assert np.all(np.diff(frequencies) >= 0)


def test_empty_buffer_gives_empty_curve():
    curve = reduce_response(PCMBuffer(FS, np.zeros(0)), SPEC, width=600)
    assert curve == ResponseCurve.empty()
    assert len(curve) == 0
    assert curve.frequencies().size == 0


@pytest.mark.parametrize("width", (0, -5))
def test_width_clamped_to_one(width):
    curve = reduce_response(PCMBuffer(FS, np.full(4800, 0.5)), SPEC, width=width)
    assert len(curve) == 1
    assert curve.peak[0].frequency == pytest.approx(frequency_at(2400 / FS, SPEC))


def test_fewer_samples_than_width():
    curve = reduce_response(PCMBuffer(FS, np.full(10, 0.5)), SPEC, width=600)
    assert len(curve) == 10


def test_reduce_is_deterministic():
    rng = np.random.default_rng(seed=4)
    buffer = PCMBuffer(FS, rng.uniform(-1, 1, size=123457))
    first = reduce_response(buffer, SPEC, width=577)
    second = reduce_response(buffer, SPEC, width=577)
    assert first == second
    np.testing.assert_array_equal(first.rms_db(), second.rms_db())


def test_buffer_is_read_only():
    samples = np.zeros(16)
    buffer = PCMBuffer(FS, samples)
    samples[0] = 1.0
    assert buffer.samples[0] == 0.0
    with pytest.raises(ValueError):
        buffer.samples[0] = 1.0


def test_buffer_takes_first_channel():
    stereo = np.column_stack((np.full(8, 0.5), np.full(8, -1.0)))
    buffer = PCMBuffer.from_channels(8000, stereo)
    np.testing.assert_array_equal(buffer.samples, np.full(8, 0.5))
    assert buffer.duration == pytest.approx(0.001)
