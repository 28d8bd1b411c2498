from enum import IntEnum
import pathlib

# Sampling rate
FS = 48000

# Sweep played for every measurement
SWEEP_DURATION = 10.0
SWEEP_F0 = 20.0
SWEEP_F1 = 20000.0
SWEEP_AMPLITUDE = 0.5  # -6 dBFS, leaves headroom for the playback chain

# Display range of the level axis, levels are clamped into it
MIN_DB = -100.0
MAX_DB = 0.0
DB_EPSILON = 1e-9  # -180 dB, keeps log10 finite on silence

# Extra recording time after the oscillator stops, the last input block lags behind
GUARD_INTERVAL = 0.150
MIN_GUARD_INTERVAL = 0.100
assert GUARD_INTERVAL >= MIN_GUARD_INTERVAL, "Guard interval too short, sweep tail would be truncated"

# Horizontal resolution used when the plot surface reports no width
DEFAULT_PLOT_WIDTH = 600

# Labelled ticks on the logarithmic frequency axis
FREQUENCY_TICKS = (20, 30, 60, 100, 200, 300, 600, 1000, 2000, 3000, 6000, 10000, 20000)
PLOT_F_MIN = 20.0
PLOT_F_MAX = 20000.0

# Raw capture request, rejected by some devices (see session retry)
RAW_INPUT_SETTINGS = {
    "samplerate": FS,
    "channels": 1,
    "dtype": "float32",
    "latency": "low",
}
# Relaxed request after a rejection: let the device pick rate and latency
RELAXED_INPUT_SETTINGS = {
    "channels": 1,
    "dtype": "float32",
}

ROOT_DIR = pathlib.Path(__file__).parent.resolve() / "../.."
RECORDING_DIRECTORY = ROOT_DIR / "files"


class ExitCode(IntEnum):
    OK = 0
    USAGE = 2
    MEASUREMENT_FAILED = 10
    ALREADY_RUNNING = 11
