"""Audio I/O behind the capture session.

A backend acquires the input stream, plays an Oscillator and hands each input
block to the Recorder attached for the current run. SoundDeviceBackend drives
PortAudio through sounddevice; LoopbackBackend routes the oscillator straight
back into the recorder without hardware.
"""

import logging
import threading
import time

import numpy as np
import numpy.typing as npt
import scipy.signal

from sweepmeter.chirp import Oscillator
from sweepmeter.constants import FS
from sweepmeter.errors import (
    ConstraintsUnsupported,
    DeviceNotFound,
    InternalOscillatorFailure,
    MeasurementError,
    PermissionDenied,
)
from sweepmeter.models import PCMBuffer
from sweepmeter.wav import decode_wav, encode_wav, write_wav

logger = logging.getLogger(__name__)

BLOCKSIZE = 1024

# PortAudio error codes, see portaudio.h
PA_INVALID_CHANNEL_COUNT = -9998
PA_INVALID_SAMPLE_RATE = -9997
PA_INVALID_DEVICE = -9996
PA_SAMPLE_FORMAT_NOT_SUPPORTED = -9994
PA_BAD_IO_DEVICE_COMBINATION = -9993
PA_INCOMPATIBLE_HOST_API_SPECIFIC_STREAM_INFO = -9984
PA_DEVICE_UNAVAILABLE = -9985

CONSTRAINT_ERRORS = {
    PA_INVALID_CHANNEL_COUNT,
    PA_INVALID_SAMPLE_RATE,
    PA_SAMPLE_FORMAT_NOT_SUPPORTED,
    PA_BAD_IO_DEVICE_COMBINATION,
    PA_INCOMPATIBLE_HOST_API_SPECIFIC_STREAM_INFO,
}
DEVICE_ERRORS = {PA_INVALID_DEVICE, PA_DEVICE_UNAVAILABLE}


def _sounddevice():
    """Import sounddevice on first use, it loads the PortAudio library at import time"""
    try:
        import sounddevice as sd
    except OSError as err:
        raise DeviceNotFound(f"PortAudio unavailable: {err}") from err
    return sd


def translate_error(err: Exception) -> MeasurementError:
    """Map a sounddevice/OS error onto the measurement error taxonomy"""
    message = str(err)
    code = err.args[1] if len(err.args) > 1 and isinstance(err.args[1], int) else None
    if isinstance(err, PermissionError) or "permission" in message.lower() or "denied" in message.lower():
        return PermissionDenied(message)
    if code in CONSTRAINT_ERRORS:
        return ConstraintsUnsupported(message)
    if code in DEVICE_ERRORS or "no input device" in message.lower():
        return DeviceNotFound(message)
    return MeasurementError(message)


class Recorder:
    """Collects input blocks between start() and stop(), stop() returns them WAV encoded"""

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self._chunks: list[npt.NDArray[np.float32]] = []
        self._lock = threading.Lock()
        self.recording = False

    def start(self) -> None:
        with self._lock:
            self._chunks = []
            self.recording = True

    def write(self, block: npt.NDArray[np.float32]) -> None:
        """Called from the audio thread for every input block"""
        if block.size == 0:
            return
        with self._lock:
            if self.recording:
                self._chunks.append(np.array(block, dtype=np.float32).reshape(-1))

    def stop(self) -> bytes:
        with self._lock:
            self.recording = False
            chunks, self._chunks = self._chunks, []
        samples = np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.float32)
        logger.debug(f"Recorder stopped with {samples.size} samples in {len(chunks)} blocks")
        return encode_wav(samples, self.sample_rate)


class InputHandle:
    """Open capture stream. The stream outlives a run, recorders come and go."""

    def __init__(self, sample_rate: int, settings: dict):
        self.sample_rate = sample_rate
        self.settings = dict(settings)
        self.recorder: Recorder | None = None
        self.closed = False
        self._close_lock = threading.Lock()

    def deliver(self, block: npt.NDArray[np.float32]) -> None:
        recorder = self.recorder
        if recorder is not None:
            recorder.write(block)

    def close(self) -> None:
        """Release the stream once, callers on different threads may race here"""
        with self._close_lock:
            if self.closed:
                return
            self._release()
            self.closed = True

    def _release(self) -> None:
        pass


class OutputHandle:
    def __init__(self, oscillator: Oscillator):
        self.oscillator = oscillator
        self.closed = False
        self._close_lock = threading.Lock()

    def close(self) -> None:
        with self._close_lock:
            if self.closed:
                return
            self._release()
            self.closed = True

    def _release(self) -> None:
        self.oscillator.stop()


class AudioBackend:
    """Interface the capture session drives. Subclasses implement the device side."""

    def now(self) -> float:
        return time.monotonic()

    def open_input(self, settings: dict) -> InputHandle:
        raise NotImplementedError

    def open_output(self, oscillator: Oscillator) -> OutputHandle:
        raise NotImplementedError

    def recorder(self, handle: InputHandle) -> Recorder:
        """Attach a fresh recorder to an open input stream"""
        recorder = Recorder(handle.sample_rate)
        handle.recorder = recorder
        return recorder

    def decode(self, data: bytes) -> PCMBuffer:
        return decode_wav(data)

    def close_input(self, handle: InputHandle) -> None:
        handle.recorder = None
        handle.close()

    def close_output(self, handle: OutputHandle) -> None:
        handle.close()


class SoundDeviceInput(InputHandle):
    def __init__(self, stream, settings: dict):
        super().__init__(int(stream.samplerate), settings)
        self.stream = stream

    def _release(self) -> None:
        self.stream.stop()
        self.stream.close()


class SoundDeviceOutput(OutputHandle):
    def __init__(self, stream, oscillator: Oscillator):
        super().__init__(oscillator)
        self.stream = stream

    def _release(self) -> None:
        self.stream.stop()
        self.stream.close()
        super()._release()


class SoundDeviceBackend(AudioBackend):
    """PortAudio devices through sounddevice callback streams"""

    def __init__(self, input_device=None, output_device=None):
        self.input_device = input_device
        self.output_device = output_device

    def open_input(self, settings: dict) -> SoundDeviceInput:
        sd = _sounddevice()
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as err:
            raise translate_error(err) from err
        if not any(device["max_input_channels"] > 0 for device in devices):
            raise DeviceNotFound("No input device found")

        check = {key: value for key, value in settings.items() if key != "latency"}
        try:
            sd.check_input_settings(device=self.input_device, **check)
        except sd.PortAudioError as err:
            raise ConstraintsUnsupported(str(err)) from err
        except ValueError as err:
            raise DeviceNotFound(str(err)) from err

        handle = None

        def callback(indata, frames, time_info, status):
            if status:
                logger.warning(f"Input stream status: {status}")
            if handle is not None:
                handle.deliver(indata[:, 0])

        try:
            stream = sd.InputStream(device=self.input_device, blocksize=BLOCKSIZE, callback=callback, **settings)
        except (sd.PortAudioError, OSError) as err:
            raise translate_error(err) from err
        handle = SoundDeviceInput(stream, settings)
        try:
            stream.start()
        except (sd.PortAudioError, OSError) as err:
            handle.close()
            raise translate_error(err) from err
        logger.info(f"Input stream open at {stream.samplerate} Hz, latency {stream.latency:.4f} s, settings {settings}")
        return handle

    def open_output(self, oscillator: Oscillator) -> SoundDeviceOutput:
        sd = _sounddevice()

        def callback(outdata, frames, time_info, status):
            if status:
                logger.warning(f"Output stream status: {status}")
            outdata[:, 0] = oscillator.next_block(frames)

        try:
            stream = sd.OutputStream(
                device=self.output_device,
                samplerate=oscillator.fs,
                channels=1,
                dtype="float32",
                blocksize=BLOCKSIZE,
                callback=callback,
            )
        except (sd.PortAudioError, OSError) as err:
            raise InternalOscillatorFailure(f"Could not open output: {err}") from err
        handle = SoundDeviceOutput(stream, oscillator)
        try:
            stream.start()
        except (sd.PortAudioError, OSError) as err:
            handle.close()
            raise InternalOscillatorFailure(f"Could not start output: {err}") from err
        return handle


class LoopbackInput(InputHandle):
    """Feeds the current oscillator back in, block by block in real time, through an optional IIR filter"""

    def __init__(self, sample_rate: int, settings: dict, filter_coefficients=None, noise_level: float = 0.0):
        super().__init__(sample_rate, settings)
        self.oscillator: Oscillator | None = None
        self.filter_coefficients = filter_coefficients
        self.noise_level = noise_level
        self._rng = np.random.default_rng(seed=42)
        self._zi = None
        if filter_coefficients is not None:
            b, a = filter_coefficients
            self._zi = np.zeros(max(len(a), len(b)) - 1)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._pump, daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        block_duration = BLOCKSIZE / self.sample_rate
        next_time = time.monotonic() + block_duration
        while not self._stop.wait(max(0.0, next_time - time.monotonic())):
            next_time += block_duration
            oscillator = self.oscillator
            block = oscillator.next_block(BLOCKSIZE) if oscillator is not None else np.zeros(BLOCKSIZE, np.float32)
            block = block.astype(np.float64)
            if self.filter_coefficients is not None:
                b, a = self.filter_coefficients
                block, self._zi = scipy.signal.lfilter(b, a, block, zi=self._zi)
            if self.noise_level:
                block = block + self._rng.normal(scale=self.noise_level, size=block.size)
            self.deliver(block.astype(np.float32))

    def _release(self) -> None:
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join()


class LoopbackBackend(AudioBackend):
    """Hardware-free backend: whatever the oscillator plays is what gets recorded"""

    def __init__(self, sample_rate: int = FS, filter_coefficients=None, noise_level: float = 0.0):
        self.sample_rate = sample_rate
        self.filter_coefficients = filter_coefficients
        self.noise_level = noise_level
        self._input: LoopbackInput | None = None

    def open_input(self, settings: dict) -> LoopbackInput:
        sample_rate = settings.get("samplerate", self.sample_rate)
        self._input = LoopbackInput(sample_rate, settings, self.filter_coefficients, self.noise_level)
        return self._input

    def open_output(self, oscillator: Oscillator) -> OutputHandle:
        if self._input is None or self._input.closed:
            raise InternalOscillatorFailure("Loopback output needs an open input")
        if oscillator.fs != self._input.sample_rate:
            raise InternalOscillatorFailure(f"Oscillator at {oscillator.fs} Hz, loopback at {self._input.sample_rate} Hz")
        self._input.oscillator = oscillator
        return OutputHandle(oscillator)

    def close_output(self, handle: OutputHandle) -> None:
        if self._input is not None and self._input.oscillator is handle.oscillator:
            self._input.oscillator = None
        super().close_output(handle)


def list_devices() -> str:
    sd = _sounddevice()
    return str(sd.query_devices())


def record_wav(filename: str, duration: float = 10, fs: int = FS) -> None:
    """Record audio for duration and save to filename in RECORDING_DIRECTORY"""
    sd = _sounddevice()
    logger.info(f"Recording for {duration} seconds at {fs} Hz...")
    audio_data = sd.rec(int(duration * fs), samplerate=fs, channels=1, dtype="float32", blocking=True)
    write_wav(filename, audio_data[:, 0], fs)


def record_entrypoint():
    """CLI entry point to record audio for 10 seconds"""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    record_wav("output.wav", 10)
