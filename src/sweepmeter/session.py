"""One measurement run: play the sweep, record it, decode the recording and reduce it.

SessionManager is the single owner of the run state and of the microphone stream,
which is opened on first use and kept for later runs so the device is not
re-acquired every time.
"""

import atexit
import logging
import threading
from enum import Enum
from typing import Callable

from sweepmeter.chirp import Oscillator
from sweepmeter.constants import DEFAULT_PLOT_WIDTH, GUARD_INTERVAL, RAW_INPUT_SETTINGS, RELAXED_INPUT_SETTINGS
from sweepmeter.errors import (
    AlreadyRunning,
    ConstraintsUnsupported,
    DecodeFailure,
    DeviceNotFound,
    MeasurementError,
    PermissionDenied,
)
from sweepmeter.models import PCMBuffer, ResponseCurve, SweepSpec
from sweepmeter.record import AudioBackend, InputHandle, OutputHandle, Recorder, SoundDeviceBackend
from sweepmeter.response import reduce_response

logger = logging.getLogger(__name__)

# Automatic retries after the device rejects the raw capture settings
MAX_CONSTRAINT_RETRIES = 1


class SessionState(Enum):
    IDLE = "idle"
    PRIMING = "priming"
    SWEEPING_AND_RECORDING = "sweeping and recording"
    DECODING = "decoding"
    REDUCING = "reducing"
    COMPLETE = "complete"
    FAILED = "failed"


STARTABLE_STATES = {SessionState.IDLE, SessionState.COMPLETE, SessionState.FAILED}


def failure_message(err: MeasurementError) -> str:
    if isinstance(err, PermissionDenied):
        text = "Microphone access denied."
    elif isinstance(err, DeviceNotFound):
        text = "No microphone found."
    elif isinstance(err, DecodeFailure):
        text = f"Error processing audio: {err.message}. Please try again."
    else:
        text = f"An error occurred: {err.message}"
    return f"{text} [{err.kind}]"


class SessionManager:
    """Runs capture sessions one at a time.

    Only one manager may be live in a process; use SessionManager.instance() to get it.
    status is called with a human readable line whenever the session moves on."""

    _instance = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        backend: AudioBackend | None = None,
        spec: SweepSpec | None = None,
        status: Callable[[str], None] | None = None,
    ):
        with SessionManager._instance_lock:
            if SessionManager._instance is not None:
                raise RuntimeError("A SessionManager is already live, use SessionManager.instance()")
            SessionManager._instance = self

        self.backend = backend if backend is not None else SoundDeviceBackend()
        self.spec = spec if spec is not None else SweepSpec.default()
        self.status = status if status is not None else logger.info
        self.state = SessionState.IDLE
        self.last_curve: ResponseCurve | None = None
        self.last_buffer: PCMBuffer | None = None
        self.status_message = ""

        self._stream: InputHandle | None = None
        self._output: OutputHandle | None = None
        self._run_lock = threading.Lock()
        # Guards the stream and output slots against a concurrent shutdown()
        self._resource_lock = threading.Lock()
        self._stop_recording = threading.Event()
        self._cancelled = False
        self._closed = False

    @classmethod
    def instance(cls, **kwargs) -> "SessionManager":
        """The live manager, created with kwargs on first use"""
        with cls._instance_lock:
            manager = cls._instance
        if manager is None:
            manager = cls(**kwargs)
            atexit.register(manager.shutdown)
        return manager

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()

    @property
    def running(self) -> bool:
        return self.state not in STARTABLE_STATES

    def _set_state(self, state: SessionState, message: str | None = None) -> None:
        logger.debug(f"Session {self.state.value} -> {state.value}")
        self.state = state
        if message is not None:
            self._report(message)

    def _report(self, message: str) -> None:
        self.status_message = message
        self.status(message)

    def start(self, width: int = DEFAULT_PLOT_WIDTH) -> ResponseCurve:
        """Run one measurement and return its response curve.

        Raises AlreadyRunning without touching any state if a run is in progress,
        otherwise any MeasurementError that ended the run (state is then FAILED)."""
        if self._closed:
            raise RuntimeError("SessionManager has been shut down")
        if not self._run_lock.acquire(blocking=False):
            self._report("Process already running.")
            raise AlreadyRunning("Process already running.")
        if self.running:
            self._run_lock.release()
            self._report("Process already running.")
            raise AlreadyRunning("Process already running.")

        with self._resource_lock:
            if self._closed:
                self._run_lock.release()
                raise RuntimeError("SessionManager has been shut down")
            self._cancelled = False
            self._stop_recording.clear()
        try:
            self._set_state(SessionState.PRIMING, "Initializing...")
            stream = self._prime()
            recorder = self.backend.recorder(stream)
            oscillator = Oscillator(self.spec, stream.sample_rate)
            data = self._sweep(recorder, oscillator)

            self._set_state(SessionState.DECODING, "Processing recorded audio...")
            buffer = self.backend.decode(data)

            self._set_state(SessionState.REDUCING, "Plotting data...")
            curve = reduce_response(buffer, self.spec, width)

            self.last_buffer = buffer
            self.last_curve = curve
            self._set_state(SessionState.COMPLETE, "Process complete. Ready for next run.")
            return curve
        except MeasurementError as err:
            logger.error(f"Session failed in state {self.state.value}: {err.describe()}")
            self._set_state(SessionState.FAILED, failure_message(err))
            raise
        except BaseException as err:
            logger.exception(f"Unexpected error in state {self.state.value}")
            self._set_state(SessionState.FAILED, f"An error occurred: {err}")
            raise
        finally:
            self._release_output()
            if self._closed:
                self.reset_stream()
            stream = self._stream
            if stream is not None:
                stream.recorder = None
            self._run_lock.release()

    def _prime(self) -> InputHandle:
        self._report("Requesting microphone permission (raw audio)...")
        stream = self._stream
        if stream is not None:
            return stream
        settings = RAW_INPUT_SETTINGS
        attempt = 0
        while True:
            try:
                stream = self.backend.open_input(settings)
            except ConstraintsUnsupported as err:
                if attempt >= MAX_CONSTRAINT_RETRIES:
                    raise
                attempt += 1
                self._report(f"Audio constraints not supported: {err.message}. Trying fallback...")
                settings = RELAXED_INPUT_SETTINGS
                continue
            self._keep(stream, "_stream", self.backend.close_input)
            logger.info(f"Input stream acquired with {settings}")
            return stream

    def _sweep(self, recorder: Recorder, oscillator: Oscillator) -> bytes:
        """Play the sweep and record until duration + guard interval after the shared start time"""
        self._keep(self.backend.open_output(oscillator), "_output", self.backend.close_output)

        start_time = self.backend.now()
        recorder.start()
        oscillator.start(start_time)
        self._set_state(SessionState.SWEEPING_AND_RECORDING, f"Playing {self.spec.duration:g}s chirp & recording...")

        # Recorder stops at the same anchor as the oscillator, plus the guard interval
        delay = start_time + self.spec.duration + GUARD_INTERVAL - self.backend.now()
        timer = threading.Timer(max(0.0, delay), self._stop_recording.set)
        timer.start()
        try:
            self._stop_recording.wait()
        finally:
            timer.cancel()

        data = recorder.stop()
        logger.info("Recorder stopped.")
        self._release_output()
        if self._cancelled:
            raise MeasurementError("Session cancelled")
        return data

    def _keep(self, handle, slot: str, close: Callable) -> None:
        """Store a freshly opened handle, or close it if shutdown() got there first"""
        with self._resource_lock:
            if not self._cancelled:
                setattr(self, slot, handle)
                return
        close(handle)
        raise MeasurementError("Session cancelled")

    def _release_output(self) -> None:
        with self._resource_lock:
            output, self._output = self._output, None
        if output is not None:
            self.backend.close_output(output)

    def reset_stream(self) -> None:
        """Drop the cached input stream, the next run acquires a new one"""
        with self._resource_lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            self.backend.close_input(stream)
            logger.info("Input stream released.")

    def shutdown(self) -> None:
        """Release every audio resource, whatever state the session is in"""
        with self._resource_lock:
            if self._closed:
                return
            self._closed = True
            self._cancelled = True
        self._stop_recording.set()
        self._release_output()
        self.reset_stream()
        with SessionManager._instance_lock:
            if SessionManager._instance is self:
                SessionManager._instance = None
        logger.info("Session manager shut down.")
