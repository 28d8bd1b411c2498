"""Measurement failures, one class per cause so callers can report the kind."""


class MeasurementError(Exception):
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def describe(self) -> str:
        return f"{self.kind}: {self.message}"


class PermissionDenied(MeasurementError):
    kind = "permission denied"


class DeviceNotFound(MeasurementError):
    kind = "device not found"


class ConstraintsUnsupported(MeasurementError):
    kind = "constraints unsupported"


class DecodeFailure(MeasurementError):
    kind = "decode failure"


class AlreadyRunning(MeasurementError):
    kind = "already running"


class InternalOscillatorFailure(MeasurementError):
    kind = "oscillator failure"


class InvalidSweep(ValueError):
    pass
