import io
import logging
import pathlib
import struct

import numpy as np
import numpy.typing as npt
import scipy.io.wavfile

from sweepmeter.constants import FS, RECORDING_DIRECTORY
from sweepmeter.errors import DecodeFailure
from sweepmeter.models import PCMBuffer

logger = logging.getLogger(__name__)

# Full scale of the integer sample formats scipy reads
_INTEGER_FULL_SCALE = {
    np.dtype(np.int16): 32768.0,
    np.dtype(np.int32): 2147483648.0,
}


def to_float(audio: np.ndarray) -> npt.NDArray[np.float64]:
    """Normalise integer or float WAV samples to floats in [-1.0, 1.0]"""
    if audio.dtype == np.uint8:
        return (audio.astype(np.float64) - 128.0) / 128.0
    if audio.dtype in _INTEGER_FULL_SCALE:
        return audio.astype(np.float64) / _INTEGER_FULL_SCALE[audio.dtype]
    if np.issubdtype(audio.dtype, np.floating):
        return audio.astype(np.float64)
    raise DecodeFailure(f"Unsupported sample format {audio.dtype}")


def encode_wav(samples: npt.ArrayLike, fs: int = FS) -> bytes:
    """Encode samples as 32-bit float WAV bytes"""
    data = io.BytesIO()
    scipy.io.wavfile.write(data, fs, np.asarray(samples, dtype=np.float32))
    return data.getvalue()


def decode_wav(data: bytes) -> PCMBuffer:
    """Decode WAV bytes into a mono PCMBuffer (channel 0 of multi-channel files)"""
    try:
        rate, audio = scipy.io.wavfile.read(io.BytesIO(data))
    except (ValueError, EOFError, OSError, struct.error) as err:
        raise DecodeFailure(f"Could not decode recording: {err}") from err
    if rate <= 0:
        raise DecodeFailure(f"Invalid sample rate {rate} in recording")
    return PCMBuffer.from_channels(rate, to_float(audio))


def read_wav(file_path: str | pathlib.Path) -> PCMBuffer:
    file_path = pathlib.Path(file_path)
    try:
        data = file_path.read_bytes()
    except OSError as err:
        raise DecodeFailure(f"Could not read {file_path}: {err}") from err
    buffer = decode_wav(data)
    logger.info(f"Read {len(buffer)} samples at {buffer.sample_rate} Hz from {file_path}")
    return buffer


def write_wav(file_path: str | pathlib.Path, samples: npt.ArrayLike, fs: int = FS) -> pathlib.Path:
    """Save samples to file_path; bare file names go to RECORDING_DIRECTORY"""
    file_path = pathlib.Path(file_path)
    if file_path.parent == pathlib.Path("."):
        file_path = RECORDING_DIRECTORY / file_path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(encode_wav(samples, fs))
    logger.info(f"Saved to {file_path}")
    return file_path
