import base64
import binascii
from dataclasses import dataclass
from typing import Union

import numpy as np

from .errors import AudioDecodeError

INPUT_SAMPLE_RATE = 16000   # what the remote service expects from the mic
OUTPUT_SAMPLE_RATE = 24000  # what the remote service speaks back
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"


@dataclass(frozen=True)
class PCM16Payload:
    data: str  # base64 of little-endian int16 samples
    mime_type: str = INPUT_MIME_TYPE


def to_float32(pcm16: np.ndarray) -> np.ndarray:
    return pcm16.astype(np.float32) / 32768.0


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1] and scale asymmetrically so +1.0 does not overflow int16."""
    s = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(s < 0, s * 32768.0, s * 32767.0)
    # truncate toward zero
    return np.trunc(scaled).astype("<i2")


def resample_linear(frame: np.ndarray, source_rate: int, target_rate: int = INPUT_SAMPLE_RATE) -> np.ndarray:
    """
    Linear-interpolation resampler.

    Output length is floor(len / ratio); sample i sits at source position i * ratio and is
    interpolated between the two nearest source samples (the last sample is held past the end).
    """
    frame = np.asarray(frame, dtype=np.float32)
    if source_rate == target_rate or frame.size == 0:
        return frame
    ratio = source_rate / target_rate
    n_out = int(np.floor(len(frame) / ratio))
    if n_out <= 0:
        return np.zeros(0, dtype=np.float32)
    pos = np.arange(n_out, dtype=np.float64) * ratio
    idx = np.floor(pos).astype(np.int64)
    idx = np.minimum(idx, len(frame) - 1)
    frac = pos - idx
    nxt = np.minimum(idx + 1, len(frame) - 1)
    v1 = frame[idx].astype(np.float64)
    v2 = frame[nxt].astype(np.float64)
    return (v1 + (v2 - v1) * frac).astype(np.float32)


def _is_malformed(frame: np.ndarray) -> bool:
    return frame.size == 0 or not np.all(np.isfinite(frame))


def encode(frame, source_rate: int, gated: bool = False) -> PCM16Payload:
    """
    Turn one capture frame (mono float in [-1, 1] at `source_rate`) into a 16 kHz PCM16 payload.

    When `gated` is set the frame is replaced by silence of the same length; it is still
    resampled and emitted so the outbound cadence never stalls. Empty or non-finite frames
    are also sent as silence rather than raising.
    """
    try:
        arr = np.asarray(frame, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError):
        arr = np.zeros(0, dtype=np.float32)
    if gated or _is_malformed(arr):
        arr = np.zeros(arr.shape, dtype=np.float32)
    resampled = resample_linear(arr, source_rate, INPUT_SAMPLE_RATE)
    pcm = float_to_pcm16(resampled)
    return PCM16Payload(data=base64.b64encode(pcm.tobytes()).decode("ascii"))


def decode_pcm16(chunk: Union[str, bytes]) -> np.ndarray:
    """Decode a base64 string (or already-decoded bytes) of int16 PCM into float32 samples."""
    if isinstance(chunk, str):
        try:
            raw = base64.b64decode(chunk, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AudioDecodeError(f"bad base64 audio: {e}") from e
    elif isinstance(chunk, (bytes, bytearray, memoryview)):
        raw = bytes(chunk)
    else:
        raise AudioDecodeError(f"unsupported audio chunk type {type(chunk).__name__}")
    if not raw:
        raise AudioDecodeError("empty audio chunk")
    if len(raw) % 2:
        raise AudioDecodeError(f"odd PCM16 byte length {len(raw)}")
    return to_float32(np.frombuffer(raw, dtype="<i2"))
