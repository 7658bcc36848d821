"""Loading and synthesising the WAV buffers that speakers stream."""

import io
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from scipy.io import wavfile

from .transcoder import SAMPLE_RATE


@dataclass
class AudioFile:
    """A WAV file kept as raw bytes, with the metadata read from its header."""

    path: Path
    data: bytes
    sample_rate: int
    channels: int
    num_samples: int

    @property
    def duration(self) -> float:
        """Duration of the audio in seconds."""
        if not self.sample_rate:
            return 0.0
        return self.num_samples / self.sample_rate

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000

    @property
    def is_gateway_format(self) -> bool:
        """True when the file is 16 kHz mono, the format the gateway expects."""
        return self.sample_rate == SAMPLE_RATE and self.channels == 1


def load_audio(path: Path | str) -> AudioFile:
    """
    Load a 16-bit PCM WAV file without altering its bytes.

    Args:
        path: Path to the WAV file

    Returns:
        AudioFile with the untouched file contents

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not 16-bit PCM
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")

    raw = path.read_bytes()
    sample_rate, data = wavfile.read(io.BytesIO(raw))

    if data.dtype != np.int16:
        raise ValueError(f"{path} must be 16-bit PCM (got {data.dtype})")

    channels = 1 if data.ndim == 1 else data.shape[1]

    return AudioFile(
        path=path,
        data=raw,
        sample_rate=sample_rate,
        channels=channels,
        num_samples=data.shape[0],
    )


def encode_wav(samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Serialise int16 samples as a canonical 44-byte-header WAV buffer."""
    buffer = io.BytesIO()
    wavfile.write(buffer, sample_rate, np.asarray(samples, dtype=np.int16))
    return buffer.getvalue()


def synthesize_tone(
    duration_sec: float,
    frequency: float = 440.0,
    sample_rate: int = SAMPLE_RATE,
    amplitude: float = 0.5,
) -> bytes:
    """
    Generate a sine tone WAV buffer, for smoke runs without recorded speech.

    Args:
        duration_sec: Length of the tone in seconds
        frequency: Tone frequency in Hz
        sample_rate: Output sample rate
        amplitude: Peak amplitude in the 0-1 range

    Returns:
        WAV bytes (16-bit PCM mono)
    """
    t = np.linspace(0, duration_sec, int(sample_rate * duration_sec), endpoint=False)
    samples = (np.sin(2 * np.pi * frequency * t) * amplitude * 32767).astype(np.int16)
    return encode_wav(samples, sample_rate)
