"""PCM16 WAV to float32 frame conversion for the voice gateway."""

from __future__ import annotations

import math
from typing import Iterator, List

import numpy as np

WAV_HEADER_SIZE = 44
SAMPLE_RATE = 16000
CHUNK_SIZE = 2048  # bytes per frame sent to the gateway
BYTES_PER_SAMPLE = 4
CHUNK_SAMPLES = CHUNK_SIZE // BYTES_PER_SAMPLE
CHUNK_DURATION_S = CHUNK_SAMPLES / SAMPLE_RATE  # 0.032

PCM16_SCALE = 32768.0


class AudioTranscoder:
    """Converts a WAV-framed 16-bit PCM buffer into fixed-size float32 frames.

    Every frame is exactly ``chunk_size`` bytes; the last one is zero-padded.
    Buffers no longer than the WAV header produce no frames.
    """

    def __init__(self, header_size: int = WAV_HEADER_SIZE, chunk_size: int = CHUNK_SIZE):
        if chunk_size <= 0 or chunk_size % BYTES_PER_SAMPLE:
            raise ValueError(f"chunk_size must be a positive multiple of {BYTES_PER_SAMPLE}")
        self.header_size = header_size
        self.chunk_size = chunk_size

    @property
    def chunk_samples(self) -> int:
        return self.chunk_size // BYTES_PER_SAMPLE

    def to_float_samples(self, wav_bytes: bytes) -> np.ndarray:
        """Return the normalised float32 samples of ``wav_bytes``."""

        if len(wav_bytes) <= self.header_size:
            return np.zeros(0, dtype="<f4")
        payload = memoryview(wav_bytes)[self.header_size :]
        usable = len(payload) - (len(payload) % 2)
        pcm = np.frombuffer(payload[:usable], dtype="<i2")
        return (pcm.astype(np.float32) / PCM16_SCALE).astype("<f4")

    def sample_count(self, wav_bytes: bytes) -> int:
        if len(wav_bytes) <= self.header_size:
            return 0
        return (len(wav_bytes) - self.header_size) // 2

    def chunk_count(self, wav_bytes: bytes) -> int:
        return math.ceil(self.sample_count(wav_bytes) / self.chunk_samples)

    def iter_chunks(self, wav_bytes: bytes) -> Iterator[bytes]:
        samples = self.to_float_samples(wav_bytes)
        if samples.size == 0:
            return
        float_bytes = samples.tobytes()
        for offset in range(0, len(float_bytes), self.chunk_size):
            chunk = float_bytes[offset : offset + self.chunk_size]
            if len(chunk) < self.chunk_size:
                chunk = chunk + bytes(self.chunk_size - len(chunk))
            yield chunk

    def chunks(self, wav_bytes: bytes) -> List[bytes]:
        return list(self.iter_chunks(wav_bytes))

    def duration_ms(self, wav_bytes: bytes) -> float:
        return self.sample_count(wav_bytes) / SAMPLE_RATE * 1000
