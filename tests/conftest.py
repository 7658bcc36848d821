import io

import numpy as np
import pytest
from rich.console import Console

from meetload.audio.files import encode_wav
from meetload.config import LoadTestConfig
from meetload.logging_utils import RichLogger
from tests.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return RichLogger(console=Console(file=io.StringIO(), width=200), verbose=True)


@pytest.fixture
def wav_1000_samples():
    """A 16 kHz mono WAV of 1000 samples: one full frame plus a padded one."""
    samples = (np.arange(1000) % 200 - 100).astype(np.int16)
    return encode_wav(samples)


@pytest.fixture
def config():
    return LoadTestConfig(
        access_token="token-123",
        voice_gateway_uri="ws://gateway/",
        text_retriever_uri="ws://retriever/ws",
        tone_seconds=1.0,
        ready_timeout=1.0,
        chunk_interval=0.032,
        settle_delay=1.0,
        poll_interval=0.1,
        initial_delay=0.5,
        quiet_period=2.0,
        quiescence_timeout=30.0,
        cleanup_grace=0.0,
        iteration_pause=0.0,
    )
