import numpy as np
import pytest

from meetload.audio.files import encode_wav, load_audio, synthesize_tone
from meetload.audio.transcoder import CHUNK_SIZE, WAV_HEADER_SIZE, AudioTranscoder


@pytest.fixture
def transcoder():
    return AudioTranscoder()


def test_encoded_wav_has_canonical_header(wav_1000_samples):
    assert len(wav_1000_samples) == WAV_HEADER_SIZE + 2000
    assert wav_1000_samples[:4] == b"RIFF"


def test_chunk_count_and_size(transcoder, wav_1000_samples):
    chunks = transcoder.chunks(wav_1000_samples)

    assert transcoder.chunk_count(wav_1000_samples) == 2
    assert len(chunks) == 2
    assert all(len(chunk) == CHUNK_SIZE for chunk in chunks)


def test_last_chunk_is_zero_padded(transcoder, wav_1000_samples):
    last = np.frombuffer(transcoder.chunks(wav_1000_samples)[-1], dtype="<f4")

    # 1000 samples = 512 in the first frame, 488 real samples in the second
    assert np.any(last[:488] != 0)
    assert np.all(last[488:] == 0)


def test_exact_multiple_needs_no_padding(transcoder):
    wav = encode_wav(np.ones(1024, dtype=np.int16))
    assert transcoder.chunk_count(wav) == 2
    assert all(np.all(np.frombuffer(c, dtype="<f4") > 0) for c in transcoder.chunks(wav))


def test_header_only_produces_no_chunks(transcoder):
    assert transcoder.chunks(b"\x00" * WAV_HEADER_SIZE) == []
    assert transcoder.chunks(b"RIFF") == []
    assert transcoder.chunk_count(b"") == 0


def test_single_sample_produces_one_padded_chunk(transcoder):
    wav = encode_wav(np.array([16384], dtype=np.int16))
    chunks = transcoder.chunks(wav)

    assert len(chunks) == 1
    samples = np.frombuffer(chunks[0], dtype="<f4")
    assert samples[0] == pytest.approx(0.5)
    assert np.count_nonzero(samples) == 1


def test_normalisation_is_within_one_lsb(transcoder):
    pcm = np.array([-32768, -1, 0, 1, 12345, 32767], dtype=np.int16)
    floats = transcoder.to_float_samples(encode_wav(pcm))

    assert floats.dtype == np.dtype("<f4")
    assert floats[0] == -1.0
    assert floats[3] == pytest.approx(1 / 32768)
    np.testing.assert_allclose(floats * 32768, pcm.astype(np.float64), atol=1.0)


def test_trailing_odd_byte_is_ignored(transcoder):
    wav = encode_wav(np.array([100, 200], dtype=np.int16)) + b"\x7f"
    assert transcoder.sample_count(wav) == 2
    assert transcoder.to_float_samples(wav).size == 2


def test_chunk_size_must_hold_whole_samples():
    with pytest.raises(ValueError):
        AudioTranscoder(chunk_size=2050)


def test_duration_ms(transcoder):
    assert transcoder.duration_ms(synthesize_tone(0.5)) == pytest.approx(500.0)


def test_load_audio_keeps_bytes(tmp_path, wav_1000_samples):
    path = tmp_path / "speech.wav"
    path.write_bytes(wav_1000_samples)

    audio = load_audio(path)

    assert audio.data == wav_1000_samples
    assert audio.num_samples == 1000
    assert audio.is_gateway_format
    assert audio.duration_ms == pytest.approx(62.5)


def test_load_audio_rejects_missing_and_non_pcm16(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_audio(tmp_path / "missing.wav")

    from scipy.io import wavfile

    path = tmp_path / "float.wav"
    wavfile.write(path, 16000, np.zeros(10, dtype=np.float32))
    with pytest.raises(ValueError):
        load_audio(path)


def test_stereo_or_other_rates_are_not_gateway_format(tmp_path):
    path = tmp_path / "stereo.wav"
    path.write_bytes(encode_wav(np.zeros((100, 2), dtype=np.int16), sample_rate=44100))

    audio = load_audio(path)

    assert audio.channels == 2
    assert not audio.is_gateway_format
