"""
Test: Audio Input Module

Drives MicrophoneSource through its stream callback, so no audio device
is needed.
"""

import numpy as np
import pytest

from core.audio_input import AudioInputConfig, MicrophoneSource


def push(mic, block):
    """Simulate one sounddevice callback."""
    block = np.asarray(block, dtype=np.float32)
    if block.ndim == 1:
        block = block.reshape(-1, 1)
    mic._audio_callback(block, len(block), None, None)


@pytest.fixture
def mic():
    return MicrophoneSource(AudioInputConfig(sample_rate=16000, frame_ms=20))


def test_frame_size(mic):
    """20ms at 16kHz is 320 samples."""
    assert mic.frame_samples == 320


def test_energy_level_from_frames(mic):
    push(mic, np.full(320, 0.001))
    # 0.001 RMS = -60 dBFS -> 40/70 of the scale
    assert mic.get_energy_level() == pytest.approx(40 / 70 * 255, rel=1e-3)


def test_energy_level_holds_without_new_frames(mic):
    push(mic, np.full(320, 0.001))
    level = mic.get_energy_level()
    assert mic.get_energy_level() == level


def test_partial_frames_wait_for_alignment(mic):
    push(mic, np.full(200, 0.5))
    assert mic.get_energy_level() == 0.0
    push(mic, np.full(200, 0.5))
    assert mic.get_energy_level() > 200


def test_take_segment_returns_and_clears(mic):
    push(mic, np.full(320, 0.1))
    mic.get_energy_level()
    push(mic, np.full(640, 0.2))   # still queued

    segment = mic.take_segment()
    assert segment.dtype == np.float32
    assert len(segment) == 960
    assert segment[0] == pytest.approx(0.1)
    assert segment[-1] == pytest.approx(0.2)
    assert len(mic.take_segment()) == 0


def test_stereo_is_mixed_to_mono(mic):
    stereo = np.zeros((320, 2), dtype=np.float32)
    stereo[:, 0] = 0.4
    push(mic, stereo)
    segment = mic.take_segment()
    assert np.allclose(segment, 0.2)


def test_mic_gain_applied_and_clipped():
    mic = MicrophoneSource(AudioInputConfig(mic_gain=3.0))
    push(mic, np.full(320, 0.5))
    assert np.allclose(mic.take_segment(), 1.0)


def test_native_rate_is_resampled(mic):
    mic._capture_rate = 48000
    push(mic, np.zeros(960))
    assert len(mic.take_segment()) == 320


def test_full_queue_drops_oldest():
    mic = MicrophoneSource(AudioInputConfig(queue_max_size=2))
    frames = np.concatenate([np.full(320, i / 10) for i in range(1, 6)])
    push(mic, frames)

    assert mic.get_stats()["frames_dropped"] == 3
    segment = mic.take_segment()
    assert len(segment) == 640
    assert segment[0] == pytest.approx(0.4)


def test_segment_keeps_newest_audio():
    mic = MicrophoneSource(AudioInputConfig(max_segment_sec=0.04))  # 640 samples
    for value in (0.1, 0.2, 0.3):
        push(mic, np.full(320, value))
        mic.get_energy_level()
    segment = mic.take_segment()
    assert len(segment) == 640
    assert segment[0] == pytest.approx(0.2)


def test_invalid_config():
    with pytest.raises(ValueError):
        MicrophoneSource(AudioInputConfig(sample_rate=0))
    with pytest.raises(ValueError):
        MicrophoneSource(AudioInputConfig(min_db=-20, max_db=-40))


def test_close_when_not_open(mic):
    mic.close()
    assert not mic.is_open
