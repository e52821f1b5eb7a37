"""
Tests: audio helpers (utils/audio_utils.py, utils/ring_buffer.py)

Run with pytest:
    python -m pytest tests/test_audio_utils.py -v
"""

import numpy as np
import pytest

from utils.audio_utils import (
    MAX_DB,
    MIN_DB,
    apply_fade,
    compute_db,
    compute_rms,
    db_to_level,
    energy_level,
    float_to_int16,
    int16_to_float,
    resample,
)
from utils.ring_buffer import FrameAligner, RingBuffer


# =============================================================================
# Levels
# =============================================================================

def test_rms_of_constant():
    assert compute_rms(np.full(100, 0.5)) == pytest.approx(0.5)
    assert compute_rms(np.zeros(0)) == 0.0


def test_db_floor():
    assert compute_db(np.zeros(160)) == MIN_DB
    assert compute_db(np.full(160, 1e-9)) == MIN_DB


def test_db_of_full_scale():
    assert compute_db(np.ones(160)) == pytest.approx(0.0)


@pytest.mark.parametrize("db,level", [
    (MIN_DB, 0.0),
    (MAX_DB, 255.0),
    (-65.0, 127.5),
    (-120.0, 0.0),
    (0.0, 255.0),
])
def test_db_to_level(db, level):
    assert db_to_level(db) == pytest.approx(level)


def test_db_to_level_rejects_empty_window():
    with pytest.raises(ValueError):
        db_to_level(-50, min_db=-30, max_db=-30)


def test_energy_level_ordering():
    quiet = energy_level(np.full(1600, 0.0005))
    loud = energy_level(np.full(1600, 0.01))
    assert 0 < quiet < loud <= 255
    assert energy_level(np.zeros(1600)) == 0.0


# =============================================================================
# Conversion
# =============================================================================

def test_float_int16_conversion():
    audio = np.array([0.0, 0.5, -0.5, 2.0], dtype=np.float32)
    pcm = float_to_int16(audio)
    assert pcm.dtype == np.int16
    assert pcm[3] == 32767
    back = int16_to_float(pcm)
    assert back.dtype == np.float32
    assert back[1] == pytest.approx(0.5, abs=1e-4)


def test_resample_length():
    audio = np.random.default_rng(1).standard_normal(48000).astype(np.float32)
    assert len(resample(audio, 48000, 16000)) == 16000
    assert len(resample(audio[:16000], 16000, 22050)) == 22050


def test_resample_same_rate_is_float32_copy():
    audio = np.zeros(100, dtype=np.float64)
    out = resample(audio, 16000, 16000)
    assert out.dtype == np.float32
    assert len(out) == 100


def test_fade_ends_at_zero():
    audio = np.ones(1000, dtype=np.float32)
    faded = apply_fade(audio, 100, 100)
    assert faded[0] == 0.0
    assert faded[-1] == 0.0
    assert faded[500] == 1.0
    assert audio[0] == 1.0  # input untouched


def test_fade_skipped_for_short_audio():
    audio = np.ones(50, dtype=np.float32)
    assert apply_fade(audio, 100, 100) is audio


# =============================================================================
# Ring buffer
# =============================================================================

def test_ring_buffer_keeps_order():
    buf = RingBuffer(capacity=10)
    buf.push(np.arange(4))
    buf.push(np.arange(4, 7))
    assert buf.get_all().tolist() == list(range(7))
    assert buf.size == 7
    assert not buf.is_full


def test_ring_buffer_overwrites_oldest():
    buf = RingBuffer(capacity=5)
    buf.push(np.arange(4))
    buf.push(np.arange(4, 8))
    assert buf.get_all().tolist() == [3, 4, 5, 6, 7]
    assert buf.overwritten == 3
    assert buf.is_full


def test_ring_buffer_oversized_push():
    buf = RingBuffer(capacity=3)
    assert buf.push(np.arange(10)) == 10
    assert buf.get_all().tolist() == [7, 8, 9]


def test_ring_buffer_clear():
    buf = RingBuffer(capacity=3)
    buf.push(np.arange(5))
    buf.clear()
    assert buf.is_empty
    assert buf.overwritten == 0
    assert len(buf.get_all()) == 0


def test_ring_buffer_capacity_must_be_positive():
    with pytest.raises(ValueError):
        RingBuffer(capacity=0)


def test_frame_aligner():
    aligner = FrameAligner(frame_size=4)
    aligner.push(np.arange(3))
    assert aligner.pop() is None
    aligner.push(np.arange(3, 10))
    frames = list(aligner.pop_all())
    assert [f.tolist() for f in frames] == [[0, 1, 2, 3], [4, 5, 6, 7]]
    assert aligner.buffered_samples == 2
