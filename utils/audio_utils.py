"""
Voice Conversation - Audio Utilities
====================================

Common audio processing functions used across modules.
"""

import numpy as np
import scipy.signal


# Decibel window mapped onto the 0-255 energy scale (AnalyserNode defaults)
MIN_DB = -100.0
MAX_DB = -30.0


def compute_rms(audio: np.ndarray) -> float:
    """
    Compute RMS (Root Mean Square) energy of audio.

    Args:
        audio: Audio samples (any dtype)

    Returns:
        RMS value (float)
    """
    if audio.size == 0:
        return 0.0

    audio = audio.astype(np.float64)
    return float(np.sqrt(np.mean(audio ** 2)))


def compute_db(audio: np.ndarray, ref: float = 1.0) -> float:
    """
    Compute audio level in decibels.

    Args:
        audio: Audio samples
        ref: Reference value (default 1.0 for full scale)

    Returns:
        Level in dB (float), floored at -100
    """
    rms = compute_rms(audio)
    if rms <= 0:
        return MIN_DB
    return max(MIN_DB, float(20 * np.log10(rms / ref)))


def db_to_level(db: float, min_db: float = MIN_DB, max_db: float = MAX_DB) -> float:
    """
    Map a dBFS value onto the 0-255 energy scale used by the VAD thresholds.

    Levels at or below `min_db` map to 0, at or above `max_db` to 255.
    """
    if max_db <= min_db:
        raise ValueError(f"max_db must be greater than min_db, got {min_db}..{max_db}")
    scaled = (db - min_db) / (max_db - min_db) * 255.0
    return float(min(255.0, max(0.0, scaled)))


def energy_level(audio: np.ndarray, min_db: float = MIN_DB, max_db: float = MAX_DB) -> float:
    """Energy of an audio block on the 0-255 scale."""
    return db_to_level(compute_db(audio), min_db, max_db)


def float_to_int16(audio: np.ndarray) -> np.ndarray:
    """
    Convert float32 [-1, 1] audio to int16 [-32768, 32767].

    Args:
        audio: Float32 audio array

    Returns:
        Int16 audio array
    """
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * 32767).astype(np.int16)


def int16_to_float(audio: np.ndarray) -> np.ndarray:
    """
    Convert int16 [-32768, 32767] audio to float32 [-1, 1].

    Args:
        audio: Int16 audio array

    Returns:
        Float32 audio array
    """
    return audio.astype(np.float32) / 32768.0


def resample(audio: np.ndarray, from_sr: int, to_sr: int) -> np.ndarray:
    """
    Resample audio to a different sample rate (polyphase filter).

    Args:
        audio: Audio array
        from_sr: Source sample rate
        to_sr: Target sample rate

    Returns:
        Resampled float32 audio
    """
    if from_sr == to_sr:
        return audio.astype(np.float32)

    gcd = np.gcd(int(from_sr), int(to_sr))
    up, down = int(to_sr) // gcd, int(from_sr) // gcd
    return scipy.signal.resample_poly(audio, up=up, down=down).astype(np.float32)


def apply_fade(
    audio: np.ndarray,
    fade_in_samples: int = 0,
    fade_out_samples: int = 0
) -> np.ndarray:
    """
    Apply fade-in and/or fade-out to audio.

    Args:
        audio: Audio array
        fade_in_samples: Number of samples for fade-in
        fade_out_samples: Number of samples for fade-out

    Returns:
        Audio with fades applied
    """
    if len(audio) < fade_in_samples + fade_out_samples:
        return audio  # Too short to fade

    audio = audio.copy()

    if fade_in_samples > 0:
        fade_in = np.linspace(0, 1, fade_in_samples, dtype=np.float32)
        audio[:fade_in_samples] *= fade_in

    if fade_out_samples > 0:
        fade_out = np.linspace(1, 0, fade_out_samples, dtype=np.float32)
        audio[-fade_out_samples:] *= fade_out

    return audio
