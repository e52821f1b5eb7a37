# Voice Conversation - Utils Package
from .audio_utils import (
    compute_rms,
    compute_db,
    db_to_level,
    energy_level,
    float_to_int16,
    int16_to_float,
    resample,
    apply_fade,
)
from .ring_buffer import RingBuffer, FrameAligner

__all__ = [
    "compute_rms",
    "compute_db",
    "db_to_level",
    "energy_level",
    "float_to_int16",
    "int16_to_float",
    "resample",
    "apply_fade",
    "RingBuffer",
    "FrameAligner",
]
