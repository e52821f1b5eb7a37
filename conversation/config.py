"""
Voice Conversation Configuration
================================

Centralized configuration for the conversation and its components,
loadable from environment variables or a .env file.
"""

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Optional

from core.audio_input import AudioInputConfig
from core.audio_output import AudioOutputConfig
from core.llm import LLMConfig
from core.stt import STTConfig
from core.tts import TTSConfig
from core.vad import VADConfig


class SessionState(Enum):
    """Voice session states."""
    IDLE = auto()
    LISTENING = auto()
    PROCESSING = auto()
    SPEAKING = auto()
    ENDED = auto()


# State display strings
STATE_DISPLAY = {
    SessionState.IDLE: "🔇 Idle",
    SessionState.LISTENING: "🎤 Listening",
    SessionState.PROCESSING: "🧠 Thinking",
    SessionState.SPEAKING: "🔊 Speaking",
    SessionState.ENDED: "✅ Conversation ended",
}


@dataclass
class ConversationConfig:
    """Configuration for a voice conversation."""

    # =========================================================================
    # Turn Handling
    # =========================================================================
    transcription_timeout_sec: float = 30.0  # Slower transcriptions count as failed
    generation_timeout_sec: float = 30.0     # Slower replies count as failed
    turns_per_focus: int = 4                 # Turns spent on each assessment focus
    min_segment_ms: int = 300                # Shorter captured audio is ignored
    user_name: str = ""                      # Used in fallback greetings

    # =========================================================================
    # Components
    # =========================================================================
    audio: AudioInputConfig = field(default_factory=AudioInputConfig)
    vad: VADConfig = field(default_factory=VADConfig)
    stt: STTConfig = field(default_factory=STTConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    output: AudioOutputConfig = field(default_factory=AudioOutputConfig)

    debug: bool = False

    def __post_init__(self):
        if self.transcription_timeout_sec <= 0:
            raise ValueError(f"transcription_timeout_sec must be > 0, got {self.transcription_timeout_sec}")
        if self.generation_timeout_sec <= 0:
            raise ValueError(f"generation_timeout_sec must be > 0, got {self.generation_timeout_sec}")
        if self.turns_per_focus < 1:
            raise ValueError(f"turns_per_focus must be >= 1, got {self.turns_per_focus}")
        if self.min_segment_ms < 0:
            raise ValueError(f"min_segment_ms must be >= 0, got {self.min_segment_ms}")

    @property
    def min_segment_samples(self) -> int:
        """Samples in the shortest segment worth transcribing."""
        return int(self.audio.sample_rate * self.min_segment_ms / 1000)


# =============================================================================
# Environment loading
# =============================================================================

def _load_env(path: str = ".env") -> None:
    """Simple .env file loader (existing environment variables win)."""
    env_path = Path(path)
    if not env_path.exists():
        return

    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def _env_str(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key, str(default)).lower().strip()
    return value in ("true", "1", "yes", "on")


def _env_device(key: str) -> Optional[int]:
    value = _env_str(key, "").strip()
    return int(value) if value.isdigit() else None


def load_config(env_path: str = ".env") -> ConversationConfig:
    """Load configuration from environment variables (and a .env file)."""
    _load_env(env_path)
    debug = _env_bool("DEBUG", False)

    return ConversationConfig(
        transcription_timeout_sec=_env_float("TRANSCRIPTION_TIMEOUT_SEC", 30.0),
        generation_timeout_sec=_env_float("GENERATION_TIMEOUT_SEC", 30.0),
        turns_per_focus=_env_int("TURNS_PER_FOCUS", 4),
        min_segment_ms=_env_int("MIN_SEGMENT_MS", 300),
        user_name=_env_str("USER_NAME", ""),
        audio=AudioInputConfig(
            sample_rate=_env_int("AUDIO_SAMPLE_RATE", 16000),
            frame_ms=_env_int("AUDIO_FRAME_MS", 20),
            device=_env_device("AUDIO_INPUT_DEVICE"),
            mic_gain=_env_float("MIC_GAIN", 1.0),
            max_segment_sec=_env_float("MAX_SEGMENT_SEC", 30.0),
        ),
        vad=VADConfig(
            silence_threshold=_env_float("VAD_SILENCE_THRESHOLD", 30.0),
            silence_duration_ms=_env_int("VAD_SILENCE_DURATION_MS", 2000),
            min_speech_duration_ms=_env_int("VAD_MIN_SPEECH_MS", 300),
            sample_interval_ms=_env_int("VAD_SAMPLE_INTERVAL_MS", 100),
            debug=debug,
        ),
        stt=STTConfig(
            model_size=_env_str("STT_MODEL", "tiny.en"),
            device=_env_str("STT_DEVICE", "cpu"),
            compute_type=_env_str("STT_COMPUTE_TYPE", "int8"),
            beam_size=_env_int("STT_BEAM_SIZE", 1),
            language=_env_str("STT_LANGUAGE", "en") or None,
        ),
        llm=LLMConfig(
            model_path=_env_str("LLM_MODEL_PATH", ""),
            n_ctx=_env_int("LLM_CONTEXT_TOKENS", 2048),
            n_threads=_env_int("LLM_THREADS", 4),
            n_gpu_layers=_env_int("LLM_GPU_LAYERS", 0),
            max_tokens=_env_int("LLM_MAX_TOKENS", 120),
            temperature=_env_float("LLM_TEMPERATURE", 0.5),
        ),
        tts=TTSConfig(
            model_path=_env_str("TTS_MODEL_PATH", ""),
            length_scale=_env_float("TTS_LENGTH_SCALE", 1.05),
            speaker_id=_env_int("TTS_SPEAKER_ID", 0),
        ),
        output=AudioOutputConfig(
            device=_env_device("TTS_OUTPUT_DEVICE"),
            volume=_env_float("TTS_VOLUME", 1.0),
        ),
        debug=debug,
    )
