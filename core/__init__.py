# Voice Conversation - Core Package
from .errors import (
    VoiceConversationError,
    AudioSourceError,
    CollaboratorError,
    TranscriptionError,
    GenerationError,
    CollaboratorTimeoutError,
    CollaboratorBusyError,
    ConversationBusyError,
    InvalidStateError,
)
from .vad import VoiceActivityDetector, VADConfig, VADCallbacks, start_voice_activity_detection
from .audio_input import MicrophoneSource, AudioInputConfig
from .stt import WhisperTranscriber, STTConfig, TranscriptionResult
from .llm import LlamaResponder, LLMConfig
from .tts import TTS, TTSConfig, SpeechPlayer
from .audio_output import AudioOutput, AudioOutputConfig

__all__ = [
    "VoiceConversationError",
    "AudioSourceError",
    "CollaboratorError",
    "TranscriptionError",
    "GenerationError",
    "CollaboratorTimeoutError",
    "CollaboratorBusyError",
    "ConversationBusyError",
    "InvalidStateError",
    "VoiceActivityDetector",
    "VADConfig",
    "VADCallbacks",
    "start_voice_activity_detection",
    "MicrophoneSource",
    "AudioInputConfig",
    "WhisperTranscriber",
    "STTConfig",
    "TranscriptionResult",
    "LlamaResponder",
    "LLMConfig",
    "TTS",
    "TTSConfig",
    "SpeechPlayer",
    "AudioOutput",
    "AudioOutputConfig",
]
