"""
Component Manager
=================

Builds the real components of a voice conversation from a
ConversationConfig. Separates component setup from the session logic.
"""

from pathlib import Path

from conversation.config import ConversationConfig


class ComponentManager:
    """
    Creates and owns the conversation's components.

    Components:
    - microphone: MicrophoneSource (energy + utterance capture)
    - vad: VoiceActivityDetector
    - stt: WhisperTranscriber
    - llm: LlamaResponder
    - tts / audio_output / speaker: Piper voice played through sounddevice
    """

    def __init__(self, config: ConversationConfig):
        self.config = config
        self._initialized = False

        self.microphone = None
        self.vad = None
        self.stt = None
        self.llm = None
        self.tts = None
        self.audio_output = None
        self.speaker = None

    def initialize_all(self) -> None:
        """Initialize all components (loads the models)."""
        if self._initialized:
            return

        print("=" * 60)
        print(" Initializing Voice Conversation")
        print("=" * 60)

        self._init_microphone()
        self._init_vad()
        self._init_stt()
        self._init_llm()
        self._init_speaker()

        self._initialized = True

        print("\n" + "=" * 60)
        print(" Ready!")
        print("=" * 60)

    def _init_microphone(self) -> None:
        print("\n[1/5] Microphone...")
        from core.audio_input import MicrophoneSource
        self.microphone = MicrophoneSource(self.config.audio)

    def _init_vad(self) -> None:
        print("[2/5] Voice Activity Detection...")
        from core.vad import VoiceActivityDetector
        self.vad = VoiceActivityDetector(self.config.vad)
        cfg = self.config.vad
        print(f"      threshold={cfg.silence_threshold:.0f}, silence={cfg.silence_duration_ms}ms, "
              f"min speech={cfg.min_speech_duration_ms}ms")

    def _init_stt(self) -> None:
        print(f"[3/5] Speech-to-Text ({self.config.stt.model_size})...")
        from core.stt import WhisperTranscriber
        self.stt = WhisperTranscriber(self.config.stt)

    def _init_llm(self) -> None:
        print("[4/5] Language Model...")
        from core.llm import LlamaResponder

        if not self.config.llm.model_path:
            self.config.llm.model_path = find_llm_model()
        self.llm = LlamaResponder(self.config.llm)

    def _init_speaker(self) -> None:
        print("[5/5] Text-to-Speech...")
        from core.audio_output import AudioOutput
        from core.tts import TTS, SpeechPlayer

        self.tts = TTS(self.config.tts)
        self.audio_output = AudioOutput(self.config.output)
        self.speaker = SpeechPlayer(self.tts, self.audio_output)

    def stop(self) -> None:
        """Release audio devices."""
        if self.vad is not None:
            self.vad.stop()
        if self.speaker is not None:
            self.speaker.stop()


def find_llm_model(models_dir: Path = None) -> str:
    """Auto-detect a GGUF model under models/llm (Llama 3.x preferred)."""
    models_dir = models_dir or Path(__file__).parent.parent / "models" / "llm"
    gguf_files = sorted(models_dir.glob("*.gguf")) if models_dir.exists() else []

    preferred = [p for p in gguf_files if "llama-3" in p.name.lower()]
    if preferred:
        return str(preferred[0])
    if gguf_files:
        return str(gguf_files[0])

    raise FileNotFoundError(
        "No LLM model found in models/llm/. Download one first:\n"
        "  python -c \"from core.llm import download_model; download_model('llama-3.2-3b')\""
    )
