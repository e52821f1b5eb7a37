"""
Voice Conversation - Text-to-Speech Module
==========================================

Step 4: Speak the companion's reply using Piper TTS.

TTS turns text into audio; SpeechPlayer synthesizes and plays it on a
background thread and calls back when the utterance is over, which is the
signal for the session to start listening again.

Recommended voices (~60MB each):
- en_US-amy-medium (female, clear) - DEFAULT
- en_US-lessac-medium (male, natural)
- en_GB-alba-medium (British female)

Download:
    python -c "from core.tts import download_voice; download_voice('en_US-amy-medium')"
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from pathlib import Path
import numpy as np
import re
import threading
import time

from core.audio_output import AudioOutput

# Import Piper TTS
try:
    from piper import PiperVoice
    HAS_PIPER = True
except ImportError:
    HAS_PIPER = False
    print("[TTS] Warning: piper-tts not installed")


@dataclass
class TTSConfig:
    """Configuration for TTS synthesis."""
    model_path: str = ""            # Path to .onnx voice model ("" = search models/tts)
    length_scale: float = 1.05      # Speed: <1 faster, >1 slower
    noise_scale: float = 0.667      # Variation in pronunciation
    noise_w_scale: float = 0.8      # Variation in duration
    speaker_id: int = 0             # For multi-speaker models


class TextNormalizer:
    """
    Clean LLM output so it reads well aloud.

    Drops markdown and emoji, expands common abbreviations and symbols, and
    spells out small numbers.
    """

    ABBREVIATIONS = {
        "Dr.": "Doctor",
        "Mr.": "Mister",
        "Mrs.": "Missus",
        "Ms.": "Miss",
        "St.": "Saint",
        "e.g.": "for example",
        "i.e.": "that is",
        "etc.": "et cetera",
        "approx.": "approximately",
    }

    SYMBOLS = {
        "&": " and ",
        "%": " percent",
        "@": " at ",
        "+": " plus ",
        "=": " equals ",
    }

    ONES = ["zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine",
            "ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen",
            "seventeen", "eighteen", "nineteen"]
    TENS = ["", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety"]

    _MARKDOWN = re.compile(r'[*_`#>~]+')
    _EMOJI = re.compile('[\U0001F000-\U0001FAFF\u2600-\u27BF\uFE0F]')

    @classmethod
    def normalize(cls, text: str) -> str:
        text = cls._EMOJI.sub('', text)
        text = cls._MARKDOWN.sub('', text)

        for abbr, full in cls.ABBREVIATIONS.items():
            text = text.replace(abbr, full)
        for symbol, spoken in cls.SYMBOLS.items():
            text = text.replace(symbol, spoken)

        text = re.sub(r'\b\d{1,4}\b', lambda m: cls.number_to_words(int(m.group(0))), text)
        text = text.replace('"', '').replace('’', "'")
        return re.sub(r'\s+', ' ', text).strip()

    @classmethod
    def number_to_words(cls, n: int) -> str:
        """Spell out 0-9999; larger numbers are returned as digits."""
        if n < 20:
            return cls.ONES[n]
        if n < 100:
            tens, ones = divmod(n, 10)
            return cls.TENS[tens] + (" " + cls.ONES[ones] if ones else "")
        if n < 1000:
            hundreds, rest = divmod(n, 100)
            words = cls.ONES[hundreds] + " hundred"
            return words + (" " + cls.number_to_words(rest) if rest else "")
        if n < 10000:
            thousands, rest = divmod(n, 1000)
            words = cls.ONES[thousands] + " thousand"
            return words + (" " + cls.number_to_words(rest) if rest else "")
        return str(n)


def split_sentences(text: str) -> List[str]:
    """Split text at sentence punctuation, dropping empty pieces."""
    return [s for s in re.split(r'(?<=[.!?])\s+', text.strip()) if s.strip()]


class TTS:
    """
    Text-to-Speech using Piper TTS.

    Usage:
        tts = TTS(TTSConfig(model_path="models/tts/en_US-amy-medium.onnx"))
        audio, sample_rate = tts.synthesize("Good morning! How are you feeling?")
    """

    def __init__(self, config: Optional[TTSConfig] = None):
        if not HAS_PIPER:
            raise ImportError(
                "piper-tts not installed. "
                "Run: pip install piper-tts"
            )

        self.config = config or TTSConfig()
        if not self.config.model_path:
            self.config.model_path = self._find_model()

        model_path = Path(self.config.model_path)
        if not model_path.exists():
            raise FileNotFoundError(
                f"Voice model not found: {model_path}\n"
                "Download a voice with core.tts.download_voice()."
            )

        print(f"[TTS] Loading voice: {model_path.stem}")
        load_start = time.time()
        self._voice = PiperVoice.load(str(model_path))
        print(f"[TTS] Voice loaded in {time.time() - load_start:.2f}s "
              f"({self._voice.config.sample_rate} Hz)")

        self._stats = {
            "syntheses": 0,
            "total_chars": 0,
            "total_time": 0.0,
        }

    @staticmethod
    def _find_model() -> str:
        """First .onnx voice under models/tts."""
        models_dir = Path(__file__).parent.parent / "models" / "tts"
        if models_dir.exists():
            onnx_files = sorted(models_dir.rglob("*.onnx"))
            if onnx_files:
                return str(onnx_files[0])
        raise FileNotFoundError(
            "No voice model found in models/tts/\n"
            "Download one with: python -c \"from core.tts import download_voice; download_voice()\""
        )

    def synthesize(self, text: str, normalize: bool = True) -> Tuple[np.ndarray, int]:
        """
        Convert text to speech audio.

        Returns:
            (audio, sample_rate), audio is int16 mono
        """
        if normalize:
            text = TextNormalizer.normalize(text)
        if not text:
            return np.array([], dtype=np.int16), self.sample_rate

        from piper.config import SynthesisConfig

        syn_config = SynthesisConfig(
            speaker_id=self.config.speaker_id,
            length_scale=self.config.length_scale,
            noise_scale=self.config.noise_scale,
            noise_w_scale=self.config.noise_w_scale,
        )

        start_time = time.time()
        chunks = [chunk.audio_int16_array for chunk in self._voice.synthesize(text, syn_config=syn_config)]
        audio = np.concatenate(chunks) if chunks else np.array([], dtype=np.int16)

        self._stats["syntheses"] += 1
        self._stats["total_chars"] += len(text)
        self._stats["total_time"] += time.time() - start_time
        return audio, self.sample_rate

    @property
    def sample_rate(self) -> int:
        return self._voice.config.sample_rate

    def get_stats(self) -> Dict:
        return dict(self._stats)


class SpeechPlayer:
    """
    Fire-and-forget speech: synthesize, play, then call back.

    on_complete runs exactly once per speak() call, on the playback thread,
    even when synthesis or playback fails. Utterances are spoken one at a
    time.

    Usage:
        player = SpeechPlayer(TTS(), AudioOutput())
        player.speak("Hello there!", on_complete=lambda: print("done"))
    """

    def __init__(self, tts, output: AudioOutput):
        self.tts = tts
        self.output = output
        self._speak_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._stop_requested = threading.Event()
        self._stats = {"utterances": 0, "interrupted": 0, "errors": 0}

    def speak(self, text: str, on_complete: Optional[Callable[[], None]] = None) -> None:
        self._stop_requested.clear()
        self._idle.clear()
        thread = threading.Thread(
            target=self._speak_worker,
            args=(text, on_complete),
            name="speech-player",
            daemon=True,
        )
        thread.start()

    def speak_blocking(self, text: str) -> None:
        """Synthesize and play on the calling thread."""
        self._stop_requested.clear()
        with self._speak_lock:
            self._play(text)

    def _speak_worker(self, text: str, on_complete: Optional[Callable[[], None]]) -> None:
        try:
            with self._speak_lock:
                self._play(text)
        except Exception as e:
            self._stats["errors"] += 1
            print(f"[TTS] Playback error: {e}")
        finally:
            self._idle.set()
            if on_complete is not None:
                try:
                    on_complete()
                except Exception as e:
                    print(f"[TTS] Completion callback error: {e}")

    def _play(self, text: str) -> None:
        for sentence in split_sentences(text):
            if self._stop_requested.is_set():
                self._stats["interrupted"] += 1
                return
            audio, sample_rate = self.tts.synthesize(sentence)
            if audio.size:
                self.output.play(audio, sample_rate, blocking=True)
        self._stats["utterances"] += 1

    def stop(self) -> None:
        """Cut the current utterance short; remaining sentences are skipped (on_complete still fires)."""
        self._stop_requested.set()
        self.output.stop()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is being spoken. Returns False on timeout."""
        return self._idle.wait(timeout)

    @property
    def is_speaking(self) -> bool:
        return not self._idle.is_set()

    def get_stats(self) -> Dict:
        return dict(self._stats)


VOICES = {
    "en_US-amy-medium": "en/en_US/amy/medium/en_US-amy-medium",
    "en_US-lessac-medium": "en/en_US/lessac/medium/en_US-lessac-medium",
    "en_GB-alba-medium": "en/en_GB/alba/medium/en_GB-alba-medium",
}


def download_voice(voice: str = "en_US-amy-medium", output_dir: str = "models/tts") -> str:
    """
    Download a Piper voice (.onnx + .onnx.json) from Hugging Face.

    Returns:
        Path to the .onnx file
    """
    if voice not in VOICES:
        raise ValueError(f"Unknown voice: {voice}. Available: {', '.join(VOICES)}")

    try:
        from huggingface_hub import hf_hub_download
    except ImportError:
        raise ImportError("Install huggingface-hub: pip install huggingface-hub")

    print(f"[TTS] Downloading voice {voice}...")
    model_path = hf_hub_download("rhasspy/piper-voices", f"{VOICES[voice]}.onnx", local_dir=output_dir)
    hf_hub_download("rhasspy/piper-voices", f"{VOICES[voice]}.onnx.json", local_dir=output_dir)
    print(f"[TTS] Saved to: {model_path}")
    return model_path
