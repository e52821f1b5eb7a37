"""
Voice Conversation - Speech-to-Text Module
==========================================

Step 2: Convert the user's utterance to text using faster-whisper.

Any object with a `transcribe(audio) -> TranscriptionResult` method can be
used by the conversation manager; WhisperTranscriber is the local backend.

Model sizes:
- tiny: ~400MB RAM, fastest, good quality
- tiny.en: ~400MB RAM, faster (English only), better English
- base: ~500MB RAM, medium speed, better quality
- small: ~1GB RAM, slower, best quality
"""

from dataclasses import dataclass
from typing import Dict, Optional, Protocol
from pathlib import Path
import math
import numpy as np
import os
import threading
import time

from core.errors import TranscriptionError

# Import faster-whisper
try:
    from faster_whisper import WhisperModel
    HAS_FASTER_WHISPER = True
except ImportError:
    HAS_FASTER_WHISPER = False
    print("[STT] Warning: faster-whisper not installed")


@dataclass(frozen=True)
class TranscriptionResult:
    """Text recovered from one utterance."""
    text: str
    confidence: float = 0.0        # 0..1
    word_count: int = 0
    duration_seconds: float = 0.0  # Length of the transcribed audio


class Transcriber(Protocol):
    def transcribe(self, audio: np.ndarray) -> TranscriptionResult: ...


@dataclass
class STTConfig:
    """Configuration for Speech-to-Text."""
    model_size: str = "tiny.en"     # tiny, tiny.en, base, small, or a local path
    device: str = "cpu"             # cpu or cuda
    compute_type: str = "int8"      # int8, float16, float32
    beam_size: int = 1              # 1 for speed, 3-5 for accuracy
    language: Optional[str] = "en"  # None for auto-detect
    cpu_threads: int = 4
    sample_rate: int = 16000        # Rate of the audio handed to transcribe()
    vad_filter: bool = False        # Segments are already cut by our VAD
    download_root: Optional[str] = None


class WhisperTranscriber:
    """
    Speech-to-Text using faster-whisper.

    Usage:
        stt = WhisperTranscriber(STTConfig(model_size="base.en"))
        result = stt.transcribe(audio_array)
        print(result.text, result.confidence)

    Raises TranscriptionError for empty audio, failed decoding, or when
    no words were recognised.
    """

    def __init__(self, config: Optional[STTConfig] = None):
        if not HAS_FASTER_WHISPER:
            raise ImportError(
                "faster-whisper not installed. "
                "Run: pip install faster-whisper"
            )

        self.config = config or STTConfig()

        if self.config.download_root:
            download_root = self.config.download_root
        else:
            project_root = Path(__file__).parent.parent
            download_root = str(project_root / "models" / "stt")
        os.makedirs(download_root, exist_ok=True)

        print(f"[STT] Loading model '{self.config.model_size}'...")
        print(f"      Device: {self.config.device}, Compute: {self.config.compute_type}")

        load_start = time.time()
        self._model = WhisperModel(
            model_size_or_path=self.config.model_size,
            device=self.config.device,
            compute_type=self.config.compute_type,
            cpu_threads=self.config.cpu_threads,
            download_root=download_root,
        )
        print(f"[STT] Model loaded in {time.time() - load_start:.1f}s")

        self._lock = threading.Lock()  # One decode at a time per model
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict:
        return {
            "transcriptions": 0,
            "failures": 0,
            "total_audio_seconds": 0.0,
            "total_processing_seconds": 0.0,
        }

    def transcribe(self, audio: np.ndarray) -> TranscriptionResult:
        """
        Transcribe one utterance.

        Args:
            audio: np.ndarray float32 (int16 accepted), mono at config.sample_rate

        Returns:
            TranscriptionResult with non-empty text
        """
        if audio is None or np.asarray(audio).size == 0:
            self._stats["failures"] += 1
            raise TranscriptionError("Empty audio")

        audio = np.asarray(audio)
        if audio.dtype == np.int16:
            audio = audio.astype(np.float32) / 32768.0
        elif audio.dtype != np.float32:
            audio = audio.astype(np.float32)
        if audio.ndim > 1:
            audio = audio.flatten()

        audio_duration = len(audio) / self.config.sample_rate

        with self._lock:
            start_time = time.time()
            try:
                segments, _info = self._model.transcribe(
                    audio,
                    beam_size=self.config.beam_size,
                    language=self.config.language,
                    vad_filter=self.config.vad_filter,
                    word_timestamps=False,
                )
                # Segments are decoded lazily, so consume them under the lock
                segments = list(segments)
            except Exception as e:
                self._stats["failures"] += 1
                raise TranscriptionError(f"Transcription failed: {e}") from e
            finally:
                self._stats["total_processing_seconds"] += time.time() - start_time

        text = " ".join(seg.text.strip() for seg in segments).strip()
        if not text:
            self._stats["failures"] += 1
            raise TranscriptionError("No speech recognised")

        self._stats["transcriptions"] += 1
        self._stats["total_audio_seconds"] += audio_duration

        return TranscriptionResult(
            text=text,
            confidence=self._confidence(segments),
            word_count=len(text.split()),
            duration_seconds=audio_duration,
        )

    @staticmethod
    def _confidence(segments) -> float:
        """Mean segment log-probability mapped to 0..1."""
        logprobs = [seg.avg_logprob for seg in segments if getattr(seg, "avg_logprob", None) is not None]
        if not logprobs:
            return 0.0
        return float(min(1.0, math.exp(sum(logprobs) / len(logprobs))))

    def get_stats(self) -> Dict:
        """
        Get transcription statistics.

        Returns:
            Dict with transcription stats including real-time factor
        """
        total_audio = self._stats["total_audio_seconds"]
        total_process = self._stats["total_processing_seconds"]
        return {
            **self._stats,
            "average_real_time_factor": total_process / total_audio if total_audio > 0 else 0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._stats = self._empty_stats()
