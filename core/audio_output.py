"""
Voice Conversation - Audio Output Module
========================================

Plays synthesized speech through the speakers (sounddevice / PortAudio).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import numpy as np
import threading

from utils.audio_utils import apply_fade, int16_to_float

# Import sounddevice
try:
    import sounddevice as sd
    HAS_SOUNDDEVICE = True
except (ImportError, OSError):  # OSError: PortAudio library missing
    HAS_SOUNDDEVICE = False
    print("[AudioOutput] Warning: sounddevice not installed")


@dataclass
class AudioOutputConfig:
    """Configuration for audio output."""
    device: Optional[int] = None    # None = default device
    volume: float = 1.0             # 0.0 to 1.0
    latency: str = "low"            # "low", "high"
    fade_ms: int = 10               # Fade in/out to avoid clicks


class AudioOutput:
    """
    Plays audio through system speakers.

    Usage:
        output = AudioOutput()
        output.play(audio, sample_rate)                  # Blocking
        output.play(audio, sample_rate, blocking=False)
        output.stop()                                    # Cut it short
    """

    def __init__(self, config: Optional[AudioOutputConfig] = None):
        if not HAS_SOUNDDEVICE:
            raise ImportError(
                "sounddevice not installed. "
                "Run: pip install sounddevice"
            )

        self.config = config or AudioOutputConfig()
        if not 0.0 <= self.config.volume <= 1.0:
            raise ValueError(f"volume must be between 0 and 1, got {self.config.volume}")

        self._is_playing = False
        self._lock = threading.Lock()

        if self.config.device is not None:
            devices = sd.query_devices()
            if self.config.device >= len(devices):
                raise ValueError(f"Device {self.config.device} not found")

        print(f"[AudioOutput] Initialized (device: {self.config.device or 'default'}, "
              f"volume: {self.config.volume:.0%})")

    def prepare(self, audio: np.ndarray, sample_rate: int) -> np.ndarray:
        """Convert to float32, apply volume and fades, shape for playback."""
        if audio.dtype == np.int16:
            audio = int16_to_float(audio)
        audio = np.clip(audio.astype(np.float32) * self.config.volume, -1.0, 1.0)

        fade_samples = int(self.config.fade_ms * sample_rate / 1000)
        audio = apply_fade(audio, fade_samples, fade_samples)
        return audio.reshape(-1, 1)

    def play(self, audio: np.ndarray, sample_rate: int, blocking: bool = True) -> None:
        """
        Play audio through speakers.

        Args:
            audio: Audio data (int16 or float32), mono
            sample_rate: Sample rate in Hz
            blocking: If True, wait for playback to finish
        """
        self.stop()
        if audio.size == 0:
            return

        data = self.prepare(audio, sample_rate)

        with self._lock:
            self._is_playing = True

        try:
            sd.play(
                data,
                samplerate=sample_rate,
                device=self.config.device,
                latency=self.config.latency,
            )
            if blocking:
                sd.wait()
        except sd.PortAudioError as e:
            print(f"[AudioOutput] Warning: playback error: {e}")
        finally:
            if blocking:
                with self._lock:
                    self._is_playing = False

    def stop(self) -> None:
        """Stop current playback immediately."""
        sd.stop()
        with self._lock:
            self._is_playing = False

    def wait(self) -> None:
        """Wait for non-blocking playback to finish."""
        sd.wait()
        with self._lock:
            self._is_playing = False

    def is_playing(self) -> bool:
        with self._lock:
            return self._is_playing

    def set_volume(self, volume: float) -> None:
        self.config.volume = max(0.0, min(1.0, volume))

    @staticmethod
    def list_devices() -> List[Dict]:
        """
        List available audio output devices.

        Returns:
            List of dicts with keys: index, name, channels, sample_rate
        """
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device['max_output_channels'] > 0:
                devices.append({
                    'index': i,
                    'name': device['name'],
                    'channels': device['max_output_channels'],
                    'sample_rate': int(device['default_samplerate']),
                })
        return devices
