"""
Voice Conversation - Audio Input Module
=======================================

Microphone source for the VAD.

Features:
- sounddevice InputStream with a thread-safe frame queue
- Frame alignment for consistent frame sizes
- Energy level on the 0-255 scale the VAD thresholds are tuned on
- Keeps the captured audio so the utterance can be handed to STT
- Falls back to the device's native rate (and resamples) when 16kHz is rejected
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import numpy as np
import queue
import threading

from utils.audio_utils import MAX_DB, MIN_DB, energy_level, resample
from utils.ring_buffer import FrameAligner, RingBuffer


@dataclass
class AudioInputConfig:
    sample_rate: int = 16000
    channels: int = 1
    frame_ms: int = 20
    device: Optional[int] = None
    mic_gain: float = 1.0          # Microphone boost (1.0 = none, 1.2 = 20% boost)
    queue_max_size: int = 200      # Max frames to buffer between samples
    max_segment_sec: float = 30.0  # Longest utterance kept for transcription
    min_db: float = MIN_DB         # dBFS mapped to energy 0
    max_db: float = MAX_DB         # dBFS mapped to energy 255


class MicrophoneSource:
    """
    Live microphone audio source.

    The VAD opens it, polls get_energy_level() and closes it. Everything
    captured between open() and close() is kept (newest max_segment_sec)
    and returned by take_segment().

    Usage:
        mic = MicrophoneSource(AudioInputConfig(device=2))
        vad.start(mic, VADCallbacks(on_speech_end=on_end))
        ...
        # after vad.stop():
        audio = mic.take_segment()   # float32, 16kHz mono
    """

    def __init__(self, config: Optional[AudioInputConfig] = None):
        self.config = config or AudioInputConfig()
        if self.config.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.config.sample_rate}")
        if self.config.min_db >= self.config.max_db:
            raise ValueError("min_db must be lower than max_db")

        self.frame_samples = int(self.config.sample_rate * self.config.frame_ms / 1000)

        self._stream = None
        self._running = False
        self._capture_rate = self.config.sample_rate
        self._queue: queue.Queue = queue.Queue(maxsize=self.config.queue_max_size)
        self._aligner = FrameAligner(self.frame_samples)
        self._segment = RingBuffer(int(self.config.sample_rate * self.config.max_segment_sec))
        self._lock = threading.Lock()
        self._last_level = 0.0

        self._stats = {
            "frames_captured": 0,
            "frames_dropped": 0,
            "overflows": 0,
        }

    # ------------------------------------------------------------------
    # AudioSource protocol
    # ------------------------------------------------------------------
    def open(self) -> None:
        """Start capturing. Raises whatever the audio backend raises."""
        if self._running:
            return

        with self._lock:
            self._aligner.clear()
            self._segment.clear()
            self._last_level = 0.0
        self._drain_queue()

        try:
            self._start_stream(self.config.sample_rate)
        except Exception as e:
            native_rate = self._device_default_rate()
            if native_rate is None or native_rate == self.config.sample_rate:
                self._print_mic_help(e)
                raise
            print(f"[Mic] {self.config.sample_rate}Hz rejected ({e}), capturing at {native_rate}Hz")
            try:
                self._start_stream(native_rate)
            except Exception as e2:
                self._print_mic_help(e2)
                raise

        self._running = True
        print(f"[Mic] Capture started ({self._capture_rate}Hz)")

    def get_energy_level(self) -> float:
        """
        Energy of the audio captured since the last call (0-255).

        Returns the previous level when no new frame arrived yet.
        """
        frames = self._drain_queue()
        if not frames:
            return self._last_level

        block = np.concatenate(frames)
        with self._lock:
            self._segment.push(block)
            self._last_level = energy_level(block, self.config.min_db, self.config.max_db)
            return self._last_level

    def close(self) -> None:
        """Stop capturing. Captured audio stays available to take_segment()."""
        if not self._running:
            return
        self._running = False

        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            finally:
                self._stream = None

        if self._stats["overflows"]:
            print(f"[Mic] {self._stats['overflows']} input overflows")
        print("[Mic] Capture stopped")

    # ------------------------------------------------------------------
    # Segment access
    # ------------------------------------------------------------------
    def take_segment(self) -> np.ndarray:
        """
        Return the audio captured since open() and clear it.

        Returns:
            float32 mono audio at config.sample_rate
        """
        pending = self._drain_queue()
        with self._lock:
            for frame in pending:
                self._segment.push(frame)
            if self._segment.overwritten:
                print(f"[Mic] Utterance longer than {self.config.max_segment_sec:.0f}s, "
                      f"kept the last part")
            audio = self._segment.get_all()
            self._segment.clear()
        return audio

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------
    def _start_stream(self, capture_rate: int) -> None:
        import sounddevice as sd

        self._capture_rate = capture_rate
        blocksize = int(capture_rate * self.config.frame_ms / 1000)
        self._stream = sd.InputStream(
            samplerate=capture_rate,
            channels=self.config.channels,
            dtype='float32',
            blocksize=blocksize,
            callback=self._audio_callback,
            device=self.config.device,
            latency='low',
        )
        self._stream.start()

    def _device_default_rate(self) -> Optional[int]:
        try:
            import sounddevice as sd
            info = sd.query_devices(self.config.device, 'input')
            return int(info['default_samplerate'])
        except Exception:
            return None

    def _audio_callback(self, indata, frames, time_info, status):
        """Callback function for sounddevice stream."""
        if status and status.input_overflow:
            self._stats["overflows"] += 1

        audio = np.asarray(indata, dtype=np.float32)
        if audio.ndim > 1:
            audio = audio.mean(axis=1)
        if self.config.mic_gain != 1.0:
            audio = (audio * self.config.mic_gain).clip(-1.0, 1.0)
        if self._capture_rate != self.config.sample_rate:
            audio = resample(audio, self._capture_rate, self.config.sample_rate)

        with self._lock:
            self._aligner.push(audio)
            for frame in self._aligner.pop_all():
                self._stats["frames_captured"] += 1
                try:
                    self._queue.put_nowait(frame.copy())
                except queue.Full:
                    # Drop oldest frame to make room
                    self._stats["frames_dropped"] += 1
                    try:
                        self._queue.get_nowait()
                        self._queue.put_nowait(frame.copy())
                    except queue.Empty:
                        pass

    def _drain_queue(self) -> List[np.ndarray]:
        frames = []
        while True:
            try:
                frames.append(self._queue.get_nowait())
            except queue.Empty:
                return frames

    def _print_mic_help(self, err: Exception) -> None:
        print(f"[Mic] Error opening microphone: {err}")
        devices = self.list_devices()
        if devices:
            print(f"[Mic] Available input devices ({len(devices)}):")
            for d in devices[:8]:
                print(f"        [{d['index']}] {d['name']} ({d['sample_rate']} Hz)")
        else:
            print("[Mic] No input devices found. Check mic connection and drivers.")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._running

    @property
    def capture_rate(self) -> int:
        """Rate the device is actually running at."""
        return self._capture_rate

    def get_stats(self) -> Dict:
        return dict(self._stats)

    @staticmethod
    def list_devices() -> List[Dict]:
        """
        List available audio input devices.

        Returns:
            List of dicts with keys: index, name, channels, sample_rate
        """
        try:
            import sounddevice as sd
            all_devices = sd.query_devices()
        except Exception:
            return []

        devices = []
        for i, dev in enumerate(all_devices):
            if dev['max_input_channels'] > 0:
                devices.append({
                    'index': i,
                    'name': dev['name'],
                    'channels': dev['max_input_channels'],
                    'sample_rate': int(dev['default_samplerate']),
                })
        return devices

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
