"""
Voice Conversation - Voice Activity Detection Module
====================================================

Step 1: Decide when the speaker has started and stopped talking.

Energy-threshold detector with debounce:
1. Sample the audio source's energy level on a fixed cadence
2. Level at/above threshold -> speaking (speech start raised once)
3. Level below threshold while speaking -> silence timer runs
4. Silence long enough -> speech end, unless the segment was too short
   (coughs, clicks), in which case it is dropped without an event

Energy levels use a 0-255 scale (see utils.audio_utils.energy_level).
Defaults are tuned for a quiet room:
- silence_threshold=30:   below this counts as silence
- silence_duration=2000:  ms of continuous silence that ends an utterance
- min_speech=300:         ms of speech needed for a valid utterance

Events are pushed through a queue and delivered by one dispatcher thread,
so listeners always see them in the order they happened.
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Protocol
import queue
import threading
import time

from core.errors import AudioSourceError


@dataclass
class VADConfig:
    """Configuration for Voice Activity Detection."""
    silence_threshold: float = 30.0     # Energy (0-255) below which audio is silence
    silence_duration_ms: int = 2000     # Continuous silence that ends speech
    min_speech_duration_ms: int = 300   # Shorter segments are treated as noise
    sample_interval_ms: int = 100       # Polling cadence
    debug: bool = False                 # Print discarded segments


class VADEventType(Enum):
    """Kinds of events raised by the detector."""
    SPEECH_START = auto()
    SPEECH_END = auto()
    VOLUME_CHANGE = auto()


@dataclass(frozen=True)
class VADEvent:
    """One detector event."""
    kind: VADEventType
    timestamp_ms: float
    level: float = 0.0


@dataclass
class VADCallbacks:
    """Listener callbacks. Any of them may be left out."""
    on_speech_start: Optional[Callable[[], None]] = None
    on_speech_end: Optional[Callable[[], None]] = None
    on_volume_change: Optional[Callable[[float], None]] = None


class AudioSource(Protocol):
    """Live audio the detector can sample for energy."""

    def open(self) -> None: ...

    def get_energy_level(self) -> float: ...

    def close(self) -> None: ...


_STOP = object()


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class VoiceActivityDetector:
    """
    Debounced, threshold-based speech boundary detector.

    States: idle (not started), listening/not speaking, speaking, and
    silent-after-speech while the silence timer runs.

    Usage:
        vad = VoiceActivityDetector(VADConfig(silence_duration_ms=1500))

        vad.start(microphone, VADCallbacks(
            on_speech_start=lambda: print("listening..."),
            on_speech_end=handle_utterance,
        ))
        ...
        vad.stop()

    For offline analysis or tests, feed levels directly:
        events = vad.process_sample(42.0, now=1000.0)
    """

    def __init__(
        self,
        config: Optional[VADConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or VADConfig()
        self._validate(self.config)
        self._clock = clock or _monotonic_ms

        self._lock = threading.RLock()
        self._active = False
        self._source: Optional[AudioSource] = None
        self._events: Optional[queue.Queue] = None
        self._stop_event = threading.Event()
        self._sampler: Optional[threading.Thread] = None
        self._dispatcher: Optional[threading.Thread] = None

        # Detector state
        self._is_speaking = False
        self._speech_started_at: Optional[float] = None
        self._silence_started_at: Optional[float] = None
        self._speech_ms = 0.0  # Segment length before the current silence run

        self._stats = self._empty_stats()

    @staticmethod
    def _validate(config: VADConfig) -> None:
        if config.silence_threshold < 0:
            raise ValueError(f"silence_threshold must be >= 0, got {config.silence_threshold}")
        if config.silence_duration_ms < 0:
            raise ValueError(f"silence_duration_ms must be >= 0, got {config.silence_duration_ms}")
        if config.min_speech_duration_ms < 0:
            raise ValueError(f"min_speech_duration_ms must be >= 0, got {config.min_speech_duration_ms}")
        if config.sample_interval_ms <= 0:
            raise ValueError(f"sample_interval_ms must be > 0, got {config.sample_interval_ms}")

    @staticmethod
    def _empty_stats() -> Dict:
        return {
            "samples_processed": 0,
            "speech_starts": 0,
            "speech_segments": 0,
            "discarded_segments": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, source: AudioSource, callbacks: Optional[VADCallbacks] = None) -> None:
        """
        Open the source and begin sampling.

        Args:
            source: Audio source to analyse (owned by the detector until stop())
            callbacks: Listener for speech start/end and volume events

        Raises:
            AudioSourceError: the source could not be opened. The detector
                stays idle and start() may be retried.
        """
        with self._lock:
            if self._active:
                print("[VAD] Warning: already active, ignoring start()")
                return

            try:
                source.open()
            except Exception as e:
                raise AudioSourceError(f"Could not open audio source: {e}") from e

            self._source = source
            self._reset_state()
            self._events = queue.Queue()
            self._stop_event = threading.Event()
            self._active = True

            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                args=(self._events, callbacks or VADCallbacks(), self._stop_event),
                name="vad-dispatch",
                daemon=True,
            )
            self._sampler = threading.Thread(
                target=self._sample_loop,
                args=(source, self._stop_event),
                name="vad-sampler",
                daemon=True,
            )
            self._dispatcher.start()
            self._sampler.start()

        print("[VAD] Started monitoring")

    def stop(self) -> None:
        """
        Stop sampling and release the audio source.

        Safe to call when already stopped, and from inside a callback.
        Events still queued when stop() is called are discarded.
        """
        with self._lock:
            if not self._active:
                return

            self._active = False
            self._stop_event.set()
            sampler, dispatcher = self._sampler, self._dispatcher
            events, source = self._events, self._source
            self._sampler = None
            self._dispatcher = None
            self._events = None
            self._source = None
            self._reset_state()

        current = threading.current_thread()
        if sampler is not None and sampler is not current:
            sampler.join(timeout=1.0)

        if events is not None:
            events.put(_STOP)
        if dispatcher is not None and dispatcher is not current:
            dispatcher.join(timeout=1.0)

        if source is not None:
            try:
                source.close()
            except Exception as e:
                print(f"[VAD] Warning: error closing audio source: {e}")

        print("[VAD] Stopped monitoring")

    def update_config(self, **changes) -> VADConfig:
        """
        Change detector settings (takes effect on the next sample).

        Returns:
            The new configuration
        """
        with self._lock:
            new_config = replace(self.config, **changes)
            self._validate(new_config)
            self.config = new_config
        print(f"[VAD] Config updated: {new_config}")
        return new_config

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def process_sample(self, level: float, now: Optional[float] = None) -> List[VADEvent]:
        """
        Run one detection step for an energy level.

        Args:
            level: Energy level on the 0-255 scale
            now: Sample time in ms (defaults to the detector clock)

        Returns:
            Events raised by this sample, in order. While the detector is
            started they are also queued for the listener.
        """
        with self._lock:
            if now is None:
                now = self._clock()

            cfg = self.config
            events = [VADEvent(VADEventType.VOLUME_CHANGE, now, level)]
            self._stats["samples_processed"] += 1

            if level < cfg.silence_threshold:
                if self._is_speaking:
                    if self._silence_started_at is None:
                        # Speech -> trailing silence, timer starts
                        self._speech_ms += now - self._speech_started_at
                        self._speech_started_at = None
                        self._silence_started_at = now
                    elif now - self._silence_started_at >= cfg.silence_duration_ms:
                        segment_ms = self._speech_ms
                        self._is_speaking = False
                        self._silence_started_at = None
                        self._speech_ms = 0.0

                        if segment_ms >= cfg.min_speech_duration_ms:
                            self._stats["speech_segments"] += 1
                            events.append(VADEvent(VADEventType.SPEECH_END, now, level))
                            print(f"[VAD] Speech ended ({segment_ms:.0f}ms)")
                        else:
                            self._stats["discarded_segments"] += 1
                            if cfg.debug:
                                print(f"[VAD] Speech too short ({segment_ms:.0f}ms), ignoring")
            else:
                if self._silence_started_at is not None:
                    # Short dip: the silence belongs to the same segment
                    self._speech_ms += now - self._silence_started_at
                    self._silence_started_at = None
                    self._speech_started_at = now

                if not self._is_speaking:
                    self._is_speaking = True
                    self._speech_started_at = now
                    self._speech_ms = 0.0
                    self._stats["speech_starts"] += 1
                    events.append(VADEvent(VADEventType.SPEECH_START, now, level))
                    if cfg.debug:
                        print(f"[VAD] Speech started (level={level:.1f})")

            if self._active and self._events is not None:
                for event in events:
                    self._events.put(event)

            return events

    def _sample_loop(self, source: AudioSource, stop_event: threading.Event) -> None:
        """Poll the source until stopped."""
        while not stop_event.is_set():
            try:
                level = float(source.get_energy_level())
            except Exception as e:
                print(f"[VAD] Sampling error: {e}")
            else:
                with self._lock:
                    if not stop_event.is_set():
                        self.process_sample(level)
            stop_event.wait(self.config.sample_interval_ms / 1000.0)

    def _dispatch_loop(
        self,
        events: queue.Queue,
        callbacks: VADCallbacks,
        stop_event: threading.Event,
    ) -> None:
        """Deliver queued events one at a time, in order."""
        while True:
            event = events.get()
            if event is _STOP or stop_event.is_set():
                break
            self._deliver(event, callbacks)

    @staticmethod
    def _deliver(event: VADEvent, callbacks: VADCallbacks) -> None:
        try:
            if event.kind is VADEventType.VOLUME_CHANGE:
                if callbacks.on_volume_change:
                    callbacks.on_volume_change(event.level)
            elif event.kind is VADEventType.SPEECH_START:
                if callbacks.on_speech_start:
                    callbacks.on_speech_start()
            elif event.kind is VADEventType.SPEECH_END:
                if callbacks.on_speech_end:
                    callbacks.on_speech_end()
        except Exception as e:
            print(f"[VAD] Callback error ({event.kind.name}): {e}")

    def _reset_state(self) -> None:
        self._is_speaking = False
        self._speech_started_at = None
        self._silence_started_at = None
        self._speech_ms = 0.0

    def reset(self) -> None:
        """Forget any speech in progress (keeps the detector running)."""
        with self._lock:
            self._reset_state()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    def get_stats(self) -> Dict:
        """
        Get detector statistics.

        Returns:
            Dict with sample and segment counters
        """
        with self._lock:
            return dict(self._stats)

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        with self._lock:
            self._stats = self._empty_stats()


def start_voice_activity_detection(
    source: AudioSource,
    on_speech_end: Callable[[], None],
    config: Optional[VADConfig] = None,
) -> VoiceActivityDetector:
    """Create a detector, start it on `source`, and return it."""
    vad = VoiceActivityDetector(config)
    vad.start(source, VADCallbacks(
        on_speech_end=on_speech_end,
        on_speech_start=lambda: print("[VAD] User started speaking"),
    ))
    return vad
