"""
Shared fixtures and fakes for the voice conversation tests.
"""

import sys
import threading
import time
from pathlib import Path

# Ensure the project root is on path when running tests
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from core.stt import TranscriptionResult


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTranscriber:
    def __init__(self, text="I went to the market this morning", error=None,
                 delay=0.0, gate=None, on_call=None):
        self.text = text
        self.error = error
        self.delay = delay
        self.gate = gate
        self.on_call = on_call
        self.calls = []

    def transcribe(self, audio):
        self.calls.append(audio)
        if self.on_call:
            self.on_call()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TranscriptionResult(
            text=self.text,
            confidence=0.9,
            word_count=len(self.text.split()),
            duration_seconds=len(audio) / 16000,
        )


class FakeGenerator:
    def __init__(self, replies=None, error=None, delay=0.0, on_call=None):
        self.replies = list(replies or ["What did you buy there?"])
        self.error = error
        self.delay = delay
        self.on_call = on_call
        self.calls = []

    def generate(self, history, focus):
        self.calls.append((list(history), focus))
        if self.on_call:
            self.on_call()
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.replies[(len(self.calls) - 1) % len(self.replies)]


class GreetingGenerator(FakeGenerator):
    def __init__(self, greeting="Good morning! How was your day?", **kwargs):
        super().__init__(**kwargs)
        self.greeting = greeting
        self.greeting_calls = []

    def generate_greeting(self, time_of_day):
        self.greeting_calls.append(time_of_day)
        return self.greeting


class ScriptedSource:
    """Audio source returning scripted energy levels and a fixed segment."""

    def __init__(self, levels=(), segment=None, open_error=None):
        self.levels = list(levels)
        self.segment = segment if segment is not None else np.zeros(16000, dtype=np.float32)
        self.open_error = open_error
        self.opened = 0
        self.closed = 0
        self._index = 0
        self._lock = threading.Lock()

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened += 1

    def get_energy_level(self):
        with self._lock:
            if not self.levels:
                return 0.0
            level = self.levels[min(self._index, len(self.levels) - 1)]
            self._index += 1
            return level

    def close(self):
        self.closed += 1

    def take_segment(self):
        return self.segment


class FakeSpeaker:
    """Records what was spoken; completes immediately unless told to hold."""

    def __init__(self, complete_immediately=True):
        self.complete_immediately = complete_immediately
        self.spoken = []
        self.pending = []
        self.stopped = 0

    def speak(self, text, on_complete=None):
        self.spoken.append(text)
        if on_complete is None:
            return
        if self.complete_immediately:
            on_complete()
        else:
            self.pending.append(on_complete)

    def complete(self):
        callbacks, self.pending = self.pending, []
        for callback in callbacks:
            callback()

    def stop(self):
        self.stopped += 1


class FakeVAD:
    """Stands in for the detector; speech events are fired by the test."""

    def __init__(self, start_error=None):
        self.start_error = start_error
        self.starts = 0
        self.stops = 0
        self.callbacks = None
        self.active = False

    def start(self, source, callbacks):
        if self.start_error is not None:
            raise self.start_error
        self.starts += 1
        self.callbacks = callbacks
        self.active = True

    def stop(self):
        self.stops += 1
        self.active = False

    def speech_end(self):
        self.callbacks.on_speech_end()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fast_config():
    """Conversation config with short collaborator timeouts."""
    from conversation.config import ConversationConfig
    return ConversationConfig(transcription_timeout_sec=1.0, generation_timeout_sec=1.0)


@pytest.fixture
def speech():
    """One second of quiet 16kHz audio standing in for an utterance."""
    return (np.random.default_rng(0).standard_normal(16000) * 0.05).astype(np.float32)
