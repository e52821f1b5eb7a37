"""
Voice Conversation - Session
============================

Wires the microphone, VAD, conversation manager and speech playback into a
hands-free conversation:

    greeting -> speak -> listen -> (speech end) -> stop VAD -> take audio
             -> process turn -> speak reply -> listen -> ...

Only one turn is processed at a time. The VAD is stopped while a turn is
processed and spoken, so the companion never hears itself.
"""

from typing import Callable, Optional, Protocol
import sys
import threading
import time

import numpy as np

from core.errors import (
    AudioSourceError,
    ConversationBusyError,
    InvalidStateError,
    VoiceConversationError,
)
from core.vad import AudioSource, VADCallbacks
from conversation.config import STATE_DISPLAY, ConversationConfig, SessionState, load_config
from conversation.manager import ConversationManager, ConversationSummary
from conversation.prompts import fallback_greeting, get_time_of_day


class SegmentSource(AudioSource, Protocol):
    """Audio source that also keeps the captured utterance."""

    def take_segment(self) -> np.ndarray: ...


class Speaker(Protocol):
    def speak(self, text: str, on_complete: Optional[Callable[[], None]] = None) -> None: ...


class VoiceConversation:
    """
    One hands-free conversation.

    Usage:
        session = VoiceConversation(manager, vad, microphone, speaker, config)
        session.begin()          # greets, then listens
        ...
        summary = session.finish()

    Errors that do not end the conversation (busy, microphone problems)
    are printed and passed to on_error. If the microphone cannot be opened,
    call listen() to retry.
    """

    def __init__(
        self,
        manager: ConversationManager,
        vad,
        source: SegmentSource,
        speaker: Speaker,
        config: Optional[ConversationConfig] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
    ):
        self.manager = manager
        self.vad = vad
        self.source = source
        self.speaker = speaker
        self.config = config or manager.config
        self.on_error = on_error
        self.on_state_change = on_state_change

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._listen_lock = threading.Lock()
        self._finished = threading.Event()
        self._turn_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def begin(self) -> str:
        """
        Start the conversation with a greeting.

        Returns:
            The greeting being spoken
        """
        if self._state is not SessionState.IDLE or self._finished.is_set():
            raise InvalidStateError("Session has already begun")

        self.manager.start()
        greeting = self._make_greeting()
        self.manager.add_agent_turn(greeting)
        print(f"[Session] AI: {greeting}")

        self._set_state(SessionState.SPEAKING)
        self.speaker.speak(greeting, on_complete=self.listen)
        return greeting

    def listen(self) -> None:
        """Start listening for the next utterance."""
        error = None
        with self._listen_lock:
            if self._finished.is_set():
                return
            self._set_state(SessionState.LISTENING)
            try:
                self.vad.start(self.source, VADCallbacks(
                    on_speech_start=self._on_speech_start,
                    on_speech_end=self._on_speech_end,
                ))
            except AudioSourceError as e:
                error = e
        if error is not None:
            self._set_state(SessionState.IDLE)
            self._report(error)

    def finish(self) -> ConversationSummary:
        """
        Stop listening, wait for the turn in flight, and end the conversation.

        Returns:
            The conversation summary
        """
        with self._listen_lock:
            self._finished.set()
            self.vad.stop()

        turn = self._turn_thread
        if turn is not None and turn is not threading.current_thread():
            turn.join(timeout=self.config.transcription_timeout_sec
                      + self.config.generation_timeout_sec + 1.0)

        stop = getattr(self.speaker, "stop", None)
        if stop is not None:
            stop()

        summary = self.manager.end()
        self._set_state(SessionState.ENDED)
        return summary

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------
    def _on_speech_start(self) -> None:
        if self.config.debug:
            print("[Session] Speech detected")

    def _on_speech_end(self) -> None:
        """Runs on the VAD dispatcher thread."""
        self.vad.stop()
        if self._finished.is_set():
            return

        segment = self.source.take_segment()
        if len(segment) < self.config.min_segment_samples:
            print(f"[Session] Utterance too short ({len(segment)} samples), listening again")
            self.listen()
            return

        self._set_state(SessionState.PROCESSING)
        self._turn_thread = threading.Thread(
            target=self._run_turn,
            args=(segment,),
            name="conversation-turn",
            daemon=True,
        )
        self._turn_thread.start()

    def _run_turn(self, segment: np.ndarray) -> None:
        try:
            reply = self.manager.process_user_turn(segment)
        except ConversationBusyError as e:
            # The turn in flight will resume listening
            self._report(e)
            return
        except InvalidStateError as e:
            self._report(e)
            return

        if self._finished.is_set():
            return

        turns = self.manager.get_all_turns()
        if len(turns) >= 2:
            print(f"[Session] User: {turns[-2].text}")
        print(f"[Session] AI: {reply}")

        self._set_state(SessionState.SPEAKING)
        self.speaker.speak(reply, on_complete=self.listen)

    def _make_greeting(self) -> str:
        """Ask the generator for an opening line, or use a canned one."""
        time_of_day = get_time_of_day()
        if hasattr(self.manager.generator, "generate_greeting"):
            try:
                return self.manager.generate_greeting(time_of_day)
            except Exception as e:
                print(f"[Session] Greeting generation failed, using fallback: {e}")
        return fallback_greeting(self.config.user_name, time_of_day)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def _set_state(self, state: SessionState) -> None:
        with self._state_lock:
            if self._state is SessionState.ENDED:
                return
            self._state = state
        if self.config.debug:
            print(f"Status: {STATE_DISPLAY[state]}")
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _report(self, error: Exception) -> None:
        print(f"[Session] {type(error).__name__}: {error}")
        if self.on_error is not None:
            self.on_error(error)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._finished.is_set()


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def _print_summary(summary: ConversationSummary) -> None:
    metrics = summary.metrics
    print("\n" + "=" * 60)
    print(" Transcript")
    print("=" * 60)
    print(summary.transcript or "(no turns)")
    print("\n" + "=" * 60)
    print(" Metrics")
    print("=" * 60)
    print(f"  Turns: {metrics.total_turns} ({metrics.user_turns} user, {metrics.agent_turns} AI)")
    print(f"  Duration: {metrics.total_duration:.1f}s")
    print(f"  Avg turn: {metrics.average_turn_duration:.1f}s, "
          f"avg user response: {metrics.average_user_response_time:.1f}s")
    print(f"  Fallbacks: {metrics.transcription_fallbacks} transcription, "
          f"{metrics.generation_fallbacks} generation")


def main():
    """Run a voice conversation until Ctrl+C."""
    from conversation.components import ComponentManager

    print()
    print("🎙️  Voice Conversation")
    print("=" * 40)
    print()

    config = load_config()

    try:
        components = ComponentManager(config)
        components.initialize_all()
    except (FileNotFoundError, ImportError, ValueError) as e:
        print(f"\n❌ Error: {e}")
        print("\nMake sure the model backends are installed and the models downloaded:")
        print("  - pip install -e .[models]")
        print("  - LLM: models/llm/*.gguf")
        print("  - TTS: models/tts/**/*.onnx")
        sys.exit(1)

    manager = ConversationManager(components.stt, components.llm, config)
    session = VoiceConversation(
        manager,
        components.vad,
        components.microphone,
        components.speaker,
        config,
        on_state_change=lambda state: print(f"\rStatus: {STATE_DISPLAY[state]}"),
    )

    print("Press Ctrl+C to end the conversation.\n")
    try:
        session.begin()
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("\n\nEnding conversation...")
    except VoiceConversationError as e:
        print(f"\n❌ Error: {e}")

    try:
        _print_summary(session.finish())
    except VoiceConversationError as e:
        print(f"Could not end the conversation cleanly: {e}")
    finally:
        components.stop()

    print("\n👋 Goodbye!")


if __name__ == "__main__":
    main()
