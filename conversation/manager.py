"""
Voice Conversation - Conversation Manager
=========================================

Owns one conversation: the ordered turns, the current assessment focus,
and the processing of one user utterance at a time.

Per user turn:
1. Transcribe the captured audio (placeholder text on failure)
2. Record the user turn and move the focus along the schedule
3. Generate a reply for the focus (canned follow-up on failure)
4. Record the reply and hand it back for playback

A turn never fails because an AI service did: failures and timeouts are
replaced by fallback text, logged, and counted in the metrics. Starting a
second turn while one is in flight raises ConversationBusyError at once.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Tuple
import numpy as np
import queue
import threading
import time

from core.errors import (
    CollaboratorBusyError,
    CollaboratorTimeoutError,
    ConversationBusyError,
    GenerationError,
    InvalidStateError,
    TranscriptionError,
)
from core.llm import ResponseGenerator
from core.stt import Transcriber
from conversation.config import ConversationConfig
from conversation.focus import AssessmentFocus, next_focus
from conversation.prompts import FALLBACK_RESPONSES, TRANSCRIPTION_PLACEHOLDER


class Speaker(Enum):
    USER = "user"
    AGENT = "ai"


@dataclass(frozen=True)
class Turn:
    """One utterance in the conversation. Never changed once recorded."""
    speaker: Speaker
    text: str
    timestamp: float                     # Wall-clock seconds
    elapsed_since_previous: float = 0.0  # Seconds, see ConversationManager metrics
    raw_audio: Optional[np.ndarray] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ConversationMetrics:
    total_turns: int = 0
    user_turns: int = 0
    agent_turns: int = 0
    average_turn_duration: float = 0.0
    average_user_response_time: float = 0.0
    total_duration: float = 0.0
    transcription_fallbacks: int = 0
    generation_fallbacks: int = 0


@dataclass(frozen=True)
class ConversationSummary:
    transcript: str
    turns: Tuple[Turn, ...]
    metrics: ConversationMetrics
    started_at: float
    ended_at: float

    def to_dict(self) -> Dict:
        """JSON-friendly form (raw audio left out)."""
        return {
            "transcript": self.transcript,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "turns": [
                {
                    "speaker": turn.speaker.value,
                    "text": turn.text,
                    "timestamp": turn.timestamp,
                    "elapsed_since_previous": turn.elapsed_since_previous,
                }
                for turn in self.turns
            ],
            "metrics": asdict(self.metrics),
        }


class ConversationState(Enum):
    IDLE = auto()        # Not started (or reset)
    READY = auto()       # Waiting for the next user turn
    PROCESSING = auto()  # A user turn is in flight
    ENDED = auto()       # Frozen, summary available


class CollaboratorCall:
    """
    Runs calls to one collaborator on a daemon thread, one at a time.

    A call that times out is abandoned but keeps the collaborator reserved
    until it actually returns. Calls made meanwhile raise
    CollaboratorBusyError at once instead of running alongside it.

    Usage:
        transcribe = CollaboratorCall("Transcription")
        result = transcribe(lambda: stt.transcribe(audio), timeout=30.0)
    """

    def __init__(self, name: str):
        self.name = name
        self._running = threading.Lock()  # Released by the worker when fn returns

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def __call__(self, fn: Callable, timeout: float):
        if not self._running.acquire(blocking=False):
            raise CollaboratorBusyError(f"{self.name} is still running a call that timed out")

        results: queue.Queue = queue.Queue(maxsize=1)

        def worker():
            try:
                outcome = (True, fn())
            except Exception as e:
                outcome = (False, e)
            # Release first so the caller can start the next call right away
            self._running.release()
            results.put(outcome)

        threading.Thread(target=worker, name=f"{self.name.lower()}-call", daemon=True).start()
        try:
            ok, value = results.get(timeout=timeout)
        except queue.Empty:
            raise CollaboratorTimeoutError(
                f"{self.name} did not finish within {timeout:.1f}s"
            ) from None
        if not ok:
            raise value
        return value


def call_with_timeout(fn: Callable, timeout: float, name: str):
    """
    Run fn on a daemon thread and return its result.

    Exceptions raised by fn are re-raised here. After `timeout` seconds the
    call is abandoned (the thread keeps running) and CollaboratorTimeoutError
    is raised.
    """
    return CollaboratorCall(name)(fn, timeout)


def _mean_nonzero(values: List[float]) -> float:
    values = [v for v in values if v > 0]
    return sum(values) / len(values) if values else 0.0


class ConversationManager:
    """
    Turn-taking core of a voice conversation.

    Usage:
        manager = ConversationManager(WhisperTranscriber(), LlamaResponder(llm_config))
        manager.start()
        manager.add_agent_turn("Good morning! How are you feeling?")

        reply = manager.process_user_turn(audio)   # never fails on AI errors
        ...
        summary = manager.end()
        print(summary.transcript)

    Collaborators are called on a worker thread and abandoned after the
    configured timeout, so a hung service cannot keep the conversation busy.
    Until an abandoned call returns, that collaborator is skipped (fallback
    text) rather than called a second time.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        generator: ResponseGenerator,
        config: Optional[ConversationConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.transcriber = transcriber
        self.generator = generator
        self.config = config or ConversationConfig()
        self._clock = clock

        self._busy = threading.Lock()   # Held for the whole of any state change
        self._data_lock = threading.Lock()  # Guards turns for concurrent readers
        self._transcription_call = CollaboratorCall("Transcription")
        self._generation_call = CollaboratorCall("Generation")

        self._stats = {
            "turns_processed": 0,
            "busy_rejections": 0,
            "transcription_fallbacks": 0,
            "generation_fallbacks": 0,
            "timeouts": 0,
            "skipped_calls": 0,
        }
        self._reset_session()

    def _reset_session(self) -> None:
        self._state = ConversationState.IDLE
        self._turns: List[Turn] = []
        self._current_focus = AssessmentFocus.GENERAL
        self._started_at: Optional[float] = None
        self._ended_at: Optional[float] = None
        self._last_turn_at: Optional[float] = None
        self._transcription_fallbacks = 0
        self._generation_fallbacks = 0
        self._summary: Optional[ConversationSummary] = None

    def _acquire(self, operation: str) -> None:
        if not self._busy.acquire(blocking=False):
            self._stats["busy_rejections"] += 1
            raise ConversationBusyError(f"Cannot {operation}: a user turn is being processed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Open the conversation (IDLE -> READY)."""
        self._acquire("start")
        try:
            if self._state is not ConversationState.IDLE:
                raise InvalidStateError(f"Cannot start a conversation in state {self._state.name}")
            self._started_at = self._clock()
            self._last_turn_at = self._started_at
            self._state = ConversationState.READY
        finally:
            self._busy.release()
        print("[Conversation] Started")

    def end(self) -> ConversationSummary:
        """
        Freeze the conversation and return its summary.

        Calling end() again returns the same summary object.
        """
        self._acquire("end the conversation")
        try:
            if self._state is ConversationState.ENDED:
                return self._summary
            if self._state is ConversationState.IDLE:
                raise InvalidStateError("Conversation has not been started")

            self._ended_at = self._clock()
            self._state = ConversationState.ENDED
            with self._data_lock:
                turns = tuple(self._turns)
            self._summary = ConversationSummary(
                transcript=self._format_transcript(turns),
                turns=turns,
                metrics=self._compute_metrics(turns, self._ended_at),
                started_at=self._started_at,
                ended_at=self._ended_at,
            )
        finally:
            self._busy.release()

        metrics = self._summary.metrics
        print(f"[Conversation] Ended: {metrics.total_turns} turns in {metrics.total_duration:.1f}s "
              f"({metrics.transcription_fallbacks} transcription / "
              f"{metrics.generation_fallbacks} generation fallbacks)")
        return self._summary

    def reset(self) -> None:
        """Drop everything and return to IDLE."""
        self._acquire("reset")
        try:
            with self._data_lock:
                self._reset_session()
        finally:
            self._busy.release()
        if self.config.debug:
            print("[Conversation] Reset")

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def add_agent_turn(self, text: str) -> Turn:
        """Record an agent line that was not a reply (e.g. the greeting)."""
        if not text or not text.strip():
            raise ValueError("Agent turn text must not be empty")

        self._acquire("add an agent turn")
        try:
            self._require_ready()
            now = self._clock()
            turn = self._append(Speaker.AGENT, text.strip(), now, now - self._last_turn_at)
            self._last_turn_at = now
            return turn
        finally:
            self._busy.release()

    def process_user_turn(self, audio_segment: np.ndarray) -> str:
        """
        Handle one user utterance and return the reply to speak.

        Raises:
            ConversationBusyError: another turn is in flight (nothing recorded)
            InvalidStateError: conversation not started or already ended

        Transcription and generation failures never propagate; they are
        replaced by TRANSCRIPTION_PLACEHOLDER and FALLBACK_RESPONSES.
        """
        self._acquire("process a user turn")
        try:
            self._require_ready()
            self._state = ConversationState.PROCESSING
            turn_start = self._clock()

            text = self._transcribe(audio_segment)
            self._append(
                Speaker.USER, text, self._clock(),
                turn_start - self._last_turn_at,
                raw_audio=audio_segment,
            )

            self._current_focus = next_focus(
                self._current_focus, len(self._turns), self.config.turns_per_focus,
            )

            reply = self._generate()
            replied_at = self._clock()
            self._append(Speaker.AGENT, reply, replied_at, replied_at - turn_start)
            self._last_turn_at = replied_at

            self._stats["turns_processed"] += 1
            if self.config.debug:
                print(f"[Conversation] Turn {len(self._turns)} done "
                      f"({replied_at - turn_start:.2f}s, focus={self._current_focus.value})")
            return reply
        finally:
            if self._state is ConversationState.PROCESSING:
                self._state = ConversationState.READY
            self._busy.release()

    def _require_ready(self) -> None:
        if self._state is not ConversationState.READY:
            raise InvalidStateError(f"Conversation is {self._state.name}, not READY")

    def _append(
        self,
        speaker: Speaker,
        text: str,
        timestamp: float,
        elapsed: float,
        raw_audio: Optional[np.ndarray] = None,
    ) -> Turn:
        turn = Turn(
            speaker=speaker,
            text=text,
            timestamp=timestamp,
            elapsed_since_previous=max(0.0, elapsed),
            raw_audio=raw_audio,
        )
        with self._data_lock:
            self._turns.append(turn)
        return turn

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    def _transcribe(self, audio_segment: np.ndarray) -> str:
        try:
            result = self._call_with_timeout(
                self._transcription_call,
                lambda: self.transcriber.transcribe(audio_segment),
                self.config.transcription_timeout_sec,
            )
            text = (result.text or "").strip()
            if not text:
                raise TranscriptionError("Empty transcript")
            if self.config.debug:
                print(f"[Conversation] User said: {text!r} (confidence {result.confidence:.2f})")
            return text
        except Exception as e:
            self._transcription_fallbacks += 1
            self._stats["transcription_fallbacks"] += 1
            print(f"[Conversation] Transcription failed, using placeholder: {e}")
            return TRANSCRIPTION_PLACEHOLDER

    def _generate(self) -> str:
        history = self.get_conversation_history()
        focus = self._current_focus
        try:
            reply = self._call_with_timeout(
                self._generation_call,
                lambda: self.generator.generate(history, focus),
                self.config.generation_timeout_sec,
            )
            reply = (reply or "").strip()
            if not reply:
                raise GenerationError("Empty reply")
            return reply
        except Exception as e:
            fallback = FALLBACK_RESPONSES[self._generation_fallbacks % len(FALLBACK_RESPONSES)]
            self._generation_fallbacks += 1
            self._stats["generation_fallbacks"] += 1
            print(f"[Conversation] Generation failed, using fallback reply: {e}")
            return fallback

    def generate_greeting(self, time_of_day: str) -> str:
        """
        Ask the generator for an opening line.

        Uses the same call slot as replies, so a greeting that times out
        is never overlapped by the first reply. Raises on any failure;
        the caller picks the fallback.
        """
        generate_greeting = getattr(self.generator, "generate_greeting", None)
        if generate_greeting is None:
            raise GenerationError("Generator cannot write greetings")
        greeting = self._call_with_timeout(
            self._generation_call,
            lambda: generate_greeting(time_of_day),
            self.config.generation_timeout_sec,
        )
        greeting = (greeting or "").strip()
        if not greeting:
            raise GenerationError("Empty greeting")
        return greeting

    def _call_with_timeout(self, call: CollaboratorCall, fn: Callable, timeout: float):
        try:
            return call(fn, timeout)
        except CollaboratorTimeoutError:
            self._stats["timeouts"] += 1
            raise
        except CollaboratorBusyError:
            self._stats["skipped_calls"] += 1
            raise

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConversationState:
        return self._state

    def is_currently_processing(self) -> bool:
        return self._state is ConversationState.PROCESSING

    def get_current_focus(self) -> AssessmentFocus:
        return self._current_focus

    def get_all_turns(self) -> List[Turn]:
        with self._data_lock:
            return list(self._turns)

    def get_conversation_history(self) -> List[Dict[str, str]]:
        """Turns as {"speaker": "user"|"ai", "text": ...} dicts, oldest first."""
        return [{"speaker": turn.speaker.value, "text": turn.text} for turn in self.get_all_turns()]

    def get_transcript(self) -> str:
        return self._format_transcript(self.get_all_turns())

    @staticmethod
    def _format_transcript(turns) -> str:
        return "\n".join(
            f"{'User' if turn.speaker is Speaker.USER else 'AI'}: {turn.text}"
            for turn in turns
        )

    def get_metrics(self) -> ConversationMetrics:
        """Metrics so far (final values once ended)."""
        if self._summary is not None:
            return self._summary.metrics
        return self._compute_metrics(self.get_all_turns(), self._clock())

    def _compute_metrics(self, turns, until: float) -> ConversationMetrics:
        user_turns = [t for t in turns if t.speaker is Speaker.USER]
        return ConversationMetrics(
            total_turns=len(turns),
            user_turns=len(user_turns),
            agent_turns=len(turns) - len(user_turns),
            average_turn_duration=_mean_nonzero([t.elapsed_since_previous for t in turns]),
            average_user_response_time=_mean_nonzero([t.elapsed_since_previous for t in user_turns]),
            total_duration=(until - self._started_at) if self._started_at is not None else 0.0,
            transcription_fallbacks=self._transcription_fallbacks,
            generation_fallbacks=self._generation_fallbacks,
        )

    def get_stats(self) -> Dict:
        """Counters across all conversations handled by this manager."""
        return dict(self._stats)
