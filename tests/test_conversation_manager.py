"""
Tests: Conversation Manager (conversation/manager.py)
=====================================================

Run with pytest:
    python -m pytest tests/test_conversation_manager.py -v

Uses in-process fakes for the transcriber and generator; no models needed.
"""

import threading
import time

import numpy as np
import pytest

from core.errors import (
    CollaboratorBusyError,
    CollaboratorTimeoutError,
    ConversationBusyError,
    GenerationError,
    InvalidStateError,
)
from conversation.focus import AssessmentFocus
from conversation.manager import (
    CollaboratorCall,
    ConversationManager,
    ConversationState,
    Speaker,
    call_with_timeout,
)
from conversation.prompts import FALLBACK_RESPONSES, TRANSCRIPTION_PLACEHOLDER
from tests.conftest import FakeGenerator, FakeTranscriber


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def manager(transcriber, generator, fast_config):
    m = ConversationManager(transcriber, generator, fast_config)
    m.start()
    return m


def wait_until(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not condition() and time.monotonic() < deadline:
        time.sleep(0.01)
    assert condition()


# =============================================================================
# Turn processing
# =============================================================================

def test_greeting_and_first_turn(manager, speech):
    manager.add_agent_turn("Good morning! How are you feeling?")
    reply = manager.process_user_turn(speech)

    assert reply == "What did you buy there?"
    turns = manager.get_all_turns()
    assert [t.speaker for t in turns] == [Speaker.AGENT, Speaker.USER, Speaker.AGENT]
    assert turns[1].text == "I went to the market this morning"
    assert turns[2].text == reply
    assert manager.state is ConversationState.READY


def test_turn_timestamps_are_ordered(manager, speech):
    manager.add_agent_turn("Hello there!")
    for _ in range(3):
        manager.process_user_turn(speech)
    stamps = [t.timestamp for t in manager.get_all_turns()]
    assert stamps == sorted(stamps)


def test_user_turn_keeps_raw_audio(manager, speech):
    manager.process_user_turn(speech)
    user_turn = manager.get_all_turns()[0]
    assert user_turn.speaker is Speaker.USER
    assert user_turn.raw_audio is speech


def test_generator_sees_history_including_user_turn(manager, generator, speech):
    manager.add_agent_turn("Hello there!")
    manager.process_user_turn(speech)

    history, focus = generator.calls[0]
    assert history == [
        {"speaker": "ai", "text": "Hello there!"},
        {"speaker": "user", "text": "I went to the market this morning"},
    ]
    assert focus is AssessmentFocus.GENERAL


def test_focus_moves_through_bands(manager, generator, speech):
    for _ in range(7):
        manager.process_user_turn(speech)

    focuses = [focus for _, focus in generator.calls]
    assert focuses == [
        AssessmentFocus.GENERAL,    # 1 turn recorded
        AssessmentFocus.GENERAL,    # 3
        AssessmentFocus.MEMORY,     # 5
        AssessmentFocus.MEMORY,     # 7
        AssessmentFocus.LANGUAGE,   # 9
        AssessmentFocus.LANGUAGE,   # 11
        AssessmentFocus.EXECUTIVE,  # 13
    ]
    assert manager.get_current_focus() is AssessmentFocus.EXECUTIVE


def test_transcript_format(manager, speech):
    manager.add_agent_turn("Hello there!")
    manager.process_user_turn(speech)
    assert manager.get_transcript() == (
        "AI: Hello there!\n"
        "User: I went to the market this morning\n"
        "AI: What did you buy there?"
    )


def test_empty_agent_turn_rejected(manager):
    with pytest.raises(ValueError):
        manager.add_agent_turn("   ")
    assert manager.get_all_turns() == []


# =============================================================================
# Fallbacks
# =============================================================================

def test_transcription_failure_uses_placeholder(generator, fast_config, speech):
    manager = ConversationManager(FakeTranscriber(error=RuntimeError("model crashed")),
                                  generator, fast_config)
    manager.start()

    for _ in range(3):
        reply = manager.process_user_turn(speech)
        assert reply == "What did you buy there?"

    user_texts = [t.text for t in manager.get_all_turns() if t.speaker is Speaker.USER]
    assert user_texts == [TRANSCRIPTION_PLACEHOLDER] * 3
    assert manager.get_metrics().transcription_fallbacks == 3


def test_blank_transcript_uses_placeholder(generator, fast_config, speech):
    manager = ConversationManager(FakeTranscriber(text="  "), generator, fast_config)
    manager.start()
    manager.process_user_turn(speech)
    assert manager.get_all_turns()[0].text == TRANSCRIPTION_PLACEHOLDER


def test_generation_failure_rotates_fallbacks(transcriber, fast_config, speech):
    manager = ConversationManager(transcriber, FakeGenerator(error=ValueError("bad output")),
                                  fast_config)
    manager.start()

    replies = [manager.process_user_turn(speech) for _ in range(len(FALLBACK_RESPONSES) + 1)]
    assert replies[:len(FALLBACK_RESPONSES)] == list(FALLBACK_RESPONSES)
    assert replies[-1] == FALLBACK_RESPONSES[0]
    assert manager.get_metrics().generation_fallbacks == len(FALLBACK_RESPONSES) + 1


def test_empty_reply_uses_fallback(transcriber, fast_config, speech):
    manager = ConversationManager(transcriber, FakeGenerator(replies=["   "]), fast_config)
    manager.start()
    assert manager.process_user_turn(speech) == FALLBACK_RESPONSES[0]


def test_both_services_down(fast_config, speech):
    manager = ConversationManager(FakeTranscriber(error=OSError("offline")),
                                  FakeGenerator(error=OSError("offline")), fast_config)
    manager.start()
    reply = manager.process_user_turn(speech)

    assert reply == FALLBACK_RESPONSES[0]
    assert [t.speaker for t in manager.get_all_turns()] == [Speaker.USER, Speaker.AGENT]
    assert manager.state is ConversationState.READY


def test_slow_transcriber_times_out(generator, speech):
    from conversation.config import ConversationConfig
    config = ConversationConfig(transcription_timeout_sec=0.2, generation_timeout_sec=1.0)
    manager = ConversationManager(FakeTranscriber(delay=2.0), generator, config)
    manager.start()

    started = time.monotonic()
    reply = manager.process_user_turn(speech)

    assert time.monotonic() - started < 1.5
    assert reply == "What did you buy there?"
    assert manager.get_all_turns()[0].text == TRANSCRIPTION_PLACEHOLDER
    assert manager.get_stats()["timeouts"] == 1


def test_call_with_timeout():
    assert call_with_timeout(lambda: 42, 1.0, "Answer") == 42
    with pytest.raises(KeyError):
        call_with_timeout(lambda: {}["missing"], 1.0, "Lookup")
    with pytest.raises(CollaboratorTimeoutError):
        call_with_timeout(lambda: time.sleep(1.0), 0.05, "Sleep")


def test_collaborator_call_skips_while_abandoned_call_runs():
    call = CollaboratorCall("Sleep")
    release = threading.Event()

    with pytest.raises(CollaboratorTimeoutError):
        call(lambda: release.wait(2.0), 0.05)
    assert call.is_running
    with pytest.raises(CollaboratorBusyError):
        call(lambda: 42, 1.0)

    release.set()
    wait_until(lambda: not call.is_running)
    assert call(lambda: 42, 1.0) == 42


class CountingGenerator(FakeGenerator):
    """Records how many generate() calls run at once."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def generate(self, history, focus):
        with self._count_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            return super().generate(history, focus)
        finally:
            with self._count_lock:
                self.active -= 1


def test_timed_out_generator_not_called_again_until_it_returns(transcriber, speech):
    from conversation.config import ConversationConfig
    generator = CountingGenerator(delay=0.5)
    config = ConversationConfig(transcription_timeout_sec=1.0, generation_timeout_sec=0.1)
    manager = ConversationManager(transcriber, generator, config)
    manager.start()

    first = manager.process_user_turn(speech)
    second = manager.process_user_turn(speech)

    assert first == FALLBACK_RESPONSES[0]
    assert second == FALLBACK_RESPONSES[1]
    assert len(generator.calls) == 1
    assert generator.max_active == 1
    stats = manager.get_stats()
    assert stats["timeouts"] == 1
    assert stats["skipped_calls"] == 1

    # Once the slow call has returned the generator is used again
    wait_until(lambda: not manager._generation_call.is_running)
    generator.delay = 0.0
    assert manager.process_user_turn(speech) == "What did you buy there?"
    assert generator.max_active == 1


def test_greeting_shares_the_generation_slot(transcriber, speech):
    from conversation.config import ConversationConfig
    from tests.conftest import GreetingGenerator

    class SlowGreeting(GreetingGenerator):
        greeting_delay = 0.5

        def generate_greeting(self, time_of_day):
            time.sleep(self.greeting_delay)
            return super().generate_greeting(time_of_day)

    generator = SlowGreeting()
    config = ConversationConfig(transcription_timeout_sec=1.0, generation_timeout_sec=0.1)
    manager = ConversationManager(transcriber, generator, config)
    manager.start()

    with pytest.raises(CollaboratorTimeoutError):
        manager.generate_greeting("morning")
    assert manager.process_user_turn(speech) == FALLBACK_RESPONSES[0]
    assert generator.calls == []

    wait_until(lambda: not manager._generation_call.is_running)
    generator.greeting_delay = 0.0
    assert manager.generate_greeting("evening") == "Good morning! How was your day?"
    assert generator.greeting_calls == ["morning", "evening"]


def test_greeting_needs_generator_support(manager):
    with pytest.raises(GenerationError):
        manager.generate_greeting("morning")


# =============================================================================
# Mutual exclusion
# =============================================================================

def test_concurrent_turn_rejected(generator, fast_config, speech):
    gate = threading.Event()
    manager = ConversationManager(FakeTranscriber(gate=gate), generator, fast_config)
    manager.start()

    worker = threading.Thread(target=manager.process_user_turn, args=(speech,))
    worker.start()
    deadline = time.monotonic() + 2.0
    while not manager.is_currently_processing() and time.monotonic() < deadline:
        time.sleep(0.01)
    assert manager.is_currently_processing()

    with pytest.raises(ConversationBusyError):
        manager.process_user_turn(speech)
    with pytest.raises(ConversationBusyError):
        manager.add_agent_turn("Hello?")
    with pytest.raises(ConversationBusyError):
        manager.end()

    gate.set()
    worker.join(timeout=2.0)

    assert len(manager.get_all_turns()) == 2
    assert manager.get_stats()["busy_rejections"] == 3
    assert not manager.is_currently_processing()


# =============================================================================
# Lifecycle
# =============================================================================

def test_turn_before_start_rejected(transcriber, generator, speech):
    manager = ConversationManager(transcriber, generator)
    with pytest.raises(InvalidStateError):
        manager.process_user_turn(speech)
    with pytest.raises(InvalidStateError):
        manager.end()


def test_start_twice_rejected(manager):
    with pytest.raises(InvalidStateError):
        manager.start()


def test_end_is_idempotent(manager, speech):
    manager.process_user_turn(speech)
    first = manager.end()
    second = manager.end()

    assert first is second
    assert manager.state is ConversationState.ENDED
    with pytest.raises(InvalidStateError):
        manager.process_user_turn(speech)
    with pytest.raises(InvalidStateError):
        manager.add_agent_turn("Goodbye!")


def test_end_without_turns(manager):
    summary = manager.end()
    assert summary.transcript == ""
    assert summary.turns == ()
    assert summary.metrics.total_turns == 0
    assert summary.metrics.average_turn_duration == 0.0


def test_reset_clears_conversation(manager, speech):
    manager.process_user_turn(speech)
    manager.reset()

    assert manager.state is ConversationState.IDLE
    assert manager.get_all_turns() == []
    assert manager.get_current_focus() is AssessmentFocus.GENERAL

    manager.start()
    manager.process_user_turn(speech)
    assert len(manager.get_all_turns()) == 2


# =============================================================================
# Metrics and summary
# =============================================================================

def test_metrics_with_controlled_clock(clock, fast_config, speech):
    transcriber = FakeTranscriber(on_call=lambda: clock.advance(1.0))
    generator = FakeGenerator(on_call=lambda: clock.advance(2.0))
    manager = ConversationManager(transcriber, generator, fast_config, clock=clock)

    manager.start()                       # t=1000
    clock.advance(2.0)
    manager.add_agent_turn("Hello!")      # t=1002, 2s after start
    clock.advance(3.0)
    manager.process_user_turn(speech)     # starts at 1005, reply at 1008
    clock.advance(2.0)
    summary = manager.end()               # t=1010

    user, reply = summary.turns[1], summary.turns[2]
    assert user.elapsed_since_previous == pytest.approx(3.0)
    assert reply.elapsed_since_previous == pytest.approx(3.0)

    metrics = summary.metrics
    assert metrics.total_turns == 3
    assert metrics.user_turns == 1
    assert metrics.agent_turns == 2
    assert metrics.average_turn_duration == pytest.approx(8.0 / 3)
    assert metrics.average_user_response_time == pytest.approx(3.0)
    assert metrics.total_duration == pytest.approx(10.0)
    assert summary.started_at == 1000.0
    assert summary.ended_at == 1010.0


def test_summary_to_dict(manager, speech):
    manager.add_agent_turn("Hello!")
    manager.process_user_turn(speech)
    data = manager.end().to_dict()

    assert [t["speaker"] for t in data["turns"]] == ["ai", "user", "ai"]
    assert "raw_audio" not in data["turns"][1]
    assert data["metrics"]["total_turns"] == 3
    assert data["transcript"].startswith("AI: Hello!")


def test_turns_are_immutable(manager, speech):
    manager.process_user_turn(speech)
    turn = manager.get_all_turns()[0]
    with pytest.raises(AttributeError):
        turn.text = "changed"


def test_stats_count_processed_turns(manager):
    manager.process_user_turn(np.zeros(8000, dtype=np.float32))
    manager.process_user_turn(np.zeros(8000, dtype=np.float32))
    assert manager.get_stats()["turns_processed"] == 2
