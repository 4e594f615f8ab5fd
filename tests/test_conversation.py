"""Tests for server/conversation.py: turn taking, greeting protection and barge-in."""

import asyncio

from fakes import _run, drain, make_conversation
from duplex_voice.server.events import (
    AgentReply,
    BackendFailed,
    CaptureUnavailable,
    ConversationReady,
    InterruptionSignal,
    StartConversation,
    StopConversation,
    SynthesisEnded,
    SynthesisFailed,
    UserUtteranceFinal,
    VisibilityChanged,
)
from duplex_voice.server.state_types import CaptureStatus, ConversationMode, ConversationState


def _started(mode=ConversationMode.VOICE, **kwargs):
    """A conversation that has been started and initialized with a greeting."""
    conv = make_conversation(**kwargs)
    conv.machine.start_conversation(mode)
    gen = conv.machine.session.generation
    conv.machine.dispatch(ConversationReady(greeting="Good morning! How can I help?", generation=gen))
    return conv


def _finish_current(conv):
    """Report the current utterance as played, through the synthesis controller."""
    conv.synthesis.on_ended(conv.machine.session.utterance_id)
    drain(conv.machine)


def _speaking_reply(conv, reply="Our bikes charge in four hours."):
    """Move a started conversation past the greeting and into an interruptible reply."""
    gen = conv.machine.session.generation
    _finish_current(conv)
    conv.machine.dispatch(UserUtteranceFinal("tell me about charging", generation=gen))
    conv.machine.dispatch(AgentReply(reply, generation=gen))


class TestStartAndStop:
    def test_start_voice_begins_capture_and_initializes_backend(self):
        conv = make_conversation()
        conv.machine.start_conversation(ConversationMode.VOICE)

        assert conv.machine.state == ConversationState.LISTENING
        assert conv.recognition_engine.started == 1
        assert conv.gateway.initialized == [("voice", conv.machine.session.generation)]

    def test_start_twice_is_noop(self):
        conv = make_conversation()
        conv.machine.start_conversation()
        conv.machine.start_conversation()
        assert conv.recognition_engine.started == 1
        assert len(conv.gateway.initialized) == 1

    def test_start_without_recognition_reports_unavailable(self):
        conv = make_conversation(recognition_engine=None)
        conv.machine.start_conversation(ConversationMode.VOICE)

        assert conv.machine.state == ConversationState.IDLE
        assert conv.listener.unavailable == ["recognition"]
        assert conv.gateway.initialized == []

    def test_unavailable_reported_once(self):
        conv = make_conversation(recognition_engine=None)
        conv.machine.start_conversation()
        conv.machine.start_conversation()
        assert conv.listener.unavailable == ["recognition"]

    def test_stop_tears_everything_down(self):
        conv = _started()
        conv.machine.stop_conversation()

        assert conv.machine.state == ConversationState.IDLE
        assert conv.recognition_engine.stopped == 1
        assert conv.synthesis_engine.cancelled  # greeting was cut
        assert conv.gateway.closed == 1
        assert conv.listener.states[-1][1] == ConversationState.IDLE

    def test_stop_when_idle_is_safe(self):
        conv = make_conversation()
        conv.machine.stop_conversation()
        assert conv.machine.state == ConversationState.IDLE
        assert conv.listener.states == []


class TestGreeting:
    def test_greeting_is_spoken_non_interruptible(self):
        conv = _started()

        assert conv.machine.state == ConversationState.SPEAKING
        utterance = conv.synthesis_engine.spoken[0]
        assert utterance.interruptible is False
        assert conv.monitor.armed is False
        assert conv.recognition.interruptible_speech is False

    def test_sound_during_greeting_is_ignored(self):
        conv = _started()
        conv.machine.dispatch(InterruptionSignal(source="sound"))

        assert conv.machine.state == ConversationState.SPEAKING
        assert conv.synthesis_engine.cancelled == []

    def test_transcript_during_greeting_is_held_until_it_ends(self):
        conv = _started()
        gen = conv.machine.session.generation
        conv.machine.dispatch(UserUtteranceFinal("what bikes do you sell", generation=gen))
        assert conv.gateway.submitted == []

        _finish_current(conv)

        assert conv.gateway.submitted == [("what bikes do you sell", gen)]
        assert conv.machine.state == ConversationState.THINKING

    def test_greeting_end_enables_interruption(self):
        conv = _started()
        assert conv.machine.session.is_greeting_phase
        _finish_current(conv)

        assert not conv.machine.session.is_greeting_phase
        assert conv.machine.state == ConversationState.LISTENING
        # Capture keeps running after the greeting
        assert conv.recognition_engine.started == 1

    def test_ready_without_greeting_forwards_held_utterance(self):
        conv = make_conversation()
        conv.machine.start_conversation()
        gen = conv.machine.session.generation
        conv.machine.dispatch(UserUtteranceFinal("hello there", generation=gen))
        assert conv.gateway.submitted == []

        conv.machine.dispatch(ConversationReady(greeting=None, generation=gen))

        assert conv.gateway.submitted == [("hello there", gen)]
        assert conv.machine.state == ConversationState.THINKING


class TestTurnTaking:
    def test_final_transcript_is_forwarded(self):
        conv = _started()
        gen = conv.machine.session.generation
        _finish_current(conv)
        conv.machine.dispatch(UserUtteranceFinal("book a test ride", generation=gen))

        assert conv.machine.state == ConversationState.THINKING
        assert conv.listener.user == ["book a test ride"]
        assert conv.machine.session.last_final_transcript == "book a test ride"

    def test_reply_is_spoken_interruptible(self):
        conv = _started()
        _speaking_reply(conv)

        assert conv.machine.state == ConversationState.SPEAKING
        assert conv.synthesis_engine.spoken[-1].interruptible is True
        assert conv.monitor.armed is True
        assert conv.recognition.interruptible_speech is True
        assert conv.listener.agent[-1] == ("Our bikes charge in four hours.", True, True)

    def test_transcript_while_thinking_is_dropped(self):
        conv = _started()
        gen = conv.machine.session.generation
        _finish_current(conv)
        conv.machine.dispatch(UserUtteranceFinal("first question", generation=gen))
        conv.machine.dispatch(UserUtteranceFinal("second question", generation=gen))

        assert conv.gateway.submitted == [("first question", gen)]
        assert conv.machine.state == ConversationState.THINKING

    def test_reply_outside_thinking_is_dropped(self):
        conv = _started()
        _finish_current(conv)
        conv.machine.dispatch(AgentReply("unsolicited", generation=conv.machine.session.generation))

        assert conv.machine.state == ConversationState.LISTENING
        assert len(conv.synthesis_engine.spoken) == 1

    def test_reply_end_returns_to_listening(self):
        conv = _started()
        _speaking_reply(conv)
        _finish_current(conv)

        assert conv.machine.state == ConversationState.LISTENING
        assert conv.monitor.armed is False
        assert conv.recognition.interruptible_speech is False

    def test_synthesis_error_counts_as_completion(self):
        conv = _started()
        _speaking_reply(conv)
        conv.machine.dispatch(SynthesisFailed(conv.machine.session.utterance_id, "device lost"))

        assert conv.machine.state == ConversationState.LISTENING
        assert conv.listener.errors == []

    def test_stale_utterance_end_is_ignored(self):
        conv = _started()
        greeting_id = conv.machine.session.utterance_id
        _speaking_reply(conv)

        conv.machine.dispatch(SynthesisEnded(greeting_id))
        assert conv.machine.state == ConversationState.SPEAKING

    def test_state_history_follows_the_table(self):
        conv = _started()
        _speaking_reply(conv)
        _finish_current(conv)

        assert conv.machine.session.state_history == [
            ConversationState.LISTENING,
            ConversationState.SPEAKING,
            ConversationState.LISTENING,
            ConversationState.THINKING,
            ConversationState.SPEAKING,
            ConversationState.LISTENING,
        ]


class TestBargeIn:
    def test_sound_interrupts_reply_without_restarting_capture(self):
        conv = _started()
        _speaking_reply(conv)
        conv.machine.dispatch(InterruptionSignal(source="sound"))

        assert conv.machine.state == ConversationState.LISTENING
        assert len(conv.synthesis_engine.cancelled) == 1
        assert conv.recognition_engine.started == 1
        assert conv.recognition_engine.stopped == 0

    def test_interim_speech_interrupts_through_recognition(self):
        conv = _started()
        _speaking_reply(conv)

        conv.recognition.on_result("wait a second", False)
        drain(conv.machine)

        assert conv.machine.state == ConversationState.LISTENING
        assert conv.synthesis_engine.cancelled

    def test_final_while_speaking_interrupts_and_forwards(self):
        conv = _started()
        gen = conv.machine.session.generation
        _speaking_reply(conv)
        conv.machine.dispatch(UserUtteranceFinal("what about the price", generation=gen))

        assert conv.machine.state == ConversationState.THINKING
        assert conv.synthesis_engine.cancelled
        assert conv.gateway.submitted[-1] == ("what about the price", gen)

    def test_interruption_outside_speaking_is_ignored(self):
        conv = _started()
        _finish_current(conv)
        conv.machine.dispatch(InterruptionSignal(source="sound"))
        assert conv.machine.state == ConversationState.LISTENING

    def test_late_end_after_barge_in_is_ignored(self):
        conv = _started()
        _speaking_reply(conv)
        reply_id = conv.machine.session.utterance_id
        conv.machine.dispatch(InterruptionSignal(source="sound"))
        history = list(conv.machine.session.state_history)

        conv.machine.dispatch(SynthesisEnded(reply_id))
        assert conv.machine.session.state_history == history


class TestFailures:
    def test_backend_failure_ends_session(self):
        conv = _started()
        conv.machine.dispatch(BackendFailed("Failed to initialize chat: boom",
                                            generation=conv.machine.session.generation))

        assert conv.machine.state == ConversationState.IDLE
        assert conv.listener.errors == ["Failed to initialize chat: boom"]
        assert conv.gateway.closed == 1

    def test_backend_failure_while_thinking_stops_capture(self):
        conv = _started()
        gen = conv.machine.session.generation
        _finish_current(conv)
        conv.machine.dispatch(UserUtteranceFinal("how far does it go", generation=gen))
        assert conv.machine.state == ConversationState.THINKING

        conv.machine.dispatch(BackendFailed("Request timed out", generation=gen))

        assert conv.machine.state == ConversationState.IDLE
        assert conv.recognition_engine.stopped == 1
        assert conv.recognition.status == CaptureStatus.IDLE
        assert not conv.recognition.conversation_active

    def test_capture_unavailable_ends_session(self):
        conv = _started()
        conv.machine.dispatch(CaptureUnavailable("not-allowed", generation=conv.machine.session.generation))

        assert conv.machine.state == ConversationState.IDLE
        assert conv.listener.unavailable == ["recognition"]
        assert conv.listener.errors

    def test_events_from_previous_session_are_dropped(self):
        conv = _started()
        old_gen = conv.machine.session.generation
        conv.machine.stop_conversation()
        conv.machine.start_conversation()

        conv.machine.dispatch(ConversationReady(greeting="stale greeting", generation=old_gen))
        conv.machine.dispatch(UserUtteranceFinal("stale words", generation=old_gen))

        assert conv.machine.state == ConversationState.LISTENING
        assert conv.gateway.submitted == []

    def test_missing_synthesis_shows_text(self):
        conv = _started(synthesis_engine=None)

        assert conv.machine.state == ConversationState.LISTENING
        assert conv.listener.unavailable == ["synthesis"]
        assert conv.listener.agent[0][1] is False


class TestTextMode:
    def test_text_mode_skips_capture(self):
        conv = _started(ConversationMode.TEXT)

        assert conv.recognition_engine.started == 0
        assert conv.machine.state == ConversationState.LISTENING
        assert conv.listener.agent == [("Good morning! How can I help?", False, False)]

    def test_typed_message_round_trip(self):
        conv = _started(ConversationMode.TEXT)
        conv.machine.submit_text("  do you deliver to Pune?  ")
        drain(conv.machine)
        gen = conv.machine.session.generation

        assert conv.gateway.submitted == [("do you deliver to Pune?", gen)]
        conv.machine.dispatch(AgentReply("Yes, we do.", generation=gen))
        assert conv.machine.state == ConversationState.LISTENING
        assert conv.listener.agent[-1] == ("Yes, we do.", False, True)

    def test_text_sent_right_after_start_joins_the_new_session(self):
        conv = make_conversation()
        conv.machine.post(StartConversation(mode=ConversationMode.TEXT))
        conv.machine.submit_text("do you have a showroom in Delhi?")
        drain(conv.machine)
        gen = conv.machine.session.generation

        conv.machine.dispatch(ConversationReady(greeting=None, generation=gen))

        assert conv.gateway.submitted == [("do you have a showroom in Delhi?", gen)]
        assert conv.listener.user == ["do you have a showroom in Delhi?"]
        assert conv.machine.state == ConversationState.THINKING

    def test_blank_text_is_ignored(self):
        conv = _started(ConversationMode.TEXT)
        conv.machine.submit_text("   ")
        assert conv.events.empty()


class TestVisibility:
    def test_hidden_pauses_and_visible_resumes_capture(self):
        async def scenario():
            conv = _started()
            _finish_current(conv)
            conv.machine.dispatch(VisibilityChanged(hidden=True))
            assert conv.recognition_engine.stopped == 1

            conv.machine.dispatch(VisibilityChanged(hidden=False))
            assert conv.recognition_engine.started == 2
            assert conv.machine.state == ConversationState.LISTENING

        _run(scenario())

    def test_hidden_too_long_stops_conversation(self):
        async def scenario():
            conv = _started(hidden_grace_seconds=0.01)
            _finish_current(conv)
            conv.machine.dispatch(VisibilityChanged(hidden=True))
            await asyncio.sleep(0.05)
            drain(conv.machine)
            return conv

        conv = _run(scenario())
        assert conv.machine.state == ConversationState.IDLE

    def test_visible_before_grace_keeps_session(self):
        async def scenario():
            conv = _started(hidden_grace_seconds=0.02)
            _finish_current(conv)
            conv.machine.dispatch(VisibilityChanged(hidden=True))
            conv.machine.dispatch(VisibilityChanged(hidden=False))
            await asyncio.sleep(0.05)
            drain(conv.machine)
            return conv

        conv = _run(scenario())
        assert conv.machine.state == ConversationState.LISTENING


class TestEventLoop:
    def test_run_processes_posted_events(self):
        async def scenario():
            conv = make_conversation()
            task = asyncio.create_task(conv.machine.run())
            conv.machine.post(StartConversation(mode=ConversationMode.VOICE))
            await asyncio.sleep(0.01)
            state_after_start = conv.machine.state

            conv.machine.post(StopConversation())
            await asyncio.sleep(0.01)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return state_after_start, conv.machine.state

        after_start, after_stop = _run(scenario())
        assert after_start == ConversationState.LISTENING
        assert after_stop == ConversationState.IDLE

    def test_handler_error_tears_down_and_keeps_running(self):
        async def scenario():
            conv = _started()
            conv.machine._handlers[InterruptionSignal] = lambda event: 1 / 0
            task = asyncio.create_task(conv.machine.run())
            conv.machine.post(InterruptionSignal(source="sound"))
            await asyncio.sleep(0.01)
            alive = not task.done()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return conv, alive

        conv, alive = _run(scenario())
        assert alive
        assert conv.machine.state == ConversationState.IDLE
        assert conv.listener.errors
