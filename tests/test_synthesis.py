"""Tests for server/synthesis.py: voice choice and utterance lifecycle."""

import pytest

from fakes import FakeSynthesisEngine
from duplex_voice.server.errors import SynthesisError, UnsupportedCapability
from duplex_voice.server.events import SynthesisEnded, SynthesisFailed, SynthesisStarted
from duplex_voice.server.synthesis import (
    SpeechUtterance,
    SynthesisController,
    Voice,
    VoicePreferencePolicy,
)


def _make_controller(engine=None):
    events = []
    engine = engine or FakeSynthesisEngine()
    return SynthesisController(engine, events.append), engine, events


class TestVoicePreferencePolicy:
    def test_prefers_female_keyword(self):
        voices = [Voice("Alex"), Voice("Samantha"), Voice("Google UK English Female")]
        profile = VoicePreferencePolicy().select(voices)

        assert profile.voice.name == "Google UK English Female"
        assert profile.pitch == 1.1
        assert profile.rate == 1.0

    def test_falls_back_to_known_names_in_order(self):
        voices = [Voice("Microsoft Zira"), Voice("Karen")]
        assert VoicePreferencePolicy().select(voices).voice.name == "Karen"

    def test_engine_default_when_nothing_matches(self):
        profile = VoicePreferencePolicy().select([Voice("Alex"), Voice("Daniel")])
        assert profile.voice is None
        assert profile.pitch == 1.0

    def test_names_are_replaceable(self):
        policy = VoicePreferencePolicy(keyword="male", preferred_names=["daniel"])
        assert policy.select([Voice("Daniel")]).voice.name == "Daniel"


class TestSpeechUtterance:
    def test_interruptible_is_fixed(self):
        utterance = SpeechUtterance(1, "Hello", interruptible=False)
        with pytest.raises(AttributeError):
            utterance.interruptible = True
        assert utterance.interruptible is False


class TestSynthesisController:
    def test_speak_uses_selected_voice(self):
        engine = FakeSynthesisEngine(voices=[Voice("Victoria")])
        controller, _, _ = _make_controller(engine)
        utterance = controller.speak("Welcome to Revolt", interruptible=True)

        assert engine.spoken == [utterance]
        assert utterance.profile.voice.name == "Victoria"
        assert controller.speaking

    def test_new_utterance_cancels_previous(self):
        controller, engine, _ = _make_controller()
        first = controller.speak("First", interruptible=True)
        second = controller.speak("Second", interruptible=True)

        assert engine.cancelled == [first]
        assert controller.current is second
        assert second.utterance_id == first.utterance_id + 1

    def test_cancel_without_utterance_returns_false(self):
        controller, engine, _ = _make_controller()
        assert controller.cancel() is False
        assert engine.cancelled == []

    def test_started_reported_once(self):
        controller, _, events = _make_controller()
        utterance = controller.speak("Hello", interruptible=True)
        controller.on_started(utterance.utterance_id)
        controller.on_started(utterance.utterance_id)

        assert events == [SynthesisStarted(utterance.utterance_id)]

    def test_first_terminal_event_wins(self):
        controller, _, events = _make_controller()
        utterance = controller.speak("Hello", interruptible=True)
        controller.on_ended(utterance.utterance_id)
        controller.on_error(utterance.utterance_id, "late error")
        controller.on_ended(utterance.utterance_id)

        assert events == [SynthesisEnded(utterance.utterance_id)]
        assert not controller.speaking

    def test_events_after_cancel_are_ignored(self):
        controller, _, events = _make_controller()
        utterance = controller.speak("Hello", interruptible=True)
        controller.cancel()
        controller.on_ended(utterance.utterance_id)

        assert events == []

    def test_engine_error_is_reported_as_failure(self):
        engine = FakeSynthesisEngine(speak_error=SynthesisError("no audio device"))
        controller, _, events = _make_controller(engine)
        utterance = controller.speak("Hello", interruptible=False)

        assert events == [SynthesisFailed(utterance.utterance_id, "no audio device")]
        assert not controller.speaking

    def test_no_engine_is_unsupported(self):
        controller = SynthesisController(None, lambda e: None)
        assert not controller.supported
        with pytest.raises(UnsupportedCapability):
            controller.speak("Hello", interruptible=True)
