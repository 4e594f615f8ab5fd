"""
Synthesis Controller Module.

Owns agent-speech playback. At most one utterance is active at a time;
starting a new one cancels the previous one first.
"""

import itertools
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .errors import SynthesisError, UnsupportedCapability
from .events import SynthesisEnded, SynthesisFailed, SynthesisStarted


@dataclass(frozen=True)
class Voice:
    """A voice offered by a synthesis engine."""
    name: str
    language: str = "en"
    accent: str = "com"


@dataclass(frozen=True)
class VoiceProfile:
    """The voice an utterance is spoken with. `voice=None` means engine default."""
    voice: Optional[Voice] = None
    pitch: float = 1.0
    rate: float = 1.0


class VoicePreferencePolicy:
    """
    Picks a pleasant voice from what the engine offers.

    Preference: any voice whose name contains the keyword ("female"), then
    the known names in order. The name list is environment specific and
    meant to be replaced.
    """

    DEFAULT_NAMES = ("samantha", "karen", "zira", "victoria")

    def __init__(self, keyword: str = "female", preferred_names: Sequence[str] = DEFAULT_NAMES,
                 pitch: float = 1.1, rate: float = 1.0):
        self.keyword = keyword.lower()
        self.preferred_names = [name.lower() for name in preferred_names]
        self.pitch = pitch
        self.rate = rate

    def select(self, voices: Sequence[Voice]) -> VoiceProfile:
        for voice in voices:
            if self.keyword in voice.name.lower():
                return VoiceProfile(voice=voice, pitch=self.pitch, rate=self.rate)
        for preferred in self.preferred_names:
            for voice in voices:
                if preferred in voice.name.lower():
                    return VoiceProfile(voice=voice, pitch=self.pitch, rate=self.rate)
        return VoiceProfile()


class SpeechUtterance:
    """One unit of agent speech."""

    def __init__(self, utterance_id: int, text: str, interruptible: bool,
                 profile: Optional[VoiceProfile] = None):
        self.utterance_id = utterance_id
        self.text = text
        self._interruptible = interruptible
        self.profile = profile or VoiceProfile()
        self.active = False
        self.started = False

    @property
    def interruptible(self) -> bool:
        """Fixed at construction; does not follow later greeting-phase changes."""
        return self._interruptible

    def __repr__(self) -> str:
        preview = self.text[:30] + ("..." if len(self.text) > 30 else "")
        return (f"SpeechUtterance(id={self.utterance_id}, interruptible={self.interruptible}, "
                f"active={self.active}, text={preview!r})")


class SynthesisEngine:
    """
    Speech synthesizer contract.

    Implementations report playback progress on the event loop through the
    bound listener:
        listener.on_started(utterance_id)
        listener.on_ended(utterance_id)
        listener.on_error(utterance_id, message)
    """

    def __init__(self):
        self.listener = None

    def bind(self, listener):
        self.listener = listener

    def voices(self) -> List[Voice]:
        return []

    def speak(self, utterance: SpeechUtterance):
        raise NotImplementedError

    def cancel(self, utterance: SpeechUtterance):
        raise NotImplementedError


class SynthesisController:
    """
    Starts and cancels agent utterances and reports their lifecycle.

    The first terminal event (ended or error) for an utterance is
    authoritative; anything later for the same utterance is ignored.
    """

    def __init__(self, engine: Optional[SynthesisEngine], emit: Callable[[object], None],
                 voice_policy: Optional[VoicePreferencePolicy] = None):
        self.engine = engine
        self.emit = emit
        self.voice_policy = voice_policy or VoicePreferencePolicy()
        self.current: Optional[SpeechUtterance] = None
        self._ids = itertools.count(1)

        if engine is not None:
            engine.bind(self)

    @property
    def supported(self) -> bool:
        return self.engine is not None

    @property
    def speaking(self) -> bool:
        return self.current is not None and self.current.active

    def speak(self, text: str, interruptible: bool) -> SpeechUtterance:
        """Cancel any active utterance and start speaking `text`."""
        if self.engine is None:
            raise UnsupportedCapability("Speech synthesis")

        self.cancel()

        profile = self.voice_policy.select(self.engine.voices())
        utterance = SpeechUtterance(next(self._ids), text, interruptible, profile)
        utterance.active = True
        self.current = utterance

        voice_name = profile.voice.name if profile.voice else "default"
        print(f"[Synthesis] Speaking utterance {utterance.utterance_id} "
              f"(interruptible={interruptible}, voice={voice_name})")
        try:
            self.engine.speak(utterance)
        except SynthesisError as e:
            self.on_error(utterance.utterance_id, str(e))
        return utterance

    def cancel(self) -> bool:
        """Stop playback immediately. Returns True if an utterance was active."""
        utterance = self.current
        if utterance is None or not utterance.active:
            return False
        utterance.active = False
        self.current = None
        try:
            self.engine.cancel(utterance)
        except SynthesisError as e:
            print(f"[Synthesis] Cancel error: {e}")
        print(f"[Synthesis] AI speech stopped (utterance {utterance.utterance_id})")
        return True

    # --- Engine events ---

    def on_started(self, utterance_id: int):
        utterance = self._active(utterance_id)
        if utterance is None or utterance.started:
            return
        utterance.started = True
        print(f"[Synthesis] AI started speaking (utterance {utterance_id})")
        self.emit(SynthesisStarted(utterance_id))

    def on_ended(self, utterance_id: int):
        if self._finish(utterance_id):
            print(f"[Synthesis] AI finished speaking (utterance {utterance_id})")
            self.emit(SynthesisEnded(utterance_id))

    def on_error(self, utterance_id: int, message: str = ""):
        if self._finish(utterance_id):
            print(f"[Synthesis] ✗ Speech error (utterance {utterance_id}): {message}")
            self.emit(SynthesisFailed(utterance_id, message))

    def _active(self, utterance_id: int) -> Optional[SpeechUtterance]:
        utterance = self.current
        if utterance is None or utterance.utterance_id != utterance_id or not utterance.active:
            return None
        return utterance

    def _finish(self, utterance_id: int) -> bool:
        utterance = self._active(utterance_id)
        if utterance is None:
            print(f"[Synthesis] Ignoring stale event for utterance {utterance_id}")
            return False
        utterance.active = False
        self.current = None
        return True
