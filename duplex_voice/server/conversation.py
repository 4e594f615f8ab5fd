"""
Conversation State Machine (the coordinator).

This is the "brain" of the application. It owns the canonical conversation
state (idle / listening / thinking / speaking), consumes events from the
capture, synthesis, sound-monitor and backend subsystems, and issues
commands back to them.

Listening is never paused while the agent speaks: the capture stream runs
continuously and only the consequence of detected speech changes. A barge-in
is therefore just a synthesis cancel, with no stop/start of capture.

Every handler is synchronous, so a transition can never be interleaved with
another one on the event loop.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .errors import CapturePermissionDenied, UnsupportedCapability
from .events import (
    AgentReply,
    BackendFailed,
    CaptureUnavailable,
    ConversationReady,
    EventQueue,
    InterruptionSignal,
    StartConversation,
    StopConversation,
    SynthesisEnded,
    SynthesisFailed,
    SynthesisStarted,
    TextSubmitted,
    UserUtteranceFinal,
    VisibilityChanged,
)
from .state_types import ConversationMode, ConversationState
from .timers import SingleShotTimer


@dataclass
class ConversationSession:
    """The single active dialogue. Reset on every teardown."""
    generation: int = 0
    mode: ConversationMode = ConversationMode.VOICE
    state: ConversationState = ConversationState.IDLE
    is_greeting_phase: bool = True
    backend_ready: bool = False
    last_final_transcript: str = ""
    pending_utterance: Optional[str] = None
    utterance_id: Optional[int] = None
    utterance_interruptible: bool = False
    page_hidden: bool = False
    state_history: List[ConversationState] = field(default_factory=list)


class ConversationListener:
    """Receives user-facing notifications from the state machine (no-op defaults)."""

    def on_state_change(self, old: ConversationState, new: ConversationState):
        pass

    def on_unavailable(self, capability: str):
        pass

    def on_user_utterance(self, text: str):
        pass

    def on_agent_utterance(self, text: str, spoken: bool, interruptible: bool):
        pass

    def on_error(self, message: str):
        pass


class ConversationStateMachine:
    """
    Coordinates capture, synthesis and interruption into one conversation state.

    Subsystems post events to `events`; run() drains the queue in order and
    dispatch() applies the transition table.
    """

    def __init__(
        self,
        recognition,
        synthesis,
        monitor,
        gateway,
        events: EventQueue,
        monitor_stream=None,
        listener: Optional[ConversationListener] = None,
        resume_delay: float = 0.2,
        hidden_grace_seconds: float = 30.0,
    ):
        """
        Initialize the state machine.

        Args:
            recognition: RecognitionLifecycleManager (start/stop intents only)
            synthesis: SynthesisController
            monitor: SoundLevelMonitor
            gateway: BackendGateway
            events: Queue every subsystem posts its events to
            monitor_stream: Audio stream handed to the sound monitor on start
            listener: Receives user-facing notifications
            resume_delay: Delay before resuming capture after an utterance ends
            hidden_grace_seconds: How long a hidden page keeps the session alive
        """
        self.recognition = recognition
        self.synthesis = synthesis
        self.monitor = monitor
        self.gateway = gateway
        self.events = events
        self.monitor_stream = monitor_stream
        self.listener = listener or ConversationListener()
        self.resume_delay = resume_delay
        self.hidden_grace_seconds = hidden_grace_seconds

        self._generation = 0
        self.session = ConversationSession(generation=self._generation)
        self._resume_timer = SingleShotTimer("capture-resume")
        self._hidden_timer = SingleShotTimer("hidden-session")
        self._reported_unavailable: set = set()

        self._handlers: Dict[type, Callable] = {
            StartConversation: lambda e: self.start_conversation(e.mode),
            StopConversation: lambda e: self.stop_conversation(e.reason),
            VisibilityChanged: self._on_visibility_changed,
            TextSubmitted: self._on_text_submitted,
            UserUtteranceFinal: self._on_user_utterance,
            InterruptionSignal: self._on_interruption,
            CaptureUnavailable: self._on_capture_unavailable,
            SynthesisStarted: self._on_synthesis_started,
            SynthesisEnded: self._on_synthesis_ended,
            SynthesisFailed: self._on_synthesis_ended,
            ConversationReady: self._on_conversation_ready,
            AgentReply: self._on_agent_reply,
            BackendFailed: self._on_backend_failed,
        }

    @property
    def state(self) -> ConversationState:
        return self.session.state

    # --- Event loop ---

    def post(self, event):
        self.events.post(event)

    async def run(self):
        """Drain the event queue forever, one event at a time."""
        print("[Conversation] Event loop started")
        while True:
            event = await self.events.get()
            try:
                self.dispatch(event)
            except Exception as e:
                print(f"[Conversation] ERROR handling {type(event).__name__}: {e}")
                self.listener.on_error(f"Internal error: {e}")
                self._teardown("internal error")
            finally:
                self.events.task_done()

    def dispatch(self, event):
        """Apply one event to the state machine."""
        handler = self._handlers.get(type(event))
        if handler is None:
            print(f"[Conversation] Unknown event {event!r}, ignoring")
            return
        generation = getattr(event, "generation", None)
        if generation is not None and generation != self.session.generation:
            print(f"[Conversation] Dropping stale {type(event).__name__} "
                  f"(generation {generation}, current {self.session.generation})")
            return
        handler(event)

    # --- Commands (from the client) ---

    def start_conversation(self, mode: ConversationMode = ConversationMode.VOICE):
        if self.state != ConversationState.IDLE:
            print("[Conversation] Conversation already active")
            return

        print(f"[Conversation] Starting conversation - {mode.value.upper()} MODE")
        self._generation += 1
        self.session = ConversationSession(generation=self._generation, mode=mode)

        if mode == ConversationMode.VOICE:
            try:
                self.recognition.start(generation=self.session.generation)
            except UnsupportedCapability as e:
                self._report_unavailable("recognition", str(e))
                self._reset_session()
                return
            except CapturePermissionDenied as e:
                self.listener.on_error(str(e))
                self._report_unavailable("recognition", str(e))
                self._reset_session()
                return
            if self.monitor_stream is not None:
                self.monitor.start(self.monitor_stream)

        self._transition(ConversationState.LISTENING)
        self.gateway.initialize_conversation(mode.value, generation=self.session.generation)

    def stop_conversation(self, reason: str = "user"):
        print(f"[Conversation] Stopping conversation ({reason})")
        self._teardown(reason)

    def submit_text(self, text: str):
        """A typed user message; goes through the same path as speech."""
        text = (text or "").strip()
        if not text:
            return
        self.post(TextSubmitted(text=text))

    # --- Handlers ---

    def _on_text_submitted(self, event: TextSubmitted):
        # Queued behind any pending start, so the session is resolved only now
        self._on_user_utterance(UserUtteranceFinal(text=event.text, generation=self.session.generation))

    def _on_conversation_ready(self, event: ConversationReady):
        if self.state == ConversationState.IDLE:
            return
        self.session.backend_ready = True
        print(f"[Conversation] Chat initialized (greeting: {event.greeting!r})")

        if event.greeting:
            # Greeting: interruption disabled until it finishes
            self._deliver_agent_text(event.greeting)
        else:
            self.session.is_greeting_phase = False
            self._forward_pending()

    def _on_user_utterance(self, event: UserUtteranceFinal):
        state = self.state
        if state == ConversationState.IDLE:
            return

        if state == ConversationState.LISTENING:
            if not self.session.backend_ready:
                print(f"[Conversation] Backend not ready, holding '{event.text}'")
                self.session.pending_utterance = event.text
                return
            self._forward(event.text)

        elif state == ConversationState.SPEAKING:
            if self.session.utterance_interruptible:
                print("[Conversation] Final transcript while speaking → interrupting and forwarding")
                self.synthesis.cancel()
                self._leave_speaking()
                self._transition(ConversationState.LISTENING)
                self._forward(event.text)
            else:
                print(f"[Conversation] Greeting in progress, holding '{event.text}'")
                self.session.pending_utterance = event.text

        elif state == ConversationState.THINKING:
            print(f"[Conversation] Already thinking, dropping '{event.text}'")

    def _on_interruption(self, event: InterruptionSignal):
        if self.state != ConversationState.SPEAKING:
            return
        if not self.session.utterance_interruptible:
            print(f"[Conversation] Ignoring {event.source} interruption (greeting)")
            return

        print(f"[Conversation] ⚠️ INTERRUPT DETECTED ({event.source})")
        self.synthesis.cancel()
        self._leave_speaking()
        # Capture keeps running: no stop/start round trip on barge-in
        self._transition(ConversationState.LISTENING)

    def _on_synthesis_started(self, event: SynthesisStarted):
        if event.utterance_id == self.session.utterance_id:
            print(f"[Conversation] Utterance {event.utterance_id} playing")

    def _on_synthesis_ended(self, event):
        if self.state != ConversationState.SPEAKING or event.utterance_id != self.session.utterance_id:
            return

        if isinstance(event, SynthesisFailed):
            # A broken voice must not block the conversation
            print(f"[Conversation] Speech error treated as completion: {event.message}")

        self._leave_speaking()
        if self.session.is_greeting_phase:
            self.session.is_greeting_phase = False
            print("[Conversation] Greeting finished, interruption now enabled")

        self._transition(ConversationState.LISTENING)
        self._schedule_resume()
        self._forward_pending()

    def _on_agent_reply(self, event: AgentReply):
        if self.state != ConversationState.THINKING:
            print(f"[Conversation] Dropping reply received while {self.state.value}")
            return
        self.session.is_greeting_phase = False
        self._deliver_agent_text(event.text)

    def _on_backend_failed(self, event: BackendFailed):
        if self.state == ConversationState.IDLE:
            return
        print(f"[Conversation] ✗ Backend error: {event.message}")
        self.listener.on_error(event.message)
        self._teardown("backend error")

    def _on_capture_unavailable(self, event: CaptureUnavailable):
        if self.state == ConversationState.IDLE:
            return
        print(f"[Conversation] ✗ Capture unavailable: {event.reason}")
        self.listener.on_error(f"Speech capture unavailable: {event.reason}")
        self._teardown("capture unavailable")
        self.listener.on_unavailable("recognition")

    def _on_visibility_changed(self, event: VisibilityChanged):
        self.session.page_hidden = event.hidden
        if self.state == ConversationState.IDLE or self.session.mode != ConversationMode.VOICE:
            return

        if event.hidden:
            print("[Conversation] Page hidden, pausing recognition")
            self._resume_timer.cancel()
            self.recognition.stop()
            self._hidden_timer.schedule(self.hidden_grace_seconds, self._on_hidden_expired,
                                        self.session.generation)
        else:
            self._hidden_timer.cancel()
            if self.state != ConversationState.SPEAKING:
                print("[Conversation] Page visible again, resuming recognition")
                self._schedule_resume()

    def _on_hidden_expired(self, generation: int):
        if generation != self.session.generation:
            return
        self.post(StopConversation(reason="page hidden"))

    # --- Helpers ---

    def _forward(self, text: str):
        self.session.last_final_transcript = text
        self.listener.on_user_utterance(text)
        self.gateway.submit_utterance(text, generation=self.session.generation)
        self._transition(ConversationState.THINKING)

    def _forward_pending(self):
        if self.state != ConversationState.LISTENING or not self.session.backend_ready:
            return
        text = self.session.pending_utterance
        if text:
            self.session.pending_utterance = None
            self._forward(text)

    def _deliver_agent_text(self, text: str):
        """Speak (voice mode) or show (text mode) an agent utterance."""
        interruptible = not self.session.is_greeting_phase

        if self.session.mode == ConversationMode.TEXT or not self.synthesis.supported:
            if self.session.mode == ConversationMode.VOICE:
                self._report_unavailable("synthesis", "Speech synthesis is not supported")
            self.listener.on_agent_utterance(text, False, interruptible)
            self.session.is_greeting_phase = False
            self._transition(ConversationState.LISTENING)
            self._forward_pending()
            return

        utterance = self.synthesis.speak(text, interruptible)
        self.session.utterance_id = utterance.utterance_id
        self.session.utterance_interruptible = utterance.interruptible
        self.recognition.set_interruptible_speech(utterance.interruptible)
        self.monitor.set_armed(utterance.interruptible)
        self._resume_timer.cancel()
        self.listener.on_agent_utterance(text, True, utterance.interruptible)
        self._transition(ConversationState.SPEAKING)

    def _leave_speaking(self):
        self.session.utterance_id = None
        self.session.utterance_interruptible = False
        self.recognition.set_interruptible_speech(False)
        self.monitor.set_armed(False)

    def _schedule_resume(self):
        if self.session.mode != ConversationMode.VOICE or self.session.page_hidden:
            return
        if self.resume_delay <= 0:
            self._resume_capture(self.session.generation)
        else:
            self._resume_timer.schedule(self.resume_delay, self._resume_capture, self.session.generation)

    def _resume_capture(self, generation: int):
        if generation != self.session.generation or self.state == ConversationState.IDLE:
            return
        try:
            self.recognition.start(generation=generation)
        except (UnsupportedCapability, CapturePermissionDenied) as e:
            self.post(CaptureUnavailable(reason=str(e), generation=generation))

    def _report_unavailable(self, capability: str, message: str):
        if capability in self._reported_unavailable:
            return
        self._reported_unavailable.add(capability)
        print(f"[Conversation] ✗ {message}")
        self.listener.on_unavailable(capability)

    def _teardown(self, reason: str):
        self._resume_timer.cancel()
        self._hidden_timer.cancel()
        self.synthesis.cancel()
        self.recognition.stop()
        self.monitor.stop()
        self.gateway.close()
        self._reset_session()
        print(f"[Conversation] Session cleared ({reason})")

    def _reset_session(self):
        # New generation: anything still queued from the old session is stale
        old_state = self.session.state
        self._generation += 1
        self.session = ConversationSession(generation=self._generation)
        if old_state != ConversationState.IDLE:
            print(f"[Conversation] {old_state.value.upper()} → IDLE")
            self.listener.on_state_change(old_state, ConversationState.IDLE)

    def _transition(self, new_state: ConversationState):
        old_state = self.session.state
        if old_state == new_state:
            return
        self.session.state = new_state
        self.session.state_history.append(new_state)
        print(f"[Conversation] {old_state.value.upper()} → {new_state.value.upper()}")
        self.listener.on_state_change(old_state, new_state)
