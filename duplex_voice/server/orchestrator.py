"""
Connection Orchestrator.

Wires one WebSocket connection to one conversation: builds the engines,
the subsystems and the conversation state machine, routes client messages
to them, and relays user-facing notifications back to the client.
"""

import asyncio
import base64
import binascii
import uuid
from typing import Callable, Dict, Optional

from .ai_agent import AIAgent
from .audio_input import AudioInputStream
from .config import Settings
from .conversation import ConversationListener, ConversationStateMachine
from .events import EventQueue, StartConversation, StopConversation, VisibilityChanged
from .gateway import AgentGateway
from .recognition import RecognitionEngine, RecognitionLifecycleManager
from .sound_monitor import SoundLevelMonitor
from .state_types import ConversationMode, ConversationState
from .stt import DeepgramRecognitionEngine
from .synthesis import SynthesisController, SynthesisEngine, VoicePreferencePolicy
from .outbox import ClientOutbox
from .tts import GTTSSynthesisEngine


PLAYBACK_EVENTS = ("playback_started", "playback_complete", "playback_error")


class ConnectionOrchestrator(ConversationListener):
    """
    Manages the state and logic for a single WebSocket connection.

    This orchestrator coordinates:
    - Sound-Level Monitor (ambient sound barge-in)
    - Recognition Lifecycle Manager (continuous capture)
    - Synthesis Controller (agent speech)
    - Backend Gateway (AI agent)
    - Conversation State Machine (turn taking)
    """

    def __init__(
        self,
        websocket,
        settings: Settings,
        recognition_engine: Optional[RecognitionEngine] = None,
        synthesis_engine: Optional[SynthesisEngine] = None,
        agent_factory: Optional[Callable[[], object]] = None,
    ):
        """
        Initialize the orchestrator for a new connection.

        Args:
            websocket: WebSocket connection for this user
            settings: Server configuration
            recognition_engine: Override the Deepgram recognizer
            synthesis_engine: Override the gTTS synthesizer
            agent_factory: Override how the AI agent is created
        """
        self.session_id = str(uuid.uuid4())[:8]  # Short session ID
        print(f"[Orchestrator] Initializing new connection (Session: {self.session_id})...")
        self.websocket = websocket
        self.settings = settings

        self.outbox = ClientOutbox(websocket)
        self.events = EventQueue()

        # Each consumer owns its own copy of the microphone stream
        self.recognition_audio = AudioInputStream("recognition")
        self.monitor_audio = AudioInputStream("sound-monitor")

        if recognition_engine is None and settings.recognition_configured:
            recognition_engine = DeepgramRecognitionEngine(
                api_key=settings.deepgram_api_key,
                audio=self.recognition_audio,
                model=settings.deepgram_model,
                language=settings.recognition_language,
            )
        if synthesis_engine is None:
            synthesis_engine = GTTSSynthesisEngine(send=self.outbox.send, lang=settings.tts_language)

        self.recognition_engine = recognition_engine
        self.synthesis_engine = synthesis_engine

        self.recognition = RecognitionLifecycleManager(
            recognition_engine,
            self.events.post,
            min_transcript_length=settings.min_transcript_length,
        )
        self.synthesis = SynthesisController(synthesis_engine, self.events.post, VoicePreferencePolicy())
        self.monitor = SoundLevelMonitor(
            self.events.post,
            threshold=settings.sound_threshold,
            hold_seconds=settings.sound_hold_seconds,
        )
        self.gateway = AgentGateway(
            agent_factory or self._create_agent,
            self.events.post,
            reply_timeout=settings.reply_timeout_seconds,
            assistant_name=settings.assistant_name,
        )
        self.conversation = ConversationStateMachine(
            self.recognition,
            self.synthesis,
            self.monitor,
            self.gateway,
            self.events,
            monitor_stream=self.monitor_audio,
            listener=self,
            hidden_grace_seconds=settings.hidden_session_grace_seconds,
        )

        self.conversation_task: Optional[asyncio.Task] = None

    def _create_agent(self) -> AIAgent:
        return AIAgent(
            api_key=self.settings.groq_api_key,
            model=self.settings.groq_model,
            system_prompt=self.settings.system_prompt,
        )

    @property
    def capabilities(self) -> Dict[str, bool]:
        return {
            "recognition": self.recognition.supported,
            "synthesis": self.synthesis.supported,
        }

    async def start_workers(self):
        """Start the long-running background tasks for this connection."""
        print("[Orchestrator] Starting background workers...")
        await self.outbox.start()
        self.conversation_task = asyncio.create_task(self.conversation.run())
        print("[Orchestrator] All workers started")

    async def cleanup(self):
        """Tear the session down and cancel all background tasks on disconnect."""
        print("[Orchestrator] Cleaning up connection...")

        # Session state is discarded on disconnect
        self.conversation.stop_conversation("disconnect")

        if self.conversation_task and not self.conversation_task.done():
            self.conversation_task.cancel()
            try:
                await self.conversation_task
            except asyncio.CancelledError:
                pass

        self.events.clear()
        await self.outbox.stop()
        print("[Orchestrator] Cleanup complete")

    # --- Client Event Handlers ---

    async def handle_client_event(self, event: Dict):
        """
        Main entry point for client events.

        Args:
            event: Event dict with a 'type' key and type-specific fields
        """
        event_type = event.get("type")

        if event_type == "audio":
            self.on_audio_frame(event.get("audio"))

        elif event_type == "start_conversation":
            mode_name = event.get("mode", "voice")
            try:
                mode = ConversationMode(mode_name)
            except ValueError:
                self.outbox.send({"event": "error", "message": f"Unknown mode: {mode_name}"})
                return
            self.events.post(StartConversation(mode=mode))

        elif event_type == "stop_conversation":
            self.events.post(StopConversation(reason="user"))

        elif event_type == "text_message":
            self.conversation.submit_text(event.get("text", ""))

        elif event_type in PLAYBACK_EVENTS:
            handler = getattr(self.synthesis_engine, "handle_client_playback", None)
            if handler is None:
                print(f"[Orchestrator] {event_type} ignored (engine plays audio itself)")
                return
            handler(event_type, event.get("utterance_id"), event.get("message", ""))

        elif event_type == "visibility":
            self.events.post(VisibilityChanged(hidden=bool(event.get("hidden"))))

        elif event_type == "microphone_unavailable":
            print("[Orchestrator] Client reports microphone unavailable")
            self.monitor_audio.mark_unavailable()
            self.recognition_audio.mark_unavailable()

        else:
            print(f"[Orchestrator] Warning: unknown client event {event_type!r}")

    def on_audio_frame(self, audio_data):
        """Fan one microphone frame out to every audio consumer."""
        if not audio_data:
            return
        if isinstance(audio_data, str):
            try:
                frame = base64.b64decode(audio_data)
            except (binascii.Error, ValueError):
                print("[Orchestrator] Warning: undecodable audio frame")
                return
        else:
            frame = audio_data
        self.recognition_audio.push(frame)
        self.monitor_audio.push(frame)

    # --- Conversation notifications → client ---

    def on_state_change(self, old: ConversationState, new: ConversationState):
        self.outbox.send({"event": "status", "state": new.value})

    def on_unavailable(self, capability: str):
        self.outbox.send({"event": "status", "state": "unavailable", "capability": capability})

    def on_user_utterance(self, text: str):
        self.outbox.send({"event": "user_transcript", "text": text})

    def on_agent_utterance(self, text: str, spoken: bool, interruptible: bool):
        self.outbox.send({
            "event": "agent_reply",
            "text": text,
            "spoken": spoken,
            "interruptible": interruptible,
        })

    def on_error(self, message: str):
        self.outbox.send({"event": "error", "message": message})
