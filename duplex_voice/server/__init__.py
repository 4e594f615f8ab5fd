"""
Server-side modules for Duplex Voice.

This package contains all server-side components:
- ConnectionOrchestrator: Per-connection wiring
- ConversationStateMachine: Turn taking and barge-in
- RecognitionLifecycleManager: Continuous speech capture
- SynthesisController: Agent speech output
- SoundLevelMonitor: Ambient-sound interruption detection
- AgentGateway / AIAgent: Conversational backend
- State types and enums
"""

from .orchestrator import ConnectionOrchestrator
from .config import Settings
from .conversation import ConversationListener, ConversationSession, ConversationStateMachine
from .recognition import RecognitionEngine, RecognitionLifecycleManager
from .synthesis import SynthesisController, SynthesisEngine, VoicePreferencePolicy
from .sound_monitor import SoundLevelMonitor
from .gateway import AgentGateway, BackendGateway
from .ai_agent import AIAgent
from .stt import DeepgramRecognitionEngine
from .tts import GTTSSynthesisEngine, text_to_speech_base64
from .state_types import CaptureStatus, ConversationMode, ConversationState

__all__ = [
    'ConnectionOrchestrator',
    'Settings',
    'ConversationListener',
    'ConversationSession',
    'ConversationStateMachine',
    'RecognitionEngine',
    'RecognitionLifecycleManager',
    'SynthesisController',
    'SynthesisEngine',
    'VoicePreferencePolicy',
    'SoundLevelMonitor',
    'AgentGateway',
    'BackendGateway',
    'AIAgent',
    'DeepgramRecognitionEngine',
    'GTTSSynthesisEngine',
    'text_to_speech_base64',
    'CaptureStatus',
    'ConversationMode',
    'ConversationState',
]
