"""
State type definitions for the conversation server.
"""

from enum import Enum


class ConversationState(Enum):
    """Canonical state of a conversation session (exactly one holds at a time)."""
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class CaptureStatus(Enum):
    """Status of the continuous capture stream."""
    IDLE = "idle"
    RUNNING = "running"
    RESTART_PENDING = "restart-pending"


class ConversationMode(Enum):
    """How the agent's side of the conversation is delivered."""
    VOICE = "voice"
    TEXT = "text"


class RecognitionErrorKind(Enum):
    """Error kinds reported by a recognition engine."""
    NOT_ALLOWED = "not-allowed"  # Permission denied
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    ALREADY_STARTED = "already-started"
    ABORTED = "aborted"
    NETWORK = "network"
    NO_SPEECH = "no-speech"


# Errors after which the capture stream must not be restarted
TERMINAL_RECOGNITION_ERRORS = frozenset({
    RecognitionErrorKind.NOT_ALLOWED,
    RecognitionErrorKind.SERVICE_NOT_ALLOWED,
})

# Engine start failures worth one more attempt
RETRYABLE_START_ERRORS = frozenset({
    RecognitionErrorKind.ALREADY_STARTED,
    RecognitionErrorKind.ABORTED,
})
