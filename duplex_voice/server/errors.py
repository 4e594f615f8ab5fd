"""
Error taxonomy for the conversation server.

Transient faults are retried inside the component that owns them; anything
that leaves a session unable to make progress is escalated to the
conversation state machine, which tears the session down.
"""

from typing import Optional

from .state_types import RecognitionErrorKind


class VoiceBotError(Exception):
    """Base class for all conversation server errors."""
    pass


class UnsupportedCapability(VoiceBotError):
    """No recognizer or synthesizer is available. Surfaced once, never retried."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"{capability} is not supported in this environment")


class CaptureTransientError(VoiceBotError):
    """A recognizer hiccup that may go away if the stream is started again."""

    def __init__(self, message: str, kind: Optional[RecognitionErrorKind] = None):
        self.kind = kind
        super().__init__(message)


class CapturePermissionDenied(VoiceBotError):
    """The capture device or recognition service refused access. Terminal."""

    def __init__(self, message: str = "Microphone permission denied",
                 kind: RecognitionErrorKind = RecognitionErrorKind.NOT_ALLOWED):
        self.kind = kind
        super().__init__(message)


class SynthesisError(VoiceBotError):
    """Exception raised for TTS errors. Non-fatal: treated as utterance completion."""
    pass


class BackendError(VoiceBotError):
    """The conversational backend failed. Terminates the conversation."""
    pass


class DuplicateOrEmptyTranscript(VoiceBotError):
    """A transcript that must not be forwarded (empty, too short or repeated)."""
    pass


class AudioInputUnavailable(VoiceBotError):
    """The audio input device cannot be opened."""
    pass
