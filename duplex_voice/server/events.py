"""
Typed events exchanged between the conversation components.

Subsystems never call the conversation state machine directly: they post
events into an EventQueue which the state machine drains in order.
Events that carry a `generation` are dropped by the state machine when the
generation does not match the current session.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from .state_types import ConversationMode


# ============================================================================
# CONVERSATION CONTROL
# ============================================================================

@dataclass(frozen=True)
class StartConversation:
    """User pressed the toggle to start talking."""
    mode: ConversationMode = ConversationMode.VOICE


@dataclass(frozen=True)
class StopConversation:
    """Explicit stop (user toggle, disconnect, page hidden too long)."""
    reason: str = "user"


@dataclass(frozen=True)
class VisibilityChanged:
    """The client page was hidden or shown again."""
    hidden: bool


@dataclass(frozen=True)
class TextSubmitted:
    """A typed user message. Bound to whichever session is current when dispatched."""
    text: str


# ============================================================================
# CAPTURE / INTERRUPTION
# ============================================================================

@dataclass(frozen=True)
class UserUtteranceFinal:
    """A finalized user transcript, eligible for forwarding to the backend."""
    text: str
    generation: Optional[int] = None


@dataclass(frozen=True)
class InterruptionSignal:
    """Sound or speech detected while an interruptible utterance is playing."""
    source: str
    generation: Optional[int] = None


@dataclass(frozen=True)
class CaptureUnavailable:
    """Capture can no longer run for this session (permission denied, no engine)."""
    reason: str
    generation: Optional[int] = None


# ============================================================================
# SYNTHESIS
# ============================================================================

@dataclass(frozen=True)
class SynthesisStarted:
    utterance_id: int


@dataclass(frozen=True)
class SynthesisEnded:
    utterance_id: int


@dataclass(frozen=True)
class SynthesisFailed:
    utterance_id: int
    message: str = ""


# ============================================================================
# BACKEND GATEWAY
# ============================================================================

@dataclass(frozen=True)
class ConversationReady:
    """The backend initialized the conversation; greeting may be None."""
    greeting: Optional[str]
    mode: str = "voice"
    generation: Optional[int] = None


@dataclass(frozen=True)
class AgentReply:
    text: str
    generation: Optional[int] = None


@dataclass(frozen=True)
class BackendFailed:
    message: str
    generation: Optional[int] = None


class EventQueue:
    """
    Wrapper for the coordinator's inbound event queue.

    `post` never blocks, so it can be called from engine callbacks and
    timer callbacks alike.
    """

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()

    def post(self, event) -> None:
        """Add an event to the queue."""
        self.queue.put_nowait(event)

    async def get(self):
        """Wait for the next event."""
        return await self.queue.get()

    def get_nowait(self):
        return self.queue.get_nowait()

    def task_done(self):
        """Mark an event as processed."""
        self.queue.task_done()

    def empty(self) -> bool:
        return self.queue.empty()

    def clear(self) -> int:
        """Drop every queued event. Returns how many were dropped."""
        cleared_count = 0
        while not self.queue.empty():
            try:
                self.queue.get_nowait()
                self.queue.task_done()
                cleared_count += 1
            except asyncio.QueueEmpty:
                break
        if cleared_count > 0:
            print(f"[Event Queue] Cleared {cleared_count} events")
        return cleared_count
