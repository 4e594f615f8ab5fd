"""
Backend Gateway Module.

Sends finalized user utterances to the conversational backend and posts
its answers back as events. The conversation state machine only sees the
event contract:

    Outbound: initialize_conversation(mode), submit_utterance(text)
    Inbound:  ConversationReady(greeting), AgentReply(text), BackendFailed(message)
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional, Set

from .errors import BackendError
from .events import AgentReply, BackendFailed, ConversationReady


def get_greeting(hour: int) -> str:
    """Time-of-day greeting."""
    if hour < 12:
        return "Good morning!"
    if hour < 17:
        return "Good afternoon!"
    return "Good evening!"


def build_welcome_message(mode: str, assistant_name: str = "", now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    kind = "voice" if mode == "voice" else "text"
    assistant = f"{assistant_name} {kind} assistant" if assistant_name else f"{kind} assistant"
    return f"{get_greeting(now.hour)} I'm your {assistant}. How can I help you today?"


class BackendGateway:
    """Transport-agnostic gateway contract."""

    def __init__(self, emit: Callable[[object], None]):
        self.emit = emit

    def initialize_conversation(self, mode: str = "voice", generation: Optional[int] = None):
        raise NotImplementedError

    def submit_utterance(self, text: str, generation: Optional[int] = None):
        raise NotImplementedError

    def close(self):
        """Cancel in-flight requests and forget the backend session."""
        pass


class AgentGateway(BackendGateway):
    """
    Gateway to an in-process AIAgent.

    Every request runs as its own task; results are posted as events tagged
    with the session generation the request was made in.
    """

    def __init__(
        self,
        agent_factory: Callable[[], object],
        emit: Callable[[object], None],
        reply_timeout: float = 30.0,
        assistant_name: str = "",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the gateway.

        Args:
            agent_factory: Creates a fresh agent for each conversation
            emit: Callback receiving gateway events
            reply_timeout: Seconds to wait for a reply before failing the turn
            assistant_name: Name used in the greeting
            clock: Source of the current time (for the greeting)
        """
        super().__init__(emit)
        self.agent_factory = agent_factory
        self.reply_timeout = reply_timeout
        self.assistant_name = assistant_name
        self.clock = clock
        self.agent = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def initialize_conversation(self, mode: str = "voice", generation: Optional[int] = None):
        print(f"[Gateway] Initializing {mode} chat")
        self._spawn(self._initialize(mode, generation))

    def submit_utterance(self, text: str, generation: Optional[int] = None):
        if self.agent is None:
            print("[Gateway] ✗ Utterance submitted with no active conversation")
            self.emit(BackendFailed("No active conversation", generation=generation))
            return
        print(f"[Gateway] Processing user query: '{text}'")
        self._spawn(self._submit(text, generation))

    def close(self):
        cancelled = 0
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                cancelled += 1
        self._tasks.clear()
        if self.agent is not None:
            reset = getattr(self.agent, "reset_conversation", None)
            if reset is not None:
                reset()
            self.agent = None
        if cancelled:
            print(f"[Gateway] Cancelled {cancelled} in-flight request(s)")

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _initialize(self, mode: str, generation: Optional[int]):
        try:
            self.agent = self.agent_factory()
        except Exception as e:
            print(f"[Gateway] ✗ Error initializing chat: {e}")
            self.emit(BackendFailed(f"Failed to initialize chat: {e}", generation=generation))
            return
        greeting = build_welcome_message(mode, self.assistant_name, self.clock())
        print(f"[Gateway] {mode} chat initialized")
        self.emit(ConversationReady(greeting=greeting, mode=mode, generation=generation))

    async def _submit(self, text: str, generation: Optional[int]):
        try:
            reply = await asyncio.wait_for(self.agent.reply(text), timeout=self.reply_timeout)
        except asyncio.TimeoutError:
            print(f"[Gateway] ✗ No reply within {self.reply_timeout:.0f}s")
            self.emit(BackendFailed("The assistant took too long to respond", generation=generation))
            return
        except BackendError as e:
            print(f"[Gateway] ✗ {e}")
            self.emit(BackendFailed(str(e), generation=generation))
            return
        except Exception as e:
            print(f"[Gateway] ✗ Error processing message: {e}")
            self.emit(BackendFailed(f"Failed to process message: {e}", generation=generation))
            return
        self.emit(AgentReply(text=reply, generation=generation))
