"""
AI Agent Module using LangGraph and Groq.

This module manages the conversational AI agent using LangGraph for stateful
conversation management and Groq for ultra-fast LLM inference. The
conversation history lives in a LangGraph checkpointer under a per-session
thread id and is discarded when the session ends.
"""

import uuid
from typing import Annotated, List, Optional, TypedDict

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_groq import ChatGroq
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages

from .errors import BackendError


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant for Revolt Motors, an electric vehicle company. "
    "You should only provide information about Revolt Motors, their electric vehicles, "
    "services, and related topics. If asked about other topics, politely redirect the "
    "conversation back to Revolt Motors. Be conversational, friendly, and knowledgeable "
    "about electric vehicles and Revolt Motors' offerings. Your replies are spoken aloud, "
    "so keep them short and avoid markdown or lists."
)


# ============================================================================
# AGENT STATE
# ============================================================================

class ConversationState(TypedDict):
    """State for the conversation graph."""
    messages: Annotated[list, add_messages]


# ============================================================================
# AI AGENT CLASS
# ============================================================================

class AIAgent:
    """
    AI Agent powered by LangGraph and Groq.

    One agent serves one conversation session. Each call to reply() adds the
    user turn and the agent turn to the session's checkpointed history.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        temperature: float = 0.7,
        max_tokens: int = 1024,
        system_prompt: Optional[str] = None,
        llm=None,
    ):
        """
        Initialize the AI agent with Groq.

        Args:
            api_key: Groq API key
            model: Groq model identifier (default: llama-3.3-70b-versatile)
            temperature: Generation temperature (0.0-1.0)
            max_tokens: Maximum tokens per reply
            system_prompt: Optional system instructions
            llm: Pre-built chat model (skips Groq initialization)
        """
        self.model_name = model
        self.temperature = temperature
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.thread_id = str(uuid.uuid4())

        if llm is not None:
            self.llm = llm
        else:
            if not api_key or len(api_key) < 10:
                raise BackendError(f"Invalid Groq API key (length: {len(api_key) if api_key else 0})")
            self.llm = ChatGroq(
                model=model,
                groq_api_key=api_key,
                temperature=temperature,
                max_tokens=max_tokens,
                max_retries=2,
                timeout=30.0,
            )
            print(f"[AI Agent] ✓ Initialized Groq ({model})")

        self._build_graph()

    def _build_graph(self):
        """Build the LangGraph conversation workflow."""
        workflow = StateGraph(ConversationState)
        workflow.add_node("agent", self._agent_node)
        workflow.set_entry_point("agent")
        workflow.add_edge("agent", END)

        # Checkpointer keeps the per-thread message history between calls
        self.graph = workflow.compile(checkpointer=MemorySaver())
        print("[AI Agent] LangGraph workflow compiled")

    async def _agent_node(self, state: ConversationState) -> ConversationState:
        """
        Agent processing node.

        Args:
            state: Current conversation state

        Returns:
            Updated state with AI response
        """
        messages = [SystemMessage(content=self.system_prompt)] + state["messages"]
        response = await self.llm.ainvoke(messages)
        return {"messages": [response]}

    async def reply(self, text: str) -> str:
        """
        Generate the agent's reply to one user utterance.

        Args:
            text: The user's finalized utterance

        Returns:
            The reply text

        Raises:
            BackendError: If the model fails or returns nothing
        """
        print(f"[AI Agent] Generating reply (thread {self.thread_id[:8]})")
        try:
            result = await self.graph.ainvoke(
                {"messages": [HumanMessage(content=text)]},
                config={"configurable": {"thread_id": self.thread_id}},
            )
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"Failed to process message: {e}") from e

        reply_text = self._last_ai_text(result.get("messages", []))
        if not reply_text:
            raise BackendError("Agent returned an empty reply")
        print(f"[AI Agent] Response: '{reply_text[:100]}{'...' if len(reply_text) > 100 else ''}'")
        return reply_text

    @staticmethod
    def _last_ai_text(messages: List) -> str:
        for message in reversed(messages):
            if isinstance(message, AIMessage) and message.content:
                content = message.content
                if isinstance(content, list):
                    content = " ".join(
                        part.get("text", "") if isinstance(part, dict) else str(part)
                        for part in content
                    )
                return content.strip()
        return ""

    def reset_conversation(self):
        """Discard the conversation history by switching to a fresh thread."""
        self.thread_id = str(uuid.uuid4())
        print("[AI Agent] Conversation state reset")
