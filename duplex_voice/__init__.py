"""
Duplex Voice - Full-Duplex Conversation Server

A real-time, event-driven system for holding barge-in capable voice
conversations with a conversational agent: the capture stream stays open
while the agent speaks, so the user can interrupt at any time.
"""

__version__ = "1.0.0"
