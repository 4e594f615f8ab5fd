"""
Single-shot timer handles.

Every delayed action in the server (capture restart, sound hold-down,
post-utterance resume, hidden-page grace) goes through a SingleShotTimer so
that at most one callback per timer is ever pending.
"""

import asyncio
from typing import Callable, Optional


class SingleShotTimer:
    """
    A one-shot timer owned by exactly one component.

    Scheduling always cancels the pending callback first, so a timer can
    never have two outstanding callbacks.
    """

    def __init__(self, name: str):
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        """True while a callback is scheduled and has not fired yet."""
        return self._handle is not None

    def schedule(self, delay: float, callback: Callable, *args) -> None:
        """Cancel any pending callback, then run `callback(*args)` after `delay` seconds."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(0.0, delay), self._fire, callback, args)

    def cancel(self) -> bool:
        """Cancel the pending callback. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self, callback: Callable, args: tuple) -> None:
        self._handle = None
        callback(*args)

    def __repr__(self) -> str:
        return f"SingleShotTimer({self.name!r}, pending={self.pending})"
