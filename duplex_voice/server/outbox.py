"""
Client Outbox Module.

Queues JSON events for the client and sends them over the WebSocket from a
single background worker, so synchronous handlers can notify the client
without awaiting.
"""

import asyncio
from typing import Dict, Optional


class ClientOutbox:
    """
    Outbound event worker for one WebSocket connection.

    Events are sent in the order they were queued.
    """

    def __init__(self, websocket, maxsize: int = 0):
        """
        Initialize the outbox.

        Args:
            websocket: WebSocket connection to send events to
            maxsize: Maximum queued events (0 = unbounded)
        """
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.worker_task: Optional[asyncio.Task] = None

    def send(self, event: Dict):
        """Queue an event for the client."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            print(f"[Outbox] ⚠️ Queue full, dropping {event.get('event')} event")

    async def start(self):
        """Start the sender background task."""
        if self.worker_task is None or self.worker_task.done():
            self.worker_task = asyncio.create_task(self._run())
            print("[Outbox] Started")

    async def stop(self):
        """Stop the sender."""
        if self.worker_task and not self.worker_task.done():
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass
        self.clear()
        print("[Outbox] Stopped")

    def clear(self):
        """Clear all queued events."""
        while not self.queue.empty():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    async def _run(self):
        while True:
            try:
                event = await self.queue.get()
            except asyncio.CancelledError:
                print("[Outbox] Shutting down...")
                break
            try:
                await self.websocket.send_json(event)
            except asyncio.CancelledError:
                print("[Outbox] Shutting down...")
                break
            except Exception as e:
                # The connection handler notices a dead socket on receive
                print(f"[Outbox] ERROR sending {event.get('event')} event: {e}")
            finally:
                self.queue.task_done()
