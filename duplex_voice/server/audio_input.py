"""
Audio Input Module.

This module manages the microphone frames streamed in by the client.
Each consumer (sound monitor, recognition engine) owns its own
AudioInputStream; the orchestrator pushes every client frame into all of them.
"""

import asyncio
from typing import Optional

from .errors import AudioInputUnavailable


class AudioInputStream:
    """
    A stream of raw PCM16 (mono, little-endian) microphone frames.

    Frames are only buffered while the stream is open. Closing releases the
    buffer and wakes any reader, which then sees the end of the stream.
    """

    def __init__(self, name: str, maxsize: int = 200, sample_rate: int = 16000):
        """
        Initialize the audio input stream.

        Args:
            name: Consumer name (for logging)
            maxsize: Maximum buffered frames (oldest frames are dropped beyond this)
            sample_rate: Sample rate of the frames in Hz
        """
        self.name = name
        self.maxsize = maxsize
        self.sample_rate = sample_rate
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.is_open = False
        self.available = True
        self.dropped_frames = 0

    def open(self):
        """Open the stream. Raises AudioInputUnavailable if the device is gone."""
        if not self.available:
            raise AudioInputUnavailable(f"Audio input for {self.name} is unavailable")
        # Drop a close sentinel left over from a previous reader
        self.clear()
        self.is_open = True

    def close(self):
        """Close the stream and discard buffered frames."""
        if not self.is_open:
            return
        self.is_open = False
        self.clear()
        # Wake any reader blocked in read()
        self.queue.put_nowait(None)

    def mark_unavailable(self):
        """The client reported that the microphone cannot be used."""
        self.available = False
        self.close()
        print(f"[Audio Input] {self.name}: input device unavailable")

    def push(self, frame: bytes):
        """Add a frame. Frames pushed while closed are ignored."""
        if not self.is_open or not frame:
            return
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.dropped_frames += 1
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(frame)

    async def read(self) -> Optional[bytes]:
        """Wait for the next frame. Returns None once the stream is closed."""
        if not self.is_open:
            return None
        frame = await self.queue.get()
        if frame is None or not self.is_open:
            return None
        return frame

    def clear(self):
        """Clear all buffered frames."""
        while not self.queue.empty():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        frame = await self.read()
        if frame is None:
            raise StopAsyncIteration
        return frame
