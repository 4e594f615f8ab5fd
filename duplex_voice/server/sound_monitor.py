"""
Sound-Level Monitor Module.

Samples the microphone stream while the agent is speaking and raises an
InterruptionSignal when ambient sound appears. The level is the average
byte-scaled frequency magnitude over a fixed window, i.e. the value an
audio analyser node reports, so the usual threshold of 25 carries over.
"""

import asyncio
from typing import Callable, Optional

import numpy as np

from .audio_input import AudioInputStream
from .errors import AudioInputUnavailable
from .events import InterruptionSignal
from .timers import SingleShotTimer


def byte_frequency_levels(
    magnitudes: np.ndarray,
    min_decibels: float = -100.0,
    max_decibels: float = -30.0,
) -> np.ndarray:
    """Map linear magnitudes to the 0-255 byte scale used by analyser nodes."""
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitudes)
    scaled = (decibels - min_decibels) * (255.0 / (max_decibels - min_decibels))
    return np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0)


class SoundLevelMonitor:
    """
    Rising-edge ambient sound detector with a hold-down window.

    Only triggers while armed; the conversation state machine arms it while
    an interruptible utterance is playing.
    """

    def __init__(
        self,
        emit: Callable[[object], None],
        threshold: float = 25.0,
        hold_seconds: float = 1.0,
        window_size: int = 2048,
        smoothing: float = 0.8,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ):
        """
        Initialize the sound monitor.

        Args:
            emit: Callback receiving InterruptionSignal events
            threshold: Average byte level (0-255) above which sound is present
            hold_seconds: How long the sound flag stays set after the last loud window
            window_size: Samples per analysis window (FFT size)
            smoothing: Temporal smoothing between consecutive windows (0-1)
            min_decibels: Level mapped to byte 0
            max_decibels: Level mapped to byte 255
        """
        self.emit = emit
        self.threshold = threshold
        self.hold_seconds = hold_seconds
        self.window_size = window_size
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels

        self.armed = False
        self.sound_flagged = False
        self.last_level = 0.0

        self._stream: Optional[AudioInputStream] = None
        self._task: Optional[asyncio.Task] = None
        self._hold_timer = SingleShotTimer("sound-hold")
        self._pending = np.zeros(0, dtype=np.float32)
        self._smoothed = np.zeros(window_size // 2, dtype=np.float64)
        self._window = np.blackman(window_size)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, stream: AudioInputStream):
        """Begin sampling `stream`. Fails silently if the input is unavailable."""
        if self.running:
            return
        try:
            stream.open()
        except AudioInputUnavailable as e:
            print(f"[Sound Monitor] ⚠️ {e} - relying on recognizer interruption only")
            return
        self._stream = stream
        self._reset_analysis()
        self._task = asyncio.create_task(self._run(stream))
        print("[Sound Monitor] Started")

    def stop(self):
        """Release the input stream. No-op when not started."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._stream is not None:
            self._stream.close()
            self._stream = None
            print("[Sound Monitor] Stopped")
        self._hold_timer.cancel()
        self.sound_flagged = False
        self.armed = False

    def set_armed(self, armed: bool):
        """Enable or disable triggering (disabled for non-interruptible speech)."""
        if armed == self.armed:
            return
        self.armed = armed
        if not armed:
            self._hold_timer.cancel()
            self.sound_flagged = False
        self._reset_analysis()

    async def _run(self, stream: AudioInputStream):
        try:
            async for frame in stream:
                try:
                    self.process_frame(frame)
                except (TypeError, ValueError) as e:
                    print(f"[Sound Monitor] Skipping malformed frame: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            print(f"[Sound Monitor] ERROR: {e}")

    def process_frame(self, frame) -> Optional[float]:
        """
        Feed one frame of PCM16 bytes (or float samples in [-1, 1]).

        Returns:
            The level of the last completed window, or None if no window completed
        """
        if not self.armed:
            # Inert: keep the stream drained but do no analysis
            return None

        if isinstance(frame, (bytes, bytearray, memoryview)):
            frame = memoryview(frame).cast("B")
            if len(frame) % 2:
                # Half a sample: drop the trailing byte
                frame = frame[:-1]
            samples = np.frombuffer(frame, dtype=np.int16).astype(np.float32) / 32768.0
        else:
            samples = np.asarray(frame, dtype=np.float32)

        self._pending = np.concatenate((self._pending, samples))
        level = None
        while len(self._pending) >= self.window_size:
            window = self._pending[:self.window_size]
            self._pending = self._pending[self.window_size:]
            level = self.measure(window)
            self._evaluate(level)
        return level

    def measure(self, window: np.ndarray) -> float:
        """Average byte frequency level of one window, with temporal smoothing."""
        spectrum = np.abs(np.fft.rfft(window * self._window))[:self.window_size // 2]
        spectrum /= self.window_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * spectrum
        levels = byte_frequency_levels(self._smoothed, self.min_decibels, self.max_decibels)
        self.last_level = float(levels.mean())
        return self.last_level

    def _evaluate(self, level: float):
        if not self.armed or level <= self.threshold:
            return
        if not self.sound_flagged:
            self.sound_flagged = True
            print(f"[Sound Monitor] User sound detected (level {level:.1f}), signalling interruption")
            self.emit(InterruptionSignal(source="sound"))
        # Every loud window extends the hold-down
        self._hold_timer.schedule(self.hold_seconds, self._release)

    def _release(self):
        self.sound_flagged = False

    def _reset_analysis(self):
        self._pending = np.zeros(0, dtype=np.float32)
        self._smoothed = np.zeros(self.window_size // 2, dtype=np.float64)
