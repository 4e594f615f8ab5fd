"""
Recognition Lifecycle Manager Module.

Owns the continuous capture stream: starts, stops and auto-restarts it,
buffers interim transcripts, and suppresses duplicate or empty results.
The conversation state machine only sends start/stop intents; it never
touches the engine.
"""

from typing import Callable, List, Optional

from .errors import (
    CapturePermissionDenied,
    CaptureTransientError,
    DuplicateOrEmptyTranscript,
    UnsupportedCapability,
)
from .events import CaptureUnavailable, InterruptionSignal, UserUtteranceFinal
from .state_types import (
    CaptureStatus,
    RecognitionErrorKind,
    RETRYABLE_START_ERRORS,
    TERMINAL_RECOGNITION_ERRORS,
)
from .timers import SingleShotTimer


class RecognitionEngine:
    """
    Streaming speech recognizer contract.

    Implementations deliver their events on the event loop by calling the
    bound listener:
        listener.on_result(transcript: str, is_final: bool)
        listener.on_speech_start()
        listener.on_error(kind: RecognitionErrorKind)
        listener.on_end()

    `start()` may raise CaptureTransientError (kind ALREADY_STARTED/ABORTED)
    or CapturePermissionDenied.
    """

    def __init__(self):
        self.listener = None

    def bind(self, listener):
        self.listener = listener

    def start(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError


class RecognitionLifecycleManager:
    """
    Keeps one capture stream alive for the active conversation.

    Invariant: at most one restart is ever pending (single restart timer,
    cancelled before every reschedule).
    """

    def __init__(
        self,
        engine: Optional[RecognitionEngine],
        emit: Callable[[object], None],
        min_transcript_length: int = 3,
        restart_delay: float = 0.1,
        retry_delay: float = 0.2,
        error_restart_delay: float = 0.5,
    ):
        """
        Initialize the recognition manager.

        Args:
            engine: Streaming recognizer, or None if the environment has none
            emit: Callback receiving UserUtteranceFinal / InterruptionSignal / CaptureUnavailable
            min_transcript_length: Shortest transcript worth forwarding
            restart_delay: Delay before restarting after the stream ends
            retry_delay: Delay before the single retry of a failed start
            error_restart_delay: Delay before restarting after a recoverable error
        """
        self.engine = engine
        self.emit = emit
        self.min_transcript_length = min_transcript_length
        self.restart_delay = restart_delay
        self.retry_delay = retry_delay
        self.error_restart_delay = error_restart_delay

        self.status = CaptureStatus.IDLE
        self.conversation_active = False
        self.generation: Optional[int] = None
        self.interim_buffer: List[str] = []
        self.last_final_transcript = ""
        self.interruptible_speech = False
        self.interruption_in_flight = False

        self._restart_timer = SingleShotTimer("recognition-restart")

        if engine is not None:
            engine.bind(self)

    @property
    def supported(self) -> bool:
        return self.engine is not None

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer.pending

    # --- Commands (from the conversation state machine) ---

    def start(self, generation: Optional[int] = None):
        """Begin continuous capture. No-op if already running."""
        if self.engine is None:
            raise UnsupportedCapability("Speech recognition")

        if generation is not None and generation != self.generation:
            # New session: forget everything from the previous one
            self.generation = generation
            self.interim_buffer.clear()
            self.last_final_transcript = ""
        self.conversation_active = True

        if self.status == CaptureStatus.RUNNING:
            return

        if self._restart_timer.cancel():
            print("[Recognition] Pending restart superseded by explicit start")
        self._begin(attempt=0, raise_errors=True)

    def stop(self):
        """End capture and cancel any pending restart. Always ends IDLE."""
        self.conversation_active = False
        self._restart_timer.cancel()

        if self.status == CaptureStatus.RUNNING and self.engine is not None:
            try:
                self.engine.stop()
                print("[Recognition] Stopped listening")
            except CaptureTransientError as e:
                print(f"[Recognition] Stop listening error: {e}")

        self.status = CaptureStatus.IDLE
        self.interim_buffer.clear()
        self.last_final_transcript = ""
        self.interruptible_speech = False
        self.interruption_in_flight = False

    def set_interruptible_speech(self, interruptible: bool):
        """Tell the manager whether an interruptible agent utterance is playing."""
        self.interruptible_speech = interruptible
        if interruptible:
            # Fresh utterance: a previous barge-in no longer counts as in flight
            self.interruption_in_flight = False

    # --- Engine events ---

    def on_result(self, transcript: str, is_final: bool):
        if not self.conversation_active:
            print("[Recognition] Result after stop, dropping")
            return

        transcript = (transcript or "").strip()

        if not is_final:
            if transcript and len(transcript) >= self.min_transcript_length:
                self.interim_buffer.append(transcript)
                if self.interruptible_speech:
                    self._signal_interruption("interim")
            return

        try:
            self._check_forwardable(transcript)
        except DuplicateOrEmptyTranscript as e:
            print(f"[Recognition] Dropping final: {e}")
        else:
            print(f"[Recognition] User said (FINAL): '{transcript}'")
            self._forward(transcript)
        self.interim_buffer.clear()

    def on_speech_start(self):
        if self.conversation_active and self.interruptible_speech:
            self._signal_interruption("speech-start")

    def on_end(self):
        if self.status == CaptureStatus.RUNNING:
            self.status = CaptureStatus.IDLE
        print("[Recognition] Stream ended")

        if not self.conversation_active:
            self.interim_buffer.clear()
            return

        # Speech cut off by provider-side endpointing: forward what we heard
        if self.interim_buffer and not self.interruption_in_flight:
            latest = self.interim_buffer[-1]
            try:
                self._check_forwardable(latest)
            except DuplicateOrEmptyTranscript as e:
                print(f"[Recognition] Not forwarding buffered interim: {e}")
            else:
                print(f"[Recognition] Forwarding buffered interim as final: '{latest}'")
                self._forward(latest)
        self.interim_buffer.clear()
        self.interruption_in_flight = False

        self._schedule_restart(self.restart_delay)

    def on_error(self, kind: RecognitionErrorKind):
        print(f"[Recognition] ⚠️ Recognition error: {kind.value}")
        if self.status == CaptureStatus.RUNNING:
            self.status = CaptureStatus.IDLE
        self.interruption_in_flight = False
        self._restart_timer.cancel()

        if not self.conversation_active:
            return

        if kind in TERMINAL_RECOGNITION_ERRORS:
            self.conversation_active = False
            self.status = CaptureStatus.IDLE
            self.emit(CaptureUnavailable(reason=kind.value, generation=self.generation))
            return

        self._schedule_restart(self.error_restart_delay)

    # --- Internals ---

    def _check_forwardable(self, transcript: str):
        """Raise DuplicateOrEmptyTranscript unless `transcript` may be forwarded."""
        if not transcript:
            raise DuplicateOrEmptyTranscript("empty transcript")
        if len(transcript) < self.min_transcript_length:
            raise DuplicateOrEmptyTranscript(
                f"'{transcript}' is shorter than {self.min_transcript_length} characters")
        if transcript == self.last_final_transcript:
            raise DuplicateOrEmptyTranscript(f"'{transcript}' repeats the last transcript")

    def _forward(self, transcript: str):
        self.last_final_transcript = transcript
        self.interim_buffer.clear()
        self.emit(UserUtteranceFinal(text=transcript, generation=self.generation))

    def _signal_interruption(self, source: str):
        if self.interruption_in_flight:
            return
        self.interruption_in_flight = True
        print(f"[Recognition] Speech detected ({source}) → interrupting agent")
        self.emit(InterruptionSignal(source=source, generation=self.generation))

    def _schedule_restart(self, delay: float, attempt: int = 0):
        self.status = CaptureStatus.RESTART_PENDING
        self._restart_timer.schedule(delay, self._restart, attempt)

    def _restart(self, attempt: int):
        if not self.conversation_active:
            self.status = CaptureStatus.IDLE
            return
        print("[Recognition] Restarting recognition")
        self._begin(attempt=attempt, raise_errors=False)

    def _begin(self, attempt: int, raise_errors: bool):
        """
        Start the engine.

        Args:
            attempt: 0 for a first attempt, 1 for the single retry
            raise_errors: Propagate terminal failures (explicit start) instead of
                          emitting CaptureUnavailable (timer-driven restart)
        """
        try:
            self.engine.start()
        except CaptureTransientError as e:
            if attempt == 0 and e.kind in RETRYABLE_START_ERRORS:
                print(f"[Recognition] Start failed ({e}), retrying once")
                self._schedule_restart(self.retry_delay, attempt=1)
            else:
                # Gives up silently; the next explicit start tries again
                print(f"[Recognition] Start failed ({e}), giving up")
                self.status = CaptureStatus.IDLE
            return
        except (CapturePermissionDenied, UnsupportedCapability) as e:
            self.status = CaptureStatus.IDLE
            self.conversation_active = False
            if raise_errors:
                raise
            self.emit(CaptureUnavailable(reason=str(e), generation=self.generation))
            return

        self.status = CaptureStatus.RUNNING
        print("[Recognition] ✓ Recognition started - full duplex mode")
