"""
Speech-to-Text (STT) Module using Deepgram live streaming.

This module streams microphone audio to Deepgram's live transcription
WebSocket and reports interim/final transcripts, speech-start VAD events,
errors and stream end to the recognition lifecycle manager.
"""

import asyncio
import json
from typing import List, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import InvalidHandshake, WebSocketException

from .audio_input import AudioInputStream
from .errors import AudioInputUnavailable, CapturePermissionDenied, CaptureTransientError
from .recognition import RecognitionEngine
from .state_types import RecognitionErrorKind


DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


class DeepgramRecognitionEngine(RecognitionEngine):
    """
    Streaming recognizer backed by Deepgram.

    Each start() opens a new connection with its own id; callbacks from a
    connection that has since been stopped or replaced are ignored, so a
    late result can never leak into a newer stream.
    """

    def __init__(
        self,
        api_key: str,
        audio: AudioInputStream,
        model: str = "nova-2",
        language: str = "en-US",
        endpointing_ms: int = 300,
        keepalive_seconds: float = 5.0,
        url: str = DEEPGRAM_LISTEN_URL,
    ):
        """
        Initialize the STT engine with Deepgram.

        Args:
            api_key: Deepgram API key
            audio: Microphone frames (PCM16 mono) owned by this engine
            model: Deepgram model (default: "nova-2")
            language: Language code (e.g., "en-US", "es", "fr")
            endpointing_ms: Silence that ends an utterance, in milliseconds
            keepalive_seconds: Send KeepAlive when no audio arrived for this long
            url: Live transcription endpoint
        """
        super().__init__()
        self.api_key = api_key
        self.audio = audio
        self.model = model
        self.language = language
        self.endpointing_ms = endpointing_ms
        self.keepalive_seconds = keepalive_seconds
        self.url = url

        self._task: Optional[asyncio.Task] = None
        self._connection_id = 0
        self._final_segments: List[str] = []
        print(f"[STT] ✓ Initialized Deepgram streaming with model={model}, language={language}")

    def build_url(self) -> str:
        params = {
            "model": self.model,
            "language": self.language,
            "encoding": "linear16",
            "sample_rate": self.audio.sample_rate,
            "channels": 1,
            "interim_results": "true",
            "punctuate": "true",
            "smart_format": "true",
            "vad_events": "true",
            "endpointing": self.endpointing_ms,
        }
        return f"{self.url}?{urlencode(params)}"

    def start(self):
        if self._task is not None and not self._task.done():
            raise CaptureTransientError("recognition already started",
                                        kind=RecognitionErrorKind.ALREADY_STARTED)
        try:
            self.audio.open()
        except AudioInputUnavailable as e:
            raise CapturePermissionDenied(str(e)) from e

        self._connection_id += 1
        self._final_segments = []
        self._task = asyncio.create_task(self._run(self._connection_id))

    def stop(self):
        # Invalidate the running connection before cancelling it
        self._connection_id += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.audio.close()

    def _is_current(self, connection_id: int) -> bool:
        return connection_id == self._connection_id and self.listener is not None

    async def _run(self, connection_id: int):
        try:
            async with websockets.connect(
                self.build_url(),
                additional_headers={"Authorization": f"Token {self.api_key}"},
            ) as ws:
                print(f"[STT] Connected to Deepgram (connection {connection_id})")
                sender = asyncio.create_task(self._send_audio(ws))
                try:
                    async for raw in ws:
                        if not self._is_current(connection_id):
                            break
                        self.handle_message(raw)
                finally:
                    sender.cancel()
                    await asyncio.gather(sender, return_exceptions=True)
        except InvalidHandshake as e:
            if self._is_current(connection_id):
                self.listener.on_error(self._classify_handshake(e))
        except (OSError, WebSocketException) as e:
            print(f"[STT] Deepgram connection error: {e}")
            if self._is_current(connection_id):
                self.listener.on_error(RecognitionErrorKind.NETWORK)
        finally:
            if self._is_current(connection_id):
                self._task = None
                self.listener.on_end()

    @staticmethod
    def _classify_handshake(error: InvalidHandshake) -> RecognitionErrorKind:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None) or getattr(error, "status_code", None)
        print(f"[STT] ✗ Deepgram rejected the connection (status {status})")
        if status in (401, 403):
            return RecognitionErrorKind.SERVICE_NOT_ALLOWED
        return RecognitionErrorKind.NETWORK

    async def _send_audio(self, ws):
        """Forward microphone frames to Deepgram, with KeepAlive during silence."""
        while True:
            try:
                frame = await asyncio.wait_for(self.audio.read(), timeout=self.keepalive_seconds)
            except asyncio.TimeoutError:
                await ws.send(json.dumps({"type": "KeepAlive"}))
                continue
            if frame is None:
                # Audio closed: ask Deepgram to flush and close the stream
                await ws.send(json.dumps({"type": "CloseStream"}))
                return
            await ws.send(frame)

    def handle_message(self, raw):
        """
        Translate one Deepgram message into listener callbacks.

        Finalized segments (is_final) are accumulated until Deepgram marks the
        end of speech (speech_final); in between, the accumulated text plus
        the current hypothesis is reported as an interim result.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return

        msg_type = data.get("type", "")

        if msg_type == "SpeechStarted":
            self.listener.on_speech_start()
            return

        if msg_type == "UtteranceEnd":
            if self._final_segments:
                self._emit_final()
            return

        if msg_type != "Results":
            return

        alternatives = data.get("channel", {}).get("alternatives") or [{}]
        transcript = (alternatives[0].get("transcript") or "").strip()

        if data.get("is_final"):
            if transcript:
                self._final_segments.append(transcript)
            if data.get("speech_final") and self._final_segments:
                self._emit_final()
            elif transcript:
                self.listener.on_result(" ".join(self._final_segments), False)
        elif transcript:
            self.listener.on_result(" ".join(self._final_segments + [transcript]), False)

    def _emit_final(self):
        text = " ".join(self._final_segments)
        self._final_segments = []
        self.listener.on_result(text, True)
