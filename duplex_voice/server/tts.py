"""
Text-to-Speech (TTS) Module.

This module converts agent text into audio with gTTS and hands it to the
client for playback. The client reports playback start/completion, which
become the synthesis engine's lifecycle events.
"""

import asyncio
import base64
import time
from io import BytesIO
from typing import Callable, Dict, List, Optional

from gtts import gTTS

from .errors import SynthesisError
from .synthesis import SpeechUtterance, SynthesisEngine, Voice


# gTTS voices differ by the Google Translate domain used (regional accent)
GTTS_VOICES = (
    Voice(name="Google US English", language="en", accent="com"),
    Voice(name="Google UK English Female", language="en", accent="co.uk"),
    Voice(name="Google Australian English", language="en", accent="com.au"),
    Voice(name="Google Indian English", language="en", accent="co.in"),
)


def _synthesize_mp3(text: str, lang: str, tld: str, slow: bool) -> bytes:
    """Blocking gTTS call: returns MP3 bytes."""
    tts = gTTS(text=text, lang=lang, tld=tld, slow=slow)
    mp3_buffer = BytesIO()
    tts.write_to_fp(mp3_buffer)
    mp3_buffer.seek(0)
    return mp3_buffer.read()


async def text_to_speech_base64(text: str, lang: str = "en", tld: str = "com",
                                slow: bool = False) -> str:
    """
    Convert text to base64-encoded MP3 audio.

    This is useful for sending audio over WebSocket connections.

    Args:
        text: Text to synthesize
        lang: Language code
        tld: Google Translate domain (selects the regional accent)
        slow: Speak slowly

    Returns:
        Base64-encoded MP3

    Raises:
        SynthesisError: If there is nothing to say or gTTS fails
    """
    if not text or not text.strip():
        raise SynthesisError("Nothing to synthesize")

    start_time = time.time()
    try:
        # Run blocking gTTS call in thread pool to avoid blocking event loop
        loop = asyncio.get_running_loop()
        mp3_data = await loop.run_in_executor(None, _synthesize_mp3, text, lang, tld, slow)
    except Exception as e:
        raise SynthesisError(f"TTS synthesis failed: {e}") from e

    elapsed = time.time() - start_time
    print(f"[TTS] ✅ Generated MP3 audio ({len(mp3_data)} bytes) in {elapsed:.2f}s")
    return base64.b64encode(mp3_data).decode("utf-8")


class GTTSSynthesisEngine(SynthesisEngine):
    """
    Synthesis engine backed by gTTS with playback on the client.

    speak() synthesizes in the background and sends a `play_audio` event;
    the client answers with playback_started / playback_complete /
    playback_error messages which the orchestrator routes to
    handle_client_playback().
    """

    def __init__(self, send: Callable[[Dict], None], lang: str = "en", slow: bool = False):
        """
        Initialize the TTS engine.

        Args:
            send: Callback queueing a JSON event for the client
            lang: Language code for gTTS
            slow: Speak slowly
        """
        super().__init__()
        self.send = send
        self.lang = lang
        self.slow = slow
        self._tasks: Dict[int, asyncio.Task] = {}
        print(f"[TTS] Initialized gTTS engine (lang={lang})")

    def voices(self) -> List[Voice]:
        return [voice for voice in GTTS_VOICES if voice.language == self.lang.split("-")[0]]

    def speak(self, utterance: SpeechUtterance):
        task = asyncio.create_task(self._synthesize_and_play(utterance))
        self._tasks[utterance.utterance_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(utterance.utterance_id, None))

    def cancel(self, utterance: SpeechUtterance):
        task = self._tasks.pop(utterance.utterance_id, None)
        if task is not None and not task.done():
            task.cancel()
        self.send({"event": "stop_playback", "utterance_id": utterance.utterance_id})

    async def _synthesize_and_play(self, utterance: SpeechUtterance):
        tld = utterance.profile.voice.accent if utterance.profile.voice else "com"
        print(f"[TTS] Synthesizing: '{utterance.text[:50]}{'...' if len(utterance.text) > 50 else ''}'")
        try:
            b64_audio_string = await text_to_speech_base64(utterance.text, self.lang, tld, self.slow)
        except SynthesisError as e:
            print(f"[TTS] ERROR: {e}")
            self.listener.on_error(utterance.utterance_id, str(e))
            return

        self.send({
            "event": "play_audio",
            "audio": b64_audio_string,
            "utterance_id": utterance.utterance_id,
            "rate": utterance.profile.rate,
            "pitch": utterance.profile.pitch,
        })

    def handle_client_playback(self, kind: str, utterance_id: Optional[int], message: str = ""):
        """
        Route a client playback report to the listener.

        Args:
            kind: 'playback_started', 'playback_complete' or 'playback_error'
            utterance_id: Utterance the report is about
            message: Error description for playback_error
        """
        if utterance_id is None or self.listener is None:
            print(f"[TTS] Ignoring {kind} without utterance id")
            return
        if kind == "playback_started":
            self.listener.on_started(utterance_id)
        elif kind == "playback_complete":
            self.listener.on_ended(utterance_id)
        elif kind == "playback_error":
            self.listener.on_error(utterance_id, message or "Client playback failed")
