"""
Runtime configuration read from environment variables.

The server entry point calls load_dotenv() first, so values may also come
from a .env file.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .ai_agent import DEFAULT_SYSTEM_PROMPT


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        print(f"[Config] ⚠️ {name}={value!r} is not a number, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


@dataclass
class Settings:
    """All tunables for one server process."""
    deepgram_api_key: Optional[str] = None
    deepgram_model: str = "nova-2"
    recognition_language: str = "en-US"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"
    assistant_name: str = "Revolt Motors"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    tts_language: str = "en"
    min_transcript_length: int = 3
    sound_threshold: float = 25.0
    sound_hold_seconds: float = 1.0
    reply_timeout_seconds: float = 30.0
    hidden_session_grace_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            deepgram_api_key=os.getenv("DEEPGRAM_API_KEY") or None,
            deepgram_model=os.getenv("DEEPGRAM_MODEL", "nova-2"),
            recognition_language=os.getenv("RECOGNITION_LANGUAGE", "en-US"),
            groq_api_key=os.getenv("GROQ_API_KEY") or None,
            groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
            assistant_name=os.getenv("ASSISTANT_NAME", "Revolt Motors"),
            system_prompt=os.getenv("SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            tts_language=os.getenv("TTS_LANGUAGE", "en"),
            min_transcript_length=_env_int("MIN_TRANSCRIPT_LENGTH", 3),
            sound_threshold=_env_float("SOUND_THRESHOLD", 25.0),
            sound_hold_seconds=_env_float("SOUND_HOLD_SECONDS", 1.0),
            reply_timeout_seconds=_env_float("REPLY_TIMEOUT_SECONDS", 30.0),
            hidden_session_grace_seconds=_env_float("HIDDEN_SESSION_GRACE_SECONDS", 30.0),
        )

    @property
    def recognition_configured(self) -> bool:
        return bool(self.deepgram_api_key)

    @property
    def backend_configured(self) -> bool:
        return bool(self.groq_api_key)
