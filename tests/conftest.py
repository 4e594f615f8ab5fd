"""Global test configuration: keep test runs off the network and the real .env."""

import pytest


_ENV_VARS = [
    "DEEPGRAM_API_KEY",
    "DEEPGRAM_MODEL",
    "RECOGNITION_LANGUAGE",
    "GROQ_API_KEY",
    "GROQ_MODEL",
    "ASSISTANT_NAME",
    "SYSTEM_PROMPT",
    "TTS_LANGUAGE",
    "MIN_TRANSCRIPT_LENGTH",
    "SOUND_THRESHOLD",
    "SOUND_HOLD_SECONDS",
    "REPLY_TIMEOUT_SECONDS",
    "HIDDEN_SESSION_GRACE_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Every test starts with no server configuration in the environment."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
