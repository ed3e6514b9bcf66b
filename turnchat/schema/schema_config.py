"""
Schema Configuration
State enums, defaults and environment-driven settings for the orchestrator.
"""

import os
from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class TurnState(str, Enum):
    """Lifecycle of the in-flight turn"""
    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    FAILED = "failed"  # transient, always followed by IDLE


class ListeningState(str, Enum):
    """Speech capture lifecycle"""
    IDLE = "idle"
    LISTENING = "listening"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# Defaults
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_API_BASE_URL = "http://localhost:3000"
SPEECH_LANGUAGE = "en-US"
STREAM_TIMEOUT_SECONDS = 60.0
PERSIST_TIMEOUT_SECONDS = 15.0

# User-facing alert texts
EMPTY_INPUT_ALERT = "Please enter a valid question."
BUSY_ALERT = "Please wait for the current answer to finish."
RESPONSE_ERROR_ALERT = "An error occurred while fetching the response. Please try again."


class OrchestratorSettings(BaseModel):
    """Runtime settings, overridable through environment variables."""
    api_base_url: str = Field(DEFAULT_API_BASE_URL, description="Base URL of the chat store API")
    model: str = Field(DEFAULT_MODEL, description="Gemini model name")
    stream_timeout: float = Field(STREAM_TIMEOUT_SECONDS, gt=0, description="Bound on a whole answer stream")
    persist_timeout: float = Field(PERSIST_TIMEOUT_SECONDS, gt=0, description="Bound on save + cache reload")
    speech_language: str = Field(SPEECH_LANGUAGE)

    @classmethod
    def from_env(cls, env_path: Optional[str] = None) -> "OrchestratorSettings":
        """Build settings from TURNCHAT_* variables (after loading .env)."""
        load_dotenv(dotenv_path=env_path)
        values = {}
        mapping = {
            "TURNCHAT_API_BASE_URL": "api_base_url",
            "TURNCHAT_MODEL": "model",
            "TURNCHAT_STREAM_TIMEOUT": "stream_timeout",
            "TURNCHAT_PERSIST_TIMEOUT": "persist_timeout",
            "TURNCHAT_SPEECH_LANGUAGE": "speech_language",
        }
        for env_name, field_name in mapping.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = raw
        return cls(**values)
