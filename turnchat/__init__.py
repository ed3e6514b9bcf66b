"""
Conversational turn orchestrator.

This package exposes a clean public API while the actual implementation
is organized into subpackages:

- turnchat.schema:   Pydantic models (Conversation, InFlightTurn, ImageState) and state enums
- turnchat.speech:   Speech capture adapter and microphone recognizer
- turnchat.chatbot:  Gemini streaming chat client and the turn accumulator
- turnchat.memory:   Persistence gateway, conversation cache, replay registry
"""

# Schemas
from .schema.core_schema import Conversation, HistoryEntry, ImageState, InFlightTurn, PendingTurn, Turn
from .schema.schema_config import ListeningState, OrchestratorSettings, Role, TurnState

# Errors
from .errors import (
    CaptureError,
    ConfigurationError,
    PersistenceError,
    StreamError,
    TurnChatError,
    TurnInProgressError,
    ValidationError,
)

# Core classes
from .chatbot.llm_client import ChatSession, LLMClient
from .memory.conversation_cache import ConversationCache, ReplayRegistry
from .memory.persistence import PersistenceGateway, open_http_client
from .speech.speech_capture import MicrophoneRecognizer, SpeechCaptureAdapter, TextInput
from .chatbot.turn_accumulator import TurnAccumulator, TurnView

__all__ = [
    "Conversation",
    "HistoryEntry",
    "ImageState",
    "InFlightTurn",
    "PendingTurn",
    "Turn",
    "ListeningState",
    "OrchestratorSettings",
    "Role",
    "TurnState",
    "CaptureError",
    "ConfigurationError",
    "PersistenceError",
    "StreamError",
    "TurnChatError",
    "TurnInProgressError",
    "ValidationError",
    "ChatSession",
    "LLMClient",
    "ConversationCache",
    "ReplayRegistry",
    "PersistenceGateway",
    "open_http_client",
    "MicrophoneRecognizer",
    "SpeechCaptureAdapter",
    "TextInput",
    "TurnAccumulator",
    "TurnView",
]
