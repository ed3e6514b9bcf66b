"""
Error taxonomy for the turn orchestrator.

Every failure the core can hit maps to one of these classes. The Turn
Accumulator catches them at its boundary, logs once and raises a single
user-facing alert; nothing here is fatal to the application.
"""

from typing import Any, Dict, Optional


class TurnChatError(Exception):
    """Base exception for all orchestrator errors."""

    component = "turnchat"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        component: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if component:
            self.component = component

    def __str__(self) -> str:
        return f"[{self.component}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view used in logs and the conversation log metadata."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "component": self.component,
            "details": self.details,
        }


class ConfigurationError(TurnChatError):
    """Missing API key or invalid settings."""

    component = "config"


class ValidationError(TurnChatError):
    """Submitted text is empty after trimming."""

    component = "turn"


class TurnInProgressError(TurnChatError):
    """A submit arrived while another turn is still in flight."""

    component = "turn"


class CaptureError(TurnChatError):
    """The speech recognizer failed during a session."""

    component = "speech"


class StreamError(TurnChatError):
    """Model or transport failure while streaming an answer."""

    component = "stream"


class PersistenceError(TurnChatError):
    """Saving the finished turn or reloading the conversation failed."""

    component = "persistence"
