"""
Turn Accumulator (the orchestrator).

Pipeline for one turn:
- Validate the submitted text (typed, or a speech transcript written into the input)
- Dispatch [image model descriptor?, text] to the conversation's chat session
- Append every streamed fragment to the answer buffer and re-render the view
- Persist {question, answer, img} once the stream has ended
- Reload the cached conversation, then reset to idle

Failures never escape: they are logged, alerted once, and the partial turn
stays visible so the user can see what went wrong.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from ..errors import (
    ConfigurationError,
    PersistenceError,
    StreamError,
    TurnChatError,
    TurnInProgressError,
    ValidationError,
)
from ..memory.conversation_cache import ConversationCache, chat_key
from ..memory.persistence import PersistenceGateway
from ..schema.core_schema import Conversation, InFlightTurn, PendingTurn
from ..schema.schema_config import (
    BUSY_ALERT,
    EMPTY_INPUT_ALERT,
    PERSIST_TIMEOUT_SECONDS,
    RESPONSE_ERROR_ALERT,
    STREAM_TIMEOUT_SECONDS,
    ListeningState,
    TurnState,
)
from ..speech.speech_capture import Recognizer, SpeechCaptureAdapter, TextInput
from .llm_client import ChatSession, LLMClient

logger = logging.getLogger(__name__)


class TurnView:
    """
    Receives everything the orchestrator wants shown.

    Subclass and override what the view cares about; the defaults do nothing.
    """

    def render(self, turn: InFlightTurn) -> None:
        pass

    def alert(self, message: str) -> None:
        pass

    def clear_input(self) -> None:
        pass

    def state_changed(self, state: TurnState) -> None:
        pass

    def persisted(self, conversation_id: str, turn: PendingTurn) -> None:
        pass


class TurnAccumulator:
    """Owns the in-flight turn and listening state of one conversation view."""

    def __init__(
        self,
        llm_client: LLMClient,
        gateway: PersistenceGateway,
        cache: ConversationCache,
        view: Optional[TurnView] = None,
        recognizer: Optional[Recognizer] = None,
        text_input: Optional[TextInput] = None,
        stream_timeout: float = STREAM_TIMEOUT_SECONDS,
        persist_timeout: float = PERSIST_TIMEOUT_SECONDS,
    ) -> None:
        self.llm_client = llm_client
        self.gateway = gateway
        self.cache = cache
        self.view = view or TurnView()
        self.text_input = text_input or TextInput()
        self.stream_timeout = stream_timeout
        self.persist_timeout = persist_timeout

        self.conversation: Optional[Conversation] = None
        self.session: Optional[ChatSession] = None
        self.turn = InFlightTurn()
        self.state = TurnState.IDLE
        self.last_error: Optional[TurnChatError] = None
        # bumped on every conversation change; turns started under an older binding are dropped
        self._binding = 0
        self.speech = SpeechCaptureAdapter(recognizer, self.text_input, on_complete=self.submit_input)

    # ------------------------------------------------------------------
    # Conversation identity
    # ------------------------------------------------------------------
    async def bind(self, conversation: Conversation) -> None:
        """
        Attach the view to a conversation (first load or re-render).

        A new conversation id gets a fresh chat session and in-flight turn;
        the same id only refreshes the data. A conversation holding just its
        opening message is replayed once.
        """
        if self.conversation is None or self.conversation.id != conversation.id:
            self.speech.stop()
            if self.state is not TurnState.IDLE:
                logger.info("Abandoning in-flight turn of conversation %s", self.conversation.id)
            self._binding += 1
            self.session = self.llm_client.open_session(conversation.history)
            self.turn = InFlightTurn()
            self.state = TurnState.IDLE
            self.last_error = None
            logger.info("Bound to conversation %s (%d messages)", conversation.id, len(conversation.history))
        self.conversation = conversation
        await self._maybe_replay()

    async def _maybe_replay(self) -> None:
        conversation = self.conversation
        registry = self.cache.replay_registry
        if len(conversation.history) != 1 or registry.seen(conversation.id):
            return
        registry.mark(conversation.id)

        opening = conversation.history[0].text
        if not opening or self.state is not TurnState.IDLE:
            return
        logger.info("Replaying opening message of conversation %s", conversation.id)
        await self._run_turn(opening, is_replay=True)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    @property
    def can_submit(self) -> bool:
        return self.state is TurnState.IDLE and self.conversation is not None

    @property
    def listening_state(self) -> ListeningState:
        return self.speech.state

    def toggle_listening(self) -> None:
        self.speech.toggle()

    async def submit_input(self) -> bool:
        """Form submission: submit whatever is in the text input."""
        return await self.submit(self.text_input.value)

    async def submit(self, raw_text: str) -> bool:
        """
        Submit a question and run the whole turn.

        Returns:
            False when the submission was rejected (empty or busy), True once
            the turn ran, whether it succeeded or failed.
        """
        try:
            text = self._validate(raw_text)
        except ValidationError as e:
            logger.warning("Rejected submission: %s", e.message)
            self.view.alert(EMPTY_INPUT_ALERT)
            return False
        except TurnInProgressError as e:
            logger.warning("Rejected submission: %s", e.message)
            self.view.alert(BUSY_ALERT)
            return False
        except ConfigurationError as e:
            logger.error("Rejected submission: %s", e.message)
            return False

        await self._run_turn(text, is_replay=False)
        return True

    def _validate(self, raw_text: str) -> str:
        text = (raw_text or "").strip()
        if not text:
            raise ValidationError("Empty text provided")
        if self.conversation is None:
            raise ConfigurationError("No conversation bound; call bind() before submitting")
        if self.state is not TurnState.IDLE:
            raise TurnInProgressError(
                "A turn is already in flight",
                details={"state": self.state.value},
            )
        return text

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------
    async def _run_turn(self, text: str, is_replay: bool) -> None:
        # everything below works on what was bound at dispatch time
        binding = self._binding
        conversation_id = self.conversation.id
        session = self.session
        turn = self.turn

        self._set_state(TurnState.SUBMITTING)
        # a fresh dispatch drops the partial answer of an earlier failed turn
        turn.answer_buffer = ""
        if not is_replay:
            turn.question_text = text
        self.view.render(turn)

        model_descriptor = turn.image.model_descriptor
        parts = [model_descriptor, text] if model_descriptor else [text]

        self._set_state(TurnState.STREAMING)
        try:
            await asyncio.wait_for(self._drain(session, turn, parts, binding), timeout=self.stream_timeout)
        except asyncio.TimeoutError:
            self._fail(StreamError(f"No complete answer within {self.stream_timeout:g}s"), binding)
            return
        except StreamError as e:
            self._fail(e, binding)
            return
        except Exception as e:
            self._fail(StreamError(f"Unexpected stream failure: {e}", details={"cause": type(e).__name__}), binding)
            return
        if not self._is_current(binding):
            logger.info("Dropped answer for conversation %s after switching away", conversation_id)
            return

        self._set_state(TurnState.PERSISTING)
        pending = PendingTurn(
            question=turn.question_text or None,
            answer=turn.answer_buffer,
            img=turn.image.stored_path,
        )
        try:
            await asyncio.wait_for(self.gateway.save(conversation_id, pending), timeout=self.persist_timeout)
        except asyncio.TimeoutError:
            self._fail(PersistenceError(f"Save did not finish within {self.persist_timeout:g}s"), binding)
            return
        except PersistenceError as e:
            self._fail(e, binding)
            return
        if not self._is_current(binding):
            return
        self.view.persisted(conversation_id, pending)

        await self._reload(conversation_id)
        if self._is_current(binding):
            self._reset()

    def _is_current(self, binding: int) -> bool:
        return binding == self._binding

    async def _drain(self, session: ChatSession, turn: InFlightTurn, parts, binding: int) -> None:
        async for fragment in session.send_streaming(parts):
            if not fragment:
                continue
            turn.append(fragment)
            if self._is_current(binding):
                self.view.render(turn)

    async def _reload(self, conversation_id: str) -> None:
        # the turn is already saved; a failed reload must not invite a duplicate resubmission
        try:
            conversation = await asyncio.wait_for(
                self.cache.invalidate(chat_key(conversation_id)), timeout=self.persist_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Reloading conversation %s timed out", conversation_id)
            return
        except PersistenceError as e:
            logger.warning("Reloading conversation %s failed: %s", conversation_id, e)
            return
        except Exception:
            logger.exception("Reloading conversation %s failed unexpectedly", conversation_id)
            return
        if self.conversation is not None and conversation.id == self.conversation.id:
            self.conversation = conversation

    def _reset(self) -> None:
        self.turn.reset()
        self.text_input.clear()
        self.view.clear_input()
        self.last_error = None
        self._set_state(TurnState.IDLE)
        self.view.render(self.turn)

    def _fail(self, error: TurnChatError, binding: int) -> None:
        logger.error("Turn failed: %s", error, extra={"error": error.to_dict()})
        if not self._is_current(binding):
            return
        self.last_error = error
        self._set_state(TurnState.FAILED)
        self.view.alert(RESPONSE_ERROR_ALERT)
        self._set_state(TurnState.IDLE)

    def _set_state(self, state: TurnState) -> None:
        self.state = state
        self.view.state_changed(state)

    def snapshot(self) -> Dict[str, Any]:
        """Plain view of the orchestrator's state, for logs and debugging."""
        return {
            "conversation_id": self.conversation.id if self.conversation else None,
            "state": self.state.value,
            "listening": self.speech.state.value,
            "turn": self.turn.model_dump(),
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }
