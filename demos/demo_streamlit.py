"""
Streamlit Demo Application
Web chat view driven by the turn orchestrator.
"""

import streamlit as st
import asyncio
import sys
import os
import tempfile
from datetime import datetime

# Project root (parent of demos/)
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, _PROJECT_ROOT)

# Default: save conversation logs under conversation_logger/streamlit/ for easy debug
_DEFAULT_LOG_DIR = os.path.join(_PROJECT_ROOT, "conversation_logger", "streamlit")

from turnchat import (
    ConversationCache,
    LLMClient,
    OrchestratorSettings,
    PersistenceGateway,
    TurnAccumulator,
    TurnView,
    open_http_client,
)
from utils.conversation_logger import ConversationLogger
from utils.image_attachment import LocalImageAttachment


class StreamlitTurnView(TurnView):
    """Writes the streaming answer into a placeholder of the current run."""

    def __init__(self):
        self.placeholder = None
        self.logger = None

    def render(self, turn):
        if self.placeholder is not None and turn.answer_buffer:
            self.placeholder.markdown(turn.answer_buffer)

    def alert(self, message):
        st.error(message)

    def persisted(self, conversation_id, turn):
        if self.logger:
            self.logger.log_turn(conversation_id, turn.question, turn.answer, turn.img)


class RecordedAudioRecognizer:
    """Recognizer over a clip already recorded by st.audio_input."""

    def __init__(self, llm_client, language):
        self.llm_client = llm_client
        self.language = language
        self.audio = b""
        self._task = None

    @property
    def available(self):
        return bool(self.audio)

    def start(self, on_result, on_error, on_end):
        self._task = asyncio.get_running_loop().create_task(self._run(on_result, on_error, on_end))

    def stop(self):
        if self._task is not None:
            self._task.cancel()

    async def _run(self, on_result, on_error, on_end):
        try:
            transcript = await self.llm_client.transcribe(self.audio, language=self.language)
            if transcript:
                on_result(transcript)
            else:
                on_error("no-speech")
        except Exception as e:
            on_error(str(e))
        finally:
            self.audio = b""
            on_end()


async def with_store(settings, coro_factory):
    """Run one interaction with a fresh HTTP client (each Streamlit run has its own loop)."""
    accumulator = st.session_state.accumulator
    async with open_http_client(settings.api_base_url, timeout=settings.persist_timeout) as http:
        accumulator.gateway.client = http
        accumulator.cache.client = http
        return await coro_factory(accumulator)


async def speak(accumulator):
    accumulator.toggle_listening()
    while accumulator.speech.listening:
        await asyncio.sleep(0.05)
    if accumulator.speech.submission is not None:
        await accumulator.speech.submission
        accumulator.speech.submission = None


async def open_conversation(accumulator, chat_id):
    conversation = await accumulator.cache.get(chat_id)
    await accumulator.bind(conversation)
    return conversation


# Page config
st.set_page_config(
    page_title="Chat",
    page_icon="💬",
    layout="wide"
)

# Initialize session state
for key in ("accumulator", "settings", "recognizer", "view", "last_audio", "last_image"):
    if key not in st.session_state:
        st.session_state[key] = None

# Sidebar for configuration
with st.sidebar:
    st.title("⚙️ Configuration")

    chat_id = st.text_input("Conversation id", value="")
    base_url = st.text_input("Chat store URL", value=os.getenv("TURNCHAT_API_BASE_URL", "http://localhost:3000"))
    model = st.text_input("Model (optional)", value="", help="Leave empty for gemini-2.0-flash")

    st.subheader("Conversation Logging")
    log_path_input = st.text_input(
        "Log file path (directory or file, JSONL)",
        value="conversation_logger/streamlit",
    )

    if st.button("Open Conversation") and chat_id:
        try:
            settings = OrchestratorSettings.from_env()
            settings.api_base_url = base_url or settings.api_base_url
            if model:
                settings.model = model
            llm_client = LLMClient(provider="gemini", model=settings.model)
            view = StreamlitTurnView()

            raw_path = (log_path_input or "").strip() or "conversation_logger/streamlit"
            log_path = os.path.join(_PROJECT_ROOT, raw_path) if not os.path.isabs(raw_path) else raw_path
            if os.path.isdir(log_path) or not log_path.lower().endswith(".jsonl"):
                os.makedirs(log_path, exist_ok=True)
                ts = datetime.now().strftime("%Y%m%d_%H%M%S")
                log_path = os.path.join(log_path, f"streamlit_conversation_{ts}.jsonl")
            view.logger = ConversationLogger(log_path)

            recognizer = RecordedAudioRecognizer(llm_client, settings.speech_language)
            # the HTTP client is swapped in per run by with_store()
            st.session_state.accumulator = TurnAccumulator(
                llm_client,
                PersistenceGateway(None),
                ConversationCache(None),
                view=view,
                recognizer=recognizer,
                stream_timeout=settings.stream_timeout,
                persist_timeout=settings.persist_timeout,
            )
            st.session_state.settings = settings
            st.session_state.recognizer = recognizer
            st.session_state.view = view

            conversation = asyncio.run(with_store(settings, lambda acc: open_conversation(acc, chat_id)))
            view.logger.seed_from_history(conversation.id, [e.model_dump() for e in conversation.history])
            st.success(f"Conversation log: {log_path}")
        except Exception as e:
            st.error(f"Error: {e}")
            st.info("Make sure GEMINI_API_KEY is set in .env and the chat store is reachable")

    st.divider()

    accumulator = st.session_state.accumulator
    if accumulator:
        uploaded_image = st.file_uploader("Attach image", type=["png", "jpg", "jpeg", "webp", "gif"])
        if uploaded_image is not None and uploaded_image.file_id != st.session_state.last_image:
            st.session_state.last_image = uploaded_image.file_id
            suffix = os.path.splitext(uploaded_image.name)[1]
            with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as f:
                f.write(uploaded_image.getvalue())
                image_path = f.name
            image = asyncio.run(LocalImageAttachment().attach(image_path, accumulator.turn.image))
            if image.error:
                st.error(image.error)

        if st.button("Reload conversations"):
            accumulator.cache.reload_list()

# Main interface
st.title("💬 Chat")

accumulator = st.session_state.accumulator
if not accumulator or accumulator.conversation is None:
    st.warning("⚠️ Open a conversation in the sidebar first.")
else:
    settings = st.session_state.settings

    for turn in accumulator.conversation.turns():
        with st.chat_message(turn.role.value):
            if turn.image:
                st.caption(f"🖼 {turn.image}")
            st.markdown(turn.content)

    # A failed turn stays on screen until the next submission
    if accumulator.turn.question_text:
        with st.chat_message("user"):
            st.markdown(accumulator.turn.question_text)
    if accumulator.turn.answer_buffer:
        with st.chat_message("assistant"):
            st.markdown(accumulator.turn.answer_buffer)

    if accumulator.turn.image.is_loading:
        st.caption("Loading...")
    elif accumulator.turn.image.stored_path:
        st.caption(f"🖼 attached: {accumulator.turn.image.stored_descriptor.get('name')}")

    audio = st.audio_input("🎙 Ask by voice")
    prompt = st.chat_input("Ask anything...", disabled=not accumulator.can_submit)

    if audio is not None and prompt is None and audio.getvalue() != st.session_state.last_audio:
        st.session_state.last_audio = audio.getvalue()
        st.session_state.recognizer.audio = audio.getvalue()
        with st.chat_message("assistant"):
            st.session_state.view.placeholder = st.empty()
            asyncio.run(with_store(settings, speak))
        st.rerun()

    if prompt:
        with st.chat_message("user"):
            st.markdown(prompt)
        with st.chat_message("assistant"):
            st.session_state.view.placeholder = st.empty()
            accumulator.text_input.set(prompt)
            asyncio.run(with_store(settings, lambda acc: acc.submit_input()))
        st.rerun()
