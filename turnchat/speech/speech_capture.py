"""
Speech Capture Adapter

Wraps a single-utterance recognizer. A finished, non-empty transcript is
written into the shared text input and handed to the completion handler,
so spoken questions go through exactly the same submit path as typed ones.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import io
import logging
import threading
import wave
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from ..errors import CaptureError
from ..schema.schema_config import SPEECH_LANGUAGE, ListeningState

logger = logging.getLogger(__name__)

ResultHandler = Callable[[str], None]
ErrorHandler = Callable[[str], None]
EndHandler = Callable[[], None]
CompletionHandler = Callable[[], Union[Any, Awaitable[Any]]]


class TextInput:
    """The shared text-input slot both typing and speech write into."""

    def __init__(self, value: str = "") -> None:
        self.value = value

    def set(self, value: str) -> None:
        self.value = value

    def clear(self) -> None:
        self.value = ""


class Recognizer(Protocol):
    """Single-utterance, non-continuous speech recognizer."""

    language: str

    @property
    def available(self) -> bool: ...

    def start(self, on_result: ResultHandler, on_error: ErrorHandler, on_end: EndHandler) -> None: ...

    def stop(self) -> None: ...


class SpeechCaptureAdapter:
    """Owns the listening lifecycle for one conversation view."""

    def __init__(
        self,
        recognizer: Optional[Recognizer],
        text_input: TextInput,
        on_complete: CompletionHandler,
    ) -> None:
        self.recognizer = recognizer
        self.text_input = text_input
        self.on_complete = on_complete
        self.state = ListeningState.IDLE
        self.last_error: Optional[CaptureError] = None
        self.submission: Optional[asyncio.Future] = None
        self._transcript = ""
        self._session = 0

    @property
    def listening(self) -> bool:
        return self.state is ListeningState.LISTENING

    def start(self) -> None:
        """Begin listening; logs and stays idle when recognition is unavailable."""
        if self.listening:
            return
        if self.recognizer is None or not self.recognizer.available:
            logger.warning("Speech recognition is not supported in this environment.")
            return

        # events from an earlier start() are ignored once a new session begins
        self._session += 1
        session = self._session
        self._transcript = ""
        self.last_error = None
        try:
            self.recognizer.start(
                functools.partial(self._handle_result, session),
                functools.partial(self._handle_error, session),
                functools.partial(self._handle_end, session),
            )
        except Exception as e:
            logger.warning("Could not start speech recognition: %s", e)
            return
        self.state = ListeningState.LISTENING

    def stop(self) -> None:
        """End the session early. Audio heard so far may still produce a transcript."""
        if not self.listening:
            return
        self.recognizer.stop()
        self.state = ListeningState.IDLE

    def toggle(self) -> None:
        if self.listening:
            self.stop()
        else:
            self.start()

    # ------------------------------------------------------------------
    # Recognizer events
    # ------------------------------------------------------------------
    def _superseded(self, session: int) -> bool:
        if session != self._session:
            logger.debug("Ignoring event from superseded speech session %d", session)
            return True
        return False

    def _handle_result(self, session: int, transcript: str) -> None:
        if self._superseded(session):
            return
        self._transcript = (transcript or "").strip()
        if self._transcript:
            self.text_input.set(self._transcript)

    def _handle_error(self, session: int, error: str) -> None:
        if self._superseded(session):
            return
        self.last_error = CaptureError(f"Speech recognition error: {error}", details={"error": error})
        logger.error("Speech recognition error: %s", error)

    def _handle_end(self, session: int) -> None:
        if self._superseded(session):
            return
        transcript = self._transcript
        self._transcript = ""
        if transcript and self.last_error is None:
            result = self.on_complete()
            if inspect.isawaitable(result):
                self.submission = asyncio.ensure_future(result)
        self.state = ListeningState.IDLE


class MicrophoneRecognizer:
    """
    Records one utterance from the default input device and transcribes it
    with Gemini.

    Capture ends after a stretch of trailing silence, at max_seconds, or on
    stop(). Requires the optional ``sounddevice`` and ``numpy`` packages.
    """

    def __init__(
        self,
        llm_client: Any,
        language: str = SPEECH_LANGUAGE,
        sample_rate: int = 16000,
        max_seconds: float = 15.0,
        silence_ms: int = 900,
        energy_threshold: float = 0.015,
        device: Optional[Union[int, str]] = None,
    ) -> None:
        self.llm_client = llm_client
        self.language = language
        self.sample_rate = sample_rate
        self.max_seconds = max_seconds
        self.silence_ms = silence_ms
        self.energy_threshold = energy_threshold
        self.device = device
        self._stop_event = threading.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def available(self) -> bool:
        try:
            import sounddevice as sd

            sd.query_devices(self.device, kind="input")
        except Exception:
            return False
        return True

    def start(self, on_result: ResultHandler, on_error: ErrorHandler, on_end: EndHandler) -> None:
        # each recording gets its own stop event; an unfinished earlier one is told to stop
        self._stop_event.set()
        self._stop_event = threading.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._stop_event, on_result, on_error, on_end))

    def stop(self) -> None:
        self._stop_event.set()

    async def _run(
        self,
        stop_event: threading.Event,
        on_result: ResultHandler,
        on_error: ErrorHandler,
        on_end: EndHandler,
    ) -> None:
        try:
            pcm = await asyncio.to_thread(self._record, stop_event)
            transcript = ""
            if pcm:
                transcript = await self.llm_client.transcribe(self._to_wav(pcm), language=self.language)
            if transcript:
                on_result(transcript)
            else:
                on_error("no-speech")
        except Exception as e:
            on_error(str(e) or type(e).__name__)
        finally:
            on_end()

    def _record(self, stop_event: threading.Event) -> bytes:
        import numpy as np
        import sounddevice as sd

        block = int(self.sample_rate * 0.03)  # 30 ms
        max_blocks = int(self.max_seconds / 0.03)
        silence_blocks = max(1, self.silence_ms // 30)

        frames = []
        heard_speech = False
        quiet = 0
        with sd.InputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="int16",
            blocksize=block,
            device=self.device,
        ) as stream:
            for _ in range(max_blocks):
                if stop_event.is_set():
                    break
                data, _overflowed = stream.read(block)
                frames.append(data.copy())
                rms = float(np.sqrt(np.mean((data.astype(np.float32) / 32768.0) ** 2)))
                if rms >= self.energy_threshold:
                    heard_speech = True
                    quiet = 0
                elif heard_speech:
                    quiet += 1
                    if quiet >= silence_blocks:
                        break

        if not heard_speech:
            return b""
        return np.concatenate(frames).tobytes()

    def _to_wav(self, pcm: bytes) -> bytes:
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)
        return buf.getvalue()
