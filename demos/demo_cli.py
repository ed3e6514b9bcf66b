"""
CLI Demo Application
Chat view in the terminal: streams Gemini answers into a live panel and
saves every finished turn to the chat store.
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.markdown import Markdown

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, _PROJECT_ROOT)
_DEFAULT_LOG_DIR = os.path.join(_PROJECT_ROOT, "conversation_logger", "cli")

from turnchat import (
    ConversationCache,
    InFlightTurn,
    LLMClient,
    MicrophoneRecognizer,
    OrchestratorSettings,
    PendingTurn,
    PersistenceGateway,
    Role,
    TurnAccumulator,
    TurnChatError,
    TurnState,
    TurnView,
    open_http_client,
)
from utils.conversation_logger import ConversationLogger
from utils.image_attachment import LocalImageAttachment

console = Console()


class RichTurnView(TurnView):
    """Renders the in-flight turn with rich."""

    def __init__(self, conversation_logger=None):
        self.conversation_logger = conversation_logger
        self._state = TurnState.IDLE
        self._live = None

    def state_changed(self, state):
        self._state = state
        if state is TurnState.STREAMING:
            self._live = Live(self._answer_panel(""), console=console, refresh_per_second=12)
            self._live.start()
        elif self._live is not None and state in (TurnState.PERSISTING, TurnState.FAILED):
            self._live.stop()
            self._live = None
        if state is TurnState.PERSISTING:
            console.print("[dim]Saving...[/dim]")

    def render(self, turn: InFlightTurn):
        if self._state is TurnState.SUBMITTING:
            if turn.image.stored_path:
                console.print(f"[dim]🖼  {turn.image.stored_path}[/dim]")
            if turn.question_text:
                console.print(Panel(turn.question_text, title="[bold green]You[/bold green]", border_style="green"))
        elif self._live is not None:
            self._live.update(self._answer_panel(turn.answer_buffer))

    def alert(self, message):
        console.print(f"[bold red]{message}[/bold red]")

    def persisted(self, conversation_id, turn: PendingTurn):
        if self.conversation_logger:
            self.conversation_logger.log_turn(conversation_id, turn.question, turn.answer, turn.img)

    def _answer_panel(self, text):
        return Panel(Markdown(text or "…"), title="[bold blue]Assistant[/bold blue]", border_style="blue")


def show_history(conversation):
    for turn in conversation.turns():
        if turn.image:
            console.print(f"[dim]🖼  {turn.image}[/dim]")
        if turn.role is Role.USER:
            console.print(Panel(turn.content, title="[bold green]You[/bold green]", border_style="green"))
        else:
            console.print(Panel(Markdown(turn.content), title="[bold blue]Assistant[/bold blue]", border_style="blue"))


async def wait_for_voice(accumulator):
    """Listen for one utterance; its transcript is submitted automatically."""
    accumulator.toggle_listening()
    if not accumulator.speech.listening:
        console.print("[yellow]Voice input is unavailable.[/yellow]")
        return
    console.print("[magenta]🎙  Listening... (speak now)[/magenta]")
    while accumulator.speech.listening:
        await asyncio.sleep(0.1)
    if accumulator.speech.submission is not None:
        await accumulator.speech.submission
        accumulator.speech.submission = None


async def run(args):
    settings = OrchestratorSettings.from_env()
    if args.base_url:
        settings.api_base_url = args.base_url
    if args.model:
        settings.model = args.model

    try:
        llm_client = LLMClient(provider="gemini", model=settings.model)
    except TurnChatError as e:
        console.print(f"[red]Error initializing assistant: {e}[/red]")
        console.print("\n[bold]Make sure you have:[/bold]")
        console.print("  1. Set GEMINI_API_KEY (or GOOGLE_API_KEY) in .env")
        console.print("  2. Run: pip install -e .")
        sys.exit(1)

    # Conversation log: default to conversation_logger/cli/ unless --no-log or --log-file overrides
    conversation_logger = None
    if not args.no_log:
        if args.log_file:
            log_path = os.path.abspath(args.log_file)
            if os.path.isdir(log_path):
                ts = datetime.now().strftime("%Y%m%d_%H%M%S")
                log_path = os.path.join(log_path, f"cli_conversation_{ts}.jsonl")
        else:
            os.makedirs(_DEFAULT_LOG_DIR, exist_ok=True)
            ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_path = os.path.join(_DEFAULT_LOG_DIR, f"cli_{ts}.jsonl")
        conversation_logger = ConversationLogger(log_path)
        console.print(f"[dim]Conversation log: {log_path}[/dim]")

    recognizer = MicrophoneRecognizer(llm_client, language=settings.speech_language) if args.voice else None
    attachment = LocalImageAttachment()

    async with open_http_client(settings.api_base_url, timeout=settings.persist_timeout) as http:
        cache = ConversationCache(http)
        accumulator = TurnAccumulator(
            llm_client,
            PersistenceGateway(http),
            cache,
            view=RichTurnView(conversation_logger),
            recognizer=recognizer,
            stream_timeout=settings.stream_timeout,
            persist_timeout=settings.persist_timeout,
        )

        try:
            conversation = await cache.get(args.chat)
        except TurnChatError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)

        if conversation_logger:
            conversation_logger.seed_from_history(
                conversation.id, [entry.model_dump() for entry in conversation.history]
            )

        console.print(Panel(
            "[bold cyan]Chat[/bold cyan]\n\n"
            f"Conversation: {conversation.id} | Store: {settings.api_base_url}\n\n"
            "Commands: 'exit'/'quit' to exit | '/image <path>' to attach an image | "
            "'/voice' to speak | '/state' for orchestrator state | '/reload' to reload conversations",
            title="Welcome",
            border_style="cyan"
        ))
        show_history(conversation)
        await accumulator.bind(conversation)

        # Main loop
        while True:
            try:
                user_input = await asyncio.to_thread(Prompt.ask, "[bold green]You[/bold green]")

                if user_input.lower() in ['exit', 'quit', 'q']:
                    console.print("[yellow]Goodbye![/yellow]")
                    break

                if user_input.startswith("/image"):
                    path = user_input[len("/image"):].strip()
                    image = await attachment.attach(path, accumulator.turn.image)
                    if image.error:
                        console.print(f"[red]Image not attached: {image.error}[/red]")
                    else:
                        console.print(f"[green]✓ Attached {image.stored_path}[/green]")
                    continue

                if user_input.strip() == "/voice":
                    await wait_for_voice(accumulator)
                    continue

                if user_input.strip() == "/state":
                    console.print(accumulator.snapshot())
                    continue

                if user_input.strip() == "/reload":
                    cache.reload_list()
                    conversation = await cache.get(conversation.id)
                    await accumulator.bind(conversation)
                    console.print("[dim]Conversations reloaded[/dim]")
                    continue

                accumulator.text_input.set(user_input)
                await accumulator.submit_input()

            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted. Type 'exit' to quit.[/yellow]\n")
            except TurnChatError as e:
                console.print(f"[red]Error: {e}[/red]\n")


def main():
    """Main CLI demo"""
    parser = argparse.ArgumentParser(description="Chat turn orchestrator demo (Gemini)")
    parser.add_argument("--chat", type=str, required=True, help="Conversation id in the chat store")
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Chat store base URL (default: TURNCHAT_API_BASE_URL or http://localhost:3000)"
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Gemini model name (default: gemini-2.0-flash)"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Path to JSONL log file or directory for saving the conversation (default: conversation_logger/cli/)"
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        help="Do not save conversation log"
    )
    parser.add_argument("--voice", action="store_true", help="Enable microphone input (/voice)")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
