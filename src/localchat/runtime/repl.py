import asyncio
import signal
from pathlib import Path
from typing import Coroutine

from common.events import (
    ErrorEvent,
    Event,
    FragmentEvent,
    GenerationFinishedEvent,
    StatusEvent,
)
from localchat.attachments import build_attachment_prompt
from localchat.chat import ChatService
from localchat.errors import LocalChatError
from localchat.generation import GenerationResult, GenerationState
from localchat.runtime.builtins import BuiltinCommands
from localchat.runtime.router import InputRouter


class StreamPrinter:
    """Renders generation events on the terminal as they arrive."""

    def __init__(self):
        self._streaming = False

    def __call__(self, event: Event) -> None:
        if isinstance(event, StatusEvent):
            print(f"… {event.message}")
        elif isinstance(event, FragmentEvent):
            if not self._streaming:
                print("\n🤖 ", end="")
                self._streaming = True
            print(event.text, end="", flush=True)
        elif isinstance(event, GenerationFinishedEvent):
            if self._streaming:
                print()
            self._streaming = False
        elif isinstance(event, ErrorEvent):
            print(f"\n❌ {event.message}")


def report_result(result: GenerationResult) -> None:
    if result.state is GenerationState.CANCELLED:
        print("⏹  Generation stopped by user")
    elif result.state is GenerationState.FAILED:
        print(f"❌ {result.content or result.error}")


class ChatREPL:
    def __init__(self, service: ChatService, loop: asyncio.AbstractEventLoop):
        self.service = service
        self.loop = loop
        self.attachments: list[Path] = []
        self.builtins = BuiltinCommands(self)
        self.router = InputRouter(self.builtins)

    def attachment_tokens(self) -> int:
        if not self.attachments:
            return 0
        return build_attachment_prompt("", self.attachments).token_estimate

    def _interrupt(self) -> None:
        if self.service.cancel():
            print("\n⏹  Stopping generation...")

    def run_turn(self, coro: Coroutine) -> GenerationResult | None:
        task = self.loop.create_task(coro)
        try:
            self.loop.add_signal_handler(signal.SIGINT, self._interrupt)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            handler_installed = False
        try:
            result = self.loop.run_until_complete(task)
        except (LocalChatError, ValueError) as e:
            print(f"❌ {e}")
            return None
        finally:
            if handler_installed:
                self.loop.remove_signal_handler(signal.SIGINT)
        report_result(result)
        return result

    def run_prompt(self, text: str) -> GenerationResult | None:
        attachments = list(self.attachments)
        result = self.run_turn(self.service.submit(text, attachments))
        if result is not None:
            self.attachments.clear()
        return result

    def run_search(self, query: str) -> GenerationResult | None:
        return self.run_turn(self.service.search(query))

    def refresh_models(self) -> None:
        try:
            rows = self.loop.run_until_complete(self.service.refresh_models())
        except LocalChatError as e:
            print(f"❌ {e}")
            return
        if not rows:
            print("No models installed")
        for model, info in rows:
            marker = "*" if model.name == self.service.settings.selected_model else " "
            if info and info.context_length:
                context = f"{info.context_length:,} tokens context"
            else:
                context = "context unknown"
            print(f" {marker} {model.name}  ({context})")

    def run(self, initial_message: str | None = None) -> None:
        model = self.service.settings.selected_model or "(none, use /model <name>)"
        print(f"💬 localchat started (model: {model}, provider: {self.service.provider})")
        print("Commands: /help for all commands, Ctrl-C stops a running generation")

        if initial_message:
            self.run_prompt(initial_message)

        while True:
            try:
                user_input = input("\n> ").strip()
            except (KeyboardInterrupt, EOFError):
                print()
                break

            if not user_input:
                continue

            route = self.router.route(user_input)
            if route.kind == "builtin":
                if not self.builtins.handle(route.command, route.text):
                    break
                continue
            if route.kind == "unknown":
                commands = ", ".join(f"/{name}" for name in self.builtins.list_commands())
                print(f"Unknown command: /{route.command}. Available: {commands}")
                continue

            self.run_prompt(route.text)
