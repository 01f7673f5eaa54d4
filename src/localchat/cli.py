from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from common.events import EventEmitter
from localchat.chat import ChatService
from localchat.client import OllamaClient, refresh_model_info
from localchat.config import ChatConfig, ConfigError, resolve_model_alias
from localchat.errors import RequestFailed
from localchat.runtime.repl import ChatREPL, StreamPrinter
from localchat.search import WebSearchError, web_search
from localchat.sessions.store import ConversationStore
from localchat.settings import SettingsError, SettingsStore
from localchat.storage import MODEL_STORE_KEY, KeyValueStore
from localchat.tokens import estimate_token_count, format_context_size


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="localchat", description="Chat with local and cloud LLMs")
    subparsers = parser.add_subparsers(dest="command", required=False)

    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument("--data-dir", default=None, help="Where chats and settings are stored")
    shared.add_argument("-v", "--verbose", action="store_true")

    chat = subparsers.add_parser("chat", parents=[shared], help="Start an interactive chat")
    chat.add_argument("--model", default=None, help="Model to use (aliases: 4o, sonnet, flash, ...)")
    chat.add_argument("--endpoint", default=None, help="Ollama endpoint URL")
    chat.add_argument("--provider", default=None, help="ollama, openai, anthropic, gemini, groq, xai")
    chat.add_argument("--context-size", type=int, default=None)
    chat.add_argument("--session", default=None, help="Continue an existing session id")
    chat.add_argument("--new", action="store_true", help="Start a fresh session")
    chat.add_argument("--message", "-m", help="Single prompt (non-interactive)")
    chat.add_argument("files", nargs="*", help="Files to attach to the first message")

    sessions = subparsers.add_parser("sessions", parents=[shared], help="List or manage chat sessions")
    sessions.add_argument("--show", default=None, help="Print the messages of a session")
    sessions.add_argument("--delete", default=None, help="Delete a session")

    models = subparsers.add_parser("models", parents=[shared], help="List models on the Ollama server")
    models.add_argument("--endpoint", default=None)

    search = subparsers.add_parser("search", parents=[shared], help="Run a web search")
    search.add_argument("query")

    tokens = subparsers.add_parser("tokens", parents=[shared], help="Estimate token count of text")
    tokens.add_argument("text")

    return parser


def _load_config(args) -> ChatConfig:
    config = ChatConfig.from_env()
    if getattr(args, "data_dir", None):
        config.data_dir = args.data_dir
    if getattr(args, "endpoint", None):
        config.ollama_endpoint = args.endpoint
    if getattr(args, "provider", None):
        config.provider = args.provider
    if getattr(args, "context_size", None) is not None:
        config.context_size = args.context_size
    config.validate()
    return config


def _main(argv: list[str]) -> int:
    handlers = {
        "chat": _cmd_chat,
        "sessions": _cmd_sessions,
        "models": _cmd_models,
        "search": _cmd_search,
        "tokens": _cmd_tokens,
    }
    if not argv or (argv[0] not in handlers and argv[0] not in ("-h", "--help")):
        argv = ["chat", *argv]

    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    try:
        return handlers[args.command](args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def _apply_chat_settings(args, config: ChatConfig, settings: SettingsStore, backend: KeyValueStore) -> None:
    if args.endpoint or os.environ.get("OLLAMA_ENDPOINT") or backend.get(MODEL_STORE_KEY) is None:
        settings.set_endpoint(config.ollama_endpoint)
    if args.model:
        settings.set_selected_model(resolve_model_alias(args.model))
    elif config.model and not settings.selected_model:
        settings.set_selected_model(resolve_model_alias(config.model))
    if args.context_size is not None:
        settings.set_selected_context_size(args.context_size)
    elif os.environ.get("LOCALCHAT_CONTEXT_SIZE"):
        settings.set_selected_context_size(config.context_size)


def _cmd_chat(args) -> int:
    config = _load_config(args)
    backend = KeyValueStore(config.data_dir)
    store = ConversationStore(backend)
    settings = SettingsStore(backend)

    try:
        _apply_chat_settings(args, config, settings, backend)
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.session:
        if store.get_session(args.session) is None:
            print(f"Error: Session {args.session} not found", file=sys.stderr)
            return 1
        store.select_session(args.session)
    elif args.new:
        store.create_session()
    else:
        store.ensure_session()

    loop = asyncio.new_event_loop()
    client = OllamaClient(settings.ollama_endpoint, timeout=config.request_timeout)
    service = ChatService(
        store,
        settings,
        client,
        provider=config.provider,
        emitter=EventEmitter(StreamPrinter()),
        api_key=settings.get_api_key(config.provider) or config.api_key_for(),
    )
    repl = ChatREPL(service, loop)
    repl.attachments.extend(args.files or [])
    try:
        if args.message:
            result = repl.run_prompt(args.message)
            return 0 if result is not None and not result.failed else 1
        repl.run()
        return 0
    finally:
        loop.run_until_complete(client.aclose())
        loop.close()


def _cmd_sessions(args) -> int:
    config = _load_config(args)
    store = ConversationStore(KeyValueStore(config.data_dir))

    if args.delete:
        if store.get_session(args.delete) is None:
            print(f"Error: Session {args.delete} not found", file=sys.stderr)
            return 1
        store.delete_session(args.delete)
        print(f"Deleted session {args.delete}")
        return 0

    if args.show:
        session = store.get_session(args.show)
        if session is None:
            print(f"Error: Session {args.show} not found", file=sys.stderr)
            return 1
        print(f"# {session.title}")
        for message in session.messages:
            print(f"\n[{message.role}] {message.timestamp.isoformat()}\n{message.content}")
        return 0

    sessions = store.list_sessions()
    if not sessions:
        print("No chat sessions")
        return 0
    for session in sessions:
        marker = "*" if session.id == store.current_session_id else " "
        print(
            f"{marker} {session.id}  {session.updated_at.isoformat()}  "
            f"{len(session.messages):>3} msgs  {session.title}"
        )
    return 0


async def _list_models(endpoint: str, settings: SettingsStore) -> list[tuple[str, int | None]]:
    async with OllamaClient(endpoint) as client:
        rows = await refresh_model_info(client, settings)
    return [(model.name, info.context_length if info else None) for model, info in rows]


def _cmd_models(args) -> int:
    config = _load_config(args)
    settings = SettingsStore(KeyValueStore(config.data_dir))
    endpoint = args.endpoint or settings.ollama_endpoint
    try:
        rows = asyncio.run(_list_models(endpoint, settings))
    except RequestFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if not rows:
        print(f"No models found at {endpoint}")
        return 0
    for name, context_length in rows:
        marker = "*" if name == settings.selected_model else " "
        context = f"{context_length:,} tokens context" if context_length else "context unknown"
        print(f"{marker} {name}  ({context})")
    return 0


def _cmd_search(args) -> int:
    try:
        response = asyncio.run(web_search(query=args.query))
    except WebSearchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(response.summary)
    return 0


def _cmd_tokens(args) -> int:
    print(format_context_size(estimate_token_count(args.text)))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
