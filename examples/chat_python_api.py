#!/usr/bin/env python3
"""
localchat - Python API Examples

Drives the streaming generation controller directly instead of via the CLI.
Requires a running Ollama server with at least one model pulled.
"""

import asyncio
import os

from common.events import EventEmitter, FragmentEvent
from localchat.chat import ChatService
from localchat.client import OllamaClient
from localchat.generation import GenerationSession
from localchat.sessions.store import ConversationStore
from localchat.settings import SettingsStore
from localchat.storage import KeyValueStore

ENDPOINT = os.environ.get("OLLAMA_ENDPOINT", "http://localhost:11434")
MODEL = os.environ.get("LOCALCHAT_MODEL", "llama3.2")


async def example_single_generation():
    """Example 1: One generation against an in-memory store"""
    print("=== Example 1: Single generation ===\n")

    store = ConversationStore()
    session_id = store.create_session()
    store.append_message(session_id, "user", "Why is the sky blue? One sentence.")

    def on_event(event):
        if isinstance(event, FragmentEvent):
            print(event.text, end="", flush=True)

    async with OllamaClient(ENDPOINT) as client:
        generation = GenerationSession(
            store,
            client,
            session_id,
            MODEL,
            "Why is the sky blue? One sentence.",
            emitter=EventEmitter(on_event),
        )
        result = await generation.run()

    print(f"\n\nState: {result.state.value}")
    print(f"Stored content: {store.get_message(session_id, result.message_id).content!r}\n")


async def example_cancel_after_delay():
    """Example 2: Stop a long generation after two seconds"""
    print("=== Example 2: Cancellation ===\n")

    store = ConversationStore()
    session_id = store.create_session()

    async with OllamaClient(ENDPOINT) as client:
        generation = GenerationSession(
            store, client, session_id, MODEL, "Write a long essay about rivers."
        )
        task = asyncio.create_task(generation.run())
        await asyncio.sleep(2)
        generation.cancel()
        result = await task

    print(f"State: {result.state.value}")
    print(f"Ends with marker: {result.content.endswith('[Generation stopped by user]')}\n")


async def example_persistent_service(data_dir: str = "data/example"):
    """Example 3: Persisted chats with the ChatService and web search"""
    print("=== Example 3: ChatService with persistence ===\n")

    backend = KeyValueStore(data_dir)
    store = ConversationStore(backend)
    settings = SettingsStore(backend)
    settings.set_selected_model(MODEL)
    store.ensure_session()

    async with OllamaClient(ENDPOINT) as client:
        service = ChatService(store, settings, client)
        await service.submit("Give me three facts about octopuses.")
        await service.search("James Webb Space Telescope")
        print(f"Context usage: {service.context_usage().describe()}")

    print(f"Sessions on disk: {len(ConversationStore(backend).list_sessions())}")


if __name__ == "__main__":
    asyncio.run(example_single_generation())
    asyncio.run(example_cancel_after_delay())
    asyncio.run(example_persistent_service())
