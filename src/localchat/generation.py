"""One streaming request/response cycle for one assistant message.

A ``GenerationSession`` issues the request, feeds response bytes through a
``ChunkDecoder`` and writes the accumulated text into the conversation store
after every fragment. It always ends in a terminal state (completed,
cancelled or failed) and never lets a transport error escape ``run()``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Protocol, TypeVar

import httpx

from common.events import (
    ErrorEvent,
    EventEmitter,
    FragmentEvent,
    GenerationFinishedEvent,
    GenerationStartedEvent,
)
from localchat.config import DEFAULT_CONTEXT_LENGTH
from localchat.decoder import ChunkDecoder
from localchat.errors import (
    Cancelled,
    LocalChatError,
    RequestFailed,
    SessionBusyError,
    StreamReadFailed,
)
from localchat.sessions.store import ConversationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_SUFFIX = "\n\n[Generation stopped by user]"
GENERIC_ERROR_MESSAGE = "Sorry, there was an error generating the response."
# Streamed text is written to disk every this many fragments and once at the end.
PERSIST_EVERY_FRAGMENTS = 16


class GenerationState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (GenerationState.COMPLETED, GenerationState.CANCELLED, GenerationState.FAILED)


class StreamingClient(Protocol):
    async def open_generate_stream(
        self, model: str, prompt: str, context_length: int | None = None
    ) -> httpx.Response: ...


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def await_or_cancel(awaitable: Awaitable[T], token: CancellationToken) -> T:
    """Await ``awaitable`` unless ``token`` fires first, in which case raise ``Cancelled``."""
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise Cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)

    if work.cancelled():
        raise Cancelled()
    return work.result()


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


@dataclass(frozen=True, slots=True)
class GenerationResult:
    state: GenerationState
    content: str
    message_id: str | None
    error: LocalChatError | None = None

    @property
    def failed(self) -> bool:
        return self.state is GenerationState.FAILED


class ActiveGenerations:
    """At most one live generation per chat session."""

    def __init__(self):
        self._active: dict[str, Cancellable] = {}

    def claim(self, session_id: str, generation: Cancellable) -> None:
        if session_id in self._active:
            raise SessionBusyError(session_id)
        self._active[session_id] = generation

    def release(self, session_id: str, generation: Cancellable) -> None:
        if self._active.get(session_id) is generation:
            del self._active[session_id]

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def cancel(self, session_id: str) -> bool:
        generation = self._active.get(session_id)
        if generation is None:
            return False
        generation.cancel()
        return True


class GenerationSession:
    def __init__(
        self,
        store: ConversationStore,
        client: StreamingClient,
        session_id: str,
        model: str,
        prompt: str,
        context_length: int = DEFAULT_CONTEXT_LENGTH,
        emitter: EventEmitter | None = None,
        registry: ActiveGenerations | None = None,
    ):
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")
        if not model or not model.strip():
            raise ValueError("model must be selected")
        if isinstance(context_length, bool) or not isinstance(context_length, int) or context_length < 1:
            raise ValueError("context_length must be a positive integer")

        self.target_session_id = session_id
        self.model = model
        self.prompt = prompt
        self.context_length = context_length
        self.state = GenerationState.PENDING
        self.accumulated_text = ""
        self.fragment_count = 0
        self.message_id: str | None = None
        self.error: LocalChatError | None = None
        self.cancellation: CancellationToken | None = CancellationToken()

        self._store = store
        self._client = client
        self._emitter = emitter or EventEmitter()
        self._registry = registry
        self._started = False

    def cancel(self) -> None:
        if self.cancellation is not None:
            self.cancellation.cancel()

    async def run(self) -> GenerationResult:
        if self._started:
            raise RuntimeError("GenerationSession.run() can only be called once")
        self._started = True

        if self._registry is not None:
            self._registry.claim(self.target_session_id, self)
        self._emitter.emit(GenerationStartedEvent(session_id=self.target_session_id, model=self.model))
        try:
            await self._run()
        finally:
            self.cancellation = None
            self._store.flush()
            if self._registry is not None:
                self._registry.release(self.target_session_id, self)

        content = self._current_content()
        self._emitter.emit(
            GenerationFinishedEvent(
                session_id=self.target_session_id, state=self.state.value, content=content
            )
        )
        return GenerationResult(
            state=self.state, content=content, message_id=self.message_id, error=self.error
        )

    async def _run(self) -> None:
        token = self.cancellation
        try:
            response = await await_or_cancel(
                self._client.open_generate_stream(self.model, self.prompt, self.context_length),
                token,
            )
        except Cancelled:
            self._mark_cancelled()
            return
        except asyncio.CancelledError:
            self._mark_cancelled()
            raise
        except RequestFailed as e:
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Unexpected error while issuing generation request")
            self._fail(RequestFailed(f"Unexpected error: {e}"))
            return

        try:
            self.message_id = self._store.append_message(self.target_session_id, "assistant", "")
            if self.message_id is None:
                self._fail(RequestFailed(f"Chat session {self.target_session_id} no longer exists"))
                return
            self.state = GenerationState.STREAMING
            await self._consume(response, token)
        finally:
            await response.aclose()

    async def _consume(self, response: httpx.Response, token: CancellationToken) -> None:
        decoder = ChunkDecoder()
        chunks = response.aiter_bytes()
        try:
            while True:
                chunk = await await_or_cancel(_next_chunk(chunks), token)
                if chunk is None:
                    break
                for fragment in decoder.fragments(chunk):
                    self._apply(fragment)
            for decoded in decoder.finish():
                if decoded.ok:
                    self._apply(decoded.fragment)
        except Cancelled:
            self._mark_cancelled()
            return
        except asyncio.CancelledError:
            self._mark_cancelled()
            raise
        except httpx.HTTPError as e:
            self._fail(StreamReadFailed(f"Error reading response stream: {e}"))
            return
        except Exception as e:
            logger.exception("Unexpected error while reading response stream")
            self._fail(StreamReadFailed(f"Unexpected error: {e}"))
            return

        self.state = GenerationState.COMPLETED
        logger.info(
            f"Generation completed for session {self.target_session_id} "
            f"({len(self.accumulated_text)} chars)"
        )

    def _apply(self, fragment: str) -> None:
        self.accumulated_text += fragment
        self.fragment_count += 1
        self._store.replace_message_content(
            self.target_session_id,
            self.message_id,
            self.accumulated_text,
            persist=self.fragment_count % PERSIST_EVERY_FRAGMENTS == 0,
        )
        self._emitter.emit(FragmentEvent(session_id=self.target_session_id, text=fragment))

    def _mark_cancelled(self) -> None:
        if self.state.terminal:
            return
        if self.message_id is not None:
            self._store.replace_message_content(
                self.target_session_id, self.message_id, self.accumulated_text + CANCELLED_SUFFIX
            )
        self.state = GenerationState.CANCELLED
        self.error = Cancelled("Generation stopped by user")
        logger.info(f"Generation cancelled for session {self.target_session_id}")

    def _fail(self, error: LocalChatError) -> None:
        if self.state.terminal:
            return
        logger.error(f"Generation failed for session {self.target_session_id}: {error}")
        self.state = GenerationState.FAILED
        self.error = error
        self._emitter.emit(ErrorEvent(message=str(error), source=self.target_session_id))
        if self.accumulated_text:
            return
        # An empty placeholder is replaced rather than kept ahead of the error message.
        if self.message_id is not None:
            self._store.delete_message(self.target_session_id, self.message_id)
        self.message_id = self._store.append_message(
            self.target_session_id, "assistant", GENERIC_ERROR_MESSAGE
        )

    def _current_content(self) -> str:
        if self.message_id is None:
            return ""
        message = self._store.get_message(self.target_session_id, self.message_id)
        return message.content if message is not None else ""

