from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import httpx

from common import llm
from common.events import ErrorEvent, EventEmitter, FragmentEvent, StatusEvent
from localchat.attachments import build_attachment_prompt
from localchat.client import OllamaClient, OllamaModel, refresh_model_info
from localchat.errors import Cancelled, LocalChatError, RequestFailed, SessionBusyError
from localchat.generation import (
    GENERIC_ERROR_MESSAGE,
    ActiveGenerations,
    CancellationToken,
    GenerationResult,
    GenerationSession,
    GenerationState,
    await_or_cancel,
)
from localchat.search import (
    SearchResponse,
    WebSearchError,
    build_search_prompt,
    is_placeholder,
    web_search,
)
from localchat.sessions.schema import DEFAULT_TITLE
from localchat.sessions.store import ConversationStore
from localchat.settings import ModelInfo, SettingsStore
from localchat.tokens import calculate_context_usage, conversation_token_usage, format_context_size

logger = logging.getLogger(__name__)

SEARCHING_MESSAGE = "Searching the web for information..."
ANALYZING_MESSAGE = "Analyzing search results..."
TITLE_MAX_CHARS = 40

SearchFn = Callable[..., Awaitable[SearchResponse]]
CompleteFn = Callable[..., Awaitable[str]]


@dataclass(frozen=True, slots=True)
class ContextUsage:
    tokens: int
    max_context: int
    percent: int

    def describe(self) -> str:
        return (
            f"{format_context_size(self.tokens)} / {format_context_size(self.max_context)} "
            f"({self.percent}%)"
        )


class _ProviderCall:
    def __init__(self):
        self.token = CancellationToken()

    def cancel(self) -> None:
        self.token.cancel()


class ChatService:
    def __init__(
        self,
        store: ConversationStore,
        settings: SettingsStore,
        client: OllamaClient,
        provider: str = "ollama",
        emitter: EventEmitter | None = None,
        search: SearchFn = web_search,
        complete: CompleteFn = llm.acomplete_text,
        api_key: str | None = None,
    ):
        self.store = store
        self.settings = settings
        self.client = client
        self.provider = provider
        self.emitter = emitter or EventEmitter()
        self.registry = ActiveGenerations()
        self._search = search
        self._complete = complete
        self._api_key = api_key

    def _require_session(self) -> str:
        session = self.store.current_session()
        if session is None:
            raise LocalChatError("No chat session selected")
        return session.id

    def _require_model(self) -> str:
        model = self.settings.selected_model
        if not model:
            raise LocalChatError("No model selected")
        return model

    def _ensure_idle(self, session_id: str) -> None:
        if self.registry.is_active(session_id):
            raise SessionBusyError(session_id)

    def _retitle(self, session_id: str, text: str) -> None:
        session = self.store.get_session(session_id)
        title = " ".join(text.split())[:TITLE_MAX_CHARS]
        if session is not None and session.title == DEFAULT_TITLE and title:
            self.store.update_title(session_id, title)

    def provider_model(self, model: str) -> str:
        if self.provider == "ollama" or "/" in model:
            return model
        return f"{self.provider}/{model}"

    async def submit(self, text: str, attachments: Iterable[str | Path] = ()) -> GenerationResult:
        attachments = list(attachments)
        session_id = self._require_session()
        if not text.strip() and not attachments:
            raise ValueError("Nothing to send: provide text or attachments")
        model = self._require_model()
        self._ensure_idle(session_id)

        built = build_attachment_prompt(text, attachments)
        self.store.append_message(session_id, "user", built.display_text)
        self._retitle(session_id, text)
        return await self._generate(session_id, model, built.prompt)

    async def search(self, query: str) -> GenerationResult:
        query = query.strip()
        session_id = self._require_session()
        if not query:
            raise ValueError("Search query must not be empty")
        model = self._require_model()

        call = _ProviderCall()
        self.registry.claim(session_id, call)
        try:
            response = await self._run_search(session_id, query, call)
        except Cancelled as e:
            logger.info(f"Web search cancelled for session {session_id}")
            return GenerationResult(state=GenerationState.CANCELLED, content="", message_id=None, error=e)
        finally:
            self.registry.release(session_id, call)

        if not [r for r in response.results if not is_placeholder(r)]:
            content = (
                f'No results found for "{query}". Try rephrasing your query '
                "or visit DuckDuckGo for manual search."
            )
            message_id = self.store.append_message(session_id, "assistant", content)
            return GenerationResult(
                state=GenerationState.COMPLETED, content=content, message_id=message_id
            )

        self.emitter.emit(StatusEvent(session_id=session_id, message=ANALYZING_MESSAGE))
        return await self._generate(session_id, model, build_search_prompt(query, response.summary))

    async def _run_search(self, session_id: str, query: str, call: _ProviderCall) -> SearchResponse:
        self.store.append_message(session_id, "user", f"🔍 Search: {query}")
        self._retitle(session_id, query)
        placeholder_id = self.store.append_message(session_id, "assistant", SEARCHING_MESSAGE)
        self.emitter.emit(StatusEvent(session_id=session_id, message=SEARCHING_MESSAGE))
        try:
            return await await_or_cancel(self._search(query=query), call.token)
        except (WebSearchError, httpx.HTTPError) as e:
            logger.error(f"Web search failed for {query!r}: {e}")
            return SearchResponse(query=query, results=[], summary=f'Error searching for "{query}": {e}')
        finally:
            if placeholder_id is not None:
                self.store.delete_message(session_id, placeholder_id)

    def cancel(self, session_id: str | None = None) -> bool:
        session_id = session_id or self.store.current_session_id
        if session_id is None:
            return False
        return self.registry.cancel(session_id)

    async def _generate(self, session_id: str, model: str, prompt: str) -> GenerationResult:
        if self.provider != "ollama":
            return await self._complete_with_provider(session_id, model, prompt)
        generation = GenerationSession(
            self.store,
            self.client,
            session_id,
            model,
            prompt,
            context_length=self.settings.selected_context_size,
            emitter=self.emitter,
            registry=self.registry,
        )
        return await generation.run()

    async def _complete_with_provider(
        self, session_id: str, model: str, prompt: str
    ) -> GenerationResult:
        call = _ProviderCall()
        self.registry.claim(session_id, call)
        try:
            text = await await_or_cancel(
                self._complete(model=self.provider_model(model), prompt=prompt, api_key=self._api_key),
                call.token,
            )
        except Cancelled as e:
            logger.info(f"Provider completion cancelled for session {session_id}")
            return GenerationResult(state=GenerationState.CANCELLED, content="", message_id=None, error=e)
        except Exception as e:
            logger.error(f"Provider completion failed ({self.provider}/{model}): {e}")
            self.emitter.emit(ErrorEvent(message=str(e), source=session_id))
            message_id = self.store.append_message(session_id, "assistant", GENERIC_ERROR_MESSAGE)
            return GenerationResult(
                state=GenerationState.FAILED,
                content=GENERIC_ERROR_MESSAGE,
                message_id=message_id,
                error=RequestFailed(str(e)),
            )
        finally:
            self.registry.release(session_id, call)

        message_id = self.store.append_message(session_id, "assistant", text)
        self.emitter.emit(FragmentEvent(session_id=session_id, text=text))
        return GenerationResult(state=GenerationState.COMPLETED, content=text, message_id=message_id)

    async def refresh_models(self) -> list[tuple[OllamaModel, ModelInfo | None]]:
        return await refresh_model_info(self.client, self.settings)

    def context_usage(self, input_text: str = "", extra_tokens: int = 0) -> ContextUsage:
        session = self.store.current_session()
        tokens = conversation_token_usage(session, input_text, extra_tokens)
        max_context = self.settings.selected_context_size
        return ContextUsage(
            tokens=tokens,
            max_context=max_context,
            percent=calculate_context_usage(tokens, max_context),
        )
