import asyncio

import pytest

from common.events import ErrorEvent, EventEmitter, FragmentEvent, StatusEvent
from localchat.chat import ANALYZING_MESSAGE, SEARCHING_MESSAGE, ChatService
from localchat.client import OllamaModel
from localchat.errors import LocalChatError, RequestFailed, SessionBusyError
from localchat.generation import GENERIC_ERROR_MESSAGE, GenerationState
from localchat.search import SearchResponse, SearchResult, WebSearchError
from localchat.settings import ModelInfo, SettingsStore

from conftest import FakeStreamingClient, ndjson


class RecordingSearch:
    def __init__(self, results=(), error=None):
        self.results = list(results)
        self.error = error
        self.queries: list[str] = []

    async def __call__(self, *, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return SearchResponse(query=query, results=self.results, summary=f"summary of {query}")


def _service(store, client, **kwargs):
    settings = kwargs.pop("settings", None) or SettingsStore()
    settings.set_selected_model("llama3")
    events = []
    service = ChatService(store, settings, client, emitter=EventEmitter(events.append), **kwargs)
    return service, events


def _contents(store, session_id):
    return [(m.role, m.content) for m in store.get_session(session_id).messages]


def test_submit_appends_user_message_streams_reply_and_retitles(store, session_id):
    client = FakeStreamingClient([ndjson({"response": "Hi"}, {"response": " there"})])
    service, events = _service(store, client)

    result = asyncio.run(service.submit("  hello   world  "))

    assert result.state is GenerationState.COMPLETED
    assert _contents(store, session_id) == [("user", "  hello   world  "), ("assistant", "Hi there")]
    assert store.get_session(session_id).title == "hello world"
    assert client.calls[0]["model"] == "llama3"
    assert client.calls[0]["context_length"] == 4096
    assert [e.text for e in events if isinstance(e, FragmentEvent)] == ["Hi", " there"]


def test_existing_title_is_kept(store, session_id):
    store.update_title(session_id, "Trip planning")
    service, _ = _service(store, FakeStreamingClient([ndjson({"response": "ok"})]))
    asyncio.run(service.submit("a new question"))
    assert store.get_session(session_id).title == "Trip planning"


def test_submit_sends_attachment_contents(store, session_id, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("remember the milk", encoding="utf-8")
    client = FakeStreamingClient([ndjson({"response": "noted"})])
    service, _ = _service(store, client)

    asyncio.run(service.submit("summarize", [path]))

    assert _contents(store, session_id)[0] == ("user", "summarize\n\nAttached files:\nFile: notes.txt")
    assert "remember the milk" in client.calls[0]["prompt"]


def test_submit_requires_session_model_and_text(store):
    service, _ = _service(store, FakeStreamingClient())
    with pytest.raises(LocalChatError):
        asyncio.run(service.submit("hi"))

    store.create_session()
    with pytest.raises(ValueError):
        asyncio.run(service.submit("   "))

    service.settings.set_selected_model("")
    with pytest.raises(LocalChatError):
        asyncio.run(service.submit("hi"))


def test_submit_while_generating_is_rejected(store, session_id):
    client = FakeStreamingClient([ndjson({"response": "partial"})], hang=True)
    service, _ = _service(store, client)

    async def scenario():
        task = asyncio.create_task(service.submit("first"))
        while not service.registry.is_active(session_id):
            await asyncio.sleep(0)
        with pytest.raises(SessionBusyError):
            await service.submit("second")
        assert service.cancel() is True
        return await task

    result = asyncio.run(scenario())
    assert result.state is GenerationState.CANCELLED
    assert [m.content for m in store.get_session(session_id).messages if m.role == "user"] == ["first"]


def test_cancel_without_active_generation(store, session_id):
    service, _ = _service(store, FakeStreamingClient())
    assert service.cancel() is False
    store.select_session("missing")
    assert service.cancel() is False


def test_search_generates_from_results(store, session_id):
    search = RecordingSearch([SearchResult(title="T", link="https://x.test", snippet="S", source="Wikipedia")])
    client = FakeStreamingClient([ndjson({"response": "answer"})])
    service, events = _service(store, client, search=search)

    result = asyncio.run(service.search("  rust async  "))

    assert result.state is GenerationState.COMPLETED
    assert search.queries == ["rust async"]
    assert _contents(store, session_id) == [("user", "🔍 Search: rust async"), ("assistant", "answer")]
    assert "summary of rust async" in client.calls[0]["prompt"]
    statuses = [e.message for e in events if isinstance(e, StatusEvent)]
    assert statuses == [SEARCHING_MESSAGE, ANALYZING_MESSAGE]


def test_search_with_only_placeholder_results_skips_generation(store, session_id):
    search = RecordingSearch([SearchResult(title="none", link="https://x.test", snippet="", source="Search System")])
    client = FakeStreamingClient()
    service, _ = _service(store, client, search=search)

    result = asyncio.run(service.search("nothing"))

    assert client.calls == []
    assert result.state is GenerationState.COMPLETED
    assert _contents(store, session_id)[-1][1].startswith('No results found for "nothing"')
    assert SEARCHING_MESSAGE not in [c for _, c in _contents(store, session_id)]


def test_search_failure_is_reported_as_no_results(store, session_id):
    service, _ = _service(store, FakeStreamingClient(), search=RecordingSearch(error=WebSearchError("boom")))
    result = asyncio.run(service.search("q"))
    assert result.state is GenerationState.COMPLETED
    assert len(_contents(store, session_id)) == 2


def test_cloud_provider_path_appends_single_reply(store, session_id):
    calls = []

    async def complete(*, model, prompt, api_key):
        calls.append((model, prompt, api_key))
        return "cloud reply"

    service, events = _service(
        store, FakeStreamingClient(), provider="openai", complete=complete, api_key="sk-test"
    )
    service.settings.set_selected_model("gpt-4o")

    result = asyncio.run(service.submit("hello"))

    assert result.state is GenerationState.COMPLETED
    assert calls == [("openai/gpt-4o", "hello", "sk-test")]
    assert _contents(store, session_id)[-1] == ("assistant", "cloud reply")
    assert FragmentEvent(session_id=session_id, text="cloud reply") in events
    assert not service.registry.is_active(session_id)


def test_cloud_provider_failure_appends_generic_error(store, session_id):
    async def complete(**kwargs):
        raise RuntimeError("quota exceeded")

    service, events = _service(store, FakeStreamingClient(), provider="anthropic", complete=complete)
    result = asyncio.run(service.submit("hello"))

    assert result.failed
    assert _contents(store, session_id)[-1] == ("assistant", GENERIC_ERROR_MESSAGE)
    assert ErrorEvent(message="quota exceeded", source=session_id) in events


def test_provider_model_prefixing(store):
    service, _ = _service(store, FakeStreamingClient(), provider="groq")
    assert service.provider_model("llama-3.3-70b") == "groq/llama-3.3-70b"
    assert service.provider_model("gemini/gemini-2.5-flash") == "gemini/gemini-2.5-flash"


def test_refresh_models_records_model_info(store):
    class ModelListingClient:
        async def list_models(self):
            return [OllamaModel(name="llama3:8b"), OllamaModel(name="broken")]

        async def show_model(self, name):
            if name == "broken":
                raise RequestFailed("HTTP 500", status_code=500)
            return ModelInfo(name=name, context_length=8192)

    service, _ = _service(store, ModelListingClient())
    rows = asyncio.run(service.refresh_models())

    assert [(model.name, info is not None) for model, info in rows] == [("llama3:8b", True), ("broken", False)]
    assert service.settings.get_context_length("llama3:8b") == 8192
    assert service.settings.get_context_length("broken") == 4096


def test_context_usage(store, session_id):
    store.append_message(session_id, "user", "hello world")
    service, _ = _service(store, FakeStreamingClient())
    usage = service.context_usage("hello")
    assert usage.tokens == 5
    assert usage.max_context == 4096
    assert usage.percent == 0
    assert usage.describe() == "5 tokens / 4.1K tokens (0%)"


class BlockingSearch:
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, *, query):
        self.started.set()
        await self.release.wait()
        return SearchResponse(
            query=query,
            results=[SearchResult(title="T", link="https://x.test", snippet="S", source="Wikipedia")],
            summary="summary",
        )


def test_submit_during_pending_search_is_rejected(store, session_id):
    client = FakeStreamingClient([ndjson({"response": "x"})])
    search = BlockingSearch()
    service, _ = _service(store, client, search=search)

    async def scenario():
        task = asyncio.create_task(service.search("q"))
        await search.started.wait()
        with pytest.raises(SessionBusyError):
            await service.submit("hello")
        search.release.set()
        return await task

    result = asyncio.run(scenario())

    assert result.state is GenerationState.COMPLETED
    assert _contents(store, session_id) == [("user", "🔍 Search: q"), ("assistant", "x")]
    assert not service.registry.is_active(session_id)


def test_cancel_during_search_stops_before_generation(store, session_id):
    client = FakeStreamingClient([ndjson({"response": "x"})])
    search = BlockingSearch()
    service, _ = _service(store, client, search=search)

    async def scenario():
        task = asyncio.create_task(service.search("q"))
        await search.started.wait()
        assert service.cancel() is True
        return await task

    result = asyncio.run(scenario())

    assert result.state is GenerationState.CANCELLED
    assert client.calls == []
    assert _contents(store, session_id) == [("user", "🔍 Search: q")]
    assert not service.registry.is_active(session_id)
