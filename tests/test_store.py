import json

from localchat.sessions.schema import DEFAULT_TITLE
from localchat.sessions.store import ConversationStore
from localchat.storage import CHAT_STORE_KEY


def _shape(store: ConversationStore) -> list[int]:
    return [len(s.messages) for s in store.list_sessions()]


def test_create_session_inserts_at_head_and_selects(store):
    first = store.create_session()
    second = store.create_session()
    assert [s.id for s in store.list_sessions()] == [second, first]
    assert store.current_session_id == second
    assert store.current_session().title == DEFAULT_TITLE
    assert store.current_session().messages == []


def test_deleting_current_session_clears_pointer(store):
    other = store.create_session()
    current = store.create_session()
    store.delete_session(current)
    assert store.current_session_id is None
    assert [s.id for s in store.list_sessions()] == [other]


def test_deleting_other_session_keeps_pointer(store):
    other = store.create_session()
    current = store.create_session()
    store.delete_session(other)
    assert store.current_session_id == current


def test_select_does_not_validate_but_lookup_is_defensive(store):
    store.create_session()
    store.select_session("missing")
    assert store.current_session_id == "missing"
    assert store.current_session() is None


def test_append_message_assigns_id_and_bumps_updated_at(store, session_id):
    before = store.get_session(session_id).updated_at
    message_id = store.append_message(session_id, "user", "hi")
    session = store.get_session(session_id)
    assert message_id is not None
    assert session.messages[-1].id == message_id
    assert session.messages[-1].role == "user"
    assert session.messages[-1].content == "hi"
    assert session.updated_at >= before


def test_append_to_unknown_session_is_noop(store, session_id):
    store.append_message(session_id, "user", "hello")
    store.create_session()
    shape = _shape(store)
    count = len(store.list_sessions())

    assert store.append_message("nope", "assistant", "x") is None
    assert len(store.list_sessions()) == count
    assert _shape(store) == shape


def test_replace_last_message_content_targets_position(store, session_id):
    store.append_message(session_id, "user", "q")
    store.append_message(session_id, "assistant", "")
    assert store.replace_last_message_content(session_id, "answer")
    messages = store.get_session(session_id).messages
    assert [m.content for m in messages] == ["q", "answer"]
    assert not store.replace_last_message_content("nope", "x")


def test_replace_message_content_by_id_keeps_timestamp(store, session_id):
    target = store.append_message(session_id, "assistant", "")
    store.append_message(session_id, "user", "interleaved")
    created = store.get_message(session_id, target).timestamp

    assert store.replace_message_content(session_id, target, "streamed")
    message = store.get_message(session_id, target)
    assert message.content == "streamed"
    assert message.timestamp == created
    assert store.get_session(session_id).messages[-1].content == "interleaved"
    assert not store.replace_message_content(session_id, "missing", "x")


def test_mutation_replaces_session_object(store, session_id):
    snapshot = store.get_session(session_id)
    store.append_message(session_id, "user", "hi")
    assert snapshot.messages == []
    assert store.get_session(session_id) is not snapshot


def test_delete_message_and_update_title(store, session_id):
    keep = store.append_message(session_id, "user", "keep")
    drop = store.append_message(session_id, "assistant", "Searching...")
    assert store.delete_message(session_id, drop)
    assert [m.id for m in store.get_session(session_id).messages] == [keep]
    assert store.update_title(session_id, "Renamed")
    assert store.get_session(session_id).title == "Renamed"
    assert not store.update_title("missing", "x")


def test_ensure_session_creates_only_when_needed(store):
    created = store.ensure_session()
    assert store.ensure_session() == created
    assert len(store.list_sessions()) == 1

    store.select_session("gone")
    assert store.ensure_session() == created


def test_store_round_trips_through_backend(backend):
    store = ConversationStore(backend)
    session_id = store.create_session()
    store.append_message(session_id, "user", "olá")
    store.append_message(session_id, "assistant", "hi there")
    store.update_title(session_id, "Greeting")

    reloaded = ConversationStore(backend)
    assert reloaded.current_session_id == session_id
    assert reloaded.list_sessions() == store.list_sessions()


def test_corrupt_backend_blob_is_ignored(backend):
    backend.data_dir.mkdir(parents=True)
    (backend.data_dir / f"{CHAT_STORE_KEY}.json").write_text("{not json", encoding="utf-8")
    assert ConversationStore(backend).list_sessions() == []

    (backend.data_dir / f"{CHAT_STORE_KEY}.json").write_text(
        json.dumps({"chats": [{"id": 1, "messages": "bad"}]}), encoding="utf-8"
    )
    assert ConversationStore(backend).list_sessions() == []


def test_deferred_writes_are_flushed(backend):
    store = ConversationStore(backend)
    session_id = store.create_session()
    message_id = store.append_message(session_id, "assistant", "")

    store.replace_message_content(session_id, message_id, "draft", persist=False)
    assert store.get_message(session_id, message_id).content == "draft"
    assert ConversationStore(backend).get_message(session_id, message_id).content == ""

    store.flush()
    assert ConversationStore(backend).get_message(session_id, message_id).content == "draft"
