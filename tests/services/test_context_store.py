import asyncio
import json

import pytest
import pytest_asyncio

from llmgate.core.cache import HotCache
from llmgate.core.cache_keys import CacheKeys
from llmgate.core.database import build_engine, build_session_factory
from llmgate.models import Base
from llmgate.repositories import (
    ContextSummaryRepository,
    ConversationMessageRepository,
    ConversationRepository,
)
from llmgate.schemas.context import ContextMessage, ContextSummary, TodoItem
from llmgate.services.conversation.context_store import ConversationContextStore
from tests.conftest import FailingRedis


def _msg(content: str, role: str = "user") -> ContextMessage:
    return ContextMessage(role=role, content=content)


@pytest.mark.asyncio
async def test_unknown_conversation_is_empty(store):
    assert await store.get_summary("c1") is None
    assert await store.get_recent_messages("c1", 10) == []
    assert await store.get_todo_list("c1") == []
    assert await store.get_message_count("c1") == 0


@pytest.mark.asyncio
async def test_add_then_read_single_message(store):
    await store.add_message("c1", _msg("hello"))

    messages = await store.get_recent_messages("c1", 10)

    assert len(messages) == 1
    assert messages[0].content == "hello"
    assert messages[0].timestamp is not None


@pytest.mark.asyncio
async def test_summary_round_trip_refreshes_version_and_timestamp(store):
    summary = ContextSummary(
        conversation_id="c1",
        stack=["python", "redis"],
        architecture="layered",
        decisions=["use write-through cache"],
    )

    written = await store.update_summary("c1", summary)
    loaded = await store.get_summary("c1")

    assert loaded == written
    assert loaded.version == 1
    assert loaded.last_updated is not None
    assert loaded.model_dump(exclude={"version", "last_updated"}) == summary.model_dump(
        exclude={"version", "last_updated"}
    )


@pytest.mark.asyncio
async def test_summary_versions_are_monotonic(store, session_factory):
    first = await store.update_summary("c1", ContextSummary(conversation_id="c1", stack=["a"]))
    second = await store.update_summary("c1", ContextSummary(conversation_id="c1", stack=["b"]))

    assert (first.version, second.version) == (1, 2)
    assert (await store.get_summary("c1")).stack == ["b"]

    async with session_factory() as session:
        assert await ContextSummaryRepository(session).max_version("c1") == 2


@pytest.mark.asyncio
async def test_summary_version_conflict_is_retried(store, session_factory):
    await store.ensure_conversation("c1")
    async with session_factory() as session:
        await ContextSummaryRepository(session).insert_version(
            conversation_id="c1", version=1, summary_json='{"conversation_id": "c1"}'
        )
        await session.commit()

    stale = ContextSummary(conversation_id="c1", version=1)
    assert await store._cold_insert_summary("c1", stale) == 2


@pytest.mark.asyncio
async def test_cache_miss_falls_back_to_cold_and_populates_hot(store, hot_cache):
    written = await store.update_summary("c1", ContextSummary(conversation_id="c1", modules=["core"]))
    await store.clear_cache("c1")
    assert await hot_cache.get(CacheKeys.conversation_summary("c1")) is None

    loaded = await store.get_summary("c1")

    assert loaded == written
    raw = await hot_cache.get(CacheKeys.conversation_summary("c1"))
    assert ContextSummary.model_validate_json(raw) == written


@pytest.mark.asyncio
async def test_hot_ttls_follow_key_family(store, dummy_redis, test_settings):
    await store.update_summary("c1", ContextSummary(conversation_id="c1"))
    await store.add_message("c1", _msg("hi"))
    await store.update_todo_list("c1", [TodoItem(id=1, title="write tests")])

    prefix = test_settings.CACHE_PREFIX
    assert dummy_redis.expirations[prefix + "conv:summary:c1"] == 3600
    assert dummy_redis.expirations[prefix + "conv:messages:c1"] == 1800
    assert dummy_redis.expirations[prefix + "todo:list:c1"] == 1800


@pytest.mark.asyncio
async def test_retention_keeps_most_recent_fifty(store, session_factory):
    for i in range(60):
        await store.add_message("c1", _msg(f"m{i}"))

    messages = await store.get_recent_messages("c1", 100)

    assert [m.content for m in messages] == [f"m{i}" for i in range(10, 60)]
    async with session_factory() as session:
        assert await ConversationMessageRepository(session).count_for("c1") == 60


@pytest.mark.asyncio
async def test_retention_holds_after_hot_eviction(store):
    for i in range(60):
        await store.add_message("c1", _msg(f"m{i}"))
    await store.clear_cache("c1")

    messages = await store.get_recent_messages("c1", 100)

    assert len(messages) == 50
    assert messages[0].content == "m10" and messages[-1].content == "m59"


@pytest.mark.asyncio
async def test_add_message_after_eviction_keeps_history(store):
    for i in range(3):
        await store.add_message("c1", _msg(f"m{i}"))
    await store.clear_cache("c1")

    await store.add_message("c1", _msg("m3"))

    assert [m.content for m in await store.get_recent_messages("c1", 10)] == [
        "m0",
        "m1",
        "m2",
        "m3",
    ]
    assert await store.get_message_count("c1") == 4


@pytest.mark.asyncio
async def test_todo_list_round_trip(store):
    todos = [
        TodoItem(id=1, title="design", status="completed"),
        TodoItem(id=2, title="implement", status="in-progress"),
    ]
    await store.update_todo_list("c1", todos)
    await store.clear_cache("c1")

    assert await store.get_todo_list("c1") == todos


@pytest.mark.asyncio
async def test_auto_summary_triggers_at_threshold(store):
    await store.update_todo_list("c1", [TodoItem(id=1, title="ship")])
    for i in range(9):
        await store.add_message("c1", _msg(f"m{i}"))
    assert await store.get_summary("c1") is None

    await store.add_message("c1", _msg("m9"))

    summary = await store.get_summary("c1")
    assert summary is not None
    assert summary.version == 1
    assert [t.title for t in summary.todo_items] == ["ship"]
    assert len(await store.get_recent_messages("c1", 50)) == 10


@pytest.mark.asyncio
async def test_auto_summary_keeps_existing_fields(store):
    await store.update_summary("c1", ContextSummary(conversation_id="c1", stack=["go"]))
    for i in range(20):
        await store.add_message("c1", _msg(f"m{i}"))

    summary = await store.get_summary("c1")
    assert summary.stack == ["go"]
    assert summary.version == 3


@pytest.mark.asyncio
async def test_auto_summarize_below_threshold_is_noop(store):
    await store.add_message("c1", _msg("only"))
    assert await store.auto_summarize("c1") is None


@pytest.mark.asyncio
async def test_compress_context_is_bounded(store):
    for i in range(30):
        await store.add_message("c1", _msg(f"m{i}"))

    payload = json.loads(await store.compress_context("c1"))

    assert payload["summary"]["conversation_id"] == "c1"
    assert [m["content"] for m in payload["recent_messages"]] == [
        "m25",
        "m26",
        "m27",
        "m28",
        "m29",
    ]


@pytest.mark.asyncio
async def test_compress_context_without_summary_uses_stub(store):
    payload = json.loads(await store.compress_context("empty"))
    assert payload["summary"]["conversation_id"] == "empty"
    assert payload["recent_messages"] == []


@pytest.mark.asyncio
async def test_build_prompt_context_filters_completed_todos(store):
    await store.add_message("c1", _msg("hi"))
    await store.update_todo_list(
        "c1",
        [TodoItem(id=1, title="done", status="completed"), TodoItem(id=2, title="open")],
    )

    payload = json.loads(await store.build_prompt_context("c1", include_messages=5))

    assert [t["title"] for t in payload["todos"]] == ["open"]
    assert [m["content"] for m in payload["recent_messages"]] == ["hi"]


@pytest.mark.asyncio
async def test_clear_cache_removes_all_keys_in_one_call(store, dummy_redis, test_settings):
    await store.update_summary("c1", ContextSummary(conversation_id="c1"))
    await store.add_message("c1", _msg("hi"))
    await store.update_todo_list("c1", [TodoItem(id=1, title="x")])
    dummy_redis.delete_calls.clear()

    await store.clear_cache("c1")

    prefix = test_settings.CACHE_PREFIX
    assert dummy_redis.delete_calls == [
        tuple(prefix + k for k in CacheKeys.conversation_keys("c1"))
    ]
    assert not any(k.endswith(":c1") for k in dummy_redis.store)


@pytest.mark.asyncio
async def test_malformed_hot_value_is_discarded(store, dummy_redis, test_settings):
    key = test_settings.CACHE_PREFIX + CacheKeys.conversation_summary("c1")
    dummy_redis.store[key] = "{not json"

    assert await store.get_summary("c1") is None
    assert key not in dummy_redis.store


@pytest.mark.asyncio
async def test_hot_failure_degrades_to_cold(session_factory, test_settings):
    store = ConversationContextStore(
        HotCache(test_settings, redis=FailingRedis()), session_factory, test_settings
    )

    await store.add_message("c1", _msg("hello"))
    written = await store.update_summary("c1", ContextSummary(conversation_id="c1"))
    await store.clear_cache("c1")

    assert [m.content for m in await store.get_recent_messages("c1", 10)] == ["hello"]
    assert (await store.get_summary("c1")).version == written.version


@pytest.mark.asyncio
async def test_cold_failure_keeps_hot_write(hot_cache, test_settings):
    # 未建表的库：所有冷层操作都会失败
    engine = build_engine(test_settings, url="sqlite+aiosqlite:///:memory:")
    store = ConversationContextStore(hot_cache, build_session_factory(engine), test_settings)
    try:
        await store.add_message("c1", _msg("hello"))
        summary = await store.update_summary("c1", ContextSummary(conversation_id="c1"))

        assert [m.content for m in await store.get_recent_messages("c1", 10)] == ["hello"]
        assert summary.version == 1
        assert await store.get_message_count("c1") == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_delete_conversation_removes_everything(store, session_factory):
    await store.add_message("c1", _msg("hello"))
    await store.update_summary("c1", ContextSummary(conversation_id="c1"))

    assert await store.delete_conversation("c1") is True

    assert await store.get_summary("c1") is None
    assert await store.get_recent_messages("c1") == []
    async with session_factory() as session:
        assert await ConversationMessageRepository(session).count_for("c1") == 0


@pytest.mark.asyncio
async def test_ensure_conversation_reports_creation(store):
    assert await store.ensure_conversation("c1", user_id="u1", project_id="p1") is True
    assert await store.ensure_conversation("c1") is False


@pytest.mark.asyncio
async def test_mutations_emit_events(store, sink):
    await store.add_message("c1", _msg("hello"))
    await store.update_summary("c1", ContextSummary(conversation_id="c1"))

    operations = [e.operation for e in sink.mutations]
    assert operations == ["add_message", "update_summary"]
    assert sink.mutations[0].message_count == 1
    assert sink.mutations[1].summary_version == 1
    assert all(e.conversation_id == "c1" for e in sink.mutations)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path, test_settings):
    engine = build_engine(
        test_settings,
        url=f"sqlite+aiosqlite:///{tmp_path / 'context.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_first_messages_are_all_persisted(file_session_factory, hot_cache, test_settings):
    store = ConversationContextStore(hot_cache, file_session_factory, test_settings)

    await asyncio.gather(*(store.add_message("new", _msg(f"m{i}")) for i in range(4)))

    async with file_session_factory() as session:
        assert await ConversationMessageRepository(session).count_for("new") == 4
        conversation = await ConversationRepository(session).get("new")
    assert conversation.message_count == 4

    await store.clear_cache("new")
    assert sorted(m.content for m in await store.get_recent_messages("new", 10)) == [
        "m0",
        "m1",
        "m2",
        "m3",
    ]


@pytest.mark.asyncio
async def test_concurrent_ensure_creates_exactly_once(file_session_factory, hot_cache, test_settings):
    store = ConversationContextStore(hot_cache, file_session_factory, test_settings)

    results = await asyncio.gather(*(store.ensure_conversation("c1") for _ in range(4)))

    assert sorted(results) == [False, False, False, True]
