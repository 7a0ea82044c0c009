from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.memory.context import ContextStore  # noqa: E402
from persona_bot.memory.relationships import RelationshipStore  # noqa: E402
from persona_bot.memory.storage.schema import MemorySchemaMixin  # noqa: E402
from persona_bot.memory.store import MemoryStore  # noqa: E402
from persona_bot.models import MemberInfo, Relationship  # noqa: E402


def _store(tmp_path: Path) -> MemoryStore:
    store = MemoryStore(tmp_path / "data" / "bot.db")
    asyncio.run(store.init())
    return store


def test_schema_mismatch_raises_without_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", raising=False)
    db_path = tmp_path / "memory.db"

    asyncio.run(MemorySchemaMixin(db_path).init())
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    with pytest.raises(RuntimeError, match="schema version mismatch"):
        asyncio.run(MemorySchemaMixin(db_path).init())


def test_schema_mismatch_can_reset_with_explicit_opt_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db_path = tmp_path / "memory.db"
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA user_version = 999")
        conn.commit()

    monkeypatch.setenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "1")
    asyncio.run(MemorySchemaMixin(db_path).init())

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
    assert version == MemorySchemaMixin.SCHEMA_VERSION


def test_relationships_roundtrip_keeps_list_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    mapping = {
        "u1": Relationship(
            attitude="warm",
            behavior=["greet first", "use nicknames", "ask follow-ups"],
            boundaries=["no insults"],
            username="alice",
            display_name="Alice",
            avatar_url="https://cdn.example/a.png",
        ),
        "u2": Relationship(attitude="cold", ignored=True, username="bob"),
    }

    asyncio.run(store.save_relationships("g1", mapping))
    loaded = asyncio.run(store.load_relationships("g1"))

    assert loaded == mapping
    assert asyncio.run(store.load_relationships("g2")) == {}


def test_save_relationships_replaces_previous_map(tmp_path: Path) -> None:
    store = _store(tmp_path)
    asyncio.run(store.save_relationships("g1", {"u1": Relationship(behavior=["a", "b"]), "u2": Relationship()}))
    asyncio.run(store.save_relationships("g1", {"u2": Relationship(behavior=["c"])}))

    loaded = asyncio.run(store.load_relationships("g1"))

    assert set(loaded) == {"u2"}
    assert loaded["u2"].behavior == ["c"]
    with sqlite3.connect(store.db_path) as conn:
        orphans = conn.execute("SELECT COUNT(*) FROM relationship_behaviors WHERE user_id = 'u1'").fetchone()[0]
    assert orphans == 0


def test_recent_messages_are_oldest_first_and_limited(tmp_path: Path) -> None:
    store = _store(tmp_path)

    async def scenario() -> list[str]:
        for idx in range(5):
            await store.append_message("g1", "c1", "u1", "alice", f"m{idx}")
        await store.append_message("g1", "c2", "u1", "alice", "other channel")
        return [entry.content for entry in await store.load_recent_messages("g1", "c1", 3)]

    assert asyncio.run(scenario()) == ["m2", "m3", "m4"]


def test_prune_old_messages_removes_only_expired_rows(tmp_path: Path) -> None:
    store = _store(tmp_path)
    asyncio.run(store.append_message("g1", "c1", "u1", "alice", "fresh"))
    with sqlite3.connect(store.db_path) as conn:
        conn.execute(
            "INSERT INTO messages (guild_id, channel_id, author_id, author_name, content, created_at) "
            "VALUES ('g1', 'c1', 'u1', 'alice', 'stale', datetime('now', '-40 days'))"
        )
        conn.commit()

    assert asyncio.run(store.prune_old_messages(30)) == 1
    assert asyncio.run(store.prune_old_messages(0)) == 0
    remaining = asyncio.run(store.load_recent_messages("g1", "c1", 10))
    assert [entry.content for entry in remaining] == ["fresh"]


def test_guild_upsert_and_reply_log(tmp_path: Path) -> None:
    store = _store(tmp_path)
    asyncio.run(store.save_guild("g1", "Old name"))
    asyncio.run(store.save_guild("g1", "New name"))
    assert asyncio.run(store.get_guild_name("g1")) == "New name"

    asyncio.run(
        store.log_bot_reply(
            guild_id="g1",
            channel_id="c1",
            user_id="u1",
            username="alice",
            display_name="Alice",
            avatar_url=None,
            user_message="hi",
            bot_reply="hello",
            provider="gemini",
            model="flash",
            processing_time_ms=1234,
            prompt_tokens=10,
            response_tokens=3,
        )
    )
    latest = asyncio.run(store.get_latest_replies(5))

    assert len(latest) == 1
    assert latest[0]["bot_reply"] == "hello"
    assert latest[0]["processing_time_ms"] == 1234
    asyncio.run(store.ping())


def test_caches_survive_restart_through_sqlite(tmp_path: Path) -> None:
    store = _store(tmp_path)
    default = lambda _guild_id: Relationship(attitude="neutral")  # noqa: E731

    async def first_run() -> None:
        relationships = RelationshipStore(store, default)
        await relationships.reconcile("g1", [MemberInfo("u1", "alice"), MemberInfo("u2", "bob")])
        contexts = ContextStore(store, lambda _guild_id: 5)
        await contexts.append("g1", "c1", "u1", "alice", "before restart")

    async def second_run() -> tuple[set[str], list[str]]:
        relationships = RelationshipStore(store, default)
        loaded = await relationships.load_guild("g1")
        contexts = ContextStore(store, lambda _guild_id: 5)
        snapshot = await contexts.append_and_snapshot("g1", "c1", "u2", "bob", "after restart")
        return set(loaded), [entry.content for entry in snapshot]

    asyncio.run(first_run())
    users, history = asyncio.run(second_run())

    assert users == {"u1", "u2"}
    assert history == ["before restart"]
