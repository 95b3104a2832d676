"""Tests for the SQLite memory store."""

from datetime import datetime, timedelta, timezone

import pytest

from chat_memory.errors import StorageError
from chat_memory.memory import (
    BranchRecord,
    ChatBio,
    ChatMemory,
    CodespaceRecord,
    GistRecord,
    ImagePart,
    MemoryStore,
    Message,
    MessageRole,
    TextPart,
    TokenUsageRecord,
)


def make_memory(title="Debugging", minutes_ago=0, **kwargs):
    when = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    return ChatMemory(
        title=title,
        created_at=when,
        last_message_at=when,
        **kwargs,
    )


class TestMemories:
    """Tests for chat memory persistence."""

    def test_save_and_get(self, store):
        """A saved memory round-trips with its messages."""
        memory = make_memory(
            tags=["python", "flask"],
            summary="Fixing a Flask 500 error",
            key_terms=["flask", "error"],
            messages=[
                Message(
                    role=MessageRole.USER,
                    content="My Flask app returns 500",
                    timestamp=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc),
                ),
                Message(
                    role=MessageRole.ASSISTANT,
                    content="Check the logs",
                    model="gpt-4o-mini",
                    timestamp=datetime(2024, 5, 1, 9, 1, tzinfo=timezone.utc),
                ),
            ],
        )

        store.save_memory(memory)
        loaded = store.get_memory(memory.id)

        assert loaded.title == "Debugging"
        assert loaded.tags == ["python", "flask"]
        assert loaded.summary == "Fixing a Flask 500 error"
        assert loaded.key_terms == ["flask", "error"]
        assert [m.text for m in loaded.messages] == ["My Flask app returns 500", "Check the logs"]
        assert loaded.messages[1].model == "gpt-4o-mini"
        assert all(m.chat_id == memory.id for m in loaded.messages)

    def test_get_missing(self, store):
        """Unknown IDs return None."""
        assert store.get_memory("missing") is None

    def test_without_messages(self, store):
        """Messages can be skipped when loading."""
        memory = make_memory(messages=[Message(role=MessageRole.USER, content="hi there")])
        store.save_memory(memory)

        assert store.get_memory(memory.id, include_messages=False).messages == []

    def test_update_keeps_messages(self, store):
        """Saving an existing memory updates it without deleting its messages."""
        memory = make_memory()
        store.save_memory(memory)
        store.save_message(Message(role=MessageRole.USER, content="first", chat_id=memory.id))

        memory.title = "Renamed"
        store.save_memory(memory)

        loaded = store.get_memory(memory.id)
        assert loaded.title == "Renamed"
        assert len(loaded.messages) == 1

    def test_all_memories_most_recent_first(self, store):
        """Memories are listed by last activity, newest first."""
        old = make_memory("old", minutes_ago=30)
        new = make_memory("new", minutes_ago=1)
        store.save_memory(old)
        store.save_memory(new)

        assert [m.title for m in store.get_all_memories()] == ["new", "old"]

    def test_delete_cascades(self, store):
        """Deleting a memory removes its messages and auxiliary rows."""
        memory = make_memory(messages=[Message(role=MessageRole.USER, content="hello")])
        store.save_memory(memory)
        store.record_token_usage(TokenUsageRecord(chat_id=memory.id, model="gpt-4o-mini", input_tokens=5))
        store.save_branch(BranchRecord(chat_id=memory.id, repository="acme/api", branch_name="fix"))

        assert store.delete_memory(memory.id) is True
        assert store.get_memory(memory.id) is None
        assert store.get_messages(memory.id) == []
        assert store.get_token_usage(memory.id) == []
        assert store.get_branches(memory.id) == []
        assert store.delete_memory(memory.id) is False

    def test_update_title(self, store):
        """Titles can be changed in place."""
        memory = make_memory()
        store.save_memory(memory)

        assert store.update_memory_title(memory.id, "New title") is True
        assert store.get_memory(memory.id).title == "New title"
        assert store.update_memory_title("missing", "x") is False

    def test_corrupt_tags_read_as_empty(self, store):
        """Undecodable JSON columns are treated as absent."""
        memory = make_memory(tags=["python"])
        store.save_memory(memory)
        store._conn.execute("UPDATE memories SET tags = ? WHERE id = ?", ("{not json", memory.id))

        assert store.get_memory(memory.id).tags == []


class TestEmbeddingColumn:
    """Tests for stored summary embeddings."""

    def test_save_embedding(self, store):
        """Embeddings can be stored separately."""
        memory = make_memory(summary="Flask errors")
        store.save_memory(memory)

        assert store.save_memory_embedding(memory.id, [0.1, 0.2]) is True
        assert store.get_memory(memory.id).embedding == [0.1, 0.2]

    def test_kept_when_summary_unchanged(self, store):
        """Resaving with the same summary keeps the stored embedding."""
        memory = make_memory(summary="Flask errors")
        store.save_memory(memory)
        store.save_memory_embedding(memory.id, [0.1, 0.2])

        memory.title = "Renamed"
        store.save_memory(memory)

        assert store.get_memory(memory.id).embedding == [0.1, 0.2]

    def test_cleared_when_summary_changes(self, store):
        """A new summary invalidates the stored embedding."""
        memory = make_memory(summary="Flask errors")
        store.save_memory(memory)
        store.save_memory_embedding(memory.id, [0.1, 0.2])

        memory.summary = "Django migrations"
        store.save_memory(memory)

        assert store.get_memory(memory.id).embedding is None

    def test_new_embedding_overrides(self, store):
        """An embedding on the memory itself always wins."""
        memory = make_memory(summary="Flask errors")
        store.save_memory(memory)
        store.save_memory_embedding(memory.id, [0.1, 0.2])

        memory.embedding = [0.9, 0.8]
        store.save_memory(memory)

        assert store.get_memory(memory.id).embedding == [0.9, 0.8]

    @pytest.mark.parametrize("column", ['["a", "b"]', '{"x": 1}', "[true, false]", "[]", "{not json"])
    def test_malformed_embedding_reads_as_none(self, store, column):
        """A stored vector that is not a list of numbers is recomputed later."""
        memory = make_memory(summary="Flask errors")
        store.save_memory(memory)
        store._conn.execute("UPDATE memories SET embedding = ? WHERE id = ?", (column, memory.id))

        assert store.get_memory(memory.id).embedding is None

    def test_integer_embedding_loaded_as_floats(self, store):
        memory = make_memory(summary="Flask errors")
        store.save_memory(memory)
        store._conn.execute("UPDATE memories SET embedding = ? WHERE id = ?", ("[1, 0]", memory.id))

        assert store.get_memory(memory.id).embedding == [1.0, 0.0]


class TestSearch:
    """Tests for key-term search."""

    def test_search_any_term(self, store):
        """Memories containing any term are returned, newest first."""
        flask = make_memory("flask", minutes_ago=10, key_terms=["python", "flask"])
        react = make_memory("react", minutes_ago=5, key_terms=["react", "native"])
        django = make_memory("django", minutes_ago=1, key_terms=["python", "django"])
        for memory in (flask, react, django):
            store.save_memory(memory)

        results = store.search_memories_by_terms(["python"])
        assert [m.title for m in results] == ["django", "flask"]

        results = store.search_memories_by_terms(["react", "flask"])
        assert [m.title for m in results] == ["react", "flask"]

    def test_search_is_substring_match(self, store):
        """Search is a substring filter over serialized terms."""
        store.save_memory(make_memory(key_terms=["javascript"]))

        assert len(store.search_memories_by_terms(["script"])) == 1

    def test_wildcards_are_literal(self, store):
        """LIKE wildcards in terms match literally."""
        store.save_memory(make_memory(key_terms=["python"]))

        assert store.search_memories_by_terms(["%"]) == []
        assert store.search_memories_by_terms(["_"]) == []

    def test_empty_terms(self, store):
        """No terms means no results."""
        store.save_memory(make_memory(key_terms=["python"]))

        assert store.search_memories_by_terms([]) == []
        assert store.search_memories_by_terms([""]) == []


class TestMessages:
    """Tests for message persistence."""

    def test_requires_chat_id(self, store):
        """Messages must belong to a chat."""
        with pytest.raises(ValueError):
            store.save_message(Message(role=MessageRole.USER, content="orphan"))

    def test_unknown_chat_is_storage_error(self, store):
        """A chat_id that does not exist violates the foreign key."""
        with pytest.raises(StorageError):
            store.save_message(Message(role=MessageRole.USER, content="x", chat_id="missing"))

    def test_ordered_by_timestamp(self, store):
        """Messages come back oldest first regardless of insert order."""
        memory = make_memory()
        store.save_memory(memory)
        now = datetime.now(timezone.utc)
        store.save_message(Message(
            role=MessageRole.ASSISTANT, content="second", chat_id=memory.id, timestamp=now,
        ))
        store.save_message(Message(
            role=MessageRole.USER, content="first", chat_id=memory.id,
            timestamp=now - timedelta(seconds=5),
        ))

        assert [m.text for m in store.get_messages(memory.id)] == ["first", "second"]
        assert store.count_messages(memory.id) == 2

    def test_multipart_content(self, store):
        """Multipart content round-trips as parts."""
        memory = make_memory()
        store.save_memory(memory)
        message = Message(
            role=MessageRole.USER,
            chat_id=memory.id,
            content=[TextPart("What is this?"), ImagePart("https://example.com/a.png")],
        )
        store.save_message(message)

        loaded = store.get_messages(memory.id)[0]
        assert loaded.content == [TextPart("What is this?"), ImagePart("https://example.com/a.png")]

    def test_bracketed_text_stays_text(self, store):
        """Plain strings that look like JSON arrays are not decoded."""
        memory = make_memory()
        store.save_memory(memory)
        for text in ("[]", "[1, 2, 3]", "[draft] notes"):
            store.save_message(Message(role=MessageRole.USER, content=text, chat_id=memory.id))

        contents = sorted(m.content for m in store.get_messages(memory.id))
        assert contents == sorted(["[]", "[1, 2, 3]", "[draft] notes"])

    def test_thinking_preserved(self, store):
        """Reasoning traces are stored with the message."""
        memory = make_memory()
        store.save_memory(memory)
        store.save_message(Message(
            role=MessageRole.ASSISTANT, content="42", chat_id=memory.id, thinking="6 times 7",
        ))

        assert store.get_messages(memory.id)[0].thinking == "6 times 7"


class TestSettingsAndBio:
    """Tests for settings and the user bio."""

    def test_setting_types_round_trip(self, store):
        """Settings keep their type."""
        store.set_setting("theme", "dark")
        store.set_setting("font_size", 14)
        store.set_setting("ratio", 0.5)
        store.set_setting("telemetry", False)
        store.set_setting("models", {"default": "gpt-4o-mini", "recent": ["a", "b"]})

        assert store.get_setting("theme") == "dark"
        assert store.get_setting("font_size") == 14
        assert store.get_setting("ratio") == 0.5
        assert store.get_setting("telemetry") is False
        assert store.get_setting("models") == {"default": "gpt-4o-mini", "recent": ["a", "b"]}

    def test_setting_default_and_delete(self, store):
        """Missing settings return the default."""
        assert store.get_setting("missing", "fallback") == "fallback"

        store.set_setting("theme", "dark")
        assert store.delete_setting("theme") is True
        assert store.get_setting("theme") is None
        assert store.delete_setting("theme") is False

    def test_setting_overwrite(self, store):
        """Setting a key twice keeps the latest value and type."""
        store.set_setting("limit", 10)
        store.set_setting("limit", "unlimited")

        assert store.get_all_settings() == {"limit": "unlimited"}

    def test_bio(self, store):
        """The latest bio is returned."""
        assert store.get_bio() is None

        bio = ChatBio(name="Ada", content="Works on compilers")
        store.save_bio(bio)
        bio.content = "Works on databases"
        bio.updated_at = datetime.now(timezone.utc)
        store.save_bio(bio)

        loaded = store.get_bio()
        assert loaded.id == bio.id
        assert loaded.content == "Works on databases"


class TestAuxiliaryTables:
    """Tests for gists, token usage, branches and codespaces."""

    def test_gists(self, store):
        memory = make_memory()
        store.save_memory(memory)
        store.save_gist(GistRecord(
            chat_id=memory.id,
            gist_id="abc123",
            gist_url="https://gist.github.com/abc123",
            title="Shared chat",
            content=[{"role": "user", "content": "hi"}],
            is_public=True,
            tags=["share"],
        ))

        gists = store.get_gists(memory.id)
        assert len(gists) == 1
        assert gists[0].is_public is True
        assert gists[0].content == [{"role": "user", "content": "hi"}]
        assert store.delete_gists(memory.id) == 1
        assert store.get_gists(memory.id) == []

    def test_token_usage_totals(self, store):
        first = make_memory()
        second = make_memory()
        store.save_memory(first)
        store.save_memory(second)

        row_id = store.record_token_usage(
            TokenUsageRecord(chat_id=first.id, model="gpt-4o-mini", input_tokens=100, output_tokens=20)
        )
        store.record_token_usage(
            TokenUsageRecord(chat_id=first.id, model="gpt-4o-mini", input_tokens=50, output_tokens=10)
        )
        store.record_token_usage(
            TokenUsageRecord(chat_id=second.id, model="gpt-4o", input_tokens=7, output_tokens=3)
        )

        assert isinstance(row_id, int)
        assert store.get_token_totals(first.id) == {
            "input_tokens": 150,
            "output_tokens": 30,
            "total_tokens": 180,
        }
        assert store.get_token_totals()["total_tokens"] == 190
        assert sorted(u.total_tokens for u in store.get_token_usage(first.id)) == [60, 120]

    def test_token_totals_empty(self, store):
        assert store.get_token_totals() == {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}

    def test_branches(self, store):
        memory = make_memory()
        store.save_memory(memory)
        branch = BranchRecord(chat_id=memory.id, repository="acme/api", branch_name="fix-500")
        store.save_branch(branch)
        store.save_branch(BranchRecord(chat_id=memory.id, repository="acme/web", branch_name="ui"))

        assert store.update_branch_status(branch.id, "merged", pr_url="https://github.com/acme/api/pull/1")

        branches = store.get_branches(memory.id, repository="acme/api")
        assert len(branches) == 1
        assert branches[0].status == "merged"
        assert branches[0].pr_url == "https://github.com/acme/api/pull/1"
        assert len(store.get_branches(memory.id)) == 2

        # pr_url is kept when not given
        store.update_branch_status(branch.id, "closed")
        assert store.get_branches(memory.id, "acme/api")[0].pr_url == "https://github.com/acme/api/pull/1"

    def test_codespaces(self, store):
        codespace = CodespaceRecord(
            repository="acme/api",
            codespace_id="cs-1",
            display_name="api dev",
            state="Available",
            web_url="https://github.com/codespaces/cs-1",
        )
        store.save_codespace(codespace)

        assert [c.codespace_id for c in store.get_codespaces("acme/api")] == ["cs-1"]
        assert store.get_codespaces("acme/web") == []
        assert store.delete_codespace(codespace.id) is True
        assert store.get_codespaces() == []


class TestMaintenance:
    """Tests for schema management and statistics."""

    def test_opened_store_is_migrated(self, store):
        """Opening a store applies all migrations."""
        assert store.schema_version == 7
        assert all(row["applied_at"] for row in store.migration_status())

    def test_without_auto_migrate(self, tmp_path):
        """auto_migrate=False leaves the schema untouched."""
        store = MemoryStore(db_path=str(tmp_path / "raw.db"), auto_migrate=False)
        try:
            assert store.schema_version == 0
            assert store.migrate() == [1, 2, 3, 4, 5, 6, 7]
        finally:
            store.close()

    def test_creates_parent_directory(self, tmp_path):
        """The database directory is created on open."""
        path = tmp_path / "nested" / "dir" / "memory.db"
        store = MemoryStore(db_path=str(path))
        store.close()

        assert path.exists()

    def test_reopen_keeps_data(self, tmp_path):
        """Data survives closing and reopening the store."""
        path = str(tmp_path / "memory.db")
        store = MemoryStore(db_path=path)
        memory = make_memory(summary="persisted")
        store.save_memory(memory)
        store.close()

        reopened = MemoryStore(db_path=path)
        try:
            assert reopened.get_memory(memory.id).summary == "persisted"
            assert reopened.migrate() == []
        finally:
            reopened.close()

    def test_stats(self, store):
        """Statistics count memories and messages."""
        store.save_memory(make_memory("a", minutes_ago=10, messages=[
            Message(role=MessageRole.USER, content="one"),
            Message(role=MessageRole.ASSISTANT, content="two"),
        ]))
        store.save_memory(make_memory("b"))

        stats = store.get_stats()

        assert stats.total_memories == 2
        assert stats.total_messages == 2
        assert stats.schema_version == 7
        assert stats.total_size_bytes > 0
        assert stats.oldest_memory < stats.newest_memory
        assert stats.to_dict()["total_memories"] == 2
