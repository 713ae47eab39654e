"""Tests for the SQLAlchemy-backed conversation store."""

import datetime as dt

import pytest

from streamchat.errors import NotFoundError, StoreError
from streamchat.store import ConversationStore


class TestLifecycle:

    def test_operations_require_open_store(self):
        store = ConversationStore()
        with pytest.raises(StoreError):
            store.list_threads()

    def test_file_database_persists(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'nested' / 'chat.db'}"
        with ConversationStore(url) as store:
            thread = store.create_thread("Saved")
            store.append_message(thread.id, "user", "hello")
        with ConversationStore(url) as store:
            assert [t.title for t in store.list_threads()] == ["Saved"]
            assert store.list_messages(thread.id)[0].content == "hello"


class TestAgents:

    def test_crud(self, store):
        agent = store.create_agent("Translator", "Translate to French.", "fr")
        assert store.get_agent(agent.id) == agent

        updated = store.update_agent(agent.id, name="Traductor")
        assert updated.name == "Traductor"
        assert updated.system_prompt == "Translate to French."

        store.delete_agent(agent.id)
        assert store.get_agent(agent.id) is None

    @pytest.mark.parametrize("name,prompt", [("", "x"), ("n", ""), ("  ", "x")])
    def test_validation(self, store, name, prompt):
        with pytest.raises(ValueError):
            store.create_agent(name, prompt)

    def test_missing_agent(self, store):
        with pytest.raises(NotFoundError):
            store.update_agent(99, name="x")
        with pytest.raises(NotFoundError):
            store.delete_agent(99)
        assert store.get_agent(None) is None

    def test_list_most_recently_updated_first(self, store):
        a = store.create_agent("A", "a")
        b = store.create_agent("B", "b")
        store.update_agent(a.id, description="touched")
        assert [x.id for x in store.list_agents()] == [a.id, b.id]


class TestThreads:

    def test_list_orders_by_last_activity(self, store):
        first = store.create_thread("first")
        second = store.create_thread("second")
        assert [t.id for t in store.list_threads()] == [second.id, first.id]

        store.append_message(first.id, "user", "bump")
        assert [t.id for t in store.list_threads()] == [first.id, second.id]

    def test_append_refreshes_updated_at(self, store, thread):
        before = store.get_thread(thread.id).updated_at
        store.append_message(thread.id, "user", "hi")
        assert store.get_thread(thread.id).updated_at > before

    def test_timestamps_read_back_as_utc(self, store):
        created = store.create_thread("t")
        message = store.append_message(created.id, "user", "hi")
        reloaded = store.get_thread(created.id)
        assert reloaded.updated_at.tzinfo is not None
        assert reloaded.updated_at.utcoffset() == dt.timedelta(0)
        assert reloaded.updated_at == message.created_at
        assert store.list_messages(created.id)[0].created_at == message.created_at
        assert store.list_threads()[0].updated_at == reloaded.updated_at

    def test_dangling_agent_reads_as_none(self, store):
        agent = store.create_agent("Temp", "prompt")
        thread = store.create_thread("t", agent_id=agent.id)
        assert store.get_thread(thread.id).agent_id == agent.id

        store.delete_agent(agent.id)
        reloaded = store.get_thread(thread.id)
        assert reloaded.agent_id is None
        assert store.resolve_agent(reloaded) is None
        assert store.list_threads()[0].agent_id is None

    def test_update_distinguishes_unset_from_none(self, store):
        agent = store.create_agent("A", "a")
        thread = store.create_thread("t", agent_id=agent.id)

        renamed = store.update_thread(thread.id, title="renamed")
        assert renamed.agent_id == agent.id

        unbound = store.update_thread(thread.id, agent_id=None)
        assert unbound.agent_id is None
        assert unbound.title == "renamed"

    def test_delete_cascades_to_messages(self, store, thread):
        store.append_message(thread.id, "user", "a")
        store.append_message(thread.id, "assistant", "b")
        store.delete_thread(thread.id)
        assert store.get_thread(thread.id) is None
        assert store.list_messages(thread.id) == []

    def test_ids_are_not_reused(self, store):
        thread = store.create_thread("t")
        store.delete_thread(thread.id)
        assert store.create_thread("t2").id > thread.id

    def test_missing_thread(self, store):
        assert store.get_thread(404) is None
        with pytest.raises(NotFoundError):
            store.delete_thread(404)
        with pytest.raises(NotFoundError):
            store.update_thread(404, title="x")
        with pytest.raises(NotFoundError):
            store.append_message(404, "user", "x")


class TestMessages:

    def test_round_trip_fields(self, store, thread):
        calls = [{"id": "c1", "type": "function",
                  "function": {"name": "get_current_date", "arguments": "{}"}}]
        msg = store.append_message(
            thread.id, "assistant", "",
            reasoning_content="thinking", metrics={"reasoning_duration_ms": 12},
            tool_calls=calls,
        )
        stored = store.list_messages(thread.id)[0]
        assert stored.id == msg.id
        assert stored.tool_calls == calls
        assert stored.metrics == {"reasoning_duration_ms": 12}
        assert stored.to_api() == {"role": "assistant", "content": "", "tool_calls": calls}

    def test_invalid_role(self, store, thread):
        with pytest.raises(ValueError):
            store.append_message(thread.id, "robot", "x")

    def test_chronological_order_and_pagination(self, store, thread):
        for i in range(7):
            store.append_message(thread.id, "user", f"m{i}")

        assert [m.content for m in store.list_messages(thread.id)] == [f"m{i}" for i in range(7)]
        assert [m.content for m in store.list_messages(thread.id, limit=3)] == ["m4", "m5", "m6"]
        assert [m.content for m in store.list_messages(thread.id, limit=3, offset=3)] == ["m1", "m2", "m3"]
        assert [m.content for m in store.recent_messages(thread.id, 2)] == ["m5", "m6"]

    def test_append_messages_is_atomic(self, store, thread):
        stored = store.append_messages(thread.id, [
            {"role": "assistant", "content": "", "tool_calls": [{"id": "c1"}]},
            {"role": "tool", "content": "result", "tool_call_id": "c1"},
        ])
        assert [m.role for m in stored] == ["assistant", "tool"]

        with pytest.raises(ValueError):
            store.append_messages(thread.id, [
                {"role": "tool", "content": "ok", "tool_call_id": "c2"},
                {"role": "bogus"},
            ])
        assert len(store.list_messages(thread.id)) == 2

    def test_threads_are_isolated(self, store):
        a = store.create_thread("a")
        b = store.create_thread("b")
        store.append_message(a.id, "user", "for a")
        assert store.list_messages(b.id) == []
