"""Pull/push update routing tests"""

import asyncio
import json

import pytest

from filetasks_mcp.channels import PollingLoop, PushListener, UpdateChannelAdapter
from filetasks_mcp.conflicts import ConflictCoordinator
from filetasks_mcp.errors import AuthenticationExpired, TransportError
from filetasks_mcp.events import ConflictDismissed, ConflictPrompted, SessionExpired, TaskFinished
from filetasks_mcp.task_store import TaskStore


class FakeClient:
    def __init__(self, tasks=None):
        self.tasks = tasks or []
        self.error: Exception | None = None
        self.queries = 0
        self.gate: asyncio.Event | None = None

    async def query_tasks(self):
        self.queries += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.tasks

    async def resolve_conflict(self, task_id, policy, remember):
        pass

    def push_url(self):
        return "ws://files.test/api/ws"

    def push_headers(self):
        return {}


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def store():
    return TaskStore()


@pytest.fixture
def adapter(fake_client, store, bus):
    conflicts = ConflictCoordinator(fake_client, bus)
    return UpdateChannelAdapter(fake_client, store, conflicts, bus)


class TestPush:
    def test_task_envelope_upserts(self, adapter, store):
        adapter.apply_push({"type": "task", "data": {"id": "t1", "status": "running", "createdAt": 5}})
        adapter.apply_push({"type": "task", "data": {"id": "t1", "copiedSize": 5, "totalSize": 10}})
        task = store.get("t1")
        assert task.status == "running"
        assert task.progress == 50

    def test_server_style_envelope_names(self, adapter, store):
        adapter.apply_push({"type": "taskInfo", "data": {"id": "t1", "status": "pending"}})
        assert "t1" in store
        adapter.apply_push({"type": "taskDeleted", "data": "t1"})
        assert "t1" not in store

    def test_deletion_notice(self, adapter, store):
        adapter.apply_pull([{"id": "t1"}, {"id": "t2"}])
        adapter.apply_push({"type": "task_deleted", "data": "t1"})
        assert [t.id for t in store.list_tasks()] == ["t2"]

    def test_deleting_unknown_task_is_harmless(self, adapter, store):
        adapter.apply_push({"type": "task_deleted", "data": "ghost"})
        assert len(store) == 0

    def test_deletion_retracts_prompt(self, adapter, recorder):
        adapter.apply_push({"type": "task", "data": {
            "id": "t1", "status": "running",
            "conflictInfo": {"needConfirm": True, "srcFile": {"name": "a"}, "dstFile": {"name": "a"}},
        }})
        assert len(recorder.of(ConflictPrompted)) == 1
        adapter.apply_push({"type": "task_deleted", "data": "t1"})
        assert [e.reason for e in recorder.of(ConflictDismissed)] == ["deleted"]

    @pytest.mark.parametrize("envelope", [
        None,
        "task",
        {"type": "task", "data": "not-a-record"},
        {"type": "task", "data": {"status": "running"}},
        {"type": "task_deleted"},
        {"type": "mystery", "data": {"id": "t9"}},
        {"type": "ping"},
    ])
    def test_malformed_envelopes_are_dropped(self, adapter, store, envelope):
        adapter.apply_push(envelope)
        assert len(store) == 0

    def test_push_listener_decodes_frames(self, adapter, store, fake_client, bus):
        listener = PushListener(fake_client, adapter, bus)
        listener.handle_message(json.dumps({"type": "task", "data": {"id": "t1"}}))
        listener.handle_message("{not json")
        listener.handle_message(b'{"type": "task", "data": {"id": "t2"}}')
        assert {t.id for t in store.list_tasks()} == {"t1", "t2"}

    def test_push_frame_with_non_finite_number(self, adapter, store, fake_client, bus):
        listener = PushListener(fake_client, adapter, bus)
        listener.handle_message('{"type": "task", "data": {"id": "t1", "totalSize": 1000, "copiedSize": Infinity}}')
        listener.handle_message('{"type": "task", "data": {"id": "t2", "totalSize": 1, "copiedSize": 1e400}}')
        assert store.get("t1").copied_size == 0
        assert store.get("t1").progress == 0
        assert store.get("t2").progress == 0


class TestPull:
    def test_pull_and_push_last_applied_wins(self, adapter, store):
        adapter.apply_push({"type": "task", "data": {"id": "t1", "status": "running", "copiedFiles": 4}})
        adapter.apply_pull([{"id": "t1", "status": "running", "copiedFiles": 2}])
        assert store.get("t1").copied_files == 2

    def test_non_list_pull_is_ignored(self, adapter, store):
        adapter.apply_pull({"error": "Task is not found"})
        assert len(store) == 0

    def test_finished_transition_published_once(self, adapter, recorder):
        adapter.apply_pull([{"id": "t1", "status": "running", "isCopy": False}])
        adapter.apply_pull([{"id": "t1", "status": "failed", "error": "disk full"}])
        adapter.apply_pull([{"id": "t1", "status": "failed", "error": "disk full"}])

        finished = recorder.of(TaskFinished)
        assert len(finished) == 1
        assert finished[0].status == "failed"
        assert finished[0].is_copy is False
        assert finished[0].error == "disk full"

    def test_already_finished_task_on_first_sight_is_quiet(self, adapter, recorder):
        adapter.apply_pull([{"id": "t1", "status": "completed"}])
        assert recorder.of(TaskFinished) == []

    async def test_refresh_merges_query(self, adapter, fake_client, store):
        fake_client.tasks = [{"id": "t1", "status": "running"}]
        assert await adapter.refresh() is True
        assert "t1" in store

    async def test_refresh_failure_keeps_state(self, adapter, fake_client, store):
        store.merge([{"id": "t1", "status": "running"}])
        fake_client.error = TransportError()
        assert await adapter.refresh() is False
        assert store.get("t1").status == "running"

    async def test_refresh_session_expired(self, adapter, fake_client, recorder):
        fake_client.error = AuthenticationExpired()
        assert await adapter.refresh() is False
        assert len(recorder.of(SessionExpired)) == 1

    async def test_concurrent_refreshes_share_one_query(self, adapter, fake_client, store):
        fake_client.gate = asyncio.Event()
        fake_client.tasks = [{"id": "t1"}]

        first = asyncio.create_task(adapter.refresh())
        second = asyncio.create_task(adapter.refresh())
        await asyncio.sleep(0)
        fake_client.gate.set()

        assert await first is True
        assert await second is True
        assert fake_client.queries == 1


class TestPolling:
    async def test_polling_refreshes_periodically(self, adapter, fake_client):
        loop = PollingLoop(adapter, interval=0.01)
        loop.start()
        assert loop.running
        await asyncio.sleep(0.05)
        await loop.stop()

        assert fake_client.queries >= 2
        assert not loop.running

    async def test_polling_survives_unexpected_errors(self, adapter, fake_client):
        fake_client.error = RuntimeError("boom")
        loop = PollingLoop(adapter, interval=0.01)
        loop.start()
        await asyncio.sleep(0.05)

        assert loop.running
        assert fake_client.queries >= 2
        await loop.stop()

    async def test_zero_interval_disables_polling(self, adapter, fake_client):
        loop = PollingLoop(adapter, interval=0)
        loop.start()
        assert not loop.running
        await loop.stop()


class TestPushListener:
    async def test_reconnects_after_unexpected_error(self, adapter, fake_client, bus, monkeypatch):
        attempts = []

        def broken_connect(url, **kwargs):
            attempts.append(url)
            raise RuntimeError("bad frame")

        monkeypatch.setattr("filetasks_mcp.channels.websockets.connect", broken_connect)
        listener = PushListener(fake_client, adapter, bus, reconnect_delay=0.01)
        listener.start()
        await asyncio.sleep(0.05)

        assert listener.running
        assert len(attempts) >= 2
        assert not listener.connected
        await listener.stop()
        assert not listener.running
