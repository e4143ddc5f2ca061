"""
Update channels feeding the task store.

Two sources report the server's current task state: the task query (pull)
and the WebSocket push stream. Both end up in the same merge.
"""

import asyncio
import json
import logging
from typing import Any, Iterable

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from .client import ApiClient
from .conflicts import ConflictCoordinator
from .errors import ApiError, AuthenticationExpired
from .events import EventBus, SessionExpired, TaskFinished
from .task_store import TaskStore

logger = logging.getLogger("filetasks-mcp")

UPSERT_TYPES = ("task", "taskInfo")
DELETE_TYPES = ("task_deleted", "taskDeleted")
KEEPALIVE_TYPES = ("ping", "pong")


class UpdateChannelAdapter:
    """
    Routes pulled task lists and pushed envelopes into the store.

    The server is the single source of truth, so the last applied update wins
    and the two channels are not sequenced against each other.
    """

    def __init__(
        self,
        client: ApiClient,
        store: TaskStore,
        conflicts: ConflictCoordinator,
        bus: EventBus,
    ):
        self._client = client
        self._store = store
        self._conflicts = conflicts
        self._bus = bus
        self._refreshing: asyncio.Task | None = None

    def _apply(self, records: Iterable[Any]) -> None:
        previous = {}
        for record in records:
            if isinstance(record, dict) and record.get("id") not in (None, ""):
                task = self._store.get(str(record["id"]))
                previous[str(record["id"])] = task.status if task is not None else None

        touched = self._store.merge(records)
        self._conflicts.observe(touched)

        for task in touched:
            before = previous.get(task.id)
            if task.is_terminal and before != task.status and before is not None:
                self._bus.publish(TaskFinished(task.id, task.status, task.is_copy, task.error))

    def apply_pull(self, records: Any) -> None:
        """Merge a task list returned by the task query."""
        if not isinstance(records, list):
            logger.warning(f"Ignoring malformed task list: {type(records).__name__}")
            return
        self._apply(records)

    def apply_push(self, envelope: Any) -> None:
        """Route one push envelope to merge or delete."""
        if not isinstance(envelope, dict):
            logger.debug(f"Dropping malformed push message: {envelope!r}")
            return

        kind = envelope.get("type")
        data = envelope.get("data")
        if kind in UPSERT_TYPES:
            if isinstance(data, dict):
                self._apply([data])
            else:
                logger.debug("Dropping task push without a record")
        elif kind in DELETE_TYPES:
            if data in (None, ""):
                logger.debug("Dropping delete push without an id")
                return
            task_id = str(data)
            self._store.delete(task_id)
            self._conflicts.forget(task_id)
        elif kind in KEEPALIVE_TYPES:
            return
        else:
            logger.debug(f"Dropping push message of unknown type '{kind}'")

    async def refresh(self) -> bool:
        """
        Pull the current task list once.

        A refresh requested while another is running waits for that one
        instead of issuing a second query.
        """
        if self._refreshing is not None and not self._refreshing.done():
            return await asyncio.shield(self._refreshing)
        self._refreshing = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._refreshing)

    async def _refresh(self) -> bool:
        try:
            records = await self._client.query_tasks()
        except AuthenticationExpired as e:
            self._bus.publish(SessionExpired(e.message))
            return False
        except ApiError as e:
            logger.warning(f"Task query failed: {e.message}")
            return False
        self.apply_pull(records)
        return True

    async def close(self) -> None:
        if self._refreshing is not None and not self._refreshing.done():
            self._refreshing.cancel()
            try:
                await self._refreshing
            except asyncio.CancelledError:
                pass
        self._refreshing = None


class PollingLoop:
    """Periodic pull of the task list."""

    def __init__(self, adapter: UpdateChannelAdapter, interval: float):
        self._adapter = adapter
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._adapter.refresh()
            except Exception:
                logger.exception("Task poll failed")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class PushListener:
    """
    Keeps a WebSocket connection to the task push channel open.

    Reconnects after a fixed delay; stops for good when the session expired.
    """

    PING_INTERVAL = 30.0

    def __init__(
        self,
        client: ApiClient,
        adapter: UpdateChannelAdapter,
        bus: EventBus,
        reconnect_delay: float = 3.0,
    ):
        self._client = client
        self._adapter = adapter
        self._bus = bus
        self._reconnect_delay = reconnect_delay
        self._task: asyncio.Task | None = None
        self.connected = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def handle_message(self, raw: str | bytes) -> None:
        """Decode one text frame and hand it to the adapter."""
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Dropping non-JSON push frame")
            return
        self._adapter.apply_push(envelope)

    async def _run(self) -> None:
        url = self._client.push_url()
        while True:
            try:
                async with websockets.connect(
                    url,
                    additional_headers=self._client.push_headers(),
                    ping_interval=None,
                ) as ws:
                    self.connected = True
                    logger.info(f"Push channel connected: {url}")
                    # Catch up on anything missed while disconnected
                    await self._adapter.refresh()
                    keepalive = asyncio.create_task(self._keepalive(ws))
                    try:
                        async for raw in ws:
                            self.handle_message(raw)
                    finally:
                        keepalive.cancel()
                        # Collects the CancelledError or a send failure on the closed socket
                        await asyncio.gather(keepalive, return_exceptions=True)
            except InvalidStatus as e:
                if e.response.status_code == 401:
                    err = AuthenticationExpired()
                    logger.warning("Push channel rejected: session expired")
                    self._bus.publish(SessionExpired(err.message))
                    return
                logger.warning(f"Push channel rejected with status {e.response.status_code}")
            except InvalidHandshake as e:
                logger.warning(f"Push channel handshake failed: {e}")
            except (ConnectionClosed, OSError) as e:
                logger.warning(f"Push channel disconnected: {e}")
            except Exception:
                logger.exception("Push channel failed")
            finally:
                self.connected = False

            await asyncio.sleep(self._reconnect_delay)

    async def _keepalive(self, ws) -> None:
        while True:
            await asyncio.sleep(self.PING_INTERVAL)
            await ws.send(json.dumps({"type": "ping"}))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
