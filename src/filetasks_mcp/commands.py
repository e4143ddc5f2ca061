"""Suspend, resume, cancel and delete requests for server tasks."""

import logging

from .client import ApiClient
from .conflicts import ConflictCoordinator
from .errors import ApiError, AuthenticationExpired
from .events import CommandFailed, EventBus, SessionExpired
from .task_store import TaskStore

logger = logging.getLogger("filetasks-mcp")


class TaskCommands:
    """
    Sends task commands to the server.

    Status changes are never applied locally; they arrive with the next
    update from the server. Only a confirmed delete touches the store.
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

    async def _send(self, action: str, task_id: str) -> bool:
        method = getattr(self._client, f"{action}_task")
        try:
            await method(task_id)
        except AuthenticationExpired as e:
            self._bus.publish(SessionExpired(e.message))
            return False
        except ApiError as e:
            logger.error(f"Failed to {action} task {task_id}: {e.message}")
            self._bus.publish(CommandFailed(task_id, action, e.message))
            return False
        logger.info(f"Requested {action} of task {task_id}")
        return True

    async def suspend(self, task_id: str) -> bool:
        return await self._send("suspend", task_id)

    async def resume(self, task_id: str) -> bool:
        return await self._send("resume", task_id)

    async def cancel(self, task_id: str) -> bool:
        return await self._send("cancel", task_id)

    async def delete(self, task_id: str) -> bool:
        """Delete a finished task on the server, then drop it locally."""
        task = self._store.get(task_id)
        if task is not None and not task.is_terminal:
            message = f"Only completed, failed or cancelled tasks can be deleted (status: {task.status})"
            self._bus.publish(CommandFailed(task_id, "delete", message))
            return False

        if not await self._send("delete", task_id):
            return False
        self._store.delete(task_id)
        self._conflicts.forget(task_id)
        return True
