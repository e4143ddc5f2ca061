"""
Client-side collection of server copy/move tasks.

The store never invents business fields. It only merges what the server
reports, derives per-task progress, and keeps a presentation order.
"""

import logging
from typing import Any, Iterable

from .models import (
    ACTIVE_STATUSES,
    COMPLETED,
    PENDING,
    RUNNING,
    STARTING,
    SUSPENDED,
    TASK_FIELDS,
    TASK_STATUSES,
    TERMINAL_STATUSES,
    Task,
)

logger = logging.getLogger("filetasks-mcp")

# Presentation buckets: in-flight work first, then queued, then starting, then finished
STATUS_ORDER = {
    RUNNING: 1,
    SUSPENDED: 1,
    PENDING: 2,
    STARTING: 3,
    **{status: 4 for status in TERMINAL_STATUSES},
}

# Statuses ordered by creation time; everything else by last update
_CREATED_ORDER = frozenset((RUNNING, SUSPENDED, PENDING))


def _sort_key(task: Task) -> tuple[int, int]:
    bucket = STATUS_ORDER.get(task.status, len(STATUS_ORDER) + 1)
    if task.status in _CREATED_ORDER:
        return bucket, -task.created_at
    return bucket, -task.updated_at


class TaskStore:
    """
    Canonical list of tasks, kept sorted after every change.

    Only merge() and delete() mutate the collection.
    """

    def __init__(self):
        self._tasks: list[Task] = []
        self._index: dict[str, Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._index

    def get(self, task_id: str) -> Task | None:
        """Get a task by ID."""
        return self._index.get(task_id)

    def list_tasks(self) -> list[Task]:
        """All tasks in presentation order."""
        return list(self._tasks)

    def active_tasks(self) -> list[Task]:
        return [t for t in self._tasks if t.status in ACTIVE_STATUSES]

    def completed_tasks(self) -> list[Task]:
        return [t for t in self._tasks if t.status == COMPLETED]

    def merge(self, incoming: Iterable[Any]) -> list[Task]:
        """
        Reconcile a batch of (possibly partial) task records.

        Fields present in a record replace the stored ones, omitted fields keep
        their previous value. Records without an id are dropped.

        Returns:
            The tasks touched by this batch, in batch order
        """
        touched: dict[str, Task] = {}
        for record in incoming:
            task = self._merge_one(record)
            if task is not None:
                touched[task.id] = task

        # sorted() is stable, so equal keys keep their previous relative order
        self._tasks = sorted(self._tasks, key=_sort_key)
        return list(touched.values())

    def _merge_one(self, record: Any) -> Task | None:
        if not isinstance(record, dict):
            logger.debug(f"Dropping malformed task record: {record!r}")
            return None
        raw_id = record.get("id")
        if raw_id is None or raw_id == "":
            logger.debug("Dropping task record without id")
            return None
        task_id = str(raw_id)

        task = self._index.get(task_id)
        is_new = task is None
        if is_new:
            task = Task(id=task_id)

        for wire_name, value in record.items():
            if wire_name in ("id", "progress"):
                continue
            spec = TASK_FIELDS.get(wire_name)
            if spec is None:
                task.extra[wire_name] = value
                continue
            attr, convert = spec
            try:
                converted = convert(value)
            except (TypeError, ValueError, OverflowError):
                logger.debug(f"Ignoring bad {wire_name} for task {task_id}: {value!r}")
                continue
            if attr == "status" and not self._accept_status(task, converted, is_new):
                continue
            setattr(task, attr, converted)

        task.progress = task.compute_progress()

        if is_new:
            self._tasks.append(task)
            self._index[task_id] = task
        return task

    @staticmethod
    def _accept_status(task: Task, status: str, is_new: bool) -> bool:
        if status not in TASK_STATUSES:
            logger.warning(f"Ignoring unknown status '{status}' for task {task.id}")
            return False
        if not is_new and task.is_terminal and status not in TERMINAL_STATUSES:
            logger.debug(f"Task {task.id} is {task.status}, ignoring late status '{status}'")
            return False
        return True

    def delete(self, task_id: str) -> Task | None:
        """Remove a task; unknown ids are ignored."""
        task = self._index.pop(task_id, None)
        if task is not None:
            self._tasks.remove(task)
        return task

    def clear(self) -> None:
        self._tasks.clear()
        self._index.clear()
