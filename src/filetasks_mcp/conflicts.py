"""
Conflict resolution coordinator.

Watches merged tasks for a pending name-conflict decision, keeps one prompt per
blocked task, and relays the chosen policy to the server.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from .client import ApiClient
from .errors import ApiError, AuthenticationExpired
from .events import (
    ConflictDismissed,
    ConflictPrompted,
    DecisionFailed,
    EventBus,
    SessionExpired,
)
from .models import CONFLICT_POLICIES, ConflictFile, Task

logger = logging.getLogger("filetasks-mcp")


@dataclass
class ConflictPrompt:
    """An open decision prompt; the file snapshots follow the latest merge."""

    task_id: str
    src_file: ConflictFile
    dst_file: ConflictFile
    is_copy: bool = True


class ConflictCoordinator:
    """
    Idle -> AwaitingDecision -> Resolved, tracked per task id.

    A submitted decision dismisses the prompt immediately. The conflict it
    answered is not prompted again; a new conflict, or any conflict after a
    failed submission, opens a fresh prompt.
    """

    def __init__(self, client: ApiClient, bus: EventBus):
        self._client = client
        self._bus = bus
        self._prompts: dict[str, ConflictPrompt] = {}
        # task id -> (src, dst) of the conflict the user already answered
        self._decided: dict[str, tuple[ConflictFile, ConflictFile]] = {}

    def get_prompt(self, task_id: str) -> ConflictPrompt | None:
        return self._prompts.get(task_id)

    def list_prompts(self) -> list[ConflictPrompt]:
        return list(self._prompts.values())

    def observe(self, tasks: Iterable[Task]) -> None:
        """Update prompt state from tasks touched by the latest merge."""
        for task in tasks:
            if task.is_terminal:
                self._decided.pop(task.id, None)
                self._retract(task.id, "terminal")
            elif task.needs_decision:
                self._on_conflict(task)
            else:
                self._decided.pop(task.id, None)
                self._retract(task.id, "resolved")

    def _on_conflict(self, task: Task) -> None:
        info = task.conflict_info
        snapshot = (info.src_file, info.dst_file)

        decided = self._decided.get(task.id)
        if decided is not None:
            if decided == snapshot:
                return
            del self._decided[task.id]

        prompt = self._prompts.get(task.id)
        if prompt is not None:
            prompt.src_file, prompt.dst_file = snapshot
            return

        self._prompts[task.id] = ConflictPrompt(
            task_id=task.id,
            src_file=info.src_file,
            dst_file=info.dst_file,
            is_copy=task.is_copy,
        )
        logger.info(f"Task {task.id} waits for a conflict decision: {info.src_file.name}")
        self._bus.publish(ConflictPrompted(task.id, info.src_file, info.dst_file))

    def _retract(self, task_id: str, reason: str) -> None:
        if self._prompts.pop(task_id, None) is not None:
            logger.info(f"Conflict prompt for task {task_id} closed ({reason})")
            self._bus.publish(ConflictDismissed(task_id, reason))

    def forget(self, task_id: str) -> None:
        """Drop all state for a task that left the store."""
        self._decided.pop(task_id, None)
        self._retract(task_id, "deleted")

    def dismiss(self, task_id: str) -> None:
        """Close a prompt without deciding; the next conflict report reopens it."""
        self._retract(task_id, "dismissed")

    async def submit_decision(self, task_id: str, policy: str, remember: bool = False) -> bool:
        """
        Answer the pending conflict of a task.

        Args:
            task_id: The blocked task
            policy: One of "skip", "rename", "overwrite", "abort"
            remember: Apply the policy to the rest of the job without asking

        Returns:
            True if the server accepted the decision
        """
        if policy not in CONFLICT_POLICIES:
            raise ValueError(
                f"Invalid policy '{policy}'. Must be one of: {', '.join(CONFLICT_POLICIES)}"
            )

        prompt = self._prompts.pop(task_id, None)
        if prompt is None:
            logger.warning(f"No conflict is waiting for a decision on task {task_id}")
            return False

        self._decided[task_id] = (prompt.src_file, prompt.dst_file)
        self._bus.publish(ConflictDismissed(task_id, "decided"))

        try:
            await self._client.resolve_conflict(task_id, policy, remember)
        except AuthenticationExpired as e:
            self._decided.pop(task_id, None)
            self._bus.publish(SessionExpired(e.message))
            return False
        except ApiError as e:
            self._decided.pop(task_id, None)
            logger.error(f"Conflict decision for task {task_id} failed: {e.message}")
            self._bus.publish(DecisionFailed(task_id, policy, e.message))
            return False

        logger.info(f"Conflict on task {task_id} resolved with '{policy}' (remember={remember})")
        return True

    def clear(self) -> None:
        self._prompts.clear()
        self._decided.clear()
