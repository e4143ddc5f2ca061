"""
Typed notifications exchanged between the engine components.

Consumers subscribe to an event class instead of a string name, and publishers
never see a subscriber's failure.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, TypeVar

from .models import ConflictFile, TransferItem

logger = logging.getLogger("filetasks-mcp")


@dataclass(frozen=True)
class Event:
    """Base class for all engine events."""


@dataclass(frozen=True)
class UploadAdded(Event):
    item: TransferItem


@dataclass(frozen=True)
class UploadSucceeded(Event):
    """Consumed by the file listing to refresh the destination folder."""

    item: TransferItem


@dataclass(frozen=True)
class UploadFailed(Event):
    item: TransferItem
    kind: str
    message: str


@dataclass(frozen=True)
class ConflictPrompted(Event):
    task_id: str
    src_file: ConflictFile
    dst_file: ConflictFile


@dataclass(frozen=True)
class ConflictDismissed(Event):
    task_id: str
    reason: str  # decided, resolved, terminal, deleted


@dataclass(frozen=True)
class DecisionFailed(Event):
    task_id: str
    policy: str
    message: str


@dataclass(frozen=True)
class TaskFinished(Event):
    task_id: str
    status: str
    is_copy: bool
    error: str | None = None


@dataclass(frozen=True)
class CommandFailed(Event):
    task_id: str
    action: str
    message: str


@dataclass(frozen=True)
class SessionExpired(Event):
    message: str


E = TypeVar("E", bound=Event)


class EventBus:
    """Synchronous publish/subscribe keyed by event class."""

    def __init__(self):
        self._handlers: dict[type, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it again."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        for event_type in type(event).__mro__:
            for handler in list(self._handlers.get(event_type, ())):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Event handler for {type(event).__name__} failed: {e}")

    def clear(self) -> None:
        self._handlers.clear()
