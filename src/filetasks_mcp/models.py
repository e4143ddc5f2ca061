"""
Data models for the file task MCP server.

Contains dataclasses for server-side copy/move tasks and local upload items.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

# Task statuses reported by the server
PENDING = "pending"
STARTING = "starting"
RUNNING = "running"
SUSPENDED = "suspended"
COMPLETED = "completed"
CANCELLED = "cancelled"
FAILED = "failed"

TASK_STATUSES = (PENDING, STARTING, RUNNING, SUSPENDED, COMPLETED, CANCELLED, FAILED)
TERMINAL_STATUSES = frozenset((COMPLETED, CANCELLED, FAILED))
ACTIVE_STATUSES = frozenset((PENDING, STARTING, RUNNING, SUSPENDED))

# Conflict policies accepted by the server
CONFLICT_POLICIES = ("skip", "rename", "overwrite", "abort")

# Upload item statuses
WAITING = "waiting"
UPLOADING = "uploading"
SUCCESS = "success"
ERROR = "error"
REJECTED = "rejected"

FINISHED_TRANSFER_STATUSES = frozenset((SUCCESS, ERROR, REJECTED))


def percent_of(part: int, whole: int) -> int:
    """
    Whole-number share of part in whole, rounding .5 up, clamped to [0, 100].

    Integer arithmetic only, so arbitrarily large counters cannot overflow.
    """
    if whole <= 0:
        return 0
    return min(100, max(0, (200 * part + whole) // (2 * whole)))


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        # OverflowError: int(float("inf"))
        return default


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


@dataclass
class ConflictFile:
    """One side of a name collision."""

    name: str = ""
    size: int = 0
    modify_time: int = 0
    is_directory: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "ConflictFile":
        if not isinstance(data, dict):
            return cls()
        return cls(
            name=_as_str(data.get("name")),
            size=_as_int(data.get("size")),
            modify_time=_as_int(data.get("modifyTime")),
            is_directory=bool(data.get("isDirectory", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "modifyTime": self.modify_time,
            "isDirectory": self.is_directory,
        }


@dataclass
class ConflictInfo:
    """Embedded in a task while the server waits for a conflict decision."""

    need_confirm: bool = False
    src_file: ConflictFile = field(default_factory=ConflictFile)
    dst_file: ConflictFile = field(default_factory=ConflictFile)
    conflict_policy: str = "ask"

    @classmethod
    def from_dict(cls, data: Any) -> "ConflictInfo | None":
        if not isinstance(data, dict):
            return None
        return cls(
            need_confirm=bool(data.get("needConfirm", False)),
            src_file=ConflictFile.from_dict(data.get("srcFile")),
            dst_file=ConflictFile.from_dict(data.get("dstFile")),
            conflict_policy=_as_str(data.get("conflictPolicy"), "ask"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "needConfirm": self.need_confirm,
            "conflictPolicy": self.conflict_policy,
            "srcFile": self.src_file.to_dict(),
            "dstFile": self.dst_file.to_dict(),
        }


# Wire name -> (attribute, converter)
TASK_FIELDS: dict[str, tuple[str, Any]] = {
    "status": ("status", _as_str),
    "type": ("task_type", lambda v: _as_str(v, "copy")),
    "isCopy": ("is_copy", bool),
    "source": ("source", _as_str),
    "target": ("target", _as_str),
    "files": ("files", lambda v: [str(f) for f in v] if isinstance(v, (list, tuple)) else []),
    "totalFiles": ("total_files", _as_int),
    "copiedFiles": ("copied_files", _as_int),
    "totalSize": ("total_size", _as_int),
    "copiedSize": ("copied_size", _as_int),
    "currentFile": ("current_file", _as_str),
    "currentFileSize": ("current_file_size", _as_int),
    "currentFileCopiedSize": ("current_file_copied_size", _as_int),
    "createdAt": ("created_at", _as_int),
    "startedAt": ("started_at", _as_int),
    "updatedAt": ("updated_at", _as_int),
    "error": ("error", lambda v: None if v in (None, "") else str(v)),
    "conflictInfo": ("conflict_info", ConflictInfo.from_dict),
}


@dataclass
class Task:
    """A server-executed copy or move job as last reported by the server."""

    id: str
    status: str = PENDING  # pending, starting, running, suspended, completed, cancelled, failed
    task_type: str = "copy"  # copy, move
    is_copy: bool = True
    source: str = ""
    target: str = ""
    files: list[str] = field(default_factory=list)
    total_files: int = 0
    copied_files: int = 0
    total_size: int = 0
    copied_size: int = 0
    current_file: str = ""
    current_file_size: int = 0
    current_file_copied_size: int = 0
    created_at: int = 0
    started_at: int = 0
    updated_at: int = 0
    error: str | None = None
    conflict_info: ConflictInfo | None = None
    progress: int = 0
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def needs_decision(self) -> bool:
        return self.conflict_info is not None and self.conflict_info.need_confirm

    def compute_progress(self) -> int:
        """Byte progress when sizes are known, file-count progress otherwise."""
        if self.total_size > 0:
            return percent_of(self.copied_size, self.total_size)
        if self.total_files > 0:
            return percent_of(self.copied_files, self.total_files)
        return 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data["id"] = self.id
        for wire_name, (attr, _) in TASK_FIELDS.items():
            value = getattr(self, attr)
            if wire_name == "conflictInfo":
                value = value.to_dict() if value is not None else None
            elif wire_name == "files":
                value = list(value)
            data[wire_name] = value
        data["progress"] = self.progress
        return data


@dataclass
class TransferItem:
    """A single local file upload attempt."""

    id: str
    path: str
    name: str
    size: int
    params: dict[str, str] = field(default_factory=dict)
    progress: int = 0
    loaded: int = 0
    status: str = WAITING  # waiting, uploading, success, error, rejected
    error_message: str = ""
    error_kind: str | None = None
    speed: float = 0.0
    task: asyncio.Task | None = field(default=None, repr=False)
    last_loaded: int = field(default=0, repr=False)
    last_time: float = field(default=0.0, repr=False)

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()
