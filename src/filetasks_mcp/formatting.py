"""Human-readable views of tasks and uploads for tool responses."""

from typing import Any

from .models import Task, TransferItem


def format_file_size(size: int | None) -> str:
    if size is None:
        return "-"
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"


def format_speed(bytes_per_second: float) -> str:
    if bytes_per_second < 1024:
        return f"{bytes_per_second:.0f} B/s"
    if bytes_per_second < 1024 * 1024:
        return f"{bytes_per_second / 1024:.1f} KB/s"
    if bytes_per_second < 1024 * 1024 * 1024:
        return f"{bytes_per_second / (1024 * 1024):.1f} MB/s"
    return f"{bytes_per_second / (1024 * 1024 * 1024):.2f} GB/s"


def format_duration(started_at: int, updated_at: int) -> str:
    """Running time between two second timestamps, e.g. '3m 12s'."""
    if not started_at or not updated_at:
        return "0s"
    diff = max(0, updated_at - started_at)
    minutes, seconds = divmod(int(diff), 60)
    if minutes == 0:
        return f"{seconds}s"
    return f"{minutes}m {seconds}s"


def short_path(value: str | None, limit: int = 46) -> str:
    """Shorten long paths by eliding the middle."""
    if not value:
        return "-"
    if len(value) <= limit:
        return value
    keep = (limit - 1) // 2
    return f"{value[:keep]}…{value[-keep:]}"


def task_summary(task: Task, detailed: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {
        "task_id": task.id,
        "operation": "copy" if task.is_copy else "move",
        "status": task.status,
        "progress_percent": task.progress,
        "files": f"{task.copied_files}/{task.total_files}",
        "source": short_path(task.source),
        "target": short_path(task.target),
        "running_time": format_duration(task.started_at, task.updated_at),
    }
    if task.error:
        result["error"] = task.error
    if task.needs_decision:
        result["needs_decision"] = True
    if detailed:
        result.update({
            "source": task.source,
            "target": task.target,
            "file_names": task.files[:8] + (["..."] if len(task.files) > 8 else []),
            "copied_size": format_file_size(task.copied_size),
            "total_size": format_file_size(task.total_size),
            "current_file": task.current_file or None,
            "created_at": task.created_at,
            "started_at": task.started_at,
            "updated_at": task.updated_at,
        })
    return result


def transfer_summary(item: TransferItem) -> dict[str, Any]:
    result: dict[str, Any] = {
        "upload_id": item.id,
        "filename": item.name,
        "size": format_file_size(item.size),
        "status": item.status,
        "progress_percent": item.progress,
    }
    if item.status == "uploading" and item.speed > 0:
        result["speed"] = format_speed(item.speed)
    if item.error_message:
        result["error_message"] = item.error_message
    if item.error_kind:
        result["error_kind"] = item.error_kind
    return result
