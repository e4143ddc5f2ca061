"""
File task MCP Server - Tool definitions.

This module defines the MCP tools for watching copy/move tasks, answering
file conflicts and uploading local files.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from .client import logger
from .config import Settings
from .engine import Engine
from .events import CommandFailed, DecisionFailed
from .formatting import format_file_size, task_summary, transfer_summary
from .models import CONFLICT_POLICIES


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[Engine]:
    """Run one engine for the lifetime of the server."""
    engine = Engine(Settings.from_env())
    await engine.start()
    try:
        yield engine
    finally:
        await engine.close()


# Initialize the MCP server
mcp = FastMCP("filetasks", lifespan=lifespan)


def _engine(ctx: Context) -> Engine:
    return ctx.request_context.lifespan_context


def _session_note(engine: Engine, result: dict[str, Any]) -> dict[str, Any]:
    if engine.session_expired:
        result["warning"] = "Session expired, set FILETASKS_SESSION to a fresh session"
    return result


@mcp.tool()
async def list_tasks(ctx: Context, active_only: bool = False) -> dict[str, Any]:
    """
    List copy and move tasks, running ones first.

    Args:
        active_only: If True, only include tasks that have not finished

    Returns:
        Dictionary containing the ordered task list and status counts
    """
    engine = _engine(ctx)
    tasks = engine.store.active_tasks() if active_only else engine.store.list_tasks()

    # Count by status
    status_counts: dict[str, int] = {}
    for task in tasks:
        status_counts[task.status] = status_counts.get(task.status, 0) + 1

    return _session_note(engine, {
        "tasks": [task_summary(task) for task in tasks],
        "total_count": len(tasks),
        "active_count": len(engine.store.active_tasks()),
        "status_counts": status_counts,
    })


@mcp.tool()
async def get_task(ctx: Context, task_id: str) -> dict[str, Any]:
    """
    Get full details of one task.

    Args:
        task_id: The task ID shown by list_tasks

    Returns:
        Dictionary with paths, file names, sizes, progress and timestamps
    """
    engine = _engine(ctx)
    task = engine.store.get(task_id)
    if task is None:
        return {
            "error": f"Task '{task_id}' not found",
            "available_tasks": [t.id for t in engine.store.list_tasks()],
        }

    result = task_summary(task, detailed=True)
    prompt = engine.conflicts.get_prompt(task_id)
    if prompt is not None:
        result["conflict"] = {
            "source_file": {
                "name": prompt.src_file.name,
                "size": format_file_size(prompt.src_file.size),
                "modify_time": prompt.src_file.modify_time,
            },
            "target_file": {
                "name": prompt.dst_file.name,
                "size": format_file_size(prompt.dst_file.size),
                "modify_time": prompt.dst_file.modify_time,
            },
            "policies": list(CONFLICT_POLICIES),
        }
    return result


@mcp.tool()
async def refresh_tasks(ctx: Context) -> dict[str, Any]:
    """
    Query the server for the current task list right away.

    Returns:
        Dictionary with whether the refresh succeeded and the task count
    """
    engine = _engine(ctx)
    ok = await engine.channels.refresh()
    return _session_note(engine, {
        "success": ok,
        "total_count": len(engine.store),
        "active_count": len(engine.store.active_tasks()),
    })


async def _task_command(ctx: Context, action: str, task_id: str) -> dict[str, Any]:
    engine = _engine(ctx)
    failures: list[str] = []

    unsubscribe = engine.bus.subscribe(
        CommandFailed,
        lambda event: failures.append(event.message) if event.task_id == task_id else None,
    )
    try:
        ok = await getattr(engine.commands, action)(task_id)
    finally:
        unsubscribe()

    if ok:
        return {
            "success": True,
            "message": f"Task '{task_id}' {action} requested. The new status appears with the next update.",
        }
    return _session_note(engine, {
        "success": False,
        "error": failures[-1] if failures else f"Failed to {action} task '{task_id}'",
    })


@mcp.tool()
async def suspend_task(ctx: Context, task_id: str) -> dict[str, Any]:
    """Pause a running task."""
    return await _task_command(ctx, "suspend", task_id)


@mcp.tool()
async def resume_task(ctx: Context, task_id: str) -> dict[str, Any]:
    """Resume a suspended task."""
    return await _task_command(ctx, "resume", task_id)


@mcp.tool()
async def cancel_task(ctx: Context, task_id: str) -> dict[str, Any]:
    """Cancel a task that has not finished yet."""
    return await _task_command(ctx, "cancel", task_id)


@mcp.tool()
async def delete_task(ctx: Context, task_id: str) -> dict[str, Any]:
    """
    Remove a completed, failed or cancelled task from the list.

    Args:
        task_id: The task to delete

    Returns:
        Dictionary indicating success or failure
    """
    result = await _task_command(ctx, "delete", task_id)
    if result["success"]:
        result["message"] = f"Task '{task_id}' deleted"
    return result


@mcp.tool()
async def list_conflicts(ctx: Context) -> dict[str, Any]:
    """
    List tasks blocked on a file name conflict.

    Returns:
        Dictionary with one entry per blocked task, showing both files
    """
    engine = _engine(ctx)
    conflicts = []
    for prompt in engine.conflicts.list_prompts():
        conflicts.append({
            "task_id": prompt.task_id,
            "operation": "copy" if prompt.is_copy else "move",
            "source_file": prompt.src_file.name,
            "source_size": format_file_size(prompt.src_file.size),
            "source_modify_time": prompt.src_file.modify_time,
            "target_file": prompt.dst_file.name,
            "target_size": format_file_size(prompt.dst_file.size),
            "target_modify_time": prompt.dst_file.modify_time,
        })
    return {
        "conflicts": conflicts,
        "total_count": len(conflicts),
        "policies": list(CONFLICT_POLICIES),
    }


@mcp.tool()
async def resolve_conflict(
    ctx: Context,
    task_id: str,
    policy: str,
    remember: bool = False,
) -> dict[str, Any]:
    """
    Answer a file name conflict of a blocked task.

    Args:
        task_id: The blocked task (see list_conflicts)
        policy: "skip", "rename", "overwrite" or "abort"
        remember: Apply the same policy to later conflicts of this task

    Returns:
        Dictionary indicating success or failure
    """
    if policy not in CONFLICT_POLICIES:
        return {
            "error": f"Invalid policy: {policy}. Must be one of: {', '.join(CONFLICT_POLICIES)}",
        }

    engine = _engine(ctx)
    if engine.conflicts.get_prompt(task_id) is None:
        return {"success": False, "error": f"Task '{task_id}' is not waiting for a decision"}

    failures: list[str] = []

    unsubscribe = engine.bus.subscribe(
        DecisionFailed,
        lambda event: failures.append(event.message) if event.task_id == task_id else None,
    )
    try:
        ok = await engine.conflicts.submit_decision(task_id, policy, remember)
    finally:
        unsubscribe()

    if ok:
        return {"success": True, "message": f"Conflict on task '{task_id}' answered with '{policy}'"}
    return _session_note(engine, {
        "success": False,
        "error": failures[-1] if failures else "Failed to submit the decision",
    })


@mcp.tool()
async def upload_files(
    ctx: Context,
    local_paths: list[str],
    remote_path: str = "/",
) -> dict[str, Any]:
    """
    Upload local files to a folder on the server.

    Uploads run in the background; files above the server's size limit are
    rejected without being sent.

    Args:
        local_paths: Local paths of the files to upload
        remote_path: Destination folder on the server (defaults to root "/")

    Returns:
        Dictionary with one entry per file, including its upload_id
    """
    engine = _engine(ctx)
    try:
        items = await engine.transfers.enqueue(
            local_paths,
            {"parentId": "-1", "parentPath": remote_path},
        )
    except ValueError as e:
        return {"error": str(e)}

    return {
        "uploads": [transfer_summary(item) for item in items],
        "message": "Uploads started. Use list_uploads to check progress.",
    }


@mcp.tool()
async def upload_folder(
    ctx: Context,
    local_path: str,
    remote_path: str = "/",
) -> dict[str, Any]:
    """
    Upload an entire local folder, keeping its directory structure.

    Args:
        local_path: Local path to the folder to upload
        remote_path: Destination folder on the server (defaults to root "/")

    Returns:
        Dictionary with file counts and the upload entries
    """
    engine = _engine(ctx)
    try:
        items = await engine.transfers.enqueue_folder(
            local_path,
            {"parentId": "-1", "parentPath": remote_path},
        )
    except ValueError as e:
        return {"error": str(e)}

    rejected = [item for item in items if item.status == "rejected"]
    return {
        "total_files": len(items),
        "rejected_files": len(rejected),
        "total_bytes": sum(item.size for item in items),
        "uploads": [transfer_summary(item) for item in items],
        "message": "Folder upload started. Use list_uploads to check progress.",
    }


@mcp.tool()
async def list_uploads(ctx: Context) -> dict[str, Any]:
    """
    List all active and recent uploads with their status.

    Returns:
        Dictionary containing the uploads and summary statistics
    """
    engine = _engine(ctx)
    items = engine.transfers.list_items()

    # Count by status
    status_counts: dict[str, int] = {}
    for item in items:
        status_counts[item.status] = status_counts.get(item.status, 0) + 1

    return {
        "uploads": [transfer_summary(item) for item in items],
        "total_count": len(items),
        "status_counts": status_counts,
    }


@mcp.tool()
async def cancel_upload(ctx: Context, upload_id: str) -> dict[str, Any]:
    """
    Cancel an upload and remove it from the list.

    Args:
        upload_id: The upload ID to cancel

    Returns:
        Dictionary indicating success or failure
    """
    engine = _engine(ctx)
    if engine.transfers.cancel(upload_id):
        return {
            "success": True,
            "message": f"Upload '{upload_id}' has been cancelled",
        }
    return {
        "success": False,
        "error": f"Upload '{upload_id}' not found",
    }


@mcp.tool()
async def retry_upload(ctx: Context, upload_id: str) -> dict[str, Any]:
    """
    Send a failed upload again.

    Args:
        upload_id: The failed upload to retry

    Returns:
        Dictionary with the upload's new status
    """
    engine = _engine(ctx)
    try:
        item = engine.transfers.retry(upload_id)
    except ValueError as e:
        return {"success": False, "error": str(e)}
    return {"success": True, **transfer_summary(item)}


@mcp.tool()
async def clear_uploads(ctx: Context) -> dict[str, Any]:
    """
    Remove finished, failed and rejected uploads from the list.

    Returns:
        Dictionary with the number of removed entries
    """
    engine = _engine(ctx)
    removed = engine.transfers.clear_finished()
    logger.info(f"Cleared {removed} finished uploads")
    return {"removed": removed, "remaining": len(engine.transfers.list_items())}
