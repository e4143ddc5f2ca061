"""
Transfer manager for local file uploads.

Handles concurrent background uploads with progress and speed tracking.
"""

import asyncio
import time
import uuid
from pathlib import Path
from typing import Callable

from .client import ApiClient, logger
from .errors import BUSINESS, SIZE_LIMIT, ApiError, AuthenticationExpired
from .events import EventBus, SessionExpired, UploadAdded, UploadFailed, UploadSucceeded
from .formatting import format_file_size
from .models import (
    ERROR,
    FINISHED_TRANSFER_STATUSES,
    REJECTED,
    SUCCESS,
    UPLOADING,
    TransferItem,
    percent_of,
)

# Minimum seconds between two speed samples
SPEED_SAMPLE_INTERVAL = 0.5


class TransferManager:
    """
    Manages background uploads from the local system to the file server.

    Every accepted file starts uploading immediately; each item owns the
    asyncio.Task running its request, which is also its cancellation handle.
    """

    def __init__(
        self,
        client: ApiClient,
        bus: EventBus,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._bus = bus
        self._clock = clock
        self._items: dict[str, TransferItem] = {}
        self._max_upload_size: int | None = None

    @property
    def max_upload_size(self) -> int | None:
        return self._max_upload_size

    def get_item(self, item_id: str) -> TransferItem | None:
        """Get an upload item by ID."""
        return self._items.get(item_id)

    def list_items(self) -> list[TransferItem]:
        """List all upload items in selection order."""
        return list(self._items.values())

    async def ensure_config(self) -> int | None:
        """Fetch the server's upload size limit once and cache it."""
        if self._max_upload_size is not None:
            return self._max_upload_size
        try:
            config = await self._client.get_config()
        except AuthenticationExpired as e:
            self._bus.publish(SessionExpired(e.message))
            return None
        except ApiError as e:
            logger.warning(f"Failed to fetch upload config: {e.message}")
            return None

        try:
            max_size = int(config.get("maxUploadSize") or 0)
        except (TypeError, ValueError):
            max_size = 0
        if max_size > 0:
            self._max_upload_size = max_size
            logger.info(f"Maximum upload size is {format_file_size(max_size)}")
        return self._max_upload_size

    async def enqueue(
        self,
        local_paths: list[str],
        params: dict[str, str] | None = None,
    ) -> list[TransferItem]:
        """
        Queue files for upload and start every accepted one.

        Args:
            local_paths: Local paths of the files to upload
            params: Form fields sent with each file (e.g. parentPath)

        Returns:
            The created items, rejected ones included
        """
        files = []
        for local_path in local_paths:
            local_file = Path(local_path)
            if not local_file.exists():
                raise ValueError(f"File not found: {local_path}")
            if not local_file.is_file():
                raise ValueError(f"Not a file: {local_path}")
            files.append((local_file, dict(params or {})))

        await self.ensure_config()
        return [self._add(local_file, file_params) for local_file, file_params in files]

    async def enqueue_folder(
        self,
        local_path: str,
        params: dict[str, str] | None = None,
    ) -> list[TransferItem]:
        """
        Queue every file below a folder, keeping its directory structure.

        The folder's relative directories are appended to the parentPath
        parameter of each file.
        """
        local_folder = Path(local_path)
        if not local_folder.exists():
            raise ValueError(f"Folder not found: {local_path}")
        if not local_folder.is_dir():
            raise ValueError(f"Not a folder: {local_path}")

        base_params = dict(params or {})
        parent = base_params.get("parentPath", "/").rstrip("/")
        remote_base = f"{parent}/{local_folder.name}"

        files = []
        for file_path in sorted(local_folder.rglob("*")):
            if not file_path.is_file():
                continue
            relative_dir = file_path.relative_to(local_folder).parent
            file_params = dict(base_params)
            file_params["isFolder"] = "true"
            if relative_dir != Path("."):
                file_params["parentPath"] = f"{remote_base}/{relative_dir.as_posix()}"
            else:
                file_params["parentPath"] = remote_base
            files.append((file_path, file_params))

        await self.ensure_config()
        items = [self._add(file_path, file_params) for file_path, file_params in files]
        logger.info(f"Queued folder {local_folder.name}: {len(items)} files -> {remote_base}")
        return items

    def _add(self, local_file: Path, params: dict[str, str]) -> TransferItem:
        size = local_file.stat().st_size
        item = TransferItem(
            id=f"upload-{str(uuid.uuid4())[:8]}",
            path=str(local_file),
            name=local_file.name,
            size=size,
            params=params,
        )
        self._items[item.id] = item

        limit = self._max_upload_size
        if limit is not None and size > limit:
            item.status = REJECTED
            item.error_kind = SIZE_LIMIT
            item.error_message = (
                f"File size exceeds the limit, maximum allowed {format_file_size(limit)}"
            )
            logger.info(f"Rejected {item.name}: {format_file_size(size)} > {format_file_size(limit)}")
            return item

        self._bus.publish(UploadAdded(item))
        self.dispatch(item)
        return item

    def dispatch(self, item: TransferItem) -> None:
        """Start the upload request for an item."""
        if item.status == REJECTED:
            raise ValueError(f"Upload '{item.id}' was rejected and cannot be sent")
        if item.in_flight:
            return

        item.status = UPLOADING
        item.error_message = ""
        item.error_kind = None
        item.speed = 0.0
        item.last_loaded = 0
        item.last_time = self._clock()
        # Handle is attached before the request can start
        item.task = asyncio.create_task(self._upload(item))
        logger.info(f"Started upload {item.id}: {item.name} ({format_file_size(item.size)})")

    def _owns(self, item: TransferItem) -> bool:
        return self._items.get(item.id) is item

    def on_progress(self, item: TransferItem, loaded: int, total: int) -> None:
        """Record a progress event, sampling speed at most every half second."""
        if total <= 0 or not self._owns(item) or item.status != UPLOADING:
            return

        percent = percent_of(loaded, total)
        item.progress = max(item.progress, percent)
        item.loaded = loaded

        now = self._clock()
        elapsed = now - item.last_time
        if elapsed >= SPEED_SAMPLE_INTERVAL:
            item.speed = (loaded - item.last_loaded) / elapsed
            item.last_loaded = loaded
            item.last_time = now

    async def _upload(self, item: TransferItem) -> None:
        """Background coroutine that performs the actual upload."""
        try:
            await self._client.upload(
                item.path,
                item.params,
                filename=item.name,
                progress_callback=lambda loaded, total: self.on_progress(item, loaded, total),
            )
        except ApiError as e:
            self._fail(item, e)
            return
        except OSError as e:
            self._fail(item, ApiError(f"Cannot read file: {e.strerror or e}"))
            return
        except Exception as e:
            logger.exception(f"Upload {item.id} crashed")
            self._fail(item, ApiError(f"Upload failed: {e}"))
            return

        if not self._owns(item):
            return
        item.task = None
        item.status = SUCCESS
        item.progress = 100
        item.loaded = item.size
        logger.info(f"Upload {item.id} completed: {item.name}")
        self._bus.publish(UploadSucceeded(item))

    def _fail(self, item: TransferItem, error: ApiError) -> None:
        if not self._owns(item):
            return
        item.task = None
        item.status = ERROR
        item.error_kind = error.kind

        if isinstance(error, AuthenticationExpired):
            # Session expiry is handled globally, not shown on the item
            item.error_message = ""
            self._bus.publish(SessionExpired(error.message))
            return

        item.error_message = error.message or "Upload failed"
        if error.kind == BUSINESS:
            logger.warning(f"Upload {item.id} refused: {item.error_message}")
        else:
            logger.error(f"Upload {item.id} failed: {item.error_message}")
        self._bus.publish(UploadFailed(item, error.kind, item.error_message))

    def cancel(self, item_id: str) -> bool:
        """Abort an upload if it is running and remove it from the list."""
        item = self._items.pop(item_id, None)
        if item is None:
            return False
        if item.in_flight:
            item.task.cancel()
            logger.info(f"Upload {item_id} cancelled")
        item.task = None
        return True

    def retry(self, item_id: str) -> TransferItem:
        """Send a failed upload again."""
        item = self._items.get(item_id)
        if item is None:
            raise ValueError(f"Upload '{item_id}' not found")
        if item.status != ERROR:
            raise ValueError(f"Upload '{item_id}' cannot be retried (status: {item.status})")
        item.progress = 0
        item.loaded = 0
        self.dispatch(item)
        return item

    def clear_finished(self) -> int:
        """Remove succeeded, failed and rejected items from the list."""
        to_remove = [
            iid for iid, item in self._items.items()
            if item.status in FINISHED_TRANSFER_STATUSES
        ]
        for iid in to_remove:
            del self._items[iid]
        return len(to_remove)

    def close_all(self) -> list[asyncio.Task]:
        """Abort every running upload and empty the list.

        Returns the cancelled tasks so the caller can wait for them to unwind.
        """
        cancelled = [item.task for item in self._items.values() if item.in_flight]
        for item_id in list(self._items):
            self.cancel(item_id)
        return cancelled

    async def join(self) -> None:
        """Wait until every running upload has settled."""
        running = [item.task for item in self._items.values() if item.in_flight]
        if running:
            await asyncio.gather(*running, return_exceptions=True)
