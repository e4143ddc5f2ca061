"""
HTTP client for the file server API and logging configuration.

Maps every response onto the error taxonomy in errors.py so callers only
deal with ApiError subclasses.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Callable

import httpx

from .config import Settings
from .errors import (
    ApiError,
    AuthenticationExpired,
    BusinessError,
    PayloadTooLargeError,
    ServerError,
    TransportError,
)

# Configure logging to stderr (critical for MCP servers using stdio transport)
# stdout is reserved for JSON-RPC messages, so all logging must go to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("filetasks-mcp")

API_PREFIX = "/api"

ProgressCallback = Callable[[int, int], None]


class ProgressReader:
    """
    File wrapper that reports how many bytes the multipart encoder has read.

    httpx pulls the body through read(), so the count tracks what has been
    handed to the transport.
    """

    def __init__(self, fileobj, total: int, callback: ProgressCallback | None = None):
        self._file = fileobj
        self._total = total
        self._callback = callback
        self._loaded = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._file.read(size)
        if chunk:
            self._loaded += len(chunk)
            if self._callback:
                self._callback(self._loaded, self._total)
        return chunk

    def seek(self, offset: int, whence: int = 0) -> int:
        position = self._file.seek(offset, whence)
        if whence == 0:
            self._loaded = position
        return position

    def tell(self) -> int:
        return self._file.tell()

    def fileno(self) -> int:
        return self._file.fileno()


def _error_message(data: Any, default: str) -> str:
    if isinstance(data, dict):
        for key in ("message", "error"):
            value = data.get(key)
            if value:
                return str(value)
    return default


class ApiClient:
    """
    Thin async wrapper around the file server's task, upload and config API.

    A session cookie (FILETASKS_SESSION) authenticates every request.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def _cookies(self) -> dict[str, str]:
        if self._settings.session:
            return {self._settings.cookie_name: self._settings.session}
        return {}

    def _new_client(self, timeout: float | None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=timeout,
            cookies=self._cookies(),
            transport=self._transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = self._new_client(self._settings.timeout)
        return self._client

    @staticmethod
    def _check(response: httpx.Response) -> Any:
        """Decode a response, raising the matching ApiError on failure."""
        try:
            data = response.json()
        except ValueError:
            data = None

        status = response.status_code
        if status == 401:
            raise AuthenticationExpired()
        if status == 413:
            raise PayloadTooLargeError(_error_message(data, "File size exceeds the server limit"))
        # code/result == false is a business failure regardless of HTTP status
        if isinstance(data, dict) and (data.get("code") is False or data.get("result") is False):
            raise BusinessError(_error_message(data, "Request failed"), status)
        if status >= 400:
            raise ServerError(_error_message(data, f"Request failed with status {status}"), status)
        return data

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> Any:
        """
        Make an authenticated request to the file server API.

        Args:
            method: HTTP method
            path: API path below /api (e.g., "/task/query")
            params: Query string parameters
            json: JSON body

        Returns:
            The decoded JSON body, or None for an empty body

        Raises:
            ApiError: Any transport, status or business failure
        """
        client = await self._get_client()
        logger.debug(f"{method} {path} params={list((params or {}).keys())}")
        try:
            response = await client.request(method, f"{API_PREFIX}{path}", params=params, json=json)
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransportError() from e
        return self._check(response)

    async def query_tasks(self) -> list[dict[str, Any]]:
        """Fetch every task visible to the current user."""
        data = await self.request("GET", "/task/query")
        if not isinstance(data, list):
            raise ServerError("Unexpected task query response")
        return data

    async def suspend_task(self, task_id: str) -> None:
        await self.request("POST", "/task/suspend", params={"id": task_id})

    async def resume_task(self, task_id: str) -> None:
        await self.request("POST", "/task/resume", params={"id": task_id})

    async def cancel_task(self, task_id: str) -> None:
        await self.request("POST", "/task/cancel", params={"id": task_id})

    async def delete_task(self, task_id: str) -> None:
        await self.request("DELETE", "/task/delete", params={"id": task_id})

    async def resolve_conflict(self, task_id: str, policy: str, remember: bool) -> None:
        """Submit the user's decision for a pending name conflict."""
        await self.request(
            "POST",
            "/file/resolve-conflict",
            json={"taskId": task_id, "policy": policy, "remember": remember},
        )

    async def get_config(self) -> dict[str, Any]:
        data = await self.request("GET", "/config")
        return data if isinstance(data, dict) else {}

    async def upload(
        self,
        local_path: str | Path,
        params: dict[str, str] | None = None,
        filename: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> Any:
        """
        Upload a file using POST multipart/form-data.

        Args:
            local_path: Local path to the file
            params: Extra form fields (destination path, folder flag, ...)
            filename: Override filename (defaults to local filename)
            progress_callback: Optional callback(loaded_bytes, total_bytes)

        Returns:
            The decoded upload response
        """
        local_file = Path(local_path)
        if filename is None:
            filename = local_file.name
        file_size = local_file.stat().st_size

        form = {"totalSize": str(file_size)}
        form.update({k: str(v) for k, v in (params or {}).items()})

        # Uploads can run for a long time, so no timeout
        async with self._new_client(None) as client:
            with open(local_file, "rb") as f:
                reader = ProgressReader(f, file_size, progress_callback)
                files = {"file": (filename, reader, "application/octet-stream")}
                try:
                    response = await client.post(f"{API_PREFIX}/file/upload", data=form, files=files)
                except httpx.RequestError as e:
                    logger.warning(f"Upload of {filename} failed: {e}")
                    raise TransportError() from e

        return self._check(response)

    def push_url(self) -> str:
        """WebSocket URL of the task push channel."""
        base = self._settings.base_url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}{API_PREFIX}/ws"

    def push_headers(self) -> dict[str, str]:
        if self._settings.session:
            return {"Cookie": f"{self._settings.cookie_name}={self._settings.session}"}
        return {}

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


__all__ = ["ApiClient", "ApiError", "ProgressReader", "logger"]
