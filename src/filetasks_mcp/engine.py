"""
Engine wiring for the file task MCP server.

Owns every component for one session: created at startup, closed at shutdown.
"""

import asyncio
import logging

import httpx

from .channels import PollingLoop, PushListener, UpdateChannelAdapter
from .client import ApiClient
from .commands import TaskCommands
from .config import Settings
from .conflicts import ConflictCoordinator
from .events import EventBus, SessionExpired
from .task_store import TaskStore
from .transfer_manager import TransferManager

logger = logging.getLogger("filetasks-mcp")


class Engine:
    """Builds the components and runs the update channels."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.bus = EventBus()
        self.client = ApiClient(settings, transport=transport)
        self.store = TaskStore()
        self.conflicts = ConflictCoordinator(self.client, self.bus)
        self.channels = UpdateChannelAdapter(self.client, self.store, self.conflicts, self.bus)
        self.commands = TaskCommands(self.client, self.store, self.conflicts, self.bus)
        self.transfers = TransferManager(self.client, self.bus)
        self.polling = PollingLoop(self.channels, settings.poll_interval)
        self.push = PushListener(self.client, self.channels, self.bus, settings.reconnect_delay)
        self.session_expired = False
        self.bus.subscribe(SessionExpired, self._on_session_expired)

    def _on_session_expired(self, event: SessionExpired) -> None:
        if not self.session_expired:
            logger.warning(f"{event.message} (set FILETASKS_SESSION to a fresh session)")
        self.session_expired = True

    async def start(self) -> None:
        """Load the current tasks and start listening for updates."""
        logger.setLevel(self.settings.log_level)
        await self.channels.refresh()
        self.polling.start()
        if self.settings.push_enabled:
            self.push.start()
        logger.info(f"Engine started against {self.settings.base_url}")

    async def close(self) -> None:
        """Stop the channels, abort uploads and release the HTTP client."""
        await self.polling.stop()
        await self.push.stop()
        await self.channels.close()
        cancelled = self.transfers.close_all()
        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)
        await self.client.close()
        self.conflicts.clear()
        self.store.clear()
        self.bus.clear()
        logger.info("Engine closed")

    async def __aenter__(self) -> "Engine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
