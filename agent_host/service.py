from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi.concurrency import run_in_threadpool

from .config import Settings, get_settings
from .func_host import FuncHost, HostSlot
from .notifier import RefreshNotifier
from .reload import ReloadController
from .server import create_app
from .user_storage import UserStorage

logger = logging.getLogger("agent-host")


class AgentService:
    """
    Owns everything a running agent host needs.

    `start` follows a fixed order: load the agent (fatal on failure), start
    watching, bind the listener, then notify the coordinator once.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.package_path = Path(self.settings.package_path).resolve()
        self.user_storage: Optional[UserStorage] = None
        self.notifier = RefreshNotifier(self.settings.refresh_metadata_api_url)
        self.slot: Optional[HostSlot] = None
        self.reload_controller: Optional[ReloadController] = None
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (differs from settings when 0 was requested)."""
        if self._server is None or not self._server.servers:
            return None
        sockets = self._server.servers[0].sockets
        return sockets[0].getsockname()[1] if sockets else None

    async def start(self) -> None:
        settings = self.settings
        self.user_storage = UserStorage(settings.user_storage_api_url, settings.agent_id)
        self.slot = HostSlot(FuncHost.from_path(self.package_path, self.user_storage))

        if settings.watch:
            self.reload_controller = ReloadController(
                self.package_path,
                self.slot,
                self.user_storage,
                self.notifier,
                ignore=settings.watch_ignore,
            )
            self.reload_controller.start()

        app = create_app(self.slot, settings)
        config = uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_config=None,
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._server.serve())
        while not self._server.started:
            if self._server_task.done():
                await self.close()
                raise RuntimeError(f"Agent host could not listen on {settings.host}:{settings.port}")
            await asyncio.sleep(0.01)

        await run_in_threadpool(self.notifier.notify)

        if not settings.silent_startup:
            logger.info("Agent listening on port %s.", self.port or settings.port)

    async def wait_closed(self) -> None:
        if self._server_task is not None:
            await asyncio.shield(self._server_task)

    async def close(self) -> None:
        """Stop the listener and the watcher. Calling it again is a no-op."""
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except (Exception, SystemExit) as exc:
                logger.warning("HTTP listener stopped with an error: %s", exc)

        if self.reload_controller is not None:
            await run_in_threadpool(self.reload_controller.stop)
        if self.user_storage is not None:
            self.user_storage.close()


async def serve(settings: Optional[Settings] = None) -> AgentService:
    """Start an agent host and return it; call `close()` to tear it down."""
    service = AgentService(settings)
    await service.start()
    return service
