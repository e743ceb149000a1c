from __future__ import annotations

import enum
import logging
import re
import threading
from pathlib import Path
from typing import Optional, Pattern, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .agent_loader import DEFAULT_WATCH_IGNORE, invalidate_agent_module, watch_root_for
from .func_host import FuncHost, HostSlot
from .notifier import RefreshNotifier
from .user_storage import UserStorage

logger = logging.getLogger("agent-host")

# Reading the sources during a reload emits opened/closed events; only content changes count.
RELOAD_EVENT_TYPES = frozenset({"created", "deleted", "modified", "moved"})


class ReloadState(enum.Enum):
    STABLE = "stable"
    RELOADING = "reloading"


class _ChangeHandler(FileSystemEventHandler):
    """Forwards relevant file-system events to the controller."""

    def __init__(self, controller: "ReloadController") -> None:
        self._controller = controller

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in RELOAD_EVENT_TYPES:
            return
        if event.is_directory and event.event_type == "modified":
            return
        paths = [event.src_path]
        if event.event_type == "moved":
            # A file renamed into the agent tree only shows up as the destination.
            paths.insert(0, event.dest_path)
        for path in paths:
            if not path:
                continue
            path = path.decode() if isinstance(path, bytes) else path
            if not self._controller.is_ignored(path):
                self._controller.schedule(path)
                return


class ReloadController:
    """
    Rebuilds the FuncHost when the agent's sources change.

    Events are coalesced onto a single worker thread, so at most one reload
    runs at a time and the last change wins. A failed reload leaves the
    previous host in place.
    """

    def __init__(
        self,
        package_path: Union[str, Path],
        slot: HostSlot,
        user_storage: Optional[UserStorage],
        notifier: RefreshNotifier,
        *,
        ignore: Union[str, Pattern[str]] = DEFAULT_WATCH_IGNORE,
        debounce: float = 0.1,
    ) -> None:
        self.package_path = Path(package_path).resolve()
        self.watch_root = watch_root_for(self.package_path)
        self._slot = slot
        self._user_storage = user_storage
        self._notifier = notifier
        self._ignore = re.compile(ignore) if isinstance(ignore, str) else ignore
        self._debounce = debounce

        self._state = ReloadState.STABLE
        self._reload_lock = threading.Lock()
        self._pending = threading.Event()
        self._stopping = threading.Event()
        self._last_path: Optional[str] = None
        self._observer: Optional[Observer] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def state(self) -> ReloadState:
        return self._state

    @property
    def running(self) -> bool:
        return self._observer is not None

    def is_ignored(self, path: Union[str, Path]) -> bool:
        try:
            rel = Path(path).resolve().relative_to(self.watch_root).as_posix()
        except ValueError:
            return True
        return bool(self._ignore.search(rel))

    def reload(self, changed_path: Union[str, Path, None] = None) -> bool:
        """Rebuild and publish the host. Returns False if the new agent failed to load."""
        with self._reload_lock:
            self._state = ReloadState.RELOADING
            try:
                previous = self._slot.current.metadata()
                invalidate_agent_module(self.package_path, self._ignore)
                try:
                    new_host = FuncHost.from_path(self.package_path, self._user_storage)
                except (Exception, SystemExit):
                    logger.exception(
                        "Failed to reload agent after %s changed; keeping the previous version",
                        changed_path,
                    )
                    return False

                self._slot.publish(new_host)
                if previous != new_host.metadata():
                    self._notifier.notify()
                logger.info('Reloading agent because "%s" changed', changed_path)
                return True
            finally:
                self._state = ReloadState.STABLE

    def schedule(self, changed_path: str) -> None:
        self._last_path = changed_path
        self._pending.set()

    def _run(self) -> None:
        while True:
            self._pending.wait()
            if self._stopping.is_set():
                return
            # Let a burst of events settle before reloading once.
            self._stopping.wait(self._debounce)
            if self._stopping.is_set():
                return
            self._pending.clear()
            try:
                self.reload(self._last_path)
            except BaseException:
                # Keep watching; the next change gets another attempt.
                logger.exception("Reload worker hit an unexpected error")

    def start(self) -> None:
        if self._observer is not None:
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._run, name="agent-host-reload", daemon=True)
        self._worker.start()

        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.watch_root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes...", self.watch_root)

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        worker, self._worker = self._worker, None
        if observer is None and worker is None:
            return
        self._stopping.set()
        self._pending.set()
        if observer is not None:
            observer.stop()
            observer.join()
        if worker is not None:
            worker.join()
