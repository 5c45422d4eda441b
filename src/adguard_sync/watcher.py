"""Filesystem watch on the sync config file, used to re-run after edits."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class _ConfigEventHandler(FileSystemEventHandler):
    def __init__(self, config_path: Path, changed: threading.Event) -> None:
        super().__init__()
        self._config_path = config_path
        self._changed = changed

    def _matches(self, raw_path: object) -> bool:
        if not raw_path:
            return False
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode("utf-8", errors="replace")
        try:
            return Path(str(raw_path)).resolve() == self._config_path
        except OSError:
            return False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if self._matches(event.src_path) or self._matches(getattr(event, "dest_path", "")):
            logger.debug("Config file event: %s", event.event_type)
            self._changed.set()


class ConfigChangeWatcher:
    """Signals when the config file is written, replaced or moved into place."""

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path.expanduser().resolve()
        self.changed = threading.Event()
        self._observer = Observer()
        self._observer.schedule(
            _ConfigEventHandler(self.config_path, self.changed),
            self.config_path.parent.as_posix(),
            recursive=False,
        )

    def start(self) -> None:
        self._observer.start()
        logger.info("Watching %s for changes", self.config_path)

    def stop(self) -> None:
        self._observer.stop()
        self._observer.join(timeout=2.0)

    def wait(self, timeout: float | None, debounce_seconds: float = 0.0) -> bool:
        """Block until a change or the timeout; returns True on change and re-arms.

        Events arriving within ``debounce_seconds`` of the first one are
        folded into it.
        """
        triggered = self.changed.wait(timeout=timeout)
        if triggered:
            if debounce_seconds > 0:
                time.sleep(debounce_seconds)
            self.changed.clear()
        return triggered

    def __enter__(self) -> "ConfigChangeWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
