"""
BookWeaver — Writer Session Controls
====================================
Pause / resume / stop for a running pipeline, exposed as the progress
callback the controllers invoke before every unit (and on every batch
poll). ``stop()`` makes the next callback raise ``CancelledByCaller``;
``pause()`` blocks the callback until ``resume()`` or ``stop()``.
"""

from __future__ import annotations

import threading
from typing import Optional, Tuple

from bookweaver.errors import CancelledByCaller

COMMANDS = ("pause", "resume", "stop", "status")


class WriterSession:
    def __init__(self):
        self._running = threading.Event()
        self._running.set()
        self._stopped = threading.Event()
        self.current: Optional[Tuple[int, int]] = None

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def pause(self) -> None:
        self._running.clear()
        print("\n=== Writing paused ===")
        print("Type 'resume' to continue writing.")

    def resume(self) -> None:
        self._running.set()
        print("\n=== Writing resumed ===")

    def stop(self) -> None:
        self._stopped.set()
        self._running.set()
        print("\n=== Writing stopped ===")
        print("Progress saved. You can resume later by running the script again.")

    def status(self) -> str:
        if self.stopped:
            state = "stopped"
        elif self.paused:
            state = "paused"
        else:
            state = "writing"
        if self.current:
            return f"{state} (chapter {self.current[0]}, page {self.current[1]})"
        return state

    def handle_command(self, line: str) -> bool:
        """Apply one console command. Returns False for unknown input."""
        command = line.strip().lower()
        if command == "pause":
            self.pause()
        elif command == "resume":
            self.resume()
        elif command == "stop":
            self.stop()
        elif command == "status":
            print(f"Status: {self.status()}")
        else:
            return False
        return True

    def wait_if_paused(self) -> None:
        self._running.wait()
        if self.stopped:
            raise CancelledByCaller()

    def progress_callback(self, chapter: int, page: int) -> None:
        self.current = (chapter, page)
        self.wait_if_paused()

    def poll_callback(self, status: str, elapsed: float) -> None:
        self.wait_if_paused()
