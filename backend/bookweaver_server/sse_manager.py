"""
BookWeaver — Server-Sent Events Manager
=======================================
Publishes job progress from background writer threads to connected
clients. Each client of GET /jobs/{id}/progress gets its own queue.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import AsyncIterator

TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class SSEManager:
    """
    In-memory pub/sub broker.
    Writer threads PUSH events via ``publish_threadsafe()``;
    clients PULL them via ``subscribe()``.
    """

    def __init__(self, queue_size: int = 100):
        # job_id → one asyncio.Queue per connected client
        self._queues: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self.queue_size = queue_size

    async def subscribe(self, job_id: str) -> AsyncIterator[dict]:
        """Yield events for one job until it reaches a terminal status."""
        q: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queues[job_id].append(q)
        try:
            while True:
                event = await q.get()
                yield event
                if event.get("status") in TERMINAL_STATUSES:
                    break
        finally:
            self._queues[job_id].remove(q)

    async def publish(self, job_id: str, event: dict):
        for q in list(self._queues.get(job_id, [])):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                # Slow client: drop the event, it gets the next snapshot
                print(f"[SSE] ⚠️ Dropped event for slow client of job {job_id}")

    def publish_threadsafe(self, job_id: str, event: dict, loop: asyncio.AbstractEventLoop | None):
        """Publish from a worker thread onto the server's event loop."""
        if loop and loop.is_running():
            asyncio.run_coroutine_threadsafe(self.publish(job_id, event), loop)


# Global singleton shared across the FastAPI app
sse_manager = SSEManager()
