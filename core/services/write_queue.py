"""
Bounded background queue for post-response memory writes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import core.config as config
from core.services.memory_writer import MemoryWriter

logger = config.logger


@dataclass(frozen=True)
class MemoryWriteJob:
    owner_id: str
    user_text: str
    assistant_text: str
    conversation_id: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)


class MemoryWriteQueue:
    def __init__(self, writer: MemoryWriter, workers: int = 2, maxsize: int = 1000):
        self.writer = writer
        self._worker_count = max(1, workers)
        self._maxsize = max(1, maxsize)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"memory-writer-{index}")
            for index in range(self._worker_count)
        ]
        logger.info("memory_write_queue_started", extra={"workers": self._worker_count})

    def submit(self, job: MemoryWriteJob) -> bool:
        """Enqueue without blocking; returns False when the job was dropped."""
        if self._queue is None:
            self._dropped += 1
            logger.warning("memory_write_dropped", extra={"owner_id": job.owner_id, "reason": "not_running"})
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("memory_write_dropped", extra={"owner_id": job.owner_id, "reason": "queue_full"})
            return False
        self._submitted += 1
        return True

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await asyncio.to_thread(
                    self.writer.store_exchange,
                    job.owner_id,
                    job.user_text,
                    job.assistant_text,
                    job.conversation_id,
                    list(job.tags),
                )
                self._completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._failed += 1
                logger.warning(
                    "memory_write_failed",
                    extra={"owner_id": job.owner_id, "worker": index, "error": type(exc).__name__},
                )
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Drain pending writes for up to ``timeout`` seconds, then stop the workers."""
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("memory_write_queue_drain_timeout", extra=self.stats())
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("memory_write_queue_stopped")

    def stats(self) -> dict:
        return {
            "running": self.running,
            "submitted": self._submitted,
            "completed": self._completed,
            "failed": self._failed,
            "dropped": self._dropped,
            "pending": self._queue.qsize() if self._queue is not None else 0,
        }
