"""Runs the synchronous ingest pipeline off the event loop.

Architecture:
    FastAPI (async) -> worker slot (asyncio.Semaphore) -> ThreadPoolExecutor -> IngestPipeline.process

An upload keeps its whole body in memory while it waits for a slot, so waiting
is bounded twice: at most ``max_queued`` uploads may wait at once, and each
waits at most ``queue_timeout`` seconds. Either limit raises ExecutorBusy.
A job that has started always runs to completion.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from imagedrop.config import Settings
    from imagedrop.ingest.models import IngestResult, UploadRequest
    from imagedrop.ingest.pipeline import IngestPipeline

logger = logging.getLogger(__name__)


class ExecutorBusy(TimeoutError):
    """No worker slot could be granted to an upload."""


@dataclass(frozen=True)
class ExecutorLoad:
    """Snapshot of uploads being processed and uploads waiting for a slot."""

    active: int = 0
    queued: int = 0


class IngestExecutor:
    """Admits uploads to a fixed number of worker threads."""

    def __init__(self, settings: Settings, pipeline: IngestPipeline) -> None:
        self._pipeline = pipeline
        self._queue_timeout = settings.queue_timeout
        self._max_queued = settings.max_queued
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._workers = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="ingest",
        )
        self._load = ExecutorLoad()
        self._load_lock = threading.Lock()

    @property
    def load(self) -> ExecutorLoad:
        with self._load_lock:
            return self._load

    async def submit(self, request: UploadRequest) -> IngestResult:
        """Run ``request`` through the pipeline on a worker thread.

        Raises:
            ExecutorBusy: If the wait queue is full or no slot frees up in time.
        """
        try:
            async with self._slot():
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(self._workers, self._pipeline.process, request)
        except ExecutorBusy as exc:
            logger.warning("Refused upload %r: %s", request.filename, exc)
            raise

    def shutdown(self) -> None:
        """Wait for running jobs and stop the worker threads."""
        self._workers.shutdown(wait=True)

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        with self._load_lock:
            if self._slots.locked() and self._load.queued >= self._max_queued:
                raise ExecutorBusy(f"{self._load.queued} uploads already waiting")
            self._load = replace(self._load, queued=self._load.queued + 1)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._queue_timeout)
        except TimeoutError as exc:
            raise ExecutorBusy(f"no worker slot freed up within {self._queue_timeout:g}s") from exc
        finally:
            with self._load_lock:
                self._load = replace(self._load, queued=self._load.queued - 1)

        with self._load_lock:
            self._load = replace(self._load, active=self._load.active + 1)
        try:
            yield
        finally:
            self._slots.release()
            with self._load_lock:
                self._load = replace(self._load, active=self._load.active - 1)
