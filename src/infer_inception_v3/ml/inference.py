"""Task runner for the HTTP surface.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(max_concurrent) -> one worker thread -> InceptionV3

The task owns a single network and a single output set, so its runs and its
parameter updates all go through one worker thread, in submission order.
``max_concurrent`` caps how many requests are admitted at once (running or
waiting for the worker). Requests beyond it wait 5s for admission, then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from infer_inception_v3.config import Settings
    from infer_inception_v3.ml.inception_v3 import InceptionV3, TaskResult
    from infer_inception_v3.ml.task_io import ProxyGraphicsItem
    from infer_inception_v3.plugin import InceptionV3Widget

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Serializes runs of one task on a dedicated worker thread."""

    def __init__(self, task: InceptionV3, settings: Settings) -> None:
        self._task = task
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{task.name}-run")
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def classify(
        self,
        image: NDArray[np.uint8],
        regions: list[ProxyGraphicsItem] | None = None,
    ) -> TaskResult:
        """Run the task on ``image`` (or its regions) and return its outputs.

        Raises:
            TimeoutError: If the request is not admitted within the timeout.
            TaskError: If the run fails.
        """
        return await self._submit(self._task.process, image, regions)

    async def update_params(self, widget: InceptionV3Widget) -> None:
        """Apply the widget's edited parameters between two runs."""
        await self._submit(widget.apply)

    @property
    def active_count(self) -> int:
        """Number of task runs in progress (0 or 1)."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for admission or for the worker."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Wait for the current run and stop the worker."""
        self._executor.shutdown(wait=True)

    async def _submit(self, func: Callable[..., T], *args: object) -> T:
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        except (TimeoutError, asyncio.CancelledError):
            with self._counter_lock:
                self._queue_depth -= 1
            logger.warning("%s is saturated, request rejected", self._task.name)
            raise

        future = self._executor.submit(self._run_on_worker, func, *args)
        try:
            return await asyncio.wrap_future(future)
        finally:
            self._semaphore.release()
            # Cancelled before the worker picked it up
            if future.cancel():
                with self._counter_lock:
                    self._queue_depth -= 1

    def _run_on_worker(self, func: Callable[..., T], *args: object) -> T:
        with self._counter_lock:
            self._queue_depth -= 1
            self._active_count += 1
        try:
            return func(*args)
        finally:
            with self._counter_lock:
                self._active_count -= 1
