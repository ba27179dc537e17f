"""Tests for the task runner behind the HTTP surface."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from conftest import make_settings

from infer_inception_v3.ml.inference import InferencePool


class _BlockingTask:
    """Task whose runs block until released and record how many overlap."""

    name = "infer_inception_v3"

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.running = 0
        self.peak = 0
        self.threads: set[str] = set()
        self._lock = threading.Lock()

    def process(self, image: np.ndarray, regions: object) -> str:
        with self._lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
            self.threads.add(threading.current_thread().name)
        self.started.set()
        self.release.wait(timeout=5)
        time.sleep(0.01)
        with self._lock:
            self.running -= 1
        return "done"


def _image() -> np.ndarray:
    return np.zeros((8, 8, 3), dtype=np.uint8)


class TestSerialization:
    async def test_runs_never_overlap(self, tmp_path: Path) -> None:
        task = _BlockingTask()
        task.release.set()
        pool = InferencePool(task, make_settings(tmp_path, max_concurrent=3))  # type: ignore[arg-type]

        results = await asyncio.gather(*(pool.classify(_image()) for _ in range(3)))

        pool.shutdown()
        assert results == ["done", "done", "done"]
        assert task.peak == 1
        assert len(task.threads) == 1
        assert next(iter(task.threads)).startswith("infer_inception_v3-run")

    async def test_update_params_runs_on_worker(self, tmp_path: Path) -> None:
        widget = MagicMock()
        pool = InferencePool(_BlockingTask(), make_settings(tmp_path))  # type: ignore[arg-type]

        await pool.update_params(widget)

        pool.shutdown()
        widget.apply.assert_called_once_with()


class TestCounters:
    async def test_counters_reflect_running_and_waiting(self, tmp_path: Path) -> None:
        task = _BlockingTask()
        pool = InferencePool(task, make_settings(tmp_path, max_concurrent=2))  # type: ignore[arg-type]

        first = asyncio.create_task(pool.classify(_image()))
        await asyncio.to_thread(task.started.wait, 5)
        second = asyncio.create_task(pool.classify(_image()))
        await asyncio.sleep(0.05)

        assert pool.active_count == 1
        assert pool.queue_depth == 1

        with (
            patch("infer_inception_v3.ml.inference.SEMAPHORE_TIMEOUT_SECONDS", 0.05),
            pytest.raises(TimeoutError),
        ):
            await pool.classify(_image())
        assert pool.queue_depth == 1

        task.release.set()
        assert await asyncio.gather(first, second) == ["done", "done"]

        pool.shutdown()
        assert pool.active_count == 0
        assert pool.queue_depth == 0
        assert task.peak == 1
