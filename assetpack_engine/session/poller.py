"""Backend progress polling for one in-flight job."""

from __future__ import annotations

import asyncio
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable

from ..providers.base import ProgressSnapshot


class ProgressPoller:
    """Polls ``fetch`` every ``interval_s`` until stopped.

    Fetches run on a dedicated executor rather than the loop's default one, which
    long-running generation requests can saturate. Failed ticks are counted and
    dropped so the caller keeps its previous snapshot. Once ``stop()`` has been called
    no further snapshot reaches ``on_update``, including a tick already in flight.
    """

    def __init__(
        self,
        fetch: Callable[[], ProgressSnapshot],
        on_update: Callable[[ProgressSnapshot], None],
        *,
        interval_s: float = 0.7,
        executor: Executor | None = None,
    ) -> None:
        self._fetch = fetch
        self._on_update = on_update
        self.interval_s = max(0.01, interval_s)
        self._executor = executor
        self._owns_executor = executor is None
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self.applied_ticks = 0
        self.failed_ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Progress poller already started.")
        loop = asyncio.get_running_loop()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="assetpack-progress")
        self._task = loop.create_task(self._run())

    async def stop(self) -> None:
        self._stopped = True
        task = self._task
        try:
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        finally:
            if self._owns_executor and self._executor is not None:
                # A fetch blocked in the worker finishes on its own; its result is dropped.
                self._executor.shutdown(wait=False, cancel_futures=True)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stopped:
            await asyncio.sleep(self.interval_s)
            if self._stopped:
                break
            try:
                snapshot = await loop.run_in_executor(self._executor, self._fetch)
            except Exception:
                self.failed_ticks += 1
                continue
            if self._stopped:
                break
            self.applied_ticks += 1
            self._on_update(snapshot)
