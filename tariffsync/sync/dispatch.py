"""TariffSync — Background Sync Dispatch.

Starts a run synchronously (so a held lease is reported to the caller right
away) and executes it as an asyncio task behind a ``SyncHandle``.
"""

import asyncio
from typing import List, Set

from tariffsync.core.logging import get_logger
from tariffsync.sync.runner import SyncOutcome, SyncRunner

logger = get_logger("sync.dispatch")


class SyncHandle:
    """Handle on a dispatched run; await it, or detach and let it log itself."""

    def __init__(self, run_id: int, runner: SyncRunner, task: "asyncio.Task[SyncOutcome]"):
        self.run_id = run_id
        self.runner = runner
        self._task = task

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> SyncOutcome:
        return await asyncio.shield(self._task)

    def detach(self) -> "SyncHandle":
        """Log the outcome when the run finishes; nobody awaits it."""
        self._task.add_done_callback(self._log_outcome)
        return self

    def _log_outcome(self, task: "asyncio.Task[SyncOutcome]") -> None:
        extra = {"sync_type": self.runner.sync_type.value, "run_id": self.run_id}
        if task.cancelled():
            logger.warning(f"Background {self.runner.describe()} sync cancelled", extra=extra)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background {self.runner.describe()} sync crashed: {exc}", extra=extra
            )
            return
        outcome = task.result()
        if outcome.ok:
            logger.info(
                f"Background {self.runner.describe()} sync completed", extra=extra
            )
        else:
            logger.error(
                f"Background {self.runner.describe()} sync failed: {outcome.error}",
                extra=extra,
            )


class SyncDispatcher:
    """Keeps references to running handles so their tasks are not collected."""

    def __init__(self) -> None:
        self._active: Set[SyncHandle] = set()

    def dispatch(self, runner: SyncRunner) -> SyncHandle:
        """Begin ``runner`` now (may raise SyncInProgressError) and execute it in the background."""
        run_id = runner.begin()
        task = asyncio.ensure_future(runner.execute(run_id))
        handle = SyncHandle(run_id, runner, task)
        self._active.add(handle)
        task.add_done_callback(lambda _: self._active.discard(handle))
        return handle

    @property
    def active(self) -> List[SyncHandle]:
        return [h for h in self._active if not h.done()]

    async def wait_all(self) -> List[SyncOutcome]:
        """Await every active run; used at shutdown."""
        handles = list(self._active)
        return [await h.wait() for h in handles]
