"""TariffSync — Bounded-Concurrency Retry Queue.

Every submitted task is an independent unit of work: it is retried with
exponential backoff, and its permanent failure is logged and recorded on its
handle without touching sibling tasks.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Set

from tariffsync.core.logging import get_logger

logger = get_logger("retry_queue")

TaskFn = Callable[[], Awaitable[Any]]


@dataclass
class TaskResult:
    """Outcome of one submitted task after all of its attempts."""

    label: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0


@dataclass
class QueueSummary:
    submitted: int
    succeeded: int
    failed: int


class TaskHandle:
    """Handle on a submitted task; resolves to a ``TaskResult``."""

    def __init__(self, label: str, task: "asyncio.Task[TaskResult]"):
        self.label = label
        self._task = task

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> TaskResult:
        return await asyncio.shield(self._task)

    @property
    def result(self) -> Optional[TaskResult]:
        """The result if the task has finished, else None."""
        return self._task.result() if self._task.done() else None


class RetryQueue:
    """Run submitted coroutine functions with at most ``concurrency`` in flight.

    Each task gets at most ``retries`` attempts (minimum one). The delay before
    attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` capped at ``max_delay``.
    """

    def __init__(
        self,
        concurrency: int = 3,
        retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        on_failure: Optional[Callable[[TaskResult], None]] = None,
        name: str = "queue",
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.name = name
        self.concurrency = concurrency
        self.max_attempts = max(1, retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._on_failure = on_failure
        self._semaphore = asyncio.Semaphore(concurrency)
        self._pending: Set["asyncio.Task[TaskResult]"] = set()
        self._handles: List[TaskHandle] = []
        self._succeeded = 0
        self._failed = 0

    def submit(self, task: TaskFn, label: str = "") -> TaskHandle:
        """Schedule ``task``; returns immediately with its handle."""
        label = label or f"{self.name}-{len(self._handles) + 1}"
        runner = asyncio.ensure_future(self._run(task, label))
        self._pending.add(runner)
        runner.add_done_callback(self._pending.discard)
        handle = TaskHandle(label, runner)
        self._handles.append(handle)
        return handle

    async def on_idle(self) -> None:
        """Wait until every submitted task, including late submissions, resolved."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def summary(self) -> QueueSummary:
        return QueueSummary(
            submitted=len(self._handles),
            succeeded=self._succeeded,
            failed=self._failed,
        )

    @property
    def handles(self) -> List[TaskHandle]:
        return list(self._handles)

    def _backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def _run(self, task: TaskFn, label: str) -> TaskResult:
        async with self._semaphore:
            last_error: Optional[BaseException] = None
            for attempt in range(1, self.max_attempts + 1):
                started = time.perf_counter()
                try:
                    value = await task()
                except Exception as e:
                    last_error = e
                    if attempt < self.max_attempts:
                        wait = self._backoff(attempt)
                        logger.warning(
                            f"Attempt {attempt}/{self.max_attempts} failed for {label}: {e}. "
                            f"Retrying in {wait}s",
                            extra={"attempt": attempt},
                        )
                        await asyncio.sleep(wait)
                        continue
                    break
                self._succeeded += 1
                logger.debug(
                    f"Task {label} succeeded on attempt {attempt}",
                    extra={
                        "attempt": attempt,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    },
                )
                return TaskResult(label=label, ok=True, value=value, attempts=attempt)

        self._failed += 1
        result = TaskResult(
            label=label, ok=False, error=last_error, attempts=self.max_attempts
        )
        logger.error(
            f"Task {label} permanently failed after {self.max_attempts} attempts: {last_error}"
        )
        if self._on_failure is not None:
            try:
                self._on_failure(result)
            except Exception as e:
                logger.error(f"Failure callback raised for {label}: {e}")
        return result
