"""
Cancellable delayed execution of retry attempts.

One asyncio task per retry id. A task first sleeps, then runs the attempt
callback. Cancelling only affects the sleep: once the callback has started
it runs to completion, and its commit is then checked against the record's
status by the orchestrator.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from registrar.core.logging import get_logger, retry_log_context

logger = get_logger(__name__)

AttemptCallback = Callable[[str], Awaitable[Any]]


class RetryScheduler:
    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._running: set[str] = set()
        self._closing = False

    def schedule(self, retry_id: str, delay_seconds: float, callback: AttemptCallback) -> Optional[asyncio.Task]:
        if self._closing:
            # Left pending in the store; resume_pending picks it up on the next start
            logger.info("retry_schedule_skipped", retry_id=retry_id, reason="shutting_down")
            return None
        current = asyncio.current_task()
        existing = self._tasks.get(retry_id)
        if existing is not None and not existing.done() and existing is not current:
            if retry_id in self._running:
                # An attempt is in flight; it schedules its own follow-up
                logger.info("retry_schedule_skipped", retry_id=retry_id, reason="attempt_in_flight")
                return None
            existing.cancel()

        task = asyncio.get_running_loop().create_task(
            self._run(retry_id, delay_seconds, callback),
            name=f"registration-retry:{retry_id}",
        )
        self._tasks[retry_id] = task
        return task

    def cancel(self, retry_id: str) -> bool:
        """Cancel a sleeping attempt. Returns False if nothing was waiting."""
        task = self._tasks.get(retry_id)
        if task is None or task.done() or retry_id in self._running:
            return False
        task.cancel()
        return True

    def is_scheduled(self, retry_id: str) -> bool:
        task = self._tasks.get(retry_id)
        return task is not None and not task.done()

    @property
    def pending_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def join(self) -> None:
        """Wait until no attempt is sleeping or running, including follow-ups."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self, drain_timeout: float = 30.0) -> None:
        """
        Cancel sleeping attempts and let running ones finish.

        A running attempt may already have reached the ticketing backend, so
        it is awaited until its outcome is committed. Only attempts still
        running after `drain_timeout` seconds are cancelled.
        """
        sleeping = [
            task for retry_id, task in self._tasks.items()
            if not task.done() and retry_id not in self._running
        ]
        running = [
            task for retry_id, task in self._tasks.items()
            if not task.done() and retry_id in self._running
        ]
        self._closing = True
        for task in sleeping:
            task.cancel()

        abandoned = 0
        if running:
            logger.info("retry_scheduler_draining", running=len(running))
            _, still_running = await asyncio.wait(running, timeout=drain_timeout)
            for task in still_running:
                task.cancel()
            abandoned = len(still_running)
            if abandoned:
                logger.warning("retry_attempts_interrupted", count=abandoned)

        await asyncio.gather(*sleeping, *running, return_exceptions=True)
        self._tasks.clear()
        self._running.clear()
        logger.info(
            "retry_scheduler_stopped",
            cancelled=len(sleeping),
            drained=len(running) - abandoned,
            interrupted=abandoned,
        )

    async def _run(self, retry_id: str, delay_seconds: float, callback: AttemptCallback) -> None:
        task = asyncio.current_task()
        started = False
        try:
            await asyncio.sleep(max(delay_seconds, 0))
            started = True
            self._running.add(retry_id)
            with retry_log_context(retry_id):
                await callback(retry_id)
        except asyncio.CancelledError:
            logger.info("retry_cancelled", retry_id=retry_id, started=started)
            raise
        except Exception:
            logger.exception("retry_execution_failed", retry_id=retry_id)
        finally:
            if started:
                self._running.discard(retry_id)
            if self._tasks.get(retry_id) is task:
                del self._tasks[retry_id]
