"""Background side effects.

Signup side effects (confirmation email, Slack alert, referrer credit)
run as asyncio tasks detached from the request. Each job is retried with
exponential backoff; once attempts run out the failure is logged and the
job is dropped. A failed job never touches the HTTP response or the
stored entry that triggered it.
"""

import asyncio
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from healthscan.logging_config import get_logger
from healthscan.settings import settings

logger = get_logger(__name__)

Job = Callable[[], Awaitable[Any]]


class BackgroundDispatcher:
    """Runs jobs as retried fire-and-forget tasks."""

    def __init__(
        self,
        max_attempts: int | None = None,
        backoff_min: float | None = None,
        backoff_max: float | None = None,
    ):
        self.max_attempts = max_attempts or settings.side_effect_max_attempts
        self.backoff_min = (
            backoff_min if backoff_min is not None else settings.side_effect_backoff_min_seconds
        )
        self.backoff_max = (
            backoff_max if backoff_max is not None else settings.side_effect_backoff_max_seconds
        )
        self._tasks: set[asyncio.Task] = set()
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, job: Job) -> asyncio.Task:
        """Schedule job on the running loop.

        Args:
            name: Label used in logs
            job: Zero-argument coroutine function; called once per attempt

        Returns:
            The spawned task
        """
        task = asyncio.create_task(self._run(name, job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, job: Job) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max
            ),
            before_sleep=lambda state: logger.warning(
                "background_job_retrying",
                job=name,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await job()
        except Exception as e:
            self.failed += 1
            logger.error(
                "background_job_failed",
                job=name,
                attempts=self.max_attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        logger.debug("background_job_done", job=name)

    async def drain(self) -> None:
        """Wait until every submitted job, including ones submitted meanwhile, finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
