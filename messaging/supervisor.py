"""
Restart Supervisor

Recovers a disconnected session: tear down, wait a cool-down, start again.
Requests coalesce, so at most one restart cycle runs at a time.
"""

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger


class RestartSupervisor:
    """
    Runs restart cycles in a background task.

    Each cycle calls teardown(delay), sleeps for the cool-down, then start().
    start() returns False when initialization failed, which schedules the next
    cycle. With the defaults (factor 1.0, no max_attempts) the cool-down is
    fixed and restarts never stop.
    """

    def __init__(
        self,
        teardown: Callable[[float], Awaitable[None]],
        start: Callable[[], Awaitable[bool]],
        *,
        cooldown: float = 3.0,
        backoff_factor: float = 1.0,
        max_cooldown: float = 60.0,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._teardown = teardown
        self._start = start
        self.cooldown = cooldown
        self.backoff_factor = backoff_factor
        self.max_cooldown = max_cooldown
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._attempts = 0
        self.exhausted = False

    @property
    def attempts(self) -> int:
        """Restart cycles since the session was last ready."""
        return self._attempts

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        """Cool-down before the next cycle."""
        delay = self.cooldown * (self.backoff_factor ** max(self._attempts, 0))
        return min(delay, self.max_cooldown) if self.backoff_factor > 1.0 else delay

    def request(self, reason: str = "") -> bool:
        """
        Ask for a restart cycle.

        Returns:
            True if a cycle was started, False if one is already running or
            the attempt budget is spent
        """
        if self.running:
            logger.debug("Restart already in progress, ignoring request")
            return False
        if self.max_attempts is not None and self._attempts >= self.max_attempts:
            self.exhausted = True
            logger.error(
                "Restart limit reached ({} attempts), giving up: {}",
                self._attempts,
                reason,
            )
            return False
        logger.info("Restarting WhatsApp client: {}", reason or "requested")
        self._task = asyncio.create_task(self._run())
        return True

    def reset(self) -> None:
        """Forget previous attempts (the session reached ready, or an operator intervened)."""
        if self._attempts:
            logger.debug("Restart attempts reset after {}", self._attempts)
        self._attempts = 0
        self.exhausted = False

    async def _run(self) -> None:
        while True:
            delay = self.next_delay()
            self._attempts += 1
            try:
                await self._teardown(delay)
                await self._sleep(delay)
                started = await self._start()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"WhatsApp restart failed: {e}")
                started = False

            if started:
                return
            if self.max_attempts is not None and self._attempts >= self.max_attempts:
                self.exhausted = True
                logger.error(
                    "Restart limit reached ({} attempts), giving up", self._attempts
                )
                return

    async def join(self) -> None:
        """Wait for the current cycle, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await task

    async def stop(self) -> None:
        """Cancel a running cycle and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
