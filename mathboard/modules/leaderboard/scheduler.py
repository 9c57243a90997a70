"""
RolloverScheduler: monthly rollover trigger with a single-flight guard.

Purpose
-------
Run `PersistenceSynchronizer.persist_monthly_rollover` on a cron schedule
(default `0 2 1 * *`, 02:00 on the 1st, in the configured timezone) and on
demand, never twice at the same time within one process.

Responsibilities
----------------
- Own the job state (running flag, last/next run, last error and result);
  expose it only as an immutable `RolloverStatus`
- Timer ticks and manual triggers share one `execute()` behind one guard;
  a trigger while running is rejected immediately, never queued
- Compute `next_run_at` with croniter on a timezone-aware clock
- Emit `leaderboard.rollover_completed` / `leaderboard.rollover_failed`

Non-Responsibilities
--------------------
- Cross-process leader election (one scheduler per deployment)
- Cancelling a rollover mid-run: `stop()` waits for a running execution

Month Identifier
----------------
A scheduled tick closes the month that ended before the scheduled instant
(evaluated in the configured timezone). A manual trigger without an explicit
month closes the current month.

Configuration Keys
------------------
- rollover.enabled (default Config.ROLLOVER_ENABLED)
- rollover.cron (default "0 2 1 * *")
- rollover.timezone (default Config.LEADERBOARD_TIMEZONE, i.e. UTC)
- rollover.max_sleep_seconds (default 3600, re-checks the clock at least
  this often)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Optional

from croniter import croniter

from mathboard.core.config.config import Config
from mathboard.core.config.manager import ConfigManager
from mathboard.core.exceptions import ConfigurationError
from mathboard.core.logging.logger import LogContext, get_logger
from mathboard.modules.leaderboard.constants import (
    DEFAULT_ROLLOVER_CRON,
    EVENT_ROLLOVER_COMPLETED,
    EVENT_ROLLOVER_FAILED,
)
from mathboard.modules.leaderboard.models import BackupStatus, RolloverResult, RolloverStatus
from mathboard.modules.leaderboard.periods import (
    current_month_identifier,
    previous_month_identifier,
    resolve_timezone,
)
from mathboard.modules.leaderboard.persistence import PersistenceSynchronizer

logger = get_logger(__name__)

ALREADY_RUNNING_MESSAGE = "Monthly rollover already in progress"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _JobState:
    is_running: bool = False
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Optional[RolloverResult] = None


class RolloverScheduler:
    """
    Cron-driven monthly rollover.

    Example
    -------
    >>> scheduler = RolloverScheduler(synchronizer)
    >>> await scheduler.start()
    >>> result = await scheduler.run_manually()
    >>> scheduler.get_status().is_running
    False
    """

    def __init__(
        self,
        synchronizer: PersistenceSynchronizer,
        *,
        cron: Optional[str] = None,
        timezone_name: Optional[str] = None,
        config_manager: Any = ConfigManager,
        event_bus: Any = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._synchronizer = synchronizer
        self._config = config_manager
        self._events = event_bus
        self._clock = clock

        self.cron: str = cron or str(self._config.get("rollover.cron", DEFAULT_ROLLOVER_CRON))
        if not croniter.is_valid(self.cron):
            raise ConfigurationError("rollover.cron", f"Invalid cron expression {self.cron!r}")

        self.timezone_name: str = timezone_name or str(
            self._config.get("rollover.timezone", Config.LEADERBOARD_TIMEZONE)
        )
        self._tz: tzinfo = resolve_timezone(self.timezone_name)
        self._max_sleep = float(self._config.get("rollover.max_sleep_seconds", 3600))

        self._state = _JobState()
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    # ========================================================================
    # SCHEDULE
    # ========================================================================

    def compute_next_run(self, now: Optional[datetime] = None) -> datetime:
        """
        First cron instant strictly after `now` (in the configured timezone).

        At or after this month's instant the answer is next month's instant,
        before it this month's.
        """
        local_now = (now or self._clock()).astimezone(self._tz)
        return croniter(self.cron, local_now).get_next(datetime)

    @property
    def next_run_at(self) -> datetime:
        return self._state.next_run_at or self.compute_next_run()

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run_manually(self, month_identifier: Optional[str] = None) -> RolloverResult:
        """Trigger a rollover now (same guard as the timer)."""
        return await self.execute(trigger="manual", month_identifier=month_identifier)

    async def execute(
        self,
        *,
        trigger: str = "manual",
        month_identifier: Optional[str] = None,
        scheduled_for: Optional[datetime] = None,
    ) -> RolloverResult:
        """
        Run one rollover unless one is already running.

        Never raises; the outcome (including rejection) is the returned
        `RolloverResult`, also kept as `last_result`.
        """
        # Check-and-set happens before the first await: atomic on the loop
        if self._state.is_running:
            logger.warning(
                "Rollover trigger rejected: already running",
                extra={"trigger": trigger},
            )
            return RolloverResult(
                success=False,
                message=ALREADY_RUNNING_MESSAGE,
                last_run_at=self._state.last_run_at,
                next_run_at=self._state.next_run_at,
                error=ALREADY_RUNNING_MESSAGE,
            )

        self._state.is_running = True
        start = time.perf_counter()

        if month_identifier is None:
            if scheduled_for is not None:
                month_identifier = previous_month_identifier(scheduled_for.astimezone(self._tz))
            else:
                month_identifier = current_month_identifier(self._tz, self._clock())

        backup = None
        error: Optional[str] = None
        try:
            async with LogContext(job="monthly_rollover", operation=trigger):
                logger.info(
                    "Monthly rollover started",
                    extra={"trigger": trigger, "month_identifier": month_identifier},
                )
                backup = await self._synchronizer.persist_monthly_rollover(month_identifier)
                if backup.status is BackupStatus.FAILED:
                    error = backup.fatal_error or "All partitions failed"
        except Exception as exc:
            # Last line of defence: the host process never sees rollover errors
            error = f"{type(exc).__name__}: {exc}"
            logger.error(
                "Monthly rollover crashed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
        finally:
            finished = self._clock()
            self._state.is_running = False
            self._state.last_run_at = finished
            self._state.next_run_at = self.compute_next_run(finished)

        success = error is None
        if not success:
            message = "Monthly rollover failed"
        elif backup is not None and backup.status is BackupStatus.PARTIAL:
            message = "Monthly rollover completed with partial failures"
        else:
            message = "Monthly rollover completed"

        result = RolloverResult(
            success=success,
            message=message,
            month_identifier=month_identifier,
            backup=backup,
            duration_seconds=round(time.perf_counter() - start, 3),
            last_run_at=self._state.last_run_at,
            next_run_at=self._state.next_run_at,
            error=error,
        )
        self._state.last_result = result
        self._state.last_error = error

        log = logger.info if success else logger.error
        log(
            message,
            extra={
                "trigger": trigger,
                "month_identifier": month_identifier,
                "status": backup.status.value if backup else "crashed",
                "duration_seconds": result.duration_seconds,
                "next_run_at": result.next_run_at.isoformat() if result.next_run_at else None,
            },
        )

        if self._events is not None:
            await self._events.publish(
                EVENT_ROLLOVER_COMPLETED if success else EVENT_ROLLOVER_FAILED,
                {"trigger": trigger, **result.to_dict()},
            )
        return result

    # ========================================================================
    # BACKGROUND LOOP
    # ========================================================================

    async def start(self) -> None:
        """Start the timer task (no-op if disabled or already running)."""
        enabled = self._config.get("rollover.enabled", Config.ROLLOVER_ENABLED)
        if enabled is False:
            logger.info("Rollover scheduler disabled by configuration")
            return
        if self.is_active:
            return

        self._stop_event = asyncio.Event()
        self._state.next_run_at = self.compute_next_run()
        self._task = asyncio.create_task(self._loop(), name="rollover-scheduler")

        logger.info(
            "Rollover scheduler started",
            extra={
                "cron": self.cron,
                "timezone": self.timezone_name,
                "next_run_at": self._state.next_run_at.isoformat(),
            },
        )

    async def stop(self) -> None:
        """Stop the timer; a rollover in progress is allowed to finish."""
        task = self._task
        if task is None:
            return
        self._stop_event.set()
        await task
        self._task = None
        logger.info("Rollover scheduler stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            due = self.next_run_at
            delay = (due - self._clock()).total_seconds()

            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=min(delay, self._max_sleep))
                except asyncio.TimeoutError:
                    pass
                continue

            self._state.next_run_at = self.compute_next_run(due)
            await self.execute(trigger="scheduled", scheduled_for=due)

    # ========================================================================
    # STATUS
    # ========================================================================

    def get_status(self) -> RolloverStatus:
        return RolloverStatus(
            is_running=self._state.is_running,
            job_active=self.is_active,
            schedule=self.cron,
            timezone=self.timezone_name,
            last_run_at=self._state.last_run_at,
            next_run_at=self.next_run_at,
            last_error=self._state.last_error,
            last_result=self._state.last_result,
        )
