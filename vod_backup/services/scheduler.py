"""Cron-driven scheduler for recurring backup jobs.

Each enabled job owns one asyncio task that sleeps until the next fire time
computed by an APScheduler ``CronTrigger`` and then checks the owner for a
new archived video. The clock and sleep functions are injectable so tests
can drive the scheduler in virtual time.
"""

import asyncio
import contextlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Awaitable, Callable, Dict, List, Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from apscheduler.triggers.cron import CronTrigger

from vod_backup.core.metrics import MetricsCollector
from vod_backup.models.schedule import ScheduledJob
from vod_backup.models.video import Quality
from vod_backup.providers.base import ItemSource
from vod_backup.providers.exceptions import ConfigurationError, VodBackupError
from vod_backup.services.download_queue import DownloadQueue, DownloadRequest
from vod_backup.services.task_store import TaskStore

logger = structlog.get_logger(__name__)

DEFAULT_RECENT_ITEMS_LIMIT = 5

CRON_PATTERNS: Dict[str, str] = {
    "Every hour": "0 * * * *",
    "Every 4 hours": "0 */4 * * *",
    "Every day at midnight": "0 0 * * *",
    "Every day at 6 AM": "0 6 * * *",
    "Every Monday at 9 AM": "0 9 * * 1",
    "Every week on Sunday": "0 0 * * 0",
    "First day of month": "0 0 1 * *",
}

# Cron numbering: 0 and 7 are Sunday
_WEEKDAY_NAMES = {
    "sun": 0,
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
}

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


class InvalidScheduleError(VodBackupError):
    """Raised when a cron expression cannot be parsed."""

    pass


@dataclass
class RunResult:
    """Outcome of one job fire."""

    result: str
    task_id: Optional[str] = None
    source_item_id: Optional[str] = None


def _weekday_value(token: str) -> int:
    token = token.strip().lower()
    if token in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES[token]
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week out of range: {token}")
    return value % 7


def _expand_weekdays(field: str) -> Set[int]:
    """Expand a cron day-of-week field into cron weekday numbers (0=Sunday)."""
    days: Set[int] = set()
    for part in field.split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step < 1:
                raise ValueError(f"invalid step: {step_text}")

        if part in ("*", "?"):
            start, end = 0, 6
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start = _weekday_value(start_text)
            # "5-7" ends on Sunday
            end = int(end_text) if end_text.strip() == "7" else _weekday_value(end_text)
            if end < start:
                raise ValueError(f"invalid range: {part}")
        else:
            start = _weekday_value(part)
            end = start if step == 1 else 6

        days.update(day % 7 for day in range(start, end + 1, step))
    return days


def translate_day_of_week(field: str) -> str:
    """Convert a cron day-of-week field to APScheduler numbering.

    APScheduler counts weekdays from Monday (0) while cron counts from
    Sunday (0 or 7).
    """
    if field in ("*", "?"):
        return "*"
    days = _expand_weekdays(field)
    return ",".join(str(day) for day in sorted((d - 1) % 7 for d in days))


def build_trigger(cron_expression: str, timezone: tzinfo) -> CronTrigger:
    """Parse a 5-field (or 6-field, leading seconds) cron expression.

    Raises:
        InvalidScheduleError: If the expression is malformed.
    """
    fields = cron_expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise InvalidScheduleError(
            f"Invalid cron expression '{cron_expression}': expected 5 or 6 fields"
        )

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=translate_day_of_week(day_of_week),
            timezone=timezone,
        )
    except ValueError as e:
        raise InvalidScheduleError(f"Invalid cron expression '{cron_expression}': {e}") from e


class Scheduler:
    """Owns the trigger of every enabled scheduled job."""

    def __init__(
        self,
        store: TaskStore,
        queue: DownloadQueue,
        source: ItemSource,
        recent_items_limit: int = DEFAULT_RECENT_ITEMS_LIMIT,
        timezone: str = "UTC",
        clock: Optional[Clock] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Persistence for jobs and task history.
            queue: Receives downloads for new items.
            source: Lists an owner's recent items.
            recent_items_limit: How many recent items to fetch per fire.
            timezone: IANA zone name cron expressions are evaluated in.
            clock: Returns the current aware datetime.
            sleep: Awaitable delay used between fires.
        """
        try:
            self._timezone: tzinfo = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown scheduler timezone: {timezone}") from e

        self._store = store
        self._queue = queue
        self._source = source
        self._recent_items_limit = recent_items_limit
        self._clock: Clock = clock or (lambda: datetime.now(self._timezone))
        self._sleep = sleep
        self._triggers: Dict[str, "asyncio.Task[None]"] = {}

    @staticmethod
    def validate(cron_expression: str) -> bool:
        """Check whether a cron expression can be scheduled."""
        try:
            build_trigger(cron_expression, ZoneInfo("UTC"))
        except InvalidScheduleError:
            return False
        return True

    def start(self) -> int:
        """Install triggers for every stored job.

        Jobs with invalid expressions are logged and skipped.

        Returns:
            Number of jobs with an installed trigger.
        """
        for job in self._store.list_jobs():
            try:
                self.schedule_job(job)
            except InvalidScheduleError as e:
                logger.warning(
                    "scheduled_job_skipped_invalid_cron",
                    job_id=job.id,
                    cron_expression=job.cron_expression,
                    error=str(e),
                )

        logger.info("scheduler_started", scheduled_jobs=len(self._triggers))
        return len(self._triggers)

    def is_scheduled(self, job_id: str) -> bool:
        runner = self._triggers.get(job_id)
        return runner is not None and not runner.done()

    def schedule_job(self, job: ScheduledJob) -> None:
        """(Re)install the trigger for a job and persist its next run time.

        Any existing trigger is stopped first. Disabled jobs end up with no
        trigger and no next run time.

        Raises:
            InvalidScheduleError: If the cron expression is malformed.
        """
        self.stop_job(job.id)

        if not job.enabled:
            job.next_run_at = None
            self._store.save_job(job)
            logger.info("scheduled_job_disabled", job_id=job.id)
            return

        trigger = build_trigger(job.cron_expression, self._timezone)
        job.next_run_at = trigger.get_next_fire_time(None, self._clock())
        self._store.save_job(job)

        runner = asyncio.create_task(self._run_trigger(job.id, trigger))
        self._triggers[job.id] = runner
        runner.add_done_callback(lambda task, job_id=job.id: self._forget(job_id, task))

        logger.info(
            "scheduled_job_registered",
            job_id=job.id,
            owner_id=job.owner_id,
            cron_expression=job.cron_expression,
            next_run_at=job.next_run_at.isoformat() if job.next_run_at else None,
        )

    def stop_job(self, job_id: str) -> bool:
        """Remove a job's trigger. Returns True if one was installed."""
        runner = self._triggers.pop(job_id, None)
        if runner is None:
            return False
        runner.cancel()
        logger.info("scheduled_job_stopped", job_id=job_id)
        return True

    async def stop_all(self) -> None:
        """Remove every trigger and wait for the trigger tasks to finish."""
        runners = list(self._triggers.values())
        self._triggers.clear()
        for runner in runners:
            runner.cancel()
        for runner in runners:
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        logger.info("scheduler_stopped", stopped_jobs=len(runners))

    def list_jobs(self) -> List[ScheduledJob]:
        return self._store.list_jobs()

    def add_job(
        self,
        owner_id: str,
        owner_name: str,
        cron_expression: str,
        quality: Quality = Quality.SOURCE,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Create, persist and schedule a new job.

        Raises:
            InvalidScheduleError: If the cron expression is malformed.
        """
        build_trigger(cron_expression, self._timezone)

        job = ScheduledJob(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            owner_name=owner_name,
            cron_expression=cron_expression,
            quality=quality,
            enabled=enabled,
        )
        self.schedule_job(job)

        logger.info("scheduled_job_created", job_id=job.id, owner_id=owner_id)
        return job

    def update_job(
        self,
        job_id: str,
        cron_expression: Optional[str] = None,
        quality: Optional[Quality] = None,
        enabled: Optional[bool] = None,
        owner_name: Optional[str] = None,
    ) -> ScheduledJob:
        """Apply changes to a job and reschedule it.

        The expression is validated before anything is persisted.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidScheduleError: If the new cron expression is malformed.
        """
        job = self._store.get_job_or_raise(job_id)

        if cron_expression is not None:
            build_trigger(cron_expression, self._timezone)
            job.cron_expression = cron_expression
        if quality is not None:
            job.quality = quality
        if enabled is not None:
            job.enabled = enabled
        if owner_name is not None:
            job.owner_name = owner_name

        self.schedule_job(job)
        logger.info("scheduled_job_updated", job_id=job_id)
        return job

    def remove_job(self, job_id: str) -> None:
        """Stop and delete a job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        self._store.get_job_or_raise(job_id)
        self.stop_job(job_id)
        self._store.remove_job(job_id)
        logger.info("scheduled_job_removed", job_id=job_id)

    async def run_job(self, job_id: str) -> RunResult:
        """Fire a job now, independently of its trigger.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = self._store.get_job_or_raise(job_id)
        return await self._fire(job)

    def _forget(self, job_id: str, runner: "asyncio.Task[None]") -> None:
        if self._triggers.get(job_id) is runner:
            del self._triggers[job_id]

    async def _run_trigger(self, job_id: str, trigger: CronTrigger) -> None:
        previous_fire: Optional[datetime] = None

        while True:
            now = self._clock()
            if previous_fire is not None:
                now = max(now, previous_fire + timedelta(seconds=1))

            next_fire = trigger.get_next_fire_time(previous_fire, now)
            if next_fire is None:
                logger.info("scheduled_job_exhausted", job_id=job_id)
                return
            self._record_next_run(job_id, next_fire)

            delay = (next_fire - self._clock()).total_seconds()
            await self._sleep(max(0.0, delay))
            previous_fire = next_fire

            job = self._store.get_job(job_id)
            if job is None:
                logger.warning("scheduled_job_missing", job_id=job_id)
                return

            try:
                await self._fire(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                MetricsCollector.record_scheduled_run("error")
                logger.error(
                    "scheduled_job_fire_error", job_id=job_id, error=str(e), exc_info=True
                )

    def _record_next_run(self, job_id: str, next_fire: datetime) -> None:
        job = self._store.get_job(job_id)
        if job is None:
            return
        job.next_run_at = next_fire
        self._store.save_job(job)

    async def _fire(self, job: ScheduledJob) -> RunResult:
        """Check an owner for a new item and enqueue it if not yet backed up.

        Only the most recent item is considered; older missed items are not
        backfilled.
        """
        job.last_run_at = self._clock()
        self._store.save_job(job)

        logger.info("scheduled_job_fired", job_id=job.id, owner_id=job.owner_id)

        result = await self._check_latest(job)
        MetricsCollector.record_scheduled_run(result.result)
        return result

    async def _check_latest(self, job: ScheduledJob) -> RunResult:
        try:
            items = await self._source.list_recent_items(job.owner_id, self._recent_items_limit)
        except VodBackupError as e:
            logger.error(
                "scheduled_job_listing_failed",
                job_id=job.id,
                owner_id=job.owner_id,
                error=str(e),
            )
            return RunResult("error")

        if not items:
            logger.info("scheduled_job_no_items", job_id=job.id, owner_id=job.owner_id)
            return RunResult("no_items")

        latest = max(items, key=lambda item: item.created_at)

        if self._store.has_completed_download(latest.id):
            logger.info(
                "scheduled_job_already_downloaded",
                job_id=job.id,
                source_item_id=latest.id,
            )
            return RunResult("already_downloaded", source_item_id=latest.id)

        try:
            task_id = await self._queue.enqueue(
                DownloadRequest(
                    item_id=latest.id,
                    owner_id=job.owner_id,
                    owner_name=job.owner_name,
                    quality=job.quality,
                )
            )
        except VodBackupError as e:
            logger.error(
                "scheduled_job_enqueue_failed",
                job_id=job.id,
                source_item_id=latest.id,
                error=str(e),
            )
            return RunResult("error", source_item_id=latest.id)

        logger.info(
            "scheduled_job_enqueued",
            job_id=job.id,
            source_item_id=latest.id,
            task_id=task_id,
        )
        return RunResult("enqueued", task_id=task_id, source_item_id=latest.id)
