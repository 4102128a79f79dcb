"""In-process cron scheduler for the automation jobs.

``tick()`` fires every job whose cron expression matches the current
minute, at most once per minute. ``start()`` / ``stop()`` run ticks on a
daemon thread. Times are UTC.
"""

import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet

from .. import db
from ..clock import system_clock
from ..logging_config import get_logger
from .jobs import JOBS, run_job
from .rules import AutomationConfig

logger = get_logger(__name__)


# -------------------------
# Cron expressions
# -------------------------
@dataclass(frozen=True)
class CronSpec:
    """Parsed ``minute hour day_of_month month day_of_week`` expression."""

    minutes: FrozenSet[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: FrozenSet[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: FrozenSet[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: FrozenSet[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: FrozenSet[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_field(text, lo, hi):
    values = set()
    for part in text.split(","):
        part = part.strip()
        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

        if part == "*":
            start, end = lo, hi
        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = int(part)
            end = hi if step != 1 else start

        if start < lo or end > hi:
            raise ValueError(f"Value outside range [{lo}, {hi}]: {part}")
        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression) -> CronSpec:
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}")
    return CronSpec(
        minutes=_parse_field(parts[0], 0, 59),
        hours=_parse_field(parts[1], 0, 23),
        days_of_month=_parse_field(parts[2], 1, 31),
        months=_parse_field(parts[3], 1, 12),
        days_of_week=_parse_field(parts[4], 0, 6),
    )


def matches_cron(spec, dt) -> bool:
    # cron: 0 = Sunday; datetime.weekday(): 0 = Monday
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def next_fire_time(spec, after):
    """First matching minute strictly after ``after`` (searches one year)."""
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(366 * 24 * 60):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)
    raise ValueError(f"No cron match within 366 days after {after}")


# -------------------------
# Scheduler
# -------------------------
class AutomationScheduler:
    def __init__(self, app, clock=None, jobs=None, tick_interval_seconds=30, runner=None):
        self._app = app
        self._runner = runner or self._run_in_app_context
        self._clock = clock or system_clock
        self._jobs = dict(jobs if jobs is not None else JOBS)
        self._specs = {name: parse_cron(job.cron) for name, job in self._jobs.items()}
        self._last_fired = {}
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread = None

    def due_jobs(self, now):
        minute = now.replace(second=0, microsecond=0)
        return [
            name for name, spec in self._specs.items()
            if matches_cron(spec, minute) and self._last_fired.get(name) != minute
        ]

    def tick(self):
        """Run every job due this minute; returns the names fired."""
        now = self._clock.now()
        minute = now.replace(second=0, microsecond=0)
        fired = []

        for name in self.due_jobs(now):
            if self._stop_event.is_set():
                break
            self._last_fired[name] = minute
            try:
                self._runner(name)
                fired.append(name)
            except Exception:
                logger.exception("scheduler_job_failed", extra={"job": name})

        return fired

    def _run_in_app_context(self, name):
        with self._app.app_context():
            config = AutomationConfig.from_app_config(self._app.config)
            return run_job(name, self._clock, db.session, config)

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="crm-automation-scheduler", daemon=True)
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval, "jobs": sorted(self._jobs)})

    def stop(self, timeout=30.0):
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)


def start_app_scheduler(app, clock=None):
    scheduler = AutomationScheduler(
        app,
        clock=clock,
        tick_interval_seconds=app.config.get("SCHEDULER_TICK_SECONDS", 30),
    )
    app.extensions["crm_scheduler"] = scheduler
    scheduler.start()
    return scheduler
