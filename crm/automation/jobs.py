"""Scheduled automation jobs and the rule runner.

A job is a named cron expression plus an ordered tuple of rules. Running a
job runs every rule in isolation: an exception while evaluating one rule is
logged and recorded in that rule's summary, and the next rule still runs.
"""

from dataclasses import asdict, dataclass
from typing import Optional, Tuple

from ..errors import NotFound
from ..logging_config import get_logger
from .effects import apply_effects
from .rules import DEFAULT_CONFIG, RULES, SMART_RULES
from .store import Store

logger = get_logger(__name__)


@dataclass(frozen=True)
class Job:
    name: str
    cron: str
    rules: Tuple[str, ...]
    description: str = ""


JOBS = {
    job.name: job
    for job in (
        Job("smart-automation", "0 7 * * *", tuple(SMART_RULES), "Smart automation rules"),
        Job("task-deadline-reminders", "0 8 * * *", ("task-deadline-reminder",), "Tasks due within 24 hours"),
        Job("amc-renewal-reminders", "0 9 * * *", ("amc-renewal-notice",), "AMCs ending within 30 days"),
        Job("payment-overdue-alerts", "0 10 * * *", ("overdue-sweep",), "Mark overdue invoices"),
        Job("follow-up-reminders", "0 * * * *", ("call-follow-up-reminder",), "Call follow-ups due within the hour"),
        Job("amc-status-update", "0 0 * * *", ("amc-expiry-sweep",), "Expire lapsed AMCs"),
    )
}


@dataclass
class RuleRun:
    rule: str
    emitted: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def run_rule(name, clock, session, config=DEFAULT_CONFIG) -> RuleRun:
    if name not in RULES:
        raise NotFound("Rule", name)

    run = RuleRun(rule=name)
    store = Store(session)
    try:
        effects = RULES[name](clock, store, config)
    except Exception as exc:
        session.rollback()
        run.error = f"{type(exc).__name__}: {exc}"
        logger.exception("automation_rule_failed", extra={"rule": name})
        return run

    run.emitted = len(effects)
    result = apply_effects(effects, store, clock)
    run.applied = result.applied
    run.skipped = result.skipped
    run.failed = result.failed
    if result.errors:
        run.error = result.errors[0]

    logger.info("automation_rule_completed", extra=run.to_dict())
    return run


def run_job(name, clock, session, config=DEFAULT_CONFIG):
    job = JOBS.get(name)
    if job is None:
        raise NotFound("Job", name)

    logger.info("automation_job_started", extra={"job": name})
    runs = [run_rule(rule, clock, session, config) for rule in job.rules]
    logger.info(
        "automation_job_completed",
        extra={"job": name, "applied": sum(r.applied for r in runs), "failed": sum(r.failed for r in runs)},
    )
    return runs
