"""Effects emitted by automation rules, and the applier that commits them.

Rules never write. They return a list of effects; :func:`apply_effects`
commits each effect in its own short transaction so one bad row cannot
block the rest of a sweep.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from ..audit import log_audit
from ..logging_config import get_logger
from ..models import Task
from ..numbering import next_number
from ..references import RelatedTo, model_for

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreateTask:
    ref: RelatedTo
    task_type: str
    title: str
    due_date: datetime
    priority: str = "Medium"
    description: Optional[str] = None
    assigned_to_id: Optional[int] = None
    created_by_id: Optional[int] = None


@dataclass(frozen=True)
class UpdateEntity:
    """Set ``changes`` on the referenced row if it still matches ``guard``."""

    ref: RelatedTo
    changes: Mapping[str, Any]
    guard: Optional[Mapping[str, Any]] = None
    audit_action: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class Noop:
    """Nothing to write; the reason is logged (stands in for a notification)."""

    ref: Optional[RelatedTo]
    reason: str


@dataclass
class ApplyResult:
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)


def _apply_create_task(effect, store, now):
    if store.has_open_task(effect.ref, effect.task_type):
        logger.debug("automation_task_exists", extra={"ref": str(effect.ref), "task_type": effect.task_type})
        return False

    task = Task(
        task_number=next_number(Task, now),
        title=effect.title,
        description=effect.description,
        task_type=effect.task_type,
        priority=effect.priority,
        status="To Do",
        due_date=effect.due_date,
        assigned_to_id=effect.assigned_to_id,
        created_by_id=effect.created_by_id,
    )
    task.related_to = effect.ref
    store.session.add(task)
    logger.info(
        "automation_task_created",
        extra={"ref": str(effect.ref), "task_type": effect.task_type, "priority": effect.priority},
    )
    return True


def _apply_update(effect, store):
    obj = store.get(model_for(effect.ref.module), effect.ref.record_id)
    if obj is None:
        logger.info("automation_target_missing", extra={"ref": str(effect.ref)})
        return False

    for key, expected in (effect.guard or {}).items():
        if getattr(obj, key) != expected:
            logger.info(
                "automation_guard_mismatch",
                extra={"ref": str(effect.ref), "field": key, "expected": expected, "actual": getattr(obj, key)},
            )
            return False

    for key, val in effect.changes.items():
        old = getattr(obj, key)
        setattr(obj, key, val)
        if effect.audit_action:
            log_audit(
                effect.ref.module.value, obj.id, effect.audit_action,
                field=key, old=old, new=val, description=effect.note,
            )

    logger.info(
        "automation_entity_updated",
        extra={"ref": str(effect.ref), "changes": sorted(effect.changes), "audit_action": effect.audit_action},
    )
    return True


def apply_effect(effect, store, now) -> bool:
    """Apply one effect inside the caller's transaction; False means skipped."""
    if isinstance(effect, Noop):
        logger.info("automation_notice", extra={"ref": str(effect.ref) if effect.ref else None, "reason": effect.reason})
        return True
    if isinstance(effect, CreateTask):
        return _apply_create_task(effect, store, now)
    if isinstance(effect, UpdateEntity):
        return _apply_update(effect, store)
    raise TypeError(f"Unknown effect: {effect!r}")


def apply_effects(effects, store, clock) -> ApplyResult:
    result = ApplyResult()
    now = clock.now()
    session = store.session

    for effect in effects:
        try:
            if apply_effect(effect, store, now):
                session.commit()
                result.applied += 1
            else:
                session.rollback()
                result.skipped += 1
        except Exception as exc:
            session.rollback()
            result.failed += 1
            result.errors.append(f"{type(exc).__name__}: {exc}")
            logger.exception("automation_effect_failed", extra={"effect": type(effect).__name__})

    return result
