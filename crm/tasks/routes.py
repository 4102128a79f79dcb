# crm/tasks/routes.py

from flask import Blueprint
from flask_login import login_required, current_user

from .. import db
from ..api import get_or_404, ok, require_capability, row_to_dict
from ..capabilities import filter_fields
from ..models import Task
from ..references import resolve

tasks_bp = Blueprint("tasks", __name__)


@tasks_bp.route("/<int:task_id>/related", methods=["GET"])
@login_required
@require_capability("tasks.view")
def related_record(task_id):
    """Resolve a task's weak reference; a dangling reference yields null."""
    task = get_or_404(Task, task_id)
    ref = task.related_to
    target = resolve(ref, db.session)

    record = None
    if target is not None:
        record = filter_fields(ref.module.value, row_to_dict(target), current_user.role)

    return ok(
        record,
        module=ref.module.value if ref else None,
        record_id=ref.record_id if ref else None,
    )
