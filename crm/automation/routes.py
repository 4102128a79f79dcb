# crm/automation/routes.py

from flask import Blueprint, current_app
from flask_login import login_required

from .. import db
from ..api import app_clock, ok, require_capability
from .jobs import JOBS, run_job
from .rules import AutomationConfig

automation_bp = Blueprint("automation", __name__)


@automation_bp.route("/jobs", methods=["GET"])
@login_required
@require_capability("automation.run")
def list_jobs():
    return ok([
        {"name": job.name, "cron": job.cron, "rules": list(job.rules), "description": job.description}
        for job in JOBS.values()
    ])


@automation_bp.route("/jobs/<name>/run", methods=["POST"])
@login_required
@require_capability("automation.run")
def run_job_now(name):
    config = AutomationConfig.from_app_config(current_app.config)
    runs = run_job(name, app_clock(), db.session, config)
    return ok([r.to_dict() for r in runs], job=name)
