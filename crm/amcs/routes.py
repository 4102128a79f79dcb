# crm/amcs/routes.py

from flask import Blueprint
from flask_login import login_required, current_user

from .. import db
from ..api import amc_to_dict, app_clock, get_or_404, json_body, ok, parse_datetime, require_capability
from ..audit import log_audit
from ..engine import amc as amc_engine
from ..models import AMC

amcs_bp = Blueprint("amcs", __name__)


# -------------------------
# Renewal
# -------------------------
@amcs_bp.route("/<int:amc_id>/renew", methods=["POST"])
@login_required
@require_capability("amcs.create")
def renew_amc(amc_id):
    old = get_or_404(AMC, amc_id)
    data = json_body()
    new_end = parse_datetime(data.get("new_end_date"), "new_end_date")

    new = amc_engine.renew(old, new_end, clock=app_clock(), created_by=current_user)
    log_audit("AMC", old.id, "renew", field="renewed_to_id", new=new.id)
    db.session.commit()
    return ok(amc_to_dict(new), status=201, previous=amc_to_dict(old))


# -------------------------
# Contract status
# -------------------------
def _contract_status(amc_id, op, action):
    amc = get_or_404(AMC, amc_id)
    old = amc.status
    op(amc)
    log_audit("AMC", amc.id, action, field="status", old=old, new=amc.status)
    db.session.commit()
    return ok(amc_to_dict(amc))


@amcs_bp.route("/<int:amc_id>/hold", methods=["POST"])
@login_required
@require_capability("amcs.update")
def hold_amc(amc_id):
    return _contract_status(amc_id, amc_engine.put_on_hold, "hold")


@amcs_bp.route("/<int:amc_id>/resume", methods=["POST"])
@login_required
@require_capability("amcs.update")
def resume_amc(amc_id):
    return _contract_status(amc_id, amc_engine.resume, "resume")


@amcs_bp.route("/<int:amc_id>/cancel", methods=["POST"])
@login_required
@require_capability("amcs.update")
def cancel_amc(amc_id):
    return _contract_status(amc_id, amc_engine.cancel_contract, "cancel")


# -------------------------
# Service visits
# -------------------------
@amcs_bp.route("/<int:amc_id>/services", methods=["POST"])
@login_required
@require_capability("amcs.update")
def schedule_service(amc_id):
    amc = get_or_404(AMC, amc_id)
    data = json_body()
    amc_engine.schedule_service(
        amc,
        parse_datetime(data.get("scheduled_date"), "scheduled_date"),
        description=data.get("description"),
        assigned_to=data.get("assigned_to_id"),
        clock=app_clock(),
    )
    db.session.commit()
    return ok(amc_to_dict(amc), status=201)


@amcs_bp.route("/<int:amc_id>/services/<int:index>/complete", methods=["POST"])
@login_required
@require_capability("amcs.update")
def complete_service(amc_id, index):
    amc = get_or_404(AMC, amc_id)
    data = json_body()
    amc_engine.complete_service(
        amc, index,
        completed_by=current_user,
        work_performed=data.get("work_performed"),
        feedback=data.get("feedback"),
        rating=data.get("rating"),
        remarks=data.get("remarks"),
        clock=app_clock(),
    )
    log_audit("AMC", amc.id, "complete_service", field="services_completed", new=amc.services_completed)
    db.session.commit()
    return ok(amc_to_dict(amc))


@amcs_bp.route("/<int:amc_id>/services/<int:index>/miss", methods=["POST"])
@login_required
@require_capability("amcs.update")
def miss_service(amc_id, index):
    amc = get_or_404(AMC, amc_id)
    amc_engine.mark_service_missed(amc, index, remarks=json_body().get("remarks"))
    db.session.commit()
    return ok(amc_to_dict(amc))


@amcs_bp.route("/<int:amc_id>/services/<int:index>/reschedule", methods=["POST"])
@login_required
@require_capability("amcs.update")
def reschedule_service(amc_id, index):
    amc = get_or_404(AMC, amc_id)
    data = json_body()
    amc_engine.reschedule_service(
        amc, index,
        parse_datetime(data.get("scheduled_date"), "scheduled_date"),
        remarks=data.get("remarks"),
    )
    db.session.commit()
    return ok(amc_to_dict(amc))


@amcs_bp.route("/<int:amc_id>/services/<int:index>/cancel", methods=["POST"])
@login_required
@require_capability("amcs.update")
def cancel_service(amc_id, index):
    amc = get_or_404(AMC, amc_id)
    amc_engine.cancel_service(amc, index, remarks=json_body().get("remarks"))
    db.session.commit()
    return ok(amc_to_dict(amc))
