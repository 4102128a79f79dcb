from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from crm.automation import effects as fx
from crm.automation.jobs import JOBS, run_job, run_rule
from crm.automation.rules import DEFAULT_CONFIG, RULES, SMART_RULES
from crm.automation.store import Store
from crm.engine import documents, ledger
from crm.errors import NotFound
from crm.models import AMC, AuditLog, CallLog, Invoice, Lead, Task
from crm.references import Module, RelatedTo


def _tasks(session, task_type=None):
    q = session.query(Task)
    if task_type:
        q = q.filter_by(task_type=task_type)
    return q.order_by(Task.id).all()


def _days_ago(clock, days):
    return clock.now() - timedelta(days=days)


# -------------------------
# Lead rules
# -------------------------
def test_inactive_lead_follow_up(session, clock, make_lead, make_user):
    owner = make_user("Sales Executive")
    stale = make_lead(assigned_to_id=owner.id, updated_at=_days_ago(clock, 8))
    make_lead(contact_name="Fresh", updated_at=_days_ago(clock, 2))
    make_lead(contact_name="Done", status="Converted", updated_at=_days_ago(clock, 30))

    run = run_rule("inactive-lead-follow-up", clock, session)

    assert (run.emitted, run.applied, run.failed) == (1, 1, 0)
    task = _tasks(session, "Follow-up")[0]
    assert task.related_to == RelatedTo(Module.LEAD, stale.id)
    assert task.priority == "High"
    assert task.assigned_to_id == owner.id
    assert task.due_date == clock.now() + timedelta(days=1)
    assert task.status == "To Do"
    assert task.task_number.startswith(f"TSK{clock.now().year}")


def test_rerun_creates_no_duplicate_task(session, clock, make_lead):
    make_lead(updated_at=_days_ago(clock, 8))
    run_rule("inactive-lead-follow-up", clock, session)
    second = run_rule("inactive-lead-follow-up", clock, session)

    assert second.emitted == 0
    assert len(_tasks(session)) == 1


def test_completed_task_does_not_block_new_one(session, clock, make_lead):
    make_lead(updated_at=_days_ago(clock, 8))
    run_rule("inactive-lead-follow-up", clock, session)
    task = _tasks(session)[0]
    task.status = "Completed"
    session.commit()

    run = run_rule("inactive-lead-follow-up", clock, session)
    assert run.applied == 1
    assert len(_tasks(session)) == 2


def test_inactivity_deprioritization(session, clock, make_lead):
    lead = make_lead(status="In Progress", stage="Qualified", updated_at=_days_ago(clock, 15))
    make_lead(contact_name="Already low", status="In Progress", priority="Low", updated_at=_days_ago(clock, 15))
    make_lead(contact_name="Won", status="In Progress", stage="Won", updated_at=_days_ago(clock, 15))

    run = run_rule("inactivity-deprioritization", clock, session)

    assert run.applied == 1
    lead = session.get(Lead, lead.id)
    assert lead.priority == "Low"
    assert "[AUTO] Marked as low priority" in lead.notes
    actions = {(a.field, a.action) for a in session.query(AuditLog).filter_by(entity="Lead", entity_id=lead.id)}
    assert actions == {("priority", "auto_priority_update"), ("notes", "auto_priority_update")}

    assert run_rule("inactivity-deprioritization", clock, session).emitted == 0


def test_sla_escalation(session, clock, make_lead, admin):
    lead = make_lead(
        status="In Progress", stage="Qualified", expected_revenue=Decimal("60000"),
        created_by_id=admin.id, updated_at=_days_ago(clock, 15),
    )
    make_lead(contact_name="Small", status="In Progress", expected_revenue=Decimal("40000"),
              updated_at=_days_ago(clock, 15))
    make_lead(contact_name="Negotiating", status="In Progress", stage="Negotiation",
              expected_revenue=Decimal("90000"), updated_at=_days_ago(clock, 15))

    run = run_rule("sla-escalation", clock, session)

    assert (run.emitted, run.applied) == (2, 2)
    task = _tasks(session, "Escalation")[0]
    assert task.priority == "Critical"
    assert task.assigned_to_id == admin.id
    assert task.title.startswith("SLA ESCALATION: Ravi Kumar")
    assert session.get(Lead, lead.id).priority == "Critical"


def test_lead_edited_after_evaluation_is_left_alone(session, clock, make_lead):
    lead = make_lead(status="In Progress", stage="Qualified", expected_revenue=Decimal("60000"),
                     updated_at=_days_ago(clock, 15))
    store = Store(session)
    effects = RULES["sla-escalation"](clock, store, DEFAULT_CONFIG)

    lead.notes = "Customer called back"
    session.commit()

    result = fx.apply_effects(effects, store, clock)
    assert (result.applied, result.skipped, result.failed) == (1, 1, 0)
    assert session.get(Lead, lead.id).priority == "Medium"


def test_auto_qualify(session, clock, make_lead, customer):
    lead = make_lead(stage="Contacted", probability=17)
    make_lead(contact_name="Converted", stage="Contacted", converted_to_client_id=customer.id)

    run = run_rule("auto-qualify", clock, session)

    assert run.applied == 1
    lead = session.get(Lead, lead.id)
    assert (lead.stage, lead.probability) == ("Qualified", 33)


def test_auto_qualify_can_be_disabled(session, clock, make_lead):
    make_lead(stage="Contacted")
    config = replace(DEFAULT_CONFIG, lead_stage_auto_update=False)
    assert run_rule("auto-qualify", clock, session, config).emitted == 0


def test_auto_lost(session, clock, make_lead, customer):
    old = make_lead(created_at=_days_ago(clock, 61), probability=30)
    make_lead(contact_name="Recent", created_at=_days_ago(clock, 10))
    make_lead(contact_name="Client now", created_at=_days_ago(clock, 90), converted_to_client_id=customer.id)

    run = run_rule("auto-lost", clock, session)

    assert run.applied == 1
    old = session.get(Lead, old.id)
    assert (old.status, old.stage, old.probability, old.lost_reason) == ("Lost", "Lost", 0, "No Response")
    assert "[AUTO]" in old.lost_reason_details
    assert session.query(AuditLog).filter_by(entity_id=old.id, action="auto_lost").count() == 5


def test_high_value_stalled(session, clock, make_lead):
    lead = make_lead(expected_revenue=Decimal("150000"), updated_at=_days_ago(clock, 6))
    make_lead(contact_name="Moving", expected_revenue=Decimal("150000"), updated_at=_days_ago(clock, 1))

    run = run_rule("high-value-stalled", clock, session)

    assert run.applied == 1
    task = _tasks(session, "High-Value Alert")[0]
    assert task.related_record_id == lead.id
    assert task.priority == "Critical"


# -------------------------
# Call rules
# -------------------------
def test_call_back_follow_up(session, clock, make_call, admin):
    call = make_call(outcome="Call Back Requested", created_at=clock.now() - timedelta(hours=2))
    make_call(outcome="Connected")
    make_call(outcome="Call Back Requested", created_at=_days_ago(clock, 3))

    run = run_rule("call-back-follow-up", clock, session)

    assert (run.emitted, run.applied) == (2, 2)
    call = session.get(CallLog, call.id)
    assert call.follow_up_required is True
    assert call.follow_up_date == call.created_at + timedelta(hours=24)
    task = _tasks(session, "Follow-up")[0]
    assert task.related_to == RelatedTo(Module.CALL_LOG, call.id)
    assert task.assigned_to_id == admin.id

    assert run_rule("call-back-follow-up", clock, session).emitted == 0


def test_call_follow_up_reminder(session, clock, make_call):
    make_call(follow_up_required=True, follow_up_date=clock.now() + timedelta(minutes=30))
    make_call(follow_up_required=True, follow_up_date=clock.now() + timedelta(hours=3))
    make_call(follow_up_required=True, follow_up_completed=True, follow_up_date=clock.now() + timedelta(minutes=10))

    run = run_rule("call-follow-up-reminder", clock, session)
    assert (run.emitted, run.applied) == (1, 1)
    assert _tasks(session) == []


# -------------------------
# Invoice + AMC rules
# -------------------------
def test_payment_reminder_priorities(session, clock, make_invoice, admin):
    tomorrow = make_invoice(due_in_days=1, created_by=admin)
    in_three = make_invoice(due_in_days=3)
    make_invoice(due_in_days=10)
    paid = make_invoice(due_in_days=1)
    ledger.record_payment(paid.id, paid.grand_total, clock=clock)

    run = run_rule("payment-reminder", clock, session)

    assert run.applied == 2
    by_invoice = {t.related_record_id: t for t in _tasks(session, "Payment Reminder")}
    assert set(by_invoice) == {tomorrow.id, in_three.id}
    assert by_invoice[tomorrow.id].priority == "Critical"
    assert by_invoice[tomorrow.id].assigned_to_id == admin.id
    assert by_invoice[in_three.id].priority == "High"
    assert by_invoice[in_three.id].due_date == in_three.due_date


def test_payment_reminder_covers_overdue(session, clock, make_invoice):
    inv = make_invoice(due_in_days=1)
    clock.advance(days=5)
    run_rule("payment-reminder", clock, session)
    task = _tasks(session, "Payment Reminder")[0]
    assert task.related_record_id == inv.id
    assert task.priority == "Critical"


def test_amc_renewal_reminder(session, clock, make_amc):
    soon = make_amc(days=5, auto_renewal=True)
    later = make_amc(days=20, auto_renewal=True)
    manual = make_amc(days=20)
    make_amc(days=200, auto_renewal=True)

    run = run_rule("amc-renewal-reminder", clock, session)

    assert (run.emitted, run.applied) == (4, 4)
    by_amc = {t.related_record_id: t for t in _tasks(session, "AMC Renewal")}
    assert by_amc[soon.id].priority == "Critical"
    assert by_amc[later.id].priority == "High"
    assert manual.id not in by_amc
    assert session.get(AMC, soon.id).renewal_notification_sent is True
    assert session.get(AMC, manual.id).renewal_notification_sent is False

    assert run_rule("amc-renewal-reminder", clock, session).emitted == 0


def test_amc_renewal_notice_marks_all_expiring(session, clock, make_amc):
    a = make_amc(days=20)
    b = make_amc(days=25, auto_renewal=True)

    run = run_rule("amc-renewal-notice", clock, session)

    assert (run.emitted, run.applied) == (4, 4)
    assert session.get(AMC, a.id).renewal_notification_sent is True
    assert session.get(AMC, b.id).renewal_notification_sent is True
    assert _tasks(session) == []


def test_task_deadline_reminder(session, clock):
    session.add_all([
        Task(task_number="TSK-A", title="Send proposal", due_date=clock.now() + timedelta(hours=6)),
        Task(task_number="TSK-B", title="Later", due_date=clock.now() + timedelta(days=3)),
        Task(task_number="TSK-C", title="Done", status="Completed", due_date=clock.now() + timedelta(hours=2)),
    ])
    session.commit()

    run = run_rule("task-deadline-reminder", clock, session)
    assert (run.emitted, run.applied) == (1, 1)


# -------------------------
# Sweeps
# -------------------------
def test_amc_expiry_sweep(session, clock, make_amc):
    lapsing = make_amc(days=1)
    running = make_amc(days=200)

    clock.advance(days=2)
    run = run_rule("amc-expiry-sweep", clock, session)

    assert run.applied == 1
    assert session.get(AMC, lapsing.id).status == "Expired"
    assert session.get(AMC, running.id).status == "Active"


def test_overdue_sweep(session, clock, make_invoice):
    unpaid = make_invoice(due_in_days=1)
    partial = make_invoice(due_in_days=1)
    ledger.record_payment(partial.id, "100", clock=clock)
    cancelled = make_invoice(due_in_days=1, send=False)
    documents.cancel_invoice(cancelled)
    session.commit()

    clock.advance(days=2)
    runs = run_job("payment-overdue-alerts", clock, session)

    assert [r.to_dict() for r in runs] == [
        {"rule": "overdue-sweep", "emitted": 2, "applied": 2, "skipped": 0, "failed": 0, "error": None},
    ]
    assert session.get(Invoice, unpaid.id).status == "Overdue"
    assert session.get(Invoice, partial.id).status == "Overdue"
    assert session.get(Invoice, partial.id).payment_status == "Partial"
    assert session.get(Invoice, cancelled.id).status == "Cancelled"


# -------------------------
# Applier + jobs
# -------------------------
def test_applier_rechecks_open_task(session, clock, make_lead):
    lead = make_lead()
    effect = fx.CreateTask(
        ref=RelatedTo(Module.LEAD, lead.id), task_type="Follow-up", title="Call", due_date=clock.now(),
    )
    store = Store(session)
    first = fx.apply_effects([effect], store, clock)
    second = fx.apply_effects([effect], store, clock)

    assert (first.applied, second.skipped) == (1, 1)
    assert len(_tasks(session)) == 1


def test_update_on_missing_target_is_skipped(session, clock):
    effect = fx.UpdateEntity(ref=RelatedTo(Module.LEAD, 404), changes={"priority": "Low"})
    result = fx.apply_effects([effect], Store(session), clock)
    assert (result.applied, result.skipped) == (0, 1)


def test_failed_effect_does_not_block_the_rest(session, clock, make_lead):
    lead = make_lead()
    ref = RelatedTo(Module.LEAD, lead.id)
    bad = fx.CreateTask(ref=ref, task_type="Call", title=None, due_date=clock.now())
    good = fx.CreateTask(ref=ref, task_type="Follow-up", title="Call back", due_date=clock.now())

    result = fx.apply_effects([bad, good], Store(session), clock)

    assert (result.applied, result.failed) == (1, 1)
    assert result.errors and "IntegrityError" in result.errors[0]
    assert [t.title for t in _tasks(session)] == ["Call back"]


def test_failing_rule_does_not_stop_job(session, clock, make_lead, monkeypatch):
    make_lead(stage="Contacted")

    def broken(clock, store, config):
        raise RuntimeError("rule exploded")

    monkeypatch.setitem(RULES, "inactive-lead-follow-up", broken)
    runs = {r.rule: r for r in run_job("smart-automation", clock, session)}

    assert list(runs) == list(SMART_RULES)
    assert runs["inactive-lead-follow-up"].error == "RuntimeError: rule exploded"
    assert runs["auto-qualify"].applied == 1


def test_job_rerun_is_idempotent(session, clock, make_lead, make_call, make_invoice, make_amc):
    make_lead(status="In Progress", expected_revenue=Decimal("150000"), updated_at=_days_ago(clock, 20))
    make_lead(stage="Contacted")
    make_call(outcome="Call Back Requested")
    make_invoice(due_in_days=2)
    make_amc(days=10, auto_renewal=True)

    first = run_job("smart-automation", clock, session)
    tasks_after_first = len(_tasks(session))
    second = run_job("smart-automation", clock, session)

    assert all(r.error is None for r in first + second)
    assert tasks_after_first > 0
    assert len(_tasks(session)) == tasks_after_first


def test_stale_high_value_lead_is_escalated_not_deprioritized(session, clock, make_lead):
    lead = make_lead(status="In Progress", stage="Qualified", expected_revenue=Decimal("80000"),
                     updated_at=_days_ago(clock, 15))

    runs = {r.rule: r for r in run_job("smart-automation", clock, session)}

    assert runs["sla-escalation"].applied == 2
    assert runs["inactivity-deprioritization"].emitted == 0
    assert len(_tasks(session, "Escalation")) == 1
    assert session.get(Lead, lead.id).priority == "Critical"


def test_unknown_rule_and_job(session, clock):
    with pytest.raises(NotFound):
        run_rule("nope", clock, session)
    with pytest.raises(NotFound):
        run_job("nope", clock, session)


def test_job_table():
    assert JOBS["smart-automation"].rules == tuple(SMART_RULES)
    assert JOBS["amc-status-update"].cron == "0 0 * * *"
    assert all(rule in RULES for job in JOBS.values() for rule in job.rules)
