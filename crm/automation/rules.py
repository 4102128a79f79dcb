"""Automation rules.

Each rule is ``rule(clock, store, config) -> list[Effect]``: it reads
through the store, decides, and returns effects. Rules do not write.
Lead updates are guarded on ``updated_at`` so a lead edited between
evaluation and apply is left alone.
"""

import math
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from ..models import AMC, CallLog, Invoice, Lead, Task
from ..references import ref_to
from ..settings import DEFAULT_SALES_SETTINGS, SalesSettings, stage_probability
from .effects import CreateTask, Noop, UpdateEntity
from .store import OPEN_TASK_STATUSES


@dataclass(frozen=True)
class AutomationConfig:
    lead_inactivity_days: int = 7
    sla_escalation_days: int = 14
    follow_up_delay_hours: int = 24
    payment_reminder_days: int = 3
    amc_renewal_days: int = 30
    auto_lost_days: int = 60
    stalled_days: int = 5
    sla_revenue: Decimal = Decimal("50000")
    high_value_revenue: Decimal = Decimal("100000")
    lead_stage_auto_update: bool = True
    sales: SalesSettings = field(default=DEFAULT_SALES_SETTINGS)

    @classmethod
    def from_app_config(cls, cfg):
        return cls(
            lead_inactivity_days=cfg.get("AUTOMATION_LEAD_INACTIVITY_DAYS", 7),
            sla_escalation_days=cfg.get("AUTOMATION_SLA_ESCALATION_DAYS", 14),
            follow_up_delay_hours=cfg.get("AUTOMATION_FOLLOW_UP_DELAY_HOURS", 24),
            payment_reminder_days=cfg.get("AUTOMATION_PAYMENT_REMINDER_DAYS", 3),
            amc_renewal_days=cfg.get("AUTOMATION_AMC_RENEWAL_DAYS", 30),
            auto_lost_days=cfg.get("AUTOMATION_AUTO_LOST_DAYS", 60),
            stalled_days=cfg.get("AUTOMATION_STALLED_DAYS", 5),
            sla_revenue=Decimal(str(cfg.get("AUTOMATION_SLA_REVENUE", 50000))),
            high_value_revenue=Decimal(str(cfg.get("AUTOMATION_HIGH_VALUE_REVENUE", 100000))),
            lead_stage_auto_update=cfg.get("AUTOMATION_LEAD_STAGE_AUTO_UPDATE", True),
            sales=SalesSettings.from_mapping(cfg.get("SALES_SETTINGS")),
        )


DEFAULT_CONFIG = AutomationConfig()

DAY = timedelta(days=1)


def _days_until(when, now):
    return math.ceil((when - now).total_seconds() / DAY.total_seconds())


def _lead_guard(lead, **extra):
    guard = {"updated_at": lead.updated_at}
    guard.update(extra)
    return guard


# -------------------------
# Follow-ups
# -------------------------
def inactive_lead_follow_up(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    threshold = now - timedelta(days=config.lead_inactivity_days)
    leads = store.find(Lead, Lead.status.in_(("Open", "In Progress")), Lead.updated_at < threshold)

    effects = []
    for lead in leads:
        ref = ref_to(lead)
        if store.has_open_task(ref, "Follow-up"):
            continue
        effects.append(CreateTask(
            ref=ref,
            task_type="Follow-up",
            title=f"Follow-up with {lead.contact_name} ({lead.company_name or 'Individual'})",
            description=(
                f"Lead has been inactive for {config.lead_inactivity_days} days. "
                f"Last update: {lead.updated_at.isoformat()}. Contact them to progress the opportunity."
            ),
            priority="High",
            due_date=now + DAY,
            assigned_to_id=lead.assigned_to_id,
            created_by_id=lead.assigned_to_id,
        ))
    return effects


def call_back_follow_up(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    calls = store.find(
        CallLog,
        CallLog.outcome == "Call Back Requested",
        CallLog.follow_up_required.is_(False),
        CallLog.created_at > now - DAY,
    )

    effects = []
    for call in calls:
        ref = ref_to(call)
        follow_up_date = call.created_at + timedelta(hours=config.follow_up_delay_hours)
        if not store.has_open_task(ref, "Follow-up"):
            effects.append(CreateTask(
                ref=ref,
                task_type="Follow-up",
                title=f"Call back {call.contact_person}",
                description=f"Follow-up on call. Notes: {call.summary or ''}",
                priority="High",
                due_date=follow_up_date,
                assigned_to_id=call.created_by_id,
                created_by_id=call.created_by_id,
            ))
        effects.append(UpdateEntity(
            ref=ref,
            changes={"follow_up_required": True, "follow_up_date": follow_up_date},
            guard={"follow_up_required": False},
        ))
    return effects


# -------------------------
# Lead hygiene
# -------------------------
def inactivity_deprioritization(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    threshold = now - timedelta(days=config.sla_escalation_days)
    leads = store.find(
        Lead,
        Lead.status == "In Progress",
        Lead.stage.notin_(("Won", "Lost")),
        Lead.updated_at < threshold,
    )

    effects = []
    for lead in leads:
        if lead.priority == "Low":
            continue
        note = f"\n[AUTO] Marked as low priority due to inactivity on {now.isoformat()}"
        effects.append(UpdateEntity(
            ref=ref_to(lead),
            changes={"priority": "Low", "notes": (lead.notes or "") + note},
            guard=_lead_guard(lead, status="In Progress"),
            audit_action="auto_priority_update",
            note="Auto-priority lowered due to inactivity",
        ))
    return effects


def sla_escalation(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    threshold = now - timedelta(days=config.sla_escalation_days)
    leads = store.find(
        Lead,
        Lead.expected_revenue > config.sla_revenue,
        Lead.stage.notin_(("Won", "Lost", "Proposal Sent", "Negotiation")),
        Lead.updated_at < threshold,
        Lead.status == "In Progress",
    )

    effects = []
    for lead in leads:
        ref = ref_to(lead)
        if store.has_open_task(ref, "Escalation"):
            continue
        owner = lead.assigned_to.name if lead.assigned_to else "Unassigned"
        effects.append(CreateTask(
            ref=ref,
            task_type="Escalation",
            title=f"SLA ESCALATION: {lead.contact_name} - Revenue {lead.expected_revenue}",
            description=(
                f'High-value lead stuck in "{lead.stage}" stage for {config.sla_escalation_days} days. '
                f"Expected revenue: {lead.expected_revenue}. Assigned to: {owner}"
            ),
            priority="Critical",
            due_date=now,
            assigned_to_id=lead.created_by_id,
        ))
        effects.append(UpdateEntity(
            ref=ref,
            changes={"priority": "Critical"},
            guard=_lead_guard(lead),
        ))
    return effects


def auto_qualify(clock, store, config=DEFAULT_CONFIG):
    if not config.lead_stage_auto_update:
        return []

    leads = store.find(Lead, Lead.stage == "Contacted", Lead.converted_to_client_id.is_(None))
    probability = stage_probability("Qualified", config.sales)

    effects = []
    for lead in leads:
        changes = {"stage": "Qualified"}
        if probability is not None:
            changes["probability"] = probability
        effects.append(UpdateEntity(
            ref=ref_to(lead),
            changes=changes,
            guard=_lead_guard(lead, stage="Contacted", converted_to_client_id=None),
        ))
    return effects


def auto_lost(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    threshold = now - timedelta(days=config.auto_lost_days)
    leads = store.find(
        Lead,
        Lead.status == "Open",
        Lead.created_at < threshold,
        Lead.converted_to_client_id.is_(None),
    )

    return [
        UpdateEntity(
            ref=ref_to(lead),
            changes={
                "status": "Lost",
                "stage": "Lost",
                "probability": 0,
                "lost_reason": "No Response",
                "lost_reason_details": (
                    f"[AUTO] Automatically marked as lost due to {config.auto_lost_days}+ days of inactivity"
                ),
            },
            guard=_lead_guard(lead, status="Open", converted_to_client_id=None),
            audit_action="auto_lost",
            note="Auto-marked lost due to inactivity",
        )
        for lead in leads
    ]


def high_value_stalled(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    threshold = now - timedelta(days=config.stalled_days)
    leads = store.find(
        Lead,
        Lead.expected_revenue > config.high_value_revenue,
        Lead.status.in_(("Open", "In Progress")),
        Lead.stage.notin_(("Won", "Lost")),
        Lead.updated_at < threshold,
    )

    effects = []
    for lead in leads:
        ref = ref_to(lead)
        if store.has_open_task(ref, "High-Value Alert"):
            continue
        effects.append(CreateTask(
            ref=ref,
            task_type="High-Value Alert",
            title=f"HIGH-VALUE STALLED: {lead.contact_name} - {lead.expected_revenue}",
            description=(
                f"Opportunity worth {lead.expected_revenue} has been stalled at "
                f'"{lead.stage}" stage for {config.stalled_days} days. Immediate attention required.'
            ),
            priority="Critical",
            due_date=now,
            assigned_to_id=lead.assigned_to_id,
            created_by_id=lead.assigned_to_id,
        ))
    return effects


# -------------------------
# Money + contracts
# -------------------------
def payment_reminder(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    invoices = store.find(
        Invoice,
        Invoice.due_date <= now + timedelta(days=config.payment_reminder_days),
        Invoice.payment_status.in_(("Unpaid", "Partial")),
        Invoice.status != "Cancelled",
    )

    effects = []
    for inv in invoices:
        ref = ref_to(inv)
        if store.has_open_task(ref, "Payment Reminder"):
            continue
        days = _days_until(inv.due_date, now)
        if days <= 1:
            priority = "Critical"
        elif days <= 3:
            priority = "High"
        else:
            priority = "Medium"
        client_name = inv.client.client_name if inv.client else ""
        effects.append(CreateTask(
            ref=ref,
            task_type="Payment Reminder",
            title=f"Payment due: {inv.invoice_number} ({client_name})",
            description=(
                f"Invoice {inv.invoice_number} is due in {days} days. "
                f"Amount: {inv.balance_amount}. Due Date: {inv.due_date.date().isoformat()}"
            ),
            priority=priority,
            due_date=inv.due_date,
            assigned_to_id=inv.created_by_id,
            created_by_id=inv.created_by_id,
        ))
    return effects


def _renewal_candidates(store, now, config, auto_renewal_only):
    criteria = [
        AMC.status == "Active",
        AMC.end_date >= now,
        AMC.end_date <= now + timedelta(days=config.amc_renewal_days),
        AMC.renewal_notification_sent.is_(False),
    ]
    if auto_renewal_only:
        criteria.append(AMC.auto_renewal.is_(True))
    return store.find(AMC, *criteria)


def _mark_notified(amc):
    return UpdateEntity(
        ref=ref_to(amc),
        changes={"renewal_notification_sent": True},
        guard={"status": "Active", "renewal_notification_sent": False},
    )


def amc_renewal_reminder(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    effects = []
    for amc in _renewal_candidates(store, now, config, auto_renewal_only=True):
        ref = ref_to(amc)
        days = _days_until(amc.end_date, now)
        client_name = amc.client.client_name if amc.client else ""
        if not store.has_open_task(ref, "AMC Renewal"):
            effects.append(CreateTask(
                ref=ref,
                task_type="AMC Renewal",
                title=f"AMC Renewal: {amc.contract_name} ({client_name})",
                description=(
                    f"AMC {amc.amc_number} expires in {days} days. "
                    f"Contract Value: {amc.contract_value}. Auto-renewal: {'Yes' if amc.auto_renewal else 'No'}"
                ),
                priority="Critical" if days <= 7 else "High",
                due_date=amc.end_date,
                assigned_to_id=amc.assigned_to_id,
                created_by_id=amc.assigned_to_id,
            ))
        effects.append(_mark_notified(amc))
    return effects


def amc_renewal_notice(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    effects = []
    for amc in _renewal_candidates(store, now, config, auto_renewal_only=False):
        client_name = amc.client.client_name if amc.client else ""
        effects.append(Noop(
            ref=ref_to(amc),
            reason=f"AMC {amc.amc_number} for {client_name} expiring on {amc.end_date.isoformat()}",
        ))
        effects.append(_mark_notified(amc))
    return effects


# -------------------------
# Reminders (log only)
# -------------------------
def task_deadline_reminder(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    tasks = store.find(
        Task,
        Task.due_date >= now,
        Task.due_date <= now + DAY,
        Task.status.in_(OPEN_TASK_STATUSES),
    )
    return [
        Noop(ref=task.related_to, reason=f'Task {task.task_number} "{task.title}" due on {task.due_date.isoformat()}')
        for task in tasks
    ]


def call_follow_up_reminder(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    calls = store.find(
        CallLog,
        CallLog.follow_up_required.is_(True),
        CallLog.follow_up_completed.is_(False),
        CallLog.follow_up_date >= now,
        CallLog.follow_up_date <= now + timedelta(hours=1),
    )
    return [
        Noop(ref=ref_to(call), reason=f"Follow-up required for call {call.call_number}")
        for call in calls
    ]


# -------------------------
# Sweeps
# -------------------------
def amc_expiry_sweep(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    amcs = store.find(AMC, AMC.status == "Active", AMC.end_date < now)
    return [
        UpdateEntity(ref=ref_to(amc), changes={"status": "Expired"}, guard={"status": "Active"})
        for amc in amcs
    ]


def overdue_sweep(clock, store, config=DEFAULT_CONFIG):
    now = clock.now()
    invoices = store.find(
        Invoice,
        Invoice.due_date < now,
        Invoice.payment_status.in_(("Unpaid", "Partial")),
        Invoice.status.notin_(("Cancelled", "Overdue")),
    )
    return [
        UpdateEntity(
            ref=ref_to(inv),
            changes={"status": "Overdue"},
            guard={"status": inv.status, "payment_status": inv.payment_status},
        )
        for inv in invoices
    ]


SMART_RULES = {
    "inactive-lead-follow-up": inactive_lead_follow_up,
    "call-back-follow-up": call_back_follow_up,
    # must precede inactivity-deprioritization, whose update bumps updated_at
    "sla-escalation": sla_escalation,
    "inactivity-deprioritization": inactivity_deprioritization,
    "auto-qualify": auto_qualify,
    "auto-lost": auto_lost,
    "payment-reminder": payment_reminder,
    "amc-renewal-reminder": amc_renewal_reminder,
    "high-value-stalled": high_value_stalled,
}

RULES = dict(SMART_RULES)
RULES.update({
    "amc-renewal-notice": amc_renewal_notice,
    "task-deadline-reminder": task_deadline_reminder,
    "call-follow-up-reminder": call_follow_up_reminder,
    "amc-expiry-sweep": amc_expiry_sweep,
    "overdue-sweep": overdue_sweep,
})
