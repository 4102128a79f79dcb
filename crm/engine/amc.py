"""AMC lifecycle: service-count derivation, renewal, service visits, expiry."""

import math

from .. import db
from ..clock import system_clock
from ..errors import InvalidDateRange, InvalidTransition, NotFound, ValidationError
from ..logging_config import get_logger
from ..models import AMC, AMCService
from ..numbering import next_number
from .money import _d
from .status import AMC_SERVICE_STATUS, AMC_STATUS, transition

logger = get_logger(__name__)

SECONDS_PER_MONTH = 30 * 24 * 60 * 60

# months per visit; Weekly/Bi-Weekly are approximations kept for compatibility
SERVICE_FREQUENCY_MONTHS = {
    "Weekly": 0.23,
    "Bi-Weekly": 0.46,
    "Monthly": 1,
    "Quarterly": 3,
    "Half-Yearly": 6,
    "Yearly": 12,
}

PAYMENT_TERMS = ("Advance", "Monthly", "Quarterly", "Half-Yearly", "Yearly")


def derive_duration_months(start, end) -> int:
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        raise InvalidDateRange(start, end)
    return math.ceil(seconds / SECONDS_PER_MONTH)


def derive_service_count(start, end, frequency) -> int:
    if frequency not in SERVICE_FREQUENCY_MONTHS:
        raise ValidationError(f"Unknown service frequency: {frequency!r}")
    months = derive_duration_months(start, end)
    return math.ceil(months / SERVICE_FREQUENCY_MONTHS[frequency])


def new_contract(client, contract_name, service_type, start_date, end_date, service_frequency,
                 contract_value=0, payment_terms="Advance", auto_renewal=False,
                 renewal_reminder_days=30, assigned_to=None, created_by=None,
                 terms_and_conditions=None, notes=None, clock=system_clock):
    if client is None:
        raise ValidationError("client is required")
    if payment_terms not in PAYMENT_TERMS:
        raise ValidationError(f"Unknown payment terms: {payment_terms!r}")
    if _d(contract_value) < 0:
        raise ValidationError("contract_value cannot be negative")

    amc = AMC(
        amc_number=next_number(AMC, clock.now()),
        client=client,
        contract_name=contract_name,
        service_type=service_type,
        start_date=start_date,
        end_date=end_date,
        duration=derive_duration_months(start_date, end_date),
        service_frequency=service_frequency,
        number_of_services=derive_service_count(start_date, end_date, service_frequency),
        services_completed=0,
        contract_value=_d(contract_value),
        payment_terms=payment_terms,
        status="Active",
        auto_renewal=auto_renewal,
        renewal_reminder_days=renewal_reminder_days,
        renewal_notification_sent=False,
        assigned_to_id=getattr(assigned_to, "id", assigned_to),
        created_by_id=getattr(created_by, "id", created_by),
        terms_and_conditions=terms_and_conditions,
        notes=notes,
    )
    db.session.add(amc)
    logger.info("amc_created", extra={"amc_number": amc.amc_number, "number_of_services": amc.number_of_services})
    return amc


def renew(old, new_end_date, clock=system_clock, created_by=None):
    """Start a contiguous successor contract and mark ``old`` Renewed."""
    if old is None:
        raise NotFound("AMC", None)
    if new_end_date <= old.end_date:
        raise InvalidDateRange(old.end_date, new_end_date, "New end date must be after current end date")
    if old.status != "Active":
        raise InvalidTransition("AMC", "status", old.status, "Renewed")

    new_start = old.end_date
    new = AMC(
        amc_number=next_number(AMC, clock.now()),
        client_id=old.client_id,
        contract_name=old.contract_name,
        service_type=old.service_type,
        start_date=new_start,
        end_date=new_end_date,
        duration=derive_duration_months(new_start, new_end_date),
        service_frequency=old.service_frequency,
        number_of_services=derive_service_count(new_start, new_end_date, old.service_frequency),
        services_completed=0,
        contract_value=old.contract_value,
        payment_terms=old.payment_terms,
        status="Active",
        auto_renewal=old.auto_renewal,
        renewal_reminder_days=old.renewal_reminder_days,
        renewal_notification_sent=False,
        assigned_to_id=old.assigned_to_id,
        renewed_from_id=old.id,
        created_by_id=getattr(created_by, "id", created_by),
    )
    db.session.add(new)
    db.session.flush()

    transition(old, AMC_STATUS, "Renewed")
    old.renewed_to_id = new.id

    logger.info("amc_renewed", extra={"old_amc": old.amc_number, "new_amc": new.amc_number})
    return new


# -------------------------
# Service visits
# -------------------------
def _service_at(amc, index):
    services = amc.services
    if index < 0 or index >= len(services):
        raise NotFound("AMCService", f"{amc.amc_number}#{index}")
    return services[index]


def schedule_service(amc, scheduled_date, description=None, assigned_to=None, clock=system_clock):
    if scheduled_date is None:
        raise ValidationError("scheduled_date is required")
    if amc.status in ("Expired", "Cancelled"):
        raise InvalidTransition(
            "AMC", "services", amc.status, "Scheduled",
            f"Cannot schedule service for {amc.status} AMC",
        )

    service = AMCService(
        service_date=clock.now(),
        scheduled_date=scheduled_date,
        status="Scheduled",
        description=description,
        assigned_to_id=getattr(assigned_to, "id", assigned_to) or amc.assigned_to_id,
    )
    amc.services.append(service)
    return service


def complete_service(amc, index, completed_by=None, work_performed=None, feedback=None,
                     rating=None, remarks=None, clock=system_clock):
    service = _service_at(amc, index)
    if rating is not None and not 1 <= int(rating) <= 5:
        raise ValidationError(f"Rating must be between 1 and 5; got {rating}")

    transition(service, AMC_SERVICE_STATUS, "Completed")
    service.completed_at = clock.now()
    service.completed_by_id = getattr(completed_by, "id", completed_by)
    service.work_performed = work_performed
    service.feedback = feedback
    service.rating = int(rating) if rating is not None else None
    if remarks is not None:
        service.remarks = remarks

    amc.services_completed = (amc.services_completed or 0) + 1
    return service


def mark_service_missed(amc, index, remarks=None):
    service = _service_at(amc, index)
    transition(service, AMC_SERVICE_STATUS, "Missed")
    if remarks is not None:
        service.remarks = remarks
    return service


def reschedule_service(amc, index, new_date, remarks=None):
    if new_date is None:
        raise ValidationError("scheduled_date is required")
    service = _service_at(amc, index)
    transition(service, AMC_SERVICE_STATUS, "Rescheduled")
    service.scheduled_date = new_date
    if remarks is not None:
        service.remarks = remarks
    return service


def cancel_service(amc, index, remarks=None):
    service = _service_at(amc, index)
    transition(service, AMC_SERVICE_STATUS, "Cancelled")
    if remarks is not None:
        service.remarks = remarks
    return service


# -------------------------
# Contract status
# -------------------------
def put_on_hold(amc):
    transition(amc, AMC_STATUS, "On Hold")
    return amc


def resume(amc):
    transition(amc, AMC_STATUS, "Active")
    return amc


def cancel_contract(amc):
    transition(amc, AMC_STATUS, "Cancelled")
    logger.info("amc_cancelled", extra={"amc_number": amc.amc_number})
    return amc


def is_lapsed(amc, now) -> bool:
    return amc.status == "Active" and amc.end_date < now


def expire(amc, clock=system_clock):
    if not is_lapsed(amc, clock.now()):
        raise InvalidTransition("AMC", "status", amc.status, "Expired", f"AMC {amc.amc_number} has not lapsed")
    transition(amc, AMC_STATUS, "Expired")
    return amc
