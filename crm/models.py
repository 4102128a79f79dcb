from datetime import datetime
from decimal import Decimal

from flask import current_app, has_app_context
from flask_login import UserMixin
from sqlalchemy import event
from werkzeug.security import generate_password_hash, check_password_hash

from . import db, login_manager
from .clock import system_clock
from .references import Module, RelatedTo

MONEY = db.Numeric(14, 2)


# -------------------------
# Users
# -------------------------
class User(db.Model, UserMixin):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)

    # Super Admin | Admin | Manager | Accountant | Sales Executive | Support Staff
    role = db.Column(db.String(40), nullable=False, default="Sales Executive")
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def has_capability(self, capability: str) -> bool:
        from .capabilities import has_capability
        return has_capability(self.role, capability)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


# -------------------------
# Clients (aggregate root, referenced never owned)
# -------------------------
class Client(db.Model):
    __tablename__ = "clients"
    id = db.Column(db.Integer, primary_key=True)

    client_name = db.Column(db.String(200), nullable=False, index=True)
    company_name = db.Column(db.String(200), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(30), nullable=True)

    # sensitive: hidden from roles without view_sensitive_financials
    gst_number = db.Column(db.String(30), nullable=True)
    pan_number = db.Column(db.String(20), nullable=True)
    credit_limit = db.Column(MONEY, nullable=True)

    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# -------------------------
# Leads
# -------------------------
class Lead(db.Model):
    __tablename__ = "leads"
    id = db.Column(db.Integer, primary_key=True)

    lead_number = db.Column(db.String(30), unique=True, index=True)
    contact_name = db.Column(db.String(120), nullable=False)
    company_name = db.Column(db.String(120))
    email = db.Column(db.String(120), index=True)
    phone = db.Column(db.String(30))
    source = db.Column(db.String(60))

    # stage is validated against SalesSettings.sales_stages, not an enum
    stage = db.Column(db.String(60), nullable=False, default="New", index=True)
    # Open | In Progress | Converted | Lost | On Hold
    status = db.Column(db.String(20), nullable=False, default="Open", index=True)
    # Low | Medium | High | Critical
    priority = db.Column(db.String(20), nullable=False, default="Medium")

    expected_revenue = db.Column(MONEY, default=0)
    probability = db.Column(db.Integer, default=10)
    expected_closure_date = db.Column(db.Date, nullable=True)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    lost_reason = db.Column(db.String(60), nullable=True)
    lost_reason_details = db.Column(db.Text, nullable=True)

    converted_to_client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True)
    converted_to_client = db.relationship("Client", foreign_keys=[converted_to_client_id])
    converted_date = db.Column(db.DateTime, nullable=True)

    next_follow_up_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)


class CallLog(db.Model):
    __tablename__ = "call_logs"
    id = db.Column(db.Integer, primary_key=True)

    call_number = db.Column(db.String(30), unique=True, index=True)
    call_type = db.Column(db.String(20), nullable=False, default="Outgoing")  # Incoming / Outgoing

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    client = db.relationship("Client", foreign_keys=[client_id])

    lead_id = db.Column(db.Integer, db.ForeignKey("leads.id"), nullable=True, index=True)
    lead = db.relationship("Lead", backref=db.backref("call_logs", lazy="dynamic"))

    contact_person = db.Column(db.String(120), nullable=False)
    phone_number = db.Column(db.String(30), nullable=True)
    call_date = db.Column(db.DateTime, default=datetime.utcnow)
    duration = db.Column(db.Integer, default=0)  # seconds

    purpose = db.Column(db.String(30), nullable=True)
    # Connected | Not Connected | Voicemail | Busy | No Answer | Call Back Requested | Resolved | Follow-up Required
    outcome = db.Column(db.String(40), nullable=False)
    summary = db.Column(db.Text, nullable=True)
    next_action = db.Column(db.String(255), nullable=True)

    follow_up_required = db.Column(db.Boolean, default=False, nullable=False)
    follow_up_date = db.Column(db.DateTime, nullable=True)
    follow_up_completed = db.Column(db.Boolean, default=False, nullable=False)

    priority = db.Column(db.String(20), default="Medium")

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# -------------------------
# Quotations
# -------------------------
class Quotation(db.Model):
    __tablename__ = "quotations"
    id = db.Column(db.Integer, primary_key=True)

    quotation_number = db.Column(db.String(30), unique=True, index=True, nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    client = db.relationship("Client", foreign_keys=[client_id])

    lead_id = db.Column(db.Integer, db.ForeignKey("leads.id"), nullable=True, index=True)
    lead = db.relationship("Lead", foreign_keys=[lead_id])

    quotation_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    valid_until = db.Column(db.DateTime, nullable=False)
    subject = db.Column(db.String(255), nullable=False)

    subtotal = db.Column(MONEY, default=0)
    total_discount = db.Column(MONEY, default=0)
    total_tax = db.Column(MONEY, default=0)
    grand_total = db.Column(MONEY, default=0)

    terms_and_conditions = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Draft / Sent / Viewed / Accepted / Rejected / Expired / Converted
    status = db.Column(db.String(20), nullable=False, default="Draft", index=True)
    # Pending / Approved / Rejected
    approval_status = db.Column(db.String(20), nullable=False, default="Pending")

    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    approved_date = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    sent_date = db.Column(db.DateTime, nullable=True)
    viewed_date = db.Column(db.DateTime, nullable=True)
    accepted_date = db.Column(db.DateTime, nullable=True)

    # weak pointer to the invoice produced by conversion (no FK: invoices.quotation_id points back)
    converted_to_invoice_id = db.Column(db.Integer, nullable=True, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship(
        "QuotationItem",
        back_populates="quotation",
        cascade="all, delete-orphan",
        order_by="QuotationItem.sort_order.asc(), QuotationItem.id.asc()",
    )


class QuotationItem(db.Model):
    __tablename__ = "quotation_items"
    id = db.Column(db.Integer, primary_key=True)

    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)
    quotation = db.relationship("Quotation", back_populates="items")

    item_type = db.Column(db.String(20), nullable=False, default="Service")  # Product / Service
    item_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    unit = db.Column(db.String(20), default="Nos")

    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    unit_price = db.Column(MONEY, nullable=False, default=0)
    discount = db.Column(MONEY, default=0)
    discount_type = db.Column(db.String(20), nullable=False, default="Percentage")  # Percentage / Fixed
    tax_rate = db.Column(db.Numeric(6, 2), nullable=False, default=18)

    tax_amount = db.Column(MONEY, default=0)
    total_amount = db.Column(MONEY, default=0)
    sort_order = db.Column(db.Integer, default=0)


# -------------------------
# Invoices + Payments
# -------------------------
class Invoice(db.Model):
    __tablename__ = "invoices"
    id = db.Column(db.Integer, primary_key=True)

    invoice_number = db.Column(db.String(30), unique=True, index=True, nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    client = db.relationship("Client", foreign_keys=[client_id])

    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=True, index=True)
    quotation = db.relationship("Quotation", foreign_keys=[quotation_id])

    invoice_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False, index=True)

    subtotal = db.Column(MONEY, default=0)
    total_discount = db.Column(MONEY, default=0)
    total_tax = db.Column(MONEY, default=0)
    grand_total = db.Column(MONEY, default=0)
    amount_paid = db.Column(MONEY, default=0)
    balance_amount = db.Column(MONEY, default=0)

    # Draft / Sent / Partial / Paid / Overdue / Cancelled
    status = db.Column(db.String(20), nullable=False, default="Draft", index=True)
    # Unpaid / Partial / Paid
    payment_status = db.Column(db.String(20), nullable=False, default="Unpaid", index=True)

    payment_terms = db.Column(db.String(60), default="Net 30")
    notes = db.Column(db.Text, nullable=True)
    terms_and_conditions = db.Column(db.Text, nullable=True)
    sent_date = db.Column(db.DateTime, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # optimistic concurrency token: every UPDATE is "... WHERE version_id = :seen"
    version_id = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_id}

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order.asc(), InvoiceItem.id.asc()",
    )
    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.id.asc()",
    )

    def collected_amount(self):
        return sum((Decimal(str(p.amount)) for p in self.payments if p.status == "Completed"), Decimal("0"))


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    invoice = db.relationship("Invoice", back_populates="items")

    item_type = db.Column(db.String(20), nullable=False, default="Service")
    item_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    hsn_code = db.Column(db.String(20), nullable=True)
    unit = db.Column(db.String(20), default="Nos")

    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    unit_price = db.Column(MONEY, nullable=False, default=0)
    discount = db.Column(MONEY, default=0)
    discount_type = db.Column(db.String(20), nullable=False, default="Percentage")
    cgst = db.Column(db.Numeric(6, 2), nullable=False, default=9)
    sgst = db.Column(db.Numeric(6, 2), nullable=False, default=9)
    igst = db.Column(db.Numeric(6, 2), nullable=False, default=0)

    tax_amount = db.Column(MONEY, default=0)
    total_amount = db.Column(MONEY, default=0)
    sort_order = db.Column(db.Integer, default=0)


class Payment(db.Model):
    __tablename__ = "payments"
    id = db.Column(db.Integer, primary_key=True)

    payment_number = db.Column(db.String(30), unique=True, index=True, nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    invoice = db.relationship("Invoice", back_populates="payments")

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    client = db.relationship("Client", foreign_keys=[client_id])

    payment_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    amount = db.Column(MONEY, nullable=False)

    # Cash / Cheque / Bank Transfer / UPI / Card / Online / Other
    payment_mode = db.Column(db.String(30), nullable=False)
    transaction_id = db.Column(db.String(120), nullable=True)
    cheque_number = db.Column(db.String(40), nullable=True)
    cheque_date = db.Column(db.Date, nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)
    receipt_number = db.Column(db.String(40), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Pending / Completed / Failed / Cancelled
    status = db.Column(db.String(20), nullable=False, default="Completed")

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# -------------------------
# AMC (annual maintenance contracts)
# -------------------------
class AMC(db.Model):
    __tablename__ = "amcs"
    id = db.Column(db.Integer, primary_key=True)

    amc_number = db.Column(db.String(30), unique=True, index=True, nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    client = db.relationship("Client", foreign_keys=[client_id])

    contract_name = db.Column(db.String(200), nullable=False)
    service_type = db.Column(db.String(120), nullable=False)

    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False, index=True)
    duration = db.Column(db.Integer, nullable=False)  # months

    # Weekly / Bi-Weekly / Monthly / Quarterly / Half-Yearly / Yearly
    service_frequency = db.Column(db.String(20), nullable=False)
    number_of_services = db.Column(db.Integer, nullable=False)
    services_completed = db.Column(db.Integer, nullable=False, default=0)

    contract_value = db.Column(MONEY, nullable=False, default=0)
    # Advance / Monthly / Quarterly / Half-Yearly / Yearly
    payment_terms = db.Column(db.String(20), nullable=False, default="Advance")

    # Active / Expired / Renewed / Cancelled / On Hold
    status = db.Column(db.String(20), nullable=False, default="Active", index=True)

    auto_renewal = db.Column(db.Boolean, default=False, nullable=False)
    renewal_reminder_days = db.Column(db.Integer, default=30)
    renewal_notification_sent = db.Column(db.Boolean, default=False, nullable=False)

    terms_and_conditions = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    # renewal chain (mutually consistent: new.renewed_from_id == old.id, old.renewed_to_id == new.id)
    renewed_from_id = db.Column(db.Integer, db.ForeignKey("amcs.id"), nullable=True)
    renewed_to_id = db.Column(db.Integer, db.ForeignKey("amcs.id"), nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    services = db.relationship(
        "AMCService",
        back_populates="amc",
        cascade="all, delete-orphan",
        order_by="AMCService.id.asc()",
    )


class AMCService(db.Model):
    __tablename__ = "amc_services"
    id = db.Column(db.Integer, primary_key=True)

    amc_id = db.Column(db.Integer, db.ForeignKey("amcs.id"), nullable=False, index=True)
    amc = db.relationship("AMC", back_populates="services")

    service_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    scheduled_date = db.Column(db.DateTime, nullable=False)

    # Scheduled / Completed / Missed / Rescheduled / Cancelled
    status = db.Column(db.String(20), nullable=False, default="Scheduled")

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    description = db.Column(db.Text, nullable=True)
    work_performed = db.Column(db.Text, nullable=True)
    feedback = db.Column(db.Text, nullable=True)
    rating = db.Column(db.Integer, nullable=True)  # 1..5
    remarks = db.Column(db.Text, nullable=True)

    completed_at = db.Column(db.DateTime, nullable=True)
    completed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    completed_by = db.relationship("User", foreign_keys=[completed_by_id])


@event.listens_for(AMC, "before_insert")
@event.listens_for(AMC, "before_update")
def _expire_lapsed_contract(mapper, connection, target):
    clock = current_app.extensions.get("crm_clock", system_clock) if has_app_context() else system_clock
    if target.status == "Active" and target.end_date is not None and target.end_date < clock.now():
        target.status = "Expired"


# -------------------------
# Tasks
# -------------------------
class Task(db.Model):
    __tablename__ = "tasks"
    id = db.Column(db.Integer, primary_key=True)

    task_number = db.Column(db.String(30), unique=True, index=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Call / Meeting / Email / Follow-up / Documentation / Service / General /
    # Escalation / Payment Reminder / AMC Renewal / High-Value Alert / Other
    task_type = db.Column(db.String(30), nullable=False, default="General")
    priority = db.Column(db.String(20), nullable=False, default="Medium")
    # To Do / In Progress / Completed / Cancelled / On Hold
    status = db.Column(db.String(20), nullable=False, default="To Do", index=True)

    due_date = db.Column(db.DateTime, nullable=False, index=True)
    start_date = db.Column(db.DateTime, nullable=True)
    completed_date = db.Column(db.DateTime, nullable=True)

    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    # NULL = created by the automation engine
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    # weak reference, never an ownership edge
    related_module = db.Column(db.String(20), nullable=True, index=True)
    related_record_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def related_to(self):
        if not self.related_module or self.related_record_id is None:
            return None
        return RelatedTo(Module(self.related_module), self.related_record_id)

    @related_to.setter
    def related_to(self, ref):
        if ref is None:
            self.related_module = None
            self.related_record_id = None
        else:
            self.related_module = ref.module.value
            self.related_record_id = ref.record_id


# -------------------------
# Audit
# -------------------------
class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    id = db.Column(db.Integer, primary_key=True)

    entity = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer)
    action = db.Column(db.String(50), nullable=False)
    field = db.Column(db.String(100))
    old_value = db.Column(db.Text)
    new_value = db.Column(db.Text)
    description = db.Column(db.String(255))

    # NULL = system action
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    performed_by = db.relationship("User")

    performed_at = db.Column(db.DateTime, default=datetime.utcnow)
