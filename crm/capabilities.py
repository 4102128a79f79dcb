"""Static role -> capability table and sensitive-field filtering."""

VIEW_SENSITIVE_FINANCIALS = "view_sensitive_financials"

ALL_CAPABILITIES = frozenset({
    "quotations.update",
    "quotations.approve",
    "invoices.update",
    "payments.create",
    "payments.delete",
    "amcs.create",
    "amcs.update",
    "tasks.view",
    "automation.run",
    VIEW_SENSITIVE_FINANCIALS,
})

ROLE_CAPABILITIES = {
    "Super Admin": ALL_CAPABILITIES,
    "Admin": ALL_CAPABILITIES,
    "Manager": frozenset({
        "quotations.update",
        "quotations.approve",
        "invoices.update",
        "payments.create",
        "amcs.create",
        "amcs.update",
        "tasks.view",
        "automation.run",
        VIEW_SENSITIVE_FINANCIALS,
    }),
    "Accountant": frozenset({
        "invoices.update",
        "payments.create",
        "payments.delete",
        "tasks.view",
        VIEW_SENSITIVE_FINANCIALS,
    }),
    "Sales Executive": frozenset({
        "quotations.update",
        "tasks.view",
    }),
    "Support Staff": frozenset({
        "amcs.update",
        "tasks.view",
    }),
}

SENSITIVE_FIELDS = {
    "Client": ("gst_number", "pan_number", "credit_limit"),
    "Lead": ("expected_revenue", "probability"),
}


def has_capability(role, capability):
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def filter_fields(entity, data, role):
    """Drop the entity's sensitive keys from ``data`` unless ``role`` may see them."""
    if data is None or has_capability(role, VIEW_SENSITIVE_FINANCIALS):
        return data
    hidden = SENSITIVE_FIELDS.get(entity, ())
    return {k: v for k, v in data.items() if k not in hidden}


def filter_client(data, role):
    return filter_fields("Client", data, role)


def filter_lead(data, role):
    return filter_fields("Lead", data, role)
