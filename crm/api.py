"""Shared pieces of the JSON API: capability checks, error mapping, parsing, serialising."""

from datetime import date, datetime, timezone
from decimal import Decimal
from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import inspect

from . import db, login_manager
from .clock import system_clock
from .errors import CRMError, NotFound, ValidationError
from .logging_config import get_logger

logger = get_logger(__name__)


def require_capability(capability):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"ok": False, "error": "Authentication required"}), 401
            if not current_user.has_capability(capability):
                return jsonify({"ok": False, "error": f"Missing capability: {capability}"}), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def register_error_handlers(app):
    @app.errorhandler(CRMError)
    def handle_crm_error(err):
        db.session.rollback()
        if err.http_status >= 500:
            logger.exception("api_error", extra={"code": err.code})
        else:
            logger.info("api_rejected", extra={"code": err.code, "path": request.path})
        return jsonify(err.to_dict()), err.http_status

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"ok": False, "error": "Authentication required"}), 401


# -------------------------
# Request helpers
# -------------------------
def app_clock():
    return current_app.extensions.get("crm_clock", system_clock)


def get_or_404(model, record_id):
    obj = db.session.get(model, record_id)
    if obj is None:
        raise NotFound(model.__name__, record_id)
    return obj


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_datetime(value, field, required=True):
    """ISO-8601 string -> naive UTC datetime."""
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime; got {value!r}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def items_payload(data):
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    for it in items:
        if not isinstance(it, dict):
            raise ValidationError("each item must be an object")
    return items


# -------------------------
# Serialising
# -------------------------
def _jsonable(val):
    if isinstance(val, Decimal):
        return str(val)
    if isinstance(val, (datetime, date)):
        return val.isoformat()
    return val


def row_to_dict(obj, exclude=("password_hash",)):
    if obj is None:
        return None
    return {
        attr.key: _jsonable(getattr(obj, attr.key))
        for attr in inspect(obj).mapper.column_attrs
        if attr.key not in exclude
    }


def quotation_to_dict(q):
    data = row_to_dict(q)
    data["items"] = [row_to_dict(it) for it in q.items]
    return data


def invoice_to_dict(inv):
    data = row_to_dict(inv)
    data["items"] = [row_to_dict(it) for it in inv.items]
    data["payments"] = [row_to_dict(p) for p in inv.payments]
    return data


def amc_to_dict(amc):
    data = row_to_dict(amc)
    data["services"] = [dict(row_to_dict(s), index=i) for i, s in enumerate(amc.services)]
    return data


def ok(payload=None, status=200, **extra):
    body = {"ok": True}
    if payload is not None:
        body["data"] = payload
    body.update(extra)
    return jsonify(body), status
