from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager

from config import Config

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    from .logging_config import configure_logging
    configure_logging(
        level=app.config.get("LOG_LEVEL", "INFO"),
        json_output=app.config.get("LOG_JSON", False),
    )

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from . import models  # noqa: F401  (registers mappers + AMC expiry listener)
    from .clock import system_clock
    app.extensions.setdefault("crm_clock", system_clock)

    # Blueprints
    from .quotes.routes import quotes_bp
    from .invoices.routes import invoices_bp
    from .payments.routes import payments_bp
    from .amcs.routes import amcs_bp
    from .tasks.routes import tasks_bp
    from .automation.routes import automation_bp
    from .api import register_error_handlers

    app.register_blueprint(quotes_bp, url_prefix="/api/quotations")
    app.register_blueprint(invoices_bp, url_prefix="/api/invoices")
    app.register_blueprint(payments_bp, url_prefix="/api/payments")
    app.register_blueprint(amcs_bp, url_prefix="/api/amcs")
    app.register_blueprint(tasks_bp, url_prefix="/api/tasks")
    app.register_blueprint(automation_bp, url_prefix="/api/automation")
    register_error_handlers(app)

    from .cli import register_cli
    register_cli(app)

    if app.config.get("SCHEDULER_ENABLED"):
        from .automation.scheduler import start_app_scheduler
        start_app_scheduler(app, clock=app.extensions["crm_clock"])

    return app
