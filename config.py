import os
from dotenv import load_dotenv

load_dotenv()


def _int(name, default):
    return int(os.getenv(name, default))


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-key")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///crm.db")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = os.getenv("LOG_JSON", "0") == "1"

    # automation thresholds
    AUTOMATION_LEAD_INACTIVITY_DAYS = _int("AUTOMATION_LEAD_INACTIVITY_DAYS", 7)
    AUTOMATION_SLA_ESCALATION_DAYS = _int("AUTOMATION_SLA_ESCALATION_DAYS", 14)
    AUTOMATION_FOLLOW_UP_DELAY_HOURS = _int("AUTOMATION_FOLLOW_UP_DELAY_HOURS", 24)
    AUTOMATION_PAYMENT_REMINDER_DAYS = _int("AUTOMATION_PAYMENT_REMINDER_DAYS", 3)
    AUTOMATION_AMC_RENEWAL_DAYS = _int("AUTOMATION_AMC_RENEWAL_DAYS", 30)
    AUTOMATION_AUTO_LOST_DAYS = _int("AUTOMATION_AUTO_LOST_DAYS", 60)
    AUTOMATION_STALLED_DAYS = _int("AUTOMATION_STALLED_DAYS", 5)
    AUTOMATION_SLA_REVENUE = _int("AUTOMATION_SLA_REVENUE", 50000)
    AUTOMATION_HIGH_VALUE_REVENUE = _int("AUTOMATION_HIGH_VALUE_REVENUE", 100000)
    AUTOMATION_LEAD_STAGE_AUTO_UPDATE = os.getenv("AUTOMATION_LEAD_STAGE_AUTO_UPDATE", "1") == "1"

    # payments
    LEDGER_MAX_RETRIES = _int("LEDGER_MAX_RETRIES", 3)

    # scheduler
    SCHEDULER_TICK_SECONDS = _int("SCHEDULER_TICK_SECONDS", 30)
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "0") == "1"


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SCHEDULER_ENABLED = False
    LOG_LEVEL = "WARNING"
