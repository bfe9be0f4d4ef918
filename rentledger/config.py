import os


def _normalize_db_url(url):
    if not url:
        return None
    url = url.strip()
    # Render/Heroku still hand out postgres:// URLs
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def _env_float(name, default):
    return float(os.environ.get(name, default))


def _env_int(name, default):
    return int(os.environ.get(name, default))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret")

    SQLALCHEMY_DATABASE_URI = (
        _normalize_db_url(os.environ.get("DATABASE_URL"))
        or "sqlite:///rentledger.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    # JWT Configuration
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)

    API_PREFIX = "/api"

    # Billing calendar: one operational timezone decides month boundaries
    BILLING_TIMEZONE = os.environ.get("BILLING_TIMEZONE", "Africa/Nairobi")
    HISTORY_MAX_LIMIT = _env_int("HISTORY_MAX_LIMIT", 500)
    # Defaults to <instance>/receipts
    RECEIPTS_DIR = os.environ.get("RECEIPTS_DIR", "")

    # M-Pesa (Daraja) STK push
    MPESA_ENVIRONMENT = os.environ.get("MPESA_ENVIRONMENT", "sandbox")
    MPESA_CONSUMER_KEY = os.environ.get("MPESA_CONSUMER_KEY", "")
    MPESA_CONSUMER_SECRET = os.environ.get("MPESA_CONSUMER_SECRET", "")
    MPESA_BUSINESS_SHORT_CODE = os.environ.get("MPESA_BUSINESS_SHORT_CODE", "174379")
    MPESA_PASSKEY = os.environ.get("MPESA_PASSKEY", "")
    MPESA_CALLBACK_URL = os.environ.get(
        "MPESA_CALLBACK_URL", "https://example.com/api/webhooks/mpesa/stk"
    )
    MPESA_HTTP_TIMEOUT = _env_float("MPESA_HTTP_TIMEOUT", 15)
    MPESA_POLL_INTERVAL = _env_float("MPESA_POLL_INTERVAL", 10)
    MPESA_MAX_POLLS = _env_int("MPESA_MAX_POLLS", 12)
    MPESA_TIMEOUT_SECONDS = _env_float("MPESA_TIMEOUT_SECONDS", 120)

    # KCB paybill sandbox
    KCB_SANDBOX_POLL_INTERVAL = _env_float("KCB_SANDBOX_POLL_INTERVAL", 3)
    KCB_SANDBOX_MAX_POLLS = _env_int("KCB_SANDBOX_MAX_POLLS", 100)
    KCB_SANDBOX_TIMEOUT_SECONDS = _env_float("KCB_SANDBOX_TIMEOUT_SECONDS", 300)
    KCB_SANDBOX_AUTO_SETTLE_POLLS = _env_int("KCB_SANDBOX_AUTO_SETTLE_POLLS", 0)
    KCB_SANDBOX_SIMULATION_ENABLED = (
        os.environ.get("KCB_SANDBOX_SIMULATION_ENABLED", "true").lower() == "true"
    )
    KCB_WEBHOOK_SECRET = os.environ.get("KCB_WEBHOOK_SECRET", "")

    RECONCILIATION_ENABLED = True


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MPESA_CONSUMER_KEY = "test-key"
    MPESA_CONSUMER_SECRET = "test-secret"
    MPESA_PASSKEY = "test-passkey"
    MPESA_POLL_INTERVAL = 0
    MPESA_MAX_POLLS = 5
    MPESA_TIMEOUT_SECONDS = 5
    KCB_SANDBOX_POLL_INTERVAL = 0
    KCB_SANDBOX_MAX_POLLS = 5
    KCB_SANDBOX_TIMEOUT_SECONDS = 5
    KCB_SANDBOX_AUTO_SETTLE_POLLS = 0
    KCB_WEBHOOK_SECRET = ""


class ProductionConfig(Config):
    MPESA_ENVIRONMENT = os.environ.get("MPESA_ENVIRONMENT", "production")
    KCB_SANDBOX_SIMULATION_ENABLED = False

    @classmethod
    def validate(cls):
        # Secret key for sessions / JWT - REQUIRED
        if not os.environ.get("SECRET_KEY"):
            raise ValueError("SECRET_KEY environment variable must be set")
        # Database connection - REQUIRED
        if not os.environ.get("DATABASE_URL"):
            raise ValueError("DATABASE_URL environment variable must be set")
