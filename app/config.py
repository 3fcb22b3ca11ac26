import os


def _env_int(name, default):
    return int(os.environ.get(name, default))


def _env_float(name, default):
    return float(os.environ.get(name, default))


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku, Supabase
    # poolers) use "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # Shared secret for server-to-server calls from the registration flow
    # (sent as the X-Internal-Token header).
    INTERNAL_API_TOKEN = os.environ.get("INTERNAL_API_TOKEN")

    # --- Payment reconciliation ---
    PENDING_PAYMENT_TTL_HOURS = _env_int("PENDING_PAYMENT_TTL_HOURS", 2)
    PAYMENT_MAX_AGE_MINUTES = _env_int("PAYMENT_MAX_AGE_MINUTES", 60)
    EMAIL_MATCH_WINDOW_MINUTES = _env_int("EMAIL_MATCH_WINDOW_MINUTES", 30)
    TIME_WINDOW_MINUTES = _env_int("TIME_WINDOW_MINUTES", 10)
    RECENT_TENANT_WINDOW_MINUTES = _env_int("RECENT_TENANT_WINDOW_MINUTES", 30)

    # --- Retry queue ---
    RETRY_MAX_ATTEMPTS = _env_int("RETRY_MAX_ATTEMPTS", 5)
    RETRY_INITIAL_DELAY_MINUTES = _env_int("RETRY_INITIAL_DELAY_MINUTES", 5)
    RETRY_BACKOFF_MINUTES = _env_int("RETRY_BACKOFF_MINUTES", 10)
    RETRY_SWEEP_INTERVAL_SECONDS = _env_int("RETRY_SWEEP_INTERVAL_SECONDS", 300)

    # --- Trial ---
    TRIAL_DAYS = _env_int("TRIAL_DAYS", 14)

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "Madrasa Beheer")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME

    # Bulk sends are chunked to stay under provider rate limits.
    NOTIFY_BATCH_SIZE = _env_int("NOTIFY_BATCH_SIZE", 10)
    NOTIFY_BATCH_DELAY_SECONDS = _env_float("NOTIFY_BATCH_DELAY_SECONDS", 1.0)

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "INTERNAL_API_TOKEN",
            "APP_BASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake Stripe keys."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    INTERNAL_API_TOKEN = "internal-test-token"
    APP_BASE_URL = "http://localhost:5000"
    MAIL_USERNAME = None
    MAIL_PASSWORD = None
    NOTIFY_BATCH_DELAY_SECONDS = 0
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
