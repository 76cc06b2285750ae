"""
Centralized configuration for the reminder engine.

All settings come from environment variables (loaded from .env / .env.local
at process entry) with sensible defaults for local development.
"""

import os


def is_dev_mode() -> bool:
    """Check if running in development mode (--dev flag or DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running on Railway (production environment)."""
    return bool(os.environ.get("RAILWAY_ENVIRONMENT"))


def get_api_port() -> int:
    """Get API server port from env or default."""
    return int(os.getenv("API_PORT", "8000"))


def get_app_url() -> str:
    """Public URL linked from reminder messages."""
    return os.environ.get("APP_URL", "https://circleday.app").rstrip("/")


# =============================================================================
# Scheduling
# =============================================================================


def get_lookahead_days() -> int:
    """Scheduling horizon: offsets due later than this are left for a later pass."""
    return int(os.getenv("REMINDER_LOOKAHEAD_DAYS", "30"))


def get_max_send_retries() -> int:
    """How many times a FAILED scheduled send is requeued before giving up."""
    return int(os.getenv("REMINDER_MAX_RETRIES", "3"))


def get_default_timezone() -> str:
    """Reference timezone for "today" and fallback for recipients without one."""
    return os.getenv("REMINDER_DEFAULT_TIMEZONE", "UTC")


def get_schedule_hour_utc() -> int:
    """Hour (UTC) at which the daily scheduling pass runs."""
    return int(os.getenv("REMINDER_SCHEDULE_HOUR_UTC", "6"))


def get_dispatch_interval_minutes() -> int:
    """How often due sends are dispatched to delivery instances."""
    return int(os.getenv("REMINDER_DISPATCH_INTERVAL_MINUTES", "5"))


# =============================================================================
# Delivery
# =============================================================================


def get_check_interval_seconds() -> float:
    """Upper bound on a single sleep inside a delivery instance."""
    return float(os.getenv("REMINDER_CHECK_INTERVAL_SECONDS", "60"))


def get_channel_max_attempts() -> int:
    """Attempts per channel send before the channel is marked FAILED."""
    return int(os.getenv("REMINDER_CHANNEL_MAX_ATTEMPTS", "3"))


def get_channel_timeout_seconds() -> float:
    """Timeout for a single channel send attempt."""
    return float(os.getenv("REMINDER_CHANNEL_TIMEOUT_SECONDS", "300"))


def get_worker_threads() -> int:
    """Size of the thread pool that runs channel sends."""
    return int(os.getenv("REMINDER_WORKER_THREADS", "8"))


def get_cron_secret() -> str | None:
    """Bearer token expected on cron-triggered endpoints."""
    return os.environ.get("CRON_SECRET")


# Required environment variables for production
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("CRON_SECRET", "Bearer token for cron endpoints", False),
    ("SENDGRID_API_KEY", "SendGrid API key for reminder emails", False),
    ("TWILIO_ACCOUNT_SID", "Twilio account SID for reminder SMS", False),
    ("TWILIO_AUTH_TOKEN", "Twilio auth token for reminder SMS", False),
    ("TWILIO_PHONE_NUMBER", "Twilio sender phone number", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if is_production():
                errors.append(f"  ✗ {name}: Not set ({description})")
            elif required_in_dev or not in_dev:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        for error in errors:
            print(error)
        return False, warnings

    return True, warnings
