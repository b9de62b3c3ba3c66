"""Environment-variable-based configuration."""

import os


def get_couch_url() -> str:
    """Return the server base URL from COUCH_URL."""
    return os.environ.get("COUCH_URL", "http://localhost:5984").rstrip("/")


def get_couch_username() -> str | None:
    """Return the account name from COUCH_USERNAME, or None when unset."""
    return os.environ.get("COUCH_USERNAME") or None


def get_couch_password() -> str | None:
    """Return the account password from COUCH_PASSWORD, or None when unset."""
    return os.environ.get("COUCH_PASSWORD") or None


def get_request_timeout() -> float | None:
    """Return the per-operation timeout in seconds from COUCH_TIMEOUT.

    A value of 0 disables the client-side deadline.
    """
    value = float(os.environ.get("COUCH_TIMEOUT", "30.0"))
    return value if value > 0 else None


def get_max_concurrency() -> int:
    """Return the in-flight operation limit from COUCH_MAX_CONCURRENCY."""
    return max(1, int(os.environ.get("COUCH_MAX_CONCURRENCY", "4")))


def get_log_level() -> str:
    """Return the logging level from COUCH_LOG_LEVEL."""
    return os.environ.get("COUCH_LOG_LEVEL", "WARNING").upper()
