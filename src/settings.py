"""Static configuration for rocketnotify.

Non-secret settings (polling, queue, notifications, logging) live in a single
JSON file for quick edits without touching Python. Secrets and deployment
specific values come from the environment (optionally a .env file).
"""

import json
import os

from dotenv import load_dotenv

from core.config import (
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_QUEUE_THRESHOLD,
    internal_cookie,
    parse_chat_ids,
    parse_interval_minutes,
)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

load_dotenv()


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database; relative paths resolve from the root.
DB_PATH = _CONFIG.get("db_path", "rocketnotify.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Which chat backend to watch: "rocket_chat" (multi-user) or "pachca".
BACKEND = _CONFIG.get("backend", "rocket_chat")

# Polling cadence. The env var wins over config.json when set.
_polling = _CONFIG.get("polling", {})
POLLING_INTERVAL_MIN = parse_interval_minutes(
    os.getenv("POLLING_INTERVAL_MIN", _polling.get("interval_min")),
    DEFAULT_INTERVAL_MINUTES,
)
QUEUE_THRESHOLD = int(_polling.get("queue_threshold", DEFAULT_QUEUE_THRESHOLD))
QUEUE_WORKERS = int(_polling.get("queue_workers", 4))
_job = _polling.get("job", {})
JOB_ATTEMPTS = int(_job.get("attempts", 3))
JOB_BACKOFF_DELAY = float(_job.get("backoff_delay_seconds", 5))

# HTTP retry policy shared by backend clients.
_http = _CONFIG.get("http", {})
HTTP_ATTEMPTS = int(_http.get("attempts", 3))
HTTP_BASE_DELAY = float(_http.get("base_delay_seconds", 0.3))
HTTP_TIMEOUT = float(_http.get("timeout_seconds", 15))

# Notification method switches adapters without changing core logic.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "bot")
INCLUDE_BREAKDOWN = bool(_notifications.get("include_breakdown", True))

# Retaining passwords allows silent re-login after a 401.
RETAIN_PASSWORDS = bool(_CONFIG.get("retain_passwords", False))

# Setup wizard state expiry.
SETUP_TTL_MINUTES = int(_CONFIG.get("setup_ttl_minutes", 15))

# Secrets and deployment values.
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
# Optional broadcast channel; when set, every alert goes there.
_channel = os.getenv("TELEGRAM_CHANNEL_ID") or _notifications.get("channel_id")
TELEGRAM_CHANNEL_ID = str(_channel) if _channel else None
RC_TOKEN_SALT = os.getenv("RC_TOKEN_SALT")

# Optional single-tenant Rocket.Chat account, registered at startup.
RC_SERVER = os.getenv("RC_SERVER")
RC_USER = os.getenv("RC_USER")
RC_PASSWORD = os.getenv("RC_PASSWORD")
RC_TOKEN = os.getenv("RC_TOKEN")
RC_USER_ID = os.getenv("RC_USER_ID")
RC_INSTANCE_ID = os.getenv("RC_INSTANCE_ID")
SINGLE_TENANT_ID = os.getenv("RC_SUBSCRIBER_ID") or TELEGRAM_CHANNEL_ID

# Pachca backend.
PACHCA_BASE_URL = os.getenv("PACHCA_BASE_URL")
PACHCA_ACCESS_TOKEN = os.getenv("PACHCA_ACCESS_TOKEN")
PACHCA_INTERNAL_BASE_URL = os.getenv("PACHCA_INTERNAL_BASE_URL", "https://app.pachca.com/api/v3")
PACHCA_INTERNAL_COOKIE = internal_cookie(
    os.getenv("PACHCA_INTERNAL_COOKIE"),
    os.getenv("PACHCA_INTERNAL_JWT"),
)
PACHCA_CHAT_IDS = parse_chat_ids(os.getenv("PACHCA_CHAT_IDS"))
PACHCA_USER_ID = os.getenv("PACHCA_USER_ID")
PACHCA_POLLING_INTERVAL_MIN = parse_interval_minutes(
    os.getenv("PACHCA_POLLING_INTERVAL_MIN"),
    POLLING_INTERVAL_MIN,
)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
