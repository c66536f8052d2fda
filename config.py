import os

from dotenv import load_dotenv

load_dotenv()

class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker / result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- LINE Messaging API ---
    # Access token lives in the settings table; only the webhook secret is env-level.
    LINE_CHANNEL_SECRET = os.environ.get("LINE_CHANNEL_SECRET")
    LINE_API_BASE = os.environ.get("LINE_API_BASE", "https://api.line.me")

    # --- Alert channels ---
    LINE_NOTIFY_URL = os.environ.get("LINE_NOTIFY_URL", "https://notify-api.line.me/api/notify")

    # --- Outbound HTTP ---
    HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10"))

    # --- Admin API ---
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN")

    # --- Periodic checks (crontab: minute hour day_of_month month day_of_week) ---
    MESSAGE_CHECK_CRON = os.environ.get("MESSAGE_CHECK_CRON", "* * * * *")
    REMINDER_CHECK_CRON = os.environ.get("REMINDER_CHECK_CRON", "*/5 * * * *")
    REMINDER_WINDOW_HOURS = int(os.environ.get("REMINDER_WINDOW_HOURS", "24"))
    # Seconds before a queued tick that has not started is discarded
    MESSAGE_CHECK_EXPIRES = int(os.environ.get("MESSAGE_CHECK_EXPIRES", "60"))
    REMINDER_CHECK_EXPIRES = int(os.environ.get("REMINDER_CHECK_EXPIRES", "300"))
    # Seconds a tick holds a row while sending it; an abandoned hold lapses after this
    SEND_LEASE_SECONDS = int(os.environ.get("SEND_LEASE_SECONDS", "300"))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

settings = Settings()

# Keys read from the record store's settings table
LINE_ACCESS_TOKEN_KEY = "line_channel_access_token"
LINE_NOTIFY_TOKEN_KEY = "line_notify_token"
SLACK_WEBHOOK_URL_KEY = "slack_webhook_url"
