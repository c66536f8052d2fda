"""Process-wide logging configuration for the web app and the Celery worker."""

from __future__ import annotations

import logging

from config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=_FORMAT)


def mask_secret(value: str | None, visible: int = 10) -> str:
    """Shorten a credential for display; the full value never reaches a log."""
    if not value:
        return ""
    if len(value) <= visible:
        return value[: max(1, visible // 2)] + "..."
    return value[:visible] + "..."
