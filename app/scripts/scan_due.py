"""One-shot run of the periodic checks, for hosts driven by an external cron.
Run every minute (messages) / every five minutes (reminders):
    python -m app.scripts.scan_due messages
    python -m app.scripts.scan_due reminders
"""

from __future__ import annotations

import argparse
import logging

from app.logging_setup import configure_logging
from app.services.calendar_reminders import send_calendar_reminders
from app.services.dispatch import dispatch_scheduled_messages
from app.workers.scheduler import run_tick

_LOGGER = logging.getLogger("app.scripts.scan_due")

CHECKS = {
    "messages": dispatch_scheduled_messages,
    "reminders": send_calendar_reminders,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("check", choices=[*CHECKS, "all"], nargs="?", default="all")
    args = parser.parse_args(argv)

    names = list(CHECKS) if args.check == "all" else [args.check]
    for name in names:
        _LOGGER.info("[CRON] %s: job started", name)
        report = run_tick(name, CHECKS[name])
        _LOGGER.info("[CRON] %s: job finished: %s", name, report)
    return 0


if __name__ == "__main__":  # pragma: no cover
    configure_logging()
    raise SystemExit(main())
