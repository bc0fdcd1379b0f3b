"""
runner.py -- Process entry point for the feed monitors.

Loads settings, wires the enabled monitors and runs one polling loop per
monitor until SIGINT/SIGTERM. On shutdown each loop finishes its in-flight
cycle (including persisting state) before the process exits.

Environment Variables (see ``config.Settings`` for the full list):
    DISCORD_WEBHOOK_URL               - Chat webhook; alerts are only logged without it
    POLL_INTERVAL_SECONDS             - Base interval between cycles (default: 900)
    HEIGHTENED_POLL_INTERVAL_SECONDS  - Interval while something is happening (default: 120)
    STATE_BACKEND                     - "file" (default) or "postgres"
    STATE_FILE                        - Shared state file (default: state.json)
    DATABASE_URL                      - PostgreSQL DSN for the postgres backend
    LOG_LEVEL                         - Logging level (default: INFO)

Usage:
    feedwatch                 # run all enabled monitors
    feedwatch --once          # run a single cycle of each monitor and exit
    feedwatch --test-alert    # post a sample message to the webhook and exit
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Any

from feedwatch.alerts.config import load_settings
from feedwatch.alerts.handler import Scheduler, create_monitors, create_repository
from feedwatch.alerts.notifier import DeliveryError, WebhookNotifier, render_test_message

logger = logging.getLogger("feedwatch")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="feedwatch",
        description="Poll public data feeds and post deduplicated alerts to a webhook.",
    )
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--once",
        action="store_true",
        help="Run one cycle of every enabled monitor, then exit.",
    )
    mode_group.add_argument(
        "--test-alert",
        action="store_true",
        help="Send a sample alert to the configured webhook, then exit.",
    )
    return parser.parse_args(argv)


def send_test_alert(notifier: WebhookNotifier) -> int:
    logger.info("Sending mock alert...")
    try:
        sent = notifier.send(render_test_message())
    except DeliveryError as exc:
        logger.error("%s", exc)
        return 1
    return 0 if sent else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = _parse_args(argv)
    settings = load_settings()
    _configure_logging(settings.log_level)

    if args.test_alert:
        webhook = settings.discord_webhook_url
        notifier = WebhookNotifier(
            webhook.get_secret_value() if webhook else None,
            timeout=settings.http_timeout_seconds,
        )
        return send_test_alert(notifier)

    repository = create_repository(settings)
    monitors = create_monitors(settings, repository=repository)
    if not monitors:
        logger.error("No monitors enabled; nothing to do")
        return 1

    for monitor in monitors:
        logger.info("Configured %r", monitor)

    if args.once:
        for monitor in monitors:
            monitor.restore()
            monitor.run_cycle()
        return 0

    scheduler = Scheduler(monitors)

    def _signal_handler(signum: int, frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s. Requesting graceful shutdown...", sig_name)
        scheduler.request_stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    scheduler.start()
    scheduler.wait()
    scheduler.stop()
    logger.info("Shut down cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
