from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from immo_watch.config import (
    EXPLORE_ALL_MAX_PAGES,
    AppConfig,
    ConfigError,
    load_config,
    validate_instance,
)
from immo_watch.logging_config import setup_logging
from immo_watch.models import Scope
from immo_watch.notifiers import ConsoleNotifier, Notifier, TelegramNotifier
from immo_watch.service import Platform, RunStats, ScanController
from immo_watch.sources import BrowserSession, create_source
from immo_watch.store import JsonRetentionStore, RetentionPolicy, scope_path
from immo_watch.utils.datetime_utils import format_datetime

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="immo-watch",
        description="Watch real-estate filter pages and send new listings to Telegram.",
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to config YAML file (default: config.yaml)",
    )
    parser.add_argument(
        "--env-file",
        help=f"Environment file loaded before the config (default: {DEFAULT_ENV_FILE} if present)",
    )
    parser.add_argument(
        "--instance",
        help="Override the instance name used for state and log files",
    )
    parser.add_argument(
        "--log-level",
        help="Override config log level (e.g. INFO, DEBUG)",
    )
    parser.add_argument(
        "-e",
        "--explore-all",
        action="store_true",
        help=f"Follow result pages until they run out (up to {EXPLORE_ALL_MAX_PAGES})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("watch", help="Check periodically until interrupted")
    subparsers.add_parser("once", help="Run one check over all platforms and exit")
    subparsers.add_parser("dry-run", help="Run one check and print messages instead of sending")
    subparsers.add_parser("status", help="Show stored listings per platform")

    backfill = subparsers.add_parser(
        "backfill",
        help="Fetch current listings and mark them seen without notifying",
    )
    backfill.add_argument(
        "--mark-seen",
        action="store_true",
        help="Required safety flag for backfill operation",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        _load_env_file(args.env_file)
        app_config = load_config(args.config)
        if args.instance:
            app_config.instance = validate_instance(args.instance)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 2

    if args.command == "backfill" and not args.mark_seen:
        parser.error("backfill requires --mark-seen")

    if args.explore_all:
        for platform in app_config.platforms:
            platform.max_pages = max(platform.max_pages, EXPLORE_ALL_MAX_PAGES)

    log_level = args.log_level or app_config.log_level
    setup_logging(log_level, app_config.audit_log_path())
    logger.info("Instance %s, state in %s", app_config.instance, app_config.storage.data_dir)

    if args.command == "status":
        _print_status(app_config)
        return 0

    dry_run = args.command == "dry-run"
    notifier: Notifier
    if dry_run or args.command == "backfill":
        notifier = ConsoleNotifier()
    else:
        try:
            notifier = _build_notifier(app_config)
        except ConfigError as exc:
            logger.error("%s", exc)
            return 2

    session = BrowserSession(app_config.browser)
    try:
        controller = ScanController(
            platforms=_build_platforms(app_config, session),
            notifier=notifier,
            schedule=app_config.schedule,
            retry=app_config.retry,
            dry_run=dry_run,
        )
        _install_stop_handlers(controller)

        if args.command == "watch":
            controller.run_forever()
            return 0

        if args.command == "backfill":
            stats = controller.mark_all_seen()
            logger.info("Backfill complete | marked_seen=%d errors=%d", stats.new, len(stats.errors))
            return 0 if stats.ok else 1

        stats = controller.run_once()
        _log_summary(stats)
        return 0 if stats.ok else 1
    except Exception:  # noqa: BLE001
        logger.exception("Application error")
        return 1
    finally:
        session.close()


def _load_env_file(env_file: str | None) -> None:
    if env_file is None:
        if Path(DEFAULT_ENV_FILE).exists():
            load_dotenv(DEFAULT_ENV_FILE, override=False)
        return
    if not Path(env_file).exists():
        raise ConfigError(f"Environment file not found: {env_file}")
    load_dotenv(env_file, override=False)


def _build_notifier(app_config: AppConfig) -> TelegramNotifier:
    token = app_config.telegram.resolve_token()
    if not token:
        raise ConfigError(
            f"Missing Telegram token in environment variable {app_config.telegram.token_env_var}"
        )
    chat_ids = app_config.telegram.resolve_chat_ids()
    if not chat_ids:
        raise ConfigError("At least one Telegram chat id is required")
    return TelegramNotifier(
        token=token,
        chat_ids=chat_ids,
        timeout_seconds=app_config.telegram.timeout_seconds,
    )


def _retention_policy(app_config: AppConfig) -> RetentionPolicy:
    return RetentionPolicy(
        max_size=app_config.storage.max_size,
        remove_count=app_config.storage.remove_count,
    )


def _build_platforms(app_config: AppConfig, session: BrowserSession) -> list[Platform]:
    policy = _retention_policy(app_config)
    platforms: list[Platform] = []
    for settings in app_config.platforms:
        scope = Scope(platform=settings.id, instance=app_config.instance)
        store = JsonRetentionStore.load(
            scope_path(app_config.storage.data_dir, scope),
            scope,
            policy,
        )
        platforms.append(Platform(source=create_source(settings, session), store=store))
    return platforms


def _install_stop_handlers(controller: ScanController) -> None:
    def _handle(signum: int, _frame: object) -> None:
        logger.info("Received %s, stopping", signal.Signals(signum).name)
        controller.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _log_summary(stats: RunStats) -> None:
    logger.info(
        "Run complete | platforms=%d new=%d notified=%d notify_failures=%d errors=%d",
        len(stats.cycles),
        stats.new,
        stats.notified,
        stats.notify_failures,
        len(stats.errors),
    )


def _print_status(app_config: AppConfig) -> None:
    policy = _retention_policy(app_config)
    for settings in app_config.platforms:
        scope = Scope(platform=settings.id, instance=app_config.instance)
        path = scope_path(app_config.storage.data_dir, scope)
        store = JsonRetentionStore.load(path, scope, policy)
        records = store.records()
        if not records:
            print(f"{scope}: no stored listings ({path})")
            continue
        print(
            f"{scope}: {len(records)} listings, newest {format_datetime(records[0].timestamp)}, "
            f"oldest {format_datetime(records[-1].timestamp)} ({path})"
        )


if __name__ == "__main__":
    raise SystemExit(main())
