"""Command line entry point for managing redirect rules and settings."""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Iterable, Optional

from core.event_bus import EventBus
from core.events import StorageChange
from metrics.derived import summarize
from rules.config_loader import AppConfig, StorageBackendKind, load_config
from storage.areas import StorageWriteError, build_backend
from storage.change_watcher import ChangeWatcher, ChangeWatcherSettings
from storage.config_store import ConfigurationStore
from storage.migrate import initialize_database

LOGGER = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Hostname redirect rules manager")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the SQLite tables")
    sub.add_parser("list", help="List rules with their redirect counts")

    add = sub.add_parser("add", help="Add a redirect rule")
    add.add_argument("source_hostname")
    add.add_argument("target_url")

    delete = sub.add_parser("delete", help="Delete a rule by id")
    delete.add_argument("rule_id")

    toggle = sub.add_parser("toggle", help="Enable or disable a rule")
    toggle.add_argument("rule_id")
    state = toggle.add_mutually_exclusive_group(required=True)
    state.add_argument("--on", dest="enabled", action="store_true")
    state.add_argument("--off", dest="enabled", action="store_false")

    rate = sub.add_parser("set-rate", help="Set the hourly rate; empty string clears it")
    rate.add_argument("value")

    sub.add_parser("summary", help="Show time and money saved")

    watch = sub.add_parser("watch", help="Follow changes made by other processes")
    watch.add_argument("--poll-interval", type=float, default=None, help="Polling interval in seconds")
    return parser.parse_args(argv)


async def _with_store(
    config: AppConfig, action: Callable[[ConfigurationStore], Awaitable[Optional[str]]]
) -> Optional[str]:
    store = ConfigurationStore(build_backend(config))
    await store.start()
    try:
        return await action(store)
    finally:
        store.close()


async def _list(store: ConfigurationStore) -> Optional[str]:
    metrics = store.metrics
    if not store.rules:
        print("No rules yet.")
        return None
    for rule in store.rules:
        flag = "on " if rule.enabled else "off"
        print(f"{rule.id}  [{flag}]  {rule.source_hostname} -> {rule.target_url}  ({metrics.count_for(rule.id):g})")
    return None


async def _summary(store: ConfigurationStore) -> Optional[str]:
    summary = summarize(store.metrics, store.settings)
    rate = store.settings.hourly_rate
    print(f"Redirects:   {summary.total_redirects:g}")
    print(f"Time saved:  {summary.time_saved_label}")
    print(f"Hourly rate: {'unset' if rate is None else f'{rate:.2f}'}")
    print(f"Money saved: {summary.money_saved_label}")
    return None


def _action(args: argparse.Namespace) -> Callable[[ConfigurationStore], Awaitable[Optional[str]]]:
    """Pick the coroutine for ``args.command``; each returns an error message or ``None``."""

    async def _add(store: ConfigurationStore) -> Optional[str]:
        validation = await store.add_rule(args.source_hostname, args.target_url)
        if not validation.valid:
            return validation.first_error.message
        print(f"Rule added: {validation.normalized.id}")
        return None

    async def _delete(store: ConfigurationStore) -> Optional[str]:
        if not await store.delete_rule(args.rule_id):
            return f"No rule with id {args.rule_id}"
        print("Rule deleted.")
        return None

    async def _toggle(store: ConfigurationStore) -> Optional[str]:
        if store.find_rule(args.rule_id) is None:
            return f"No rule with id {args.rule_id}"
        validation = await store.update_rule(args.rule_id, enabled=args.enabled, allow_persist_on_invalid=True)
        if not validation.valid:
            LOGGER.warning("Rule %s is invalid: %s", args.rule_id, validation.first_error.message)
        print(f"Rule {'enabled' if args.enabled else 'disabled'}.")
        return None

    async def _set_rate(store: ConfigurationStore) -> Optional[str]:
        result = await store.set_hourly_rate(args.value)
        if not result.valid:
            return result.error.message
        print("Hourly rate cleared." if result.value is None else f"Hourly rate set to {result.value:.2f}")
        return None

    actions = {
        "list": _list,
        "add": _add,
        "delete": _delete,
        "toggle": _toggle,
        "set-rate": _set_rate,
        "summary": _summary,
    }
    return actions[args.command]


async def watch_forever(config: AppConfig, poll_interval: Optional[float] = None) -> None:
    bus = EventBus()
    writer_id = uuid.uuid4().hex
    store = ConfigurationStore(build_backend(config, bus=bus, writer_id=writer_id))
    await store.start()

    def _log_change(change: StorageChange) -> None:
        summary = summarize(store.metrics, store.settings)
        LOGGER.info(
            "%s changed in %s; redirects=%g time=%s money=%s",
            ", ".join(sorted(change.changes)),
            change.area,
            summary.total_redirects,
            summary.time_saved_label,
            summary.money_saved_label,
        )

    bus.subscribe(_log_change)
    watcher = ChangeWatcher(
        bus,
        ChangeWatcherSettings(
            writer_id=writer_id,
            db_path=config.storage.resolved_db_path,
            poll_interval=poll_interval or config.watcher.poll_interval,
        ),
    )
    try:
        await watcher.run()
    finally:
        watcher.stop()
        store.close()


def run_async(entry: Callable[[], Awaitable[Optional[str]]]) -> Optional[str]:
    try:
        return asyncio.run(entry())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
    return None


def main(argv: Optional[Iterable[str]] = None) -> None:
    args = parse_args(argv)
    config = load_config(config_path=args.config)
    configure_logging(config.logging.numeric_level)

    if args.command == "init-db":
        initialize_database(config.storage.resolved_db_path)
        return
    if args.command == "watch":
        if config.storage.backend is not StorageBackendKind.SQLITE:
            raise SystemExit("watch requires the sqlite storage backend")
        run_async(lambda: watch_forever(config, args.poll_interval))
        return
    try:
        error = run_async(lambda: _with_store(config, _action(args)))
    except StorageWriteError as exc:
        raise SystemExit(f"Failed to save: {exc}") from exc
    if error:
        raise SystemExit(error)


if __name__ == "__main__":
    main()
