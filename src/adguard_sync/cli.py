"""CLI entry point for adguard-sync."""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any, Sequence

from adguard_sync import __version__
from adguard_sync.config import LOG_LEVELS, ConfigError, Settings, load_settings
from adguard_sync.sync.orchestrator import probe_instances, run_all
from adguard_sync.sync.report import SyncReport
from adguard_sync.sync.transport import HttpInstanceClient
from adguard_sync.watcher import ConfigChangeWatcher

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="adguard-sync",
        description="Synchronize AdGuard Home configuration from an origin to replicas.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a JSON config file. Environment variables override its values.",
    )
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default=None,
        help="Log verbosity level. Defaults to the configured level.",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run one sync and print the report.")
    subparsers.add_parser("check", help="Probe origin and replica connectivity and exit.")

    watch_parser = subparsers.add_parser(
        "watch",
        help="Sync on an interval and whenever the config file changes.",
    )
    watch_parser.add_argument(
        "--interval-seconds",
        type=int,
        default=None,
        help="Override the configured interval between runs. 0 disables timed runs.",
    )
    watch_parser.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Optional cap on sync runs. 0 means run until interrupted.",
    )
    watch_parser.add_argument(
        "--debounce-ms",
        type=int,
        default=250,
        help="Debounce window for config file events.",
    )
    parser.set_defaults(command="run")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_clients(settings: Settings) -> tuple[HttpInstanceClient, list[HttpInstanceClient]]:
    return (
        HttpInstanceClient(settings.origin),
        [HttpInstanceClient(replica) for replica in settings.replicas],
    )


def run_sync(settings: Settings) -> SyncReport:
    origin, replicas = build_clients(settings)
    logging.getLogger(__name__).info(
        "Starting sync: origin=%s replicas=%d features=%s",
        origin.host(),
        len(replicas),
        ",".join(settings.features),
    )
    return run_all(
        origin,
        replicas,
        concurrency_limit=settings.concurrency_limit,
        enabled_domains=settings.features,
        deadline_seconds=settings.deadline_seconds,
    )


def _run_check(settings: Settings) -> dict[str, Any]:
    origin, replicas = build_clients(settings)
    instances = probe_instances(origin, replicas)
    return {
        "status": "ok" if all(entry["reachable"] for entry in instances) else "degraded",
        "instances": instances,
    }


def _run_watch(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    interval_override = getattr(args, "interval_seconds", None)
    max_cycles = max(0, int(getattr(args, "max_cycles", 0)))
    debounce_seconds = max(0, int(getattr(args, "debounce_ms", 250))) / 1000.0
    logger = logging.getLogger(__name__)

    def _interval(current: Settings) -> int:
        if interval_override is not None:
            return max(0, int(interval_override))
        return current.interval_seconds

    if settings.config_path is None and _interval(settings) == 0:
        raise ConfigError("watch needs a config file to watch or a positive interval")

    watcher = ConfigChangeWatcher(settings.config_path) if settings.config_path is not None else None
    runs = 0
    failed_runs = 0
    reloads = 0
    last_report: dict[str, Any] | None = None

    def _sync_once(current: Settings) -> None:
        nonlocal runs, failed_runs, last_report
        report = run_sync(current)
        runs += 1
        if report.failed:
            failed_runs += 1
        last_report = report.to_dict()
        print(json.dumps(last_report, sort_keys=True), flush=True)

    if watcher is not None:
        watcher.start()
    try:
        if settings.run_on_start:
            _sync_once(settings)
        while not (max_cycles > 0 and runs >= max_cycles):
            interval = _interval(settings)
            timeout = float(interval) if interval > 0 else None
            try:
                if watcher is not None:
                    changed = watcher.wait(timeout, debounce_seconds=debounce_seconds)
                else:
                    time.sleep(float(interval))
                    changed = False
            except KeyboardInterrupt:
                break
            if changed:
                try:
                    settings = load_settings(settings.config_path)
                except (ConfigError, FileNotFoundError) as exc:
                    logger.error("Ignoring invalid config change: %s", exc)
                    continue
                reloads += 1
                logger.info("Config reloaded from %s", settings.config_path)
            _sync_once(settings)
    finally:
        if watcher is not None:
            watcher.stop()

    return {
        "mode": "watch",
        "runs": runs,
        "failed_runs": failed_runs,
        "config_reloads": reloads,
        "last_report": last_report,
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        configure_logging(args.log_level or "INFO")
        logging.getLogger(__name__).error("Invalid configuration: %s", exc)
        return EXIT_CONFIG
    configure_logging(args.log_level or settings.log_level)

    command = str(getattr(args, "command", "run") or "run")
    if command == "check":
        payload = _run_check(settings)
        print(json.dumps(payload, sort_keys=True))
        return EXIT_OK if payload["status"] == "ok" else EXIT_FAILED

    if command == "watch":
        try:
            payload = _run_watch(settings, args)
        except ConfigError as exc:
            logging.getLogger(__name__).error("Cannot watch: %s", exc)
            return EXIT_CONFIG
        print(json.dumps(payload, sort_keys=True))
        return EXIT_FAILED if payload["failed_runs"] else EXIT_OK

    report = run_sync(settings)
    print(json.dumps(report.to_dict(), sort_keys=True))
    return EXIT_FAILED if report.failed else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
