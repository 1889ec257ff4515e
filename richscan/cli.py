"""CLI for the rich list scanner."""

from __future__ import annotations

import argparse
import json
import logging
import threading
from dataclasses import asdict
from typing import Optional

from .config import Settings, load_settings
from .profiles import classify
from .scanner import ScanEngine, ScanError
from .schedule import CronScheduler, run_scan_safely


_LOGGER = logging.getLogger("richscan.cli")


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if getattr(root, "_richscan_configured", False):
        root.setLevel(level)
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)
    setattr(root, "_richscan_configured", True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="richscan")
    parser.add_argument("--env-file", default=".env", help="Optional .env file merged into the environment")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Run one scan pass and exit")
    scan_parser.add_argument("--json", action="store_true", help="Print the pass result as JSON")

    subparsers.add_parser("serve", help="Serve the rich list without scanning")

    run_parser = subparsers.add_parser("run", help="Serve, scan on startup and on the cron schedule")
    run_parser.add_argument(
        "--no-startup-scan",
        action="store_true",
        help="Skip the startup scan even if RUN_SCAN_ON_STARTUP is true",
    )

    probe_parser = subparsers.add_parser("probe", help="Show endpoint locality, profile and reachability")
    probe_parser.add_argument("--endpoint", help="Override BLOCKBOOK_API_URL")
    return parser


def _serve(settings: Settings) -> None:
    import uvicorn

    from api.main import create_app

    _LOGGER.info("server listening host=%s port=%s", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def _cmd_scan(settings: Settings, as_json: bool) -> int:
    engine = ScanEngine(settings)
    try:
        result = engine.scan()
    except ScanError as exc:
        _LOGGER.error("scan failed height=%s last_scanned=%s error=%s", exc.height, exc.last_scanned_height, exc)
        return 1
    if as_json:
        print(json.dumps(result.to_dict(), sort_keys=True))
    else:
        print(f"scanned: {result.start_height} -> {result.end_height} (chain {result.target_height})")
        print(f"blocks: {result.blocks_processed} txs: {result.transactions_processed}")
        print(f"snapshot: {'written' if result.snapshot_written else 'unchanged'}")
    return 0


def _cmd_run(settings: Settings, startup_scan: bool) -> int:
    engine = ScanEngine(settings)
    scheduler: Optional[CronScheduler] = None
    if settings.cron_schedule:
        scheduler = CronScheduler(engine, settings.cron_schedule)
        scheduler.start()
    else:
        _LOGGER.info("cron schedule disabled")
    if startup_scan:
        threading.Thread(
            target=run_scan_safely,
            args=(engine, "startup"),
            name="richscan-startup-scan",
            daemon=True,
        ).start()
    try:
        _serve(settings)
    finally:
        if scheduler:
            scheduler.stop(timeout=5)
    return 0


def _cmd_probe(settings: Settings, endpoint: Optional[str]) -> int:
    url = endpoint or settings.api_url
    engine = ScanEngine(settings)
    if endpoint:
        engine.update_endpoint(endpoint)
    profile = engine.profile
    print(f"endpoint: {url}")
    print(f"locality: {classify(url)}")
    print(f"profile: {json.dumps(asdict(profile), sort_keys=True)}")
    print(f"health check interval: {profile.health_check_interval_ms / 1000:g}s")
    if not engine.client.ping():
        print("reachable: no")
        return 1
    print("reachable: yes")
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = load_settings(args.env_file)
    configure_logging(settings.log_level)

    if args.command == "scan":
        return _cmd_scan(settings, args.json)
    if args.command == "serve":
        _serve(settings)
        return 0
    if args.command == "run":
        return _cmd_run(settings, settings.run_scan_on_startup and not args.no_startup_scan)
    if args.command == "probe":
        return _cmd_probe(settings, args.endpoint)

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
