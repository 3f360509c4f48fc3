from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

import structlog

from fleet_probe.errors import ConfigError
from fleet_probe.log import configure_logging
from fleet_probe.orchestrator import RunReport, run_once
from fleet_probe.settings import FileConfigStore
from fleet_probe.storage import SqliteResultStore


logger = structlog.get_logger("fleet-probe")


def _format_summary(report: RunReport) -> str:
    lines = [f"token: {report.token_state.value}"]
    for host, outcome in report.results.items():
        lines.append(f"{host}: status={outcome.status_code} latency_ms={outcome.latency_ms}")
    lines.append(f"stored {report.stored}/{len(report.results)}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Probe a fleet of hosts and record availability and latency")
    parser.add_argument(
        "--config",
        default=os.getenv("FLEET_PROBE_CONFIG", "config.json"),
        help="Path to the JSON or YAML config (the refreshed token is written back here)",
    )
    parser.add_argument(
        "--db",
        default=os.getenv("FLEET_PROBE_DB"),
        help="SQLite result database (defaults to database.path from the config)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_output=bool(args.json))

    config_store = FileConfigStore(Path(args.config))
    try:
        config = config_store.load()
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    result_store = SqliteResultStore(args.db or config.database.path)
    try:
        report = asyncio.run(run_once(config_store, result_store))
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1
    except Exception:
        logger.exception("Run failed")
        return 1

    if args.json:
        sys.stdout.write(json.dumps(report.to_dict(), ensure_ascii=False, indent=2) + "\n")
    else:
        sys.stdout.write(_format_summary(report) + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
