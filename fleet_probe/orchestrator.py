"""One monitoring run: resolve the token, probe every host, store every outcome."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
import structlog

from fleet_probe.auth import TokenManager, TokenState
from fleet_probe.engine import ProbeEngine, ResultSet
from fleet_probe.errors import StorageWriteError
from fleet_probe.settings import ConfigStore
from fleet_probe.storage import ResultStore
from fleet_probe.transport import lookback_params


logger = structlog.get_logger(__name__)


@dataclass
class RunReport:
    token_state: TokenState = TokenState.UNCHECKED
    results: ResultSet = field(default_factory=dict)
    stored: int = 0
    storage_errors: dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.storage_errors)

    def to_dict(self) -> dict:
        return {
            "token_state": self.token_state.value,
            "stored": self.stored,
            "failed": self.failed,
            "storage_errors": dict(self.storage_errors),
            "results": {
                host: {
                    "status_code": o.status_code,
                    "latency_ms": o.latency_ms,
                    "observed_at": o.observed_at.isoformat(),
                }
                for host, o in self.results.items()
            },
        }


def persist_results(results: ResultSet, store: ResultStore, report: RunReport) -> None:
    try:
        store.ensure_schema()
    except Exception as e:
        err = f"schema: {type(e).__name__}: {e}"
        logger.error("Could not prepare result store", error=err)
        for host in results:
            report.storage_errors[host] = err
        return

    for host, outcome in results.items():
        err = None
        try:
            store.insert(host, outcome.observed_at, outcome.latency_ms, outcome.status_code)
        except StorageWriteError as e:
            err = str(e)
        except Exception as e:
            err = f"{type(e).__name__}: {e}"
        if err is not None:
            report.storage_errors[host] = err
            logger.error("Error occurred while writing to DB", host=host, error=err)
            continue
        report.stored += 1
        logger.info("Successfully written to DB", host=host)


async def run_once(
    config_store: ConfigStore,
    result_store: ResultStore,
    *,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> RunReport:
    config = config_store.load()
    report = RunReport()
    if not config.hosts:
        logger.info("No hosts configured, nothing to do")
        return report

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=config.deadline_seconds)
    try:
        tokens = TokenManager(client, config_store, deadline=config.deadline_seconds)
        token = await tokens.resolve(config)
        report.token_state = tokens.state

        engine = ProbeEngine(
            client,
            batch_size=config.batch_size,
            deadline=config.deadline_seconds,
            forwarded_host=config.forwarded_host,
            scheme=config.probe_scheme,
        )
        params = lookback_params(
            now or datetime.now(timezone.utc),
            days=config.lookback_days,
            utc_offset_hours=config.utc_offset_hours,
        )
        report.results = await engine.run(config.hosts, token=token, params=params)
    finally:
        if owns_client:
            await client.aclose()

    persist_results(report.results, result_store, report)
    logger.info(
        "Run finished",
        hosts=len(report.results),
        stored=report.stored,
        failed=report.failed,
        token_state=report.token_state.value,
    )
    return report
