from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

import httpx
import structlog

from fleet_probe.auth import bearer
from fleet_probe.errors import ProbeError, ProbeTimeout, ProbeTransportError, classify_failure
from fleet_probe.settings import DEFAULT_FORWARDED_HOST
from fleet_probe.transport import DEFAULT_DEADLINE_SECONDS, TimeoutFailure, probe, probe_url


logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 10


@dataclass(frozen=True)
class ProbeOutcome:
    host: str
    status_code: int
    latency_ms: int
    observed_at: datetime


ResultSet = dict[str, ProbeOutcome]


def partition(hosts: Iterable[str], batch_size: int) -> list[list[str]]:
    """Split hosts into ordered, disjoint batches; only the last may be shorter."""
    size = int(batch_size)
    if size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size!r}")
    items = list(hosts)
    return [items[i : i + size] for i in range(0, len(items), size)]


def _unique(hosts: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for host in hosts:
        if host in seen:
            continue
        seen.add(host)
        out.append(host)
    return out


def _elapsed_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000.0)))


class ProbeEngine:
    """
    Probes hosts batch by batch.

    Batches run one after another; hosts inside a batch run concurrently, each
    with its own deadline. A failing host never stops its batch or the run: it
    is recorded with the classified status (0 when there was no response).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        deadline: float = DEFAULT_DEADLINE_SECONDS,
        forwarded_host: str = DEFAULT_FORWARDED_HOST,
        scheme: str = "https",
    ) -> None:
        if int(batch_size) < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size!r}")
        self.client = client
        self.batch_size = int(batch_size)
        self.deadline = float(deadline)
        self.forwarded_host = forwarded_host
        self.scheme = scheme

    def headers_for(self, token: str) -> dict[str, str]:
        return {"Authorization": bearer(token), "X-Forwarded-Host": self.forwarded_host}

    async def probe_host(self, host: str, headers: dict[str, str], params: dict[str, str]) -> ProbeOutcome:
        started = time.perf_counter()
        try:
            result = await probe(
                self.client,
                probe_url(host, scheme=self.scheme),
                headers,
                params=params,
                deadline=self.deadline,
            )
            error: ProbeError | None = classify_failure(result.failure) if result.failure is not None else None
        except ValueError as e:
            result = None
            error = ProbeTransportError(f"{type(e).__name__}: {e}")
        except Exception as e:
            result = None
            error = ProbeTransportError(f"unexpected {type(e).__name__}: {e}")
            logger.exception("Probe crashed", host=host)

        latency_ms = _elapsed_ms(started)
        observed_at = datetime.now(timezone.utc)

        if error is None and result is not None:
            status_code = int(result.status_code or 0)
            logger.debug("Probe ok", host=host, status_code=status_code, latency_ms=latency_ms)
            return ProbeOutcome(host=host, status_code=status_code, latency_ms=latency_ms, observed_at=observed_at)

        if isinstance(error, ProbeTimeout):
            if isinstance(result.failure, TimeoutFailure) and result.failure.deadline_exceeded:
                latency_ms = max(latency_ms, int(round(self.deadline * 1000.0)))
            logger.warning("No response from server", host=host, error=str(error), latency_ms=latency_ms)
        else:
            logger.warning(
                "Probe failed",
                host=host,
                kind=error.kind,
                error=str(error),
                status_code=error.recorded_status,
                latency_ms=latency_ms,
            )
        return ProbeOutcome(
            host=host,
            status_code=error.recorded_status,
            latency_ms=latency_ms,
            observed_at=observed_at,
        )

    async def run_batch(self, batch: list[str], headers: dict[str, str], params: dict[str, str]) -> ResultSet:
        tasks = [asyncio.create_task(self.probe_host(host, headers, params)) for host in batch]
        outcomes = await asyncio.gather(*tasks)
        return {outcome.host: outcome for outcome in outcomes}

    async def run(self, hosts: Iterable[str], *, token: str, params: dict[str, str]) -> ResultSet:
        batches = partition(_unique(hosts), self.batch_size)
        results: ResultSet = {}
        if not batches:
            return results

        headers = self.headers_for(token)
        for index, batch in enumerate(batches, start=1):
            logger.info("Probing batch", batch=index, batches=len(batches), size=len(batch))
            results.update(await self.run_batch(batch, headers, params))
        return results
