from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx


DEFAULT_DEADLINE_SECONDS = 180.0
PROBE_PATH = "/v1/tenants/telemetry"


@dataclass(frozen=True)
class HttpResponseFailure:
    status_code: int
    reason: str = ""


@dataclass(frozen=True)
class TimeoutFailure:
    message: str = ""
    # True when the hard deadline fired, false for a timeout raised by httpx itself.
    deadline_exceeded: bool = False


@dataclass(frozen=True)
class SetupFailure:
    message: str


Failure = HttpResponseFailure | TimeoutFailure | SetupFailure


@dataclass(frozen=True)
class TransportResult:
    status_code: int | None = None
    body: Any = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def probe_url(host: str, *, scheme: str = "https") -> str:
    h = (host or "").strip().rstrip("/")
    if not h:
        raise ValueError("Missing host")
    return f"{scheme}://{h}{PROBE_PATH}"


def _format_window_ts(value: datetime) -> str:
    offset = value.utcoffset() or timedelta(0)
    total_minutes = int(offset.total_seconds() // 60)
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{value:%Y-%m-%d %H:%M:%S} {sign}{hours:02d}:{minutes:02d}"


def lookback_params(now: datetime, *, days: int, utc_offset_hours: float = 3.0) -> dict[str, str]:
    """
    Build the `[now - days, now]` window as rendered in the probe query.

    Both bounds are expressed in the fixed UTC offset, e.g. `2024-01-01 10:00:00 +03:00`.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tz = timezone(timedelta(hours=float(utc_offset_hours)))
    end = now.astimezone(tz)
    start = end - timedelta(days=int(days))
    return {
        "start_date": _format_window_ts(start),
        "end_date": _format_window_ts(end),
    }


def encode_query(params: dict[str, str]) -> str:
    # Spaces become "+", the offset sign becomes "%2B", colons stay readable.
    return urlencode(params, safe=":")


def with_query(url: str, params: dict[str, str] | None) -> str:
    if not params:
        return url
    return f"{url}?{encode_query(params)}"


def _decode_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    json: Any = None,
    deadline: float = DEFAULT_DEADLINE_SECONDS,
) -> TransportResult:
    """
    Issue one request with a hard deadline over the whole exchange.

    Never raises for network problems: timeouts, setup errors and non-2xx
    responses are all reported on the returned TransportResult.
    """
    try:
        request = client.build_request(method, url, headers=headers, json=json, timeout=deadline)
    except (httpx.InvalidURL, httpx.UnsupportedProtocol, ValueError) as e:
        return TransportResult(failure=SetupFailure(f"{type(e).__name__}: {e}"))

    try:
        resp = await asyncio.wait_for(client.send(request, follow_redirects=False), timeout=deadline)
    except asyncio.TimeoutError:
        return TransportResult(failure=TimeoutFailure(f"no response within {deadline:g}s", deadline_exceeded=True))
    except httpx.TimeoutException as e:
        return TransportResult(failure=TimeoutFailure(f"{type(e).__name__}: {e}"))
    except httpx.RequestError as e:
        return TransportResult(failure=SetupFailure(f"{type(e).__name__}: {e}"))

    body = _decode_body(resp)
    if 200 <= resp.status_code < 300:
        return TransportResult(status_code=resp.status_code, body=body)
    return TransportResult(
        status_code=resp.status_code,
        body=body,
        failure=HttpResponseFailure(resp.status_code, resp.reason_phrase or ""),
    )


async def probe(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    *,
    params: dict[str, str] | None = None,
    deadline: float = DEFAULT_DEADLINE_SECONDS,
) -> TransportResult:
    return await send(client, "GET", with_query(url, params), headers=headers, deadline=deadline)
