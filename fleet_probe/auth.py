"""Bearer token lifecycle: check, refresh once, persist."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

from fleet_probe.errors import AuthCheckError, AuthRefreshError
from fleet_probe.settings import Config, ConfigStore
from fleet_probe.transport import DEFAULT_DEADLINE_SECONDS, HttpResponseFailure, TransportResult, send


logger = structlog.get_logger(__name__)

AUTH_CHECK_PATH = "/v1/auth/is_auth"
SIGN_IN_PATH = "/v2/auth/sign_in"
SIGN_IN_USER_AGENT = "Rpcm"


class TokenState(str, Enum):
    UNCHECKED = "unchecked"
    VALID = "valid"
    INVALID = "invalid"
    REFRESHED = "refreshed"
    REFRESH_FAILED = "refresh_failed"


@dataclass(frozen=True)
class ValidToken:
    result: Any = None


@dataclass(frozen=True)
class RejectedWithStatus:
    status_code: int


@dataclass(frozen=True)
class TransportError:
    message: str


AuthCheckOutcome = ValidToken | RejectedWithStatus | TransportError


def bearer(token: str) -> str:
    return f"Bearer {token}"


def _api_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _first_result(body: Any) -> Any:
    if not isinstance(body, dict):
        return None
    result = body.get("result")
    if isinstance(result, list) and result:
        return result[0]
    return None


def check_outcome(result: TransportResult) -> AuthCheckOutcome:
    if result.ok:
        body = result.body if isinstance(result.body, dict) else {}
        return ValidToken(result=body.get("result"))
    if isinstance(result.failure, HttpResponseFailure):
        return RejectedWithStatus(result.failure.status_code)
    return TransportError(getattr(result.failure, "message", "") or "request failed")


class TokenManager:
    """
    Resolves the credential used for one run.

    Each `resolve()` performs at most one auth-check and at most one sign-in.
    A failed refresh is not fatal: the original credential is returned and
    the run continues in a degraded mode.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: ConfigStore,
        *,
        deadline: float = DEFAULT_DEADLINE_SECONDS,
    ) -> None:
        self.client = client
        self.store = store
        self.deadline = deadline
        self.state = TokenState.UNCHECKED
        self.check_calls = 0
        self.refresh_calls = 0

    async def check(self, config: Config) -> AuthCheckOutcome:
        self.check_calls += 1
        token_header = bearer(config.credential)
        result = await send(
            self.client,
            "POST",
            _api_url(config.api_base_url, AUTH_CHECK_PATH),
            headers={"Authorization": token_header, "X-Forwarded-Host": config.forwarded_host},
            json={"Authorization": token_header},
            deadline=self.deadline,
        )
        return check_outcome(result)

    async def refresh(self, config: Config) -> str:
        """Sign in with the stored login and return the new token, or raise AuthRefreshError."""
        self.refresh_calls += 1
        result = await send(
            self.client,
            "POST",
            _api_url(config.api_base_url, SIGN_IN_PATH),
            headers={"User-Agent": SIGN_IN_USER_AGENT},
            json={"email": config.login_email, "password": config.login_password},
            deadline=self.deadline,
        )
        if isinstance(result.failure, HttpResponseFailure):
            detail = _first_result(result.body)
            message = f"sign-in rejected with {result.failure.status_code}"
            if detail:
                message = f"{message}: {detail}"
            raise AuthRefreshError(message, status_code=result.failure.status_code)
        if result.failure is not None:
            raise AuthRefreshError(f"sign-in request failed: {result.failure.message}")

        token = _first_result(result.body)
        if not isinstance(token, str) or not token.strip():
            raise AuthRefreshError("sign-in response carried no token", status_code=result.status_code)
        return token.strip()

    async def resolve(self, config: Config) -> str:
        self.state = TokenState.UNCHECKED
        logger.info("Checking if config token is valid")

        outcome = await self.check(config)
        if isinstance(outcome, ValidToken):
            self.state = TokenState.VALID
            logger.info("Token is valid", result=outcome.result)
            return config.credential

        self.state = TokenState.INVALID
        if isinstance(outcome, RejectedWithStatus):
            err = AuthCheckError(f"auth check rejected with {outcome.status_code}", status_code=outcome.status_code)
        else:
            err = AuthCheckError(f"auth check request failed: {outcome.message}")
        logger.warning("Token is not valid, signing in again", error=str(err), status_code=err.status_code)

        try:
            token = await self.refresh(config)
        except AuthRefreshError as e:
            self.state = TokenState.REFRESH_FAILED
            logger.error("Could not get new token", error=str(e), status_code=e.status_code)
            return config.credential

        try:
            self.store.save(config.with_credential(token))
        except Exception as e:
            # The token is still good for this run; only persistence failed.
            logger.error("Could not persist new token", error=f"{type(e).__name__}: {e}")
        else:
            logger.info("Config updated with new token")

        self.state = TokenState.REFRESHED
        return token
