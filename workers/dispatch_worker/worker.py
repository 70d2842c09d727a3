"""Periodic trigger for the courier auto-assignment sweep."""

from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger("nearcart.dispatch_worker")

_ENV_PREFIX = "NEARCART_DISPATCH_WORKER_"


@dataclass(frozen=True)
class DispatchWorkerSettings:
    api_base_url: str
    interval_s: int
    timeout_s: float
    auth_token: str | None
    max_retries: int
    retry_backoff_s: float


@dataclass(frozen=True)
class AutoAssignRunResult:
    ok: bool
    assigned: int
    unplaced: int = 0
    failed: int = 0
    status_code: int | None = None
    error: str | None = None
    attempts: int = 1


def load_settings(env: dict[str, str] | None = None) -> DispatchWorkerSettings:
    source = env if env is not None else os.environ

    def _get(name: str, default: str) -> str:
        return source.get(f"{_ENV_PREFIX}{name}", default).strip()

    api_base_url = _get("API_BASE_URL", "http://localhost:8000")
    interval_s = int(_get("INTERVAL_S", "15"))
    timeout_s = float(_get("TIMEOUT_S", "5"))
    max_retries = int(_get("MAX_RETRIES", "2"))
    retry_backoff_s = float(_get("RETRY_BACKOFF_S", "0.5"))
    auth_token = source.get(f"{_ENV_PREFIX}AUTH_TOKEN") or None

    if interval_s < 1:
        raise ValueError(f"{_ENV_PREFIX}INTERVAL_S must be >= 1")
    if timeout_s <= 0:
        raise ValueError(f"{_ENV_PREFIX}TIMEOUT_S must be > 0")
    if max_retries < 0:
        raise ValueError(f"{_ENV_PREFIX}MAX_RETRIES must be >= 0")
    if retry_backoff_s < 0:
        raise ValueError(f"{_ENV_PREFIX}RETRY_BACKOFF_S must be >= 0")

    return DispatchWorkerSettings(
        api_base_url=api_base_url.rstrip("/"),
        interval_s=interval_s,
        timeout_s=timeout_s,
        auth_token=auth_token,
        max_retries=max_retries,
        retry_backoff_s=retry_backoff_s,
    )


def _decode_sweep_response(raw: str, status_code: int | None) -> AutoAssignRunResult:
    if not raw:
        return AutoAssignRunResult(ok=True, assigned=0, status_code=status_code)
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return AutoAssignRunResult(
            ok=False, assigned=0, status_code=status_code, error="Invalid JSON in sweep response"
        )
    if not isinstance(body, dict):
        return AutoAssignRunResult(
            ok=False, assigned=0, status_code=status_code, error="Sweep response is not an object"
        )

    try:
        assigned = int(body.get("assigned", 0))
    except (TypeError, ValueError):
        return AutoAssignRunResult(
            ok=False, assigned=0, status_code=status_code, error="Invalid assigned value"
        )
    if assigned < 0:
        return AutoAssignRunResult(
            ok=False, assigned=0, status_code=status_code, error="assigned must be >= 0"
        )

    return AutoAssignRunResult(
        ok=True,
        assigned=assigned,
        unplaced=len(body.get("unplaced_order_ids") or []),
        failed=len(body.get("failures") or []),
        status_code=status_code,
    )


def run_sweep_once(
    settings: DispatchWorkerSettings,
    opener: Callable[..., object] = urllib.request.urlopen,
) -> AutoAssignRunResult:
    headers = {"Content-Type": "application/json"}
    if settings.auth_token:
        headers["Authorization"] = f"Bearer {settings.auth_token}"

    request = urllib.request.Request(
        url=f"{settings.api_base_url}/api/v1/dispatch/auto-assign",
        data=b"{}",
        method="POST",
        headers=headers,
    )

    try:
        with opener(request, timeout=settings.timeout_s) as response:
            raw = response.read().decode("utf-8")
            return _decode_sweep_response(raw, getattr(response, "status", 200))
    except urllib.error.HTTPError as exc:
        return AutoAssignRunResult(
            ok=False, assigned=0, status_code=exc.code, error=f"HTTPError: {exc.code}"
        )
    except urllib.error.URLError as exc:
        return AutoAssignRunResult(ok=False, assigned=0, error=f"URLError: {exc.reason}")


def _is_retryable(result: AutoAssignRunResult) -> bool:
    if result.ok:
        return False
    if result.status_code is None:
        return True
    # 409 means the sweep raced another writer; the next attempt sees fresh rows
    if result.status_code in {408, 409, 429}:
        return True
    return result.status_code >= 500


def run_sweep_with_retries(
    settings: DispatchWorkerSettings,
    opener: Callable[..., object] = urllib.request.urlopen,
    sleep: Callable[[float], None] = time.sleep,
) -> AutoAssignRunResult:
    for attempts in range(1, settings.max_retries + 2):
        result = run_sweep_once(settings, opener=opener)
        if result.ok or not _is_retryable(result) or attempts > settings.max_retries:
            return AutoAssignRunResult(
                ok=result.ok,
                assigned=result.assigned,
                unplaced=result.unplaced,
                failed=result.failed,
                status_code=result.status_code,
                error=result.error,
                attempts=attempts,
            )

        logger.warning("auto-assign attempt %s failed: %s", attempts, result.error)
        sleep(settings.retry_backoff_s * (2 ** (attempts - 1)))

    raise RuntimeError("auto-assign retry loop exhausted unexpectedly")


def run_forever(settings: DispatchWorkerSettings) -> None:
    while True:
        result = run_sweep_with_retries(settings)
        if result.ok:
            logger.info(
                "auto-assign sweep: assigned=%s unplaced=%s failed=%s",
                result.assigned,
                result.unplaced,
                result.failed,
            )
        else:
            logger.error(
                "auto-assign sweep failed after %s attempts: %s", result.attempts, result.error
            )
        time.sleep(settings.interval_s)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_forever(load_settings())
