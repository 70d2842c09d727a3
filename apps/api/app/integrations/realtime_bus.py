import time
from typing import Any, Protocol

import httpx

from app.config import settings
from app.integrations.errors import (
    IntegrationError,
    IntegrationBadGatewayError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)

_SERVICE = "realtime_bus"


class RealtimeBus(Protocol):
    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None: ...


class NoopRealtimeBus:
    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        return None


class HttpRealtimeBus:
    """Broadcast events to the realtime gateway over its HTTP publish endpoint.

    One instance serves one request or sweep. After a publish fails for good,
    later publishes on the same instance fail fast without touching the
    network, so an unreachable gateway costs a request at most one publish
    worth of timeouts.
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float,
        max_retries: int,
        backoff_s: float,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self.unavailable: IntegrationError | None = None

    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        if self.unavailable is not None:
            raise IntegrationUnavailableError(
                _SERVICE, "Realtime bus skipped after an earlier failure"
            )

        body = {"channel": channel, "event": event, "payload": payload}

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                with httpx.Client(timeout=self.timeout_s) as client:
                    response = client.post(f"{self.base_url}/api/v1/broadcast", json=body)

                if response.status_code >= 500:
                    raise IntegrationUnavailableError(_SERVICE, "Realtime bus returned 5xx")
                if response.status_code >= 400:
                    raise IntegrationBadGatewayError(
                        _SERVICE,
                        f"Realtime bus returned {response.status_code}",
                    )
                return None
            except httpx.TimeoutException:
                integration_error = IntegrationTimeoutError(_SERVICE)
            except httpx.TransportError as err:
                integration_error = IntegrationUnavailableError(_SERVICE, str(err))
            except IntegrationUnavailableError as err:
                integration_error = err

            if attempt >= self.max_retries:
                self.unavailable = integration_error
                raise integration_error
            time.sleep(self.backoff_s * (2**attempt))

        return None


def get_realtime_bus() -> RealtimeBus:
    if not settings.realtime_bus_url.strip():
        return NoopRealtimeBus()
    return HttpRealtimeBus(
        base_url=settings.realtime_bus_url,
        timeout_s=settings.realtime_bus_timeout_s,
        max_retries=settings.realtime_bus_max_retries,
        backoff_s=settings.realtime_bus_backoff_s,
    )
