from app.integrations.errors import (
    IntegrationBadGatewayError,
    IntegrationError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)
from app.integrations.realtime_bus import (
    HttpRealtimeBus,
    NoopRealtimeBus,
    RealtimeBus,
    get_realtime_bus,
)

__all__ = [
    "IntegrationError",
    "IntegrationTimeoutError",
    "IntegrationUnavailableError",
    "IntegrationBadGatewayError",
    "RealtimeBus",
    "NoopRealtimeBus",
    "HttpRealtimeBus",
    "get_realtime_bus",
]
