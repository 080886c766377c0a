"""Workspace health probe over HTTP (httpx).

Workspace endpoints commonly serve self-signed certificates, so TLS
verification is off for the probe.
"""

import httpx

from devworkspace.core.interfaces.health import HealthProbe, HealthResult

HEALTHZ_PATH = "healthz"

# Connection pool limits
PROBE_MAX_CONNECTIONS = 20
PROBE_MAX_KEEPALIVE = 5


def health_url(main_url: str) -> str:
    if not main_url.endswith("/"):
        main_url += "/"
    return main_url + HEALTHZ_PATH


def is_healthy_status(status_code: int) -> bool:
    """2xx is healthy; so is any 4xx but 429 (no health endpoint implemented)."""
    if 200 <= status_code < 300:
        return True
    return 400 <= status_code < 500 and status_code != 429


class HttpxHealthProbe(HealthProbe):
    """HealthProbe with a shared httpx AsyncClient."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            verify=False,
            limits=httpx.Limits(
                max_connections=PROBE_MAX_CONNECTIONS,
                max_keepalive_connections=PROBE_MAX_KEEPALIVE,
            ),
        )

    async def check(self, main_url: str, timeout: float) -> HealthResult:
        if not main_url:
            return HealthResult(ok=True)
        response = await self._client.get(health_url(main_url), timeout=timeout)
        return HealthResult(ok=is_healthy_status(response.status_code), status_code=response.status_code)

    async def close(self) -> None:
        await self._client.aclose()
