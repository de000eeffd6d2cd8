"""
Shared HTTP plumbing for the payment gateway REST clients.

Every request has a finite timeout and is retried on transport errors or 5xx
answers (gateway_max_retries extra attempts); a 404 surfaces as NotFoundError
and any other 4xx as GatewayError (502).
"""
import logging
from typing import Optional

import httpx

from domain.errors import GatewayError, GatewayNotConfiguredError, NotFoundError

logger = logging.getLogger(__name__)


class GatewayHttpClient:
    """Base for one-per-process gateway clients; close with aclose() on shutdown."""

    name = "gateway"

    def __init__(self, settings, api_base: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.base_url.rstrip("/")
        self.api_url = settings.api_url.rstrip("/")
        self.max_retries = max(0, settings.gateway_max_retries)
        self._client = httpx.AsyncClient(
            base_url=api_base,
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        raise NotImplementedError

    def auth_headers(self) -> dict:
        raise NotImplementedError

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict | list:
        if not self.configured:
            raise GatewayNotConfiguredError(self.name)

        headers = self.auth_headers()
        attempts = self.max_retries + 1
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, path, headers=headers, **kwargs)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"{self.name} {method} {path} failed (attempt {attempt}/{attempts}): {last_error}")
                continue

            if response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                logger.warning(f"{self.name} {method} {path} answered {response.status_code} (attempt {attempt}/{attempts})")
                continue

            if response.status_code == 404:
                raise NotFoundError(f"{self.name} resource", path)

            if response.status_code >= 400:
                raise GatewayError(
                    f"{self.name} rejected the request ({response.status_code})",
                    details={"status": response.status_code, "body": _safe_body(response)},
                )

            return response.json()

        raise GatewayError(
            f"{self.name} unavailable after {attempts} attempts",
            details={"lastError": last_error},
        )


def _safe_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text[:500]
