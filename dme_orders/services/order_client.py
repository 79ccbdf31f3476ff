"""
Order API Client - submits extracted device orders downstream.

Posts `DeviceOrder.to_api_payload()` as JSON to the configured order
endpoint. Transport errors and 5xx responses are retried with exponential
backoff; a 4xx response or exhausted retries raise OrderSubmissionError.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from dme_orders.config import Settings
from dme_orders.extraction.models import DeviceOrder

logger = logging.getLogger(__name__)


class OrderSubmissionError(Exception):
    """The order API could not be reached or rejected the order."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class _ServerError(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"Order API returned {response.status_code}")
        self.response = response


@dataclass
class SubmissionResult:
    """Outcome of a submission; `skipped` when posting is disabled."""
    submitted: bool
    skipped: bool = False
    status_code: Optional[int] = None
    response: Any = None


class OrderApiClient:
    """
    Async client for the downstream order API.

    Usage:
        async with OrderApiClient(settings) as client:
            result = await client.submit(order)
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 10.0,
    ):
        self.settings = settings
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def url(self) -> str:
        base = self.settings.order_api_base_url.rstrip("/")
        endpoint = self.settings.order_api_endpoint.lstrip("/")
        return f"{base}/{endpoint}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.settings.order_api_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "OrderApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _post(self, payload: dict) -> httpx.Response:
        client = await self._get_client()
        response = await client.post(self.url, json=payload)
        if response.status_code >= 500:
            raise _ServerError(response)
        return response

    async def submit(self, order: DeviceOrder) -> SubmissionResult:
        """
        Submit an order.

        Raises:
            OrderSubmissionError: On a 4xx response, or when every attempt
                failed with a transport error or 5xx response
        """
        if not self.settings.enable_order_posting:
            logger.info("Order posting disabled, skipping submission of %s order", order.device)
            return SubmissionResult(submitted=False, skipped=True)

        payload = order.to_api_payload()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.order_api_retry_count)),
            wait=wait_exponential(min=self.retry_wait_min, max=self.retry_wait_max),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._post(payload)
        except _ServerError as e:
            raise OrderSubmissionError(
                f"Order API failed after retries: {e}", status_code=e.response.status_code
            ) from e
        except httpx.TransportError as e:
            raise OrderSubmissionError(f"Order API unreachable: {e}") from e

        if response.is_error:
            raise OrderSubmissionError(
                f"Order API rejected the order ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        logger.info("Submitted %s order (status %d)", order.device, response.status_code)
        return SubmissionResult(submitted=True, status_code=response.status_code, response=body)
