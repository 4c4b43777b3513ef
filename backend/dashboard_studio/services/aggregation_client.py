"""Aggregation endpoint client.

WHAT:
    Async HTTP client for the three external aggregation endpoints:
    - POST /api/dashboard/aggregate-data   grouped metrics
    - POST /api/dashboard/raw-data         unaggregated rows
    - POST /api/dashboard/distinct-values  filter dropdown options

WHY:
    SQL execution lives behind these endpoints. This client is the only place
    that knows about HTTP: it sends the bodies built by
    aggregation/request.py and turns every failure (non-2xx, network error,
    timeout, non-list payload) into a TransportError so the widget loader can
    handle it per widget.

ERROR BODIES:
    Non-2xx responses carry `{"error": "<message>"}`; that message becomes the
    user-facing TransportError message when present.

REFERENCES:
    - dashboard_studio/aggregation/request.py (request bodies)
    - dashboard_studio/services/widget_loader.py (consumer)
"""

import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from dashboard_studio.aggregation.errors import TransportError
from dashboard_studio.aggregation.request import (
    AggregateRequest,
    DistinctValuesRequest,
    RawRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

AnyRequest = Union[AggregateRequest, RawRequest, DistinctValuesRequest]


class AggregationClient:
    """Client for the aggregation endpoints.

    Usage:
        client = AggregationClient(base_url="http://localhost:3000")
        rows = await client.fetch(assemble_request(...))
        await client.aclose()

    Tests inject an `httpx.AsyncClient` built on `httpx.MockTransport`.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AggregationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> List[Any]:
        """POST a JSON body and return the list payload.

        Raises:
            TransportError: network failure, timeout, non-2xx or non-list payload
        """
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._client.post(url, json=body)
        except httpx.TimeoutException as e:
            logger.error(f"[AGG_CLIENT] Timeout calling {endpoint}: {e}")
            raise TransportError(
                message="The aggregation service timed out.",
                details={"endpoint": endpoint},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"[AGG_CLIENT] Request error calling {endpoint}: {e}")
            raise TransportError(
                message="Could not reach the aggregation service.",
                details={"endpoint": endpoint, "error": str(e)},
            ) from e

        if response.status_code < 200 or response.status_code >= 300:
            message = _error_message(response) or f"Aggregation request failed ({response.status_code})."
            logger.error(f"[AGG_CLIENT] {endpoint} returned {response.status_code}: {message}")
            raise TransportError(
                message=message,
                status_code=response.status_code,
                details={"endpoint": endpoint},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(
                message="The aggregation service returned invalid JSON.",
                status_code=response.status_code,
                details={"endpoint": endpoint},
            ) from e

        if not isinstance(payload, list):
            raise TransportError(
                message="The aggregation service returned an unexpected payload.",
                status_code=response.status_code,
                details={"endpoint": endpoint, "payload_type": type(payload).__name__},
            )

        logger.debug(f"[AGG_CLIENT] {endpoint} returned {len(payload)} item(s)")
        return payload

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def fetch(self, request: AnyRequest) -> List[Any]:
        """Send any assembled request to its endpoint."""
        return await self._post(request.endpoint, request.to_payload())

    async def aggregate(self, request: AggregateRequest) -> List[Dict[str, Any]]:
        return await self.fetch(request)

    async def raw(self, request: RawRequest) -> List[Dict[str, Any]]:
        return await self.fetch(request)

    async def distinct_values(self, request: DistinctValuesRequest) -> List[Any]:
        """Distinct values of a column, as a flat list (`[2023, 2024]`).

        Endpoints that answer with row objects (`[{"value": 2023}]`) are
        flattened to their first column.
        """
        values = await self.fetch(request)
        flattened = []
        for item in values:
            if isinstance(item, dict):
                flattened.append(next(iter(item.values()), None))
            else:
                flattened.append(item)
        return flattened


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return None
