"""
HTTP helpers for the URL input and webhook output nodes.

Status handling is shared: 5xx responses, 429 and transport errors
are transient (the node's retry policy may try again); any other
4xx is permanent.
"""

from __future__ import annotations

from logging import getLogger
from typing import Any, Dict, Mapping, Optional

import httpx

from docflow.connectors.services import ConnectorServices
from docflow.exceptions import ConnectorError, TransientConnectorError

logger = getLogger(__name__)


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"{response.request.method} {response.request.url} returned HTTP {status}"
    if status >= 500 or status == 429:
        raise TransientConnectorError(message)
    raise ConnectorError(message)


async def fetch(services: ConnectorServices, url: str) -> httpx.Response:
    """GET ``url`` with the services' client."""
    if not url:
        raise ConnectorError("No URL given")
    try:
        async with services.http_client_factory() as client:
            response = await client.get(url)
    except httpx.UnsupportedProtocol as exc:
        raise ConnectorError(f"Unsupported URL {url!r}: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransientConnectorError(f"Could not fetch {url}: {exc}") from exc
    except httpx.InvalidURL as exc:
        raise ConnectorError(f"Invalid URL {url!r}: {exc}") from exc
    _raise_for_status(response)
    logger.info(f"Fetched {url} ({len(response.content)} bytes)")
    return response


async def send_json(
    services: ConnectorServices,
    url: str,
    body: Any,
    *,
    method: str = "POST",
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Send ``body`` as JSON and return status plus decoded response."""
    if not url:
        raise ConnectorError("No webhook URL configured")
    try:
        async with services.http_client_factory() as client:
            response = await client.request(method, url, json=body, headers=dict(headers or {}))
    except httpx.UnsupportedProtocol as exc:
        raise ConnectorError(f"Unsupported URL {url!r}: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransientConnectorError(f"Could not reach {url}: {exc}") from exc
    except httpx.InvalidURL as exc:
        raise ConnectorError(f"Invalid URL {url!r}: {exc}") from exc
    _raise_for_status(response)

    try:
        content: Any = response.json()
    except ValueError:
        content = response.text
    logger.info(f"{method} {url} → {response.status_code}")
    return {"url": url, "status_code": response.status_code, "response": content}
