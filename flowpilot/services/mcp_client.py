"""httpx transport to the tool-provider gateway.

A call is sent exactly once; retry policy belongs to the step executor.
Transport failures and error statuses are translated into the tool error
taxonomy here, so adapters only ever handle decoded payloads.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..core.logging import get_logger
from ..tools.exceptions import (
    AuthenticationRequired,
    CapabilityUnavailable,
    InvocationFailed,
    ToolError,
    ToolTimeoutError,
)

logger = get_logger(name=__name__)


AuthHeaderProvider = Callable[[], Awaitable[dict[str, str] | None] | dict[str, str] | None]
InstrumentationHook = Callable[[dict[str, Any]], None]

_AUTH_STATUSES = frozenset({401, 403})
_UNAVAILABLE_STATUSES = frozenset({404, 503})
_ERROR_BODY_CHARS = 200


@dataclass(slots=True)
class MCPClientConfig:
    base_url: str
    timeout_seconds: float
    verify_ssl: bool = True
    default_headers: dict[str, str] = field(default_factory=dict)
    principal_header: str = "X-Principal"
    auth_header_provider: AuthHeaderProvider | None = None
    instrumentation_hooks: tuple[InstrumentationHook, ...] = ()


def classify_transport_error(capability: str, exc: httpx.RequestError) -> ToolError:
    detail = str(exc) or type(exc).__name__
    if isinstance(exc, httpx.TimeoutException):
        return ToolTimeoutError(f"{capability} timed out: {detail}")
    if isinstance(exc, httpx.ConnectError):
        return CapabilityUnavailable(f"{capability} is unreachable: {detail}")
    return InvocationFailed(f"{capability} request failed: {detail}")


def raise_for_gateway_status(capability: str, response: httpx.Response) -> None:
    status = response.status_code
    if status in _AUTH_STATUSES:
        raise AuthenticationRequired(f"{capability} requires authentication (status {status})")
    if status in _UNAVAILABLE_STATUSES:
        raise CapabilityUnavailable(f"{capability} is unavailable (status {status})")
    if response.is_error:
        raise InvocationFailed(f"{capability} returned status {status}: {response.text[:_ERROR_BODY_CHARS]}")


class MCPClient:
    def __init__(self, config: MCPClientConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=httpx.Timeout(config.timeout_seconds),
            verify=config.verify_ssl,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(
        self,
        method: str,
        path: str,
        *,
        capability: str,
        principal: str | None = None,
        json: Any | None = None,
    ) -> Any:
        """Send one request on behalf of ``principal`` and return the decoded body.

        Raises a ``ToolError`` subclass for transport failures and error statuses.
        """
        headers = await self._headers(principal)
        context = {"method": method.upper(), "path": path, "capability": capability}
        self._emit("request.start", context)
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.RequestError as exc:
            self._emit("request.failed", {**context, "error": str(exc), "latency": time.perf_counter() - start})
            raise classify_transport_error(capability, exc) from exc

        self._emit(
            "request.complete",
            {**context, "status": response.status_code, "latency": time.perf_counter() - start},
        )
        raise_for_gateway_status(capability, response)
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _headers(self, principal: str | None) -> dict[str, str]:
        headers = dict(self._config.default_headers)
        provider = self._config.auth_header_provider
        if provider is not None:
            value = provider()
            if inspect.isawaitable(value):
                value = await value
            headers.update(value or {})
        if principal:
            headers[self._config.principal_header] = principal
        return headers

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for hook in self._config.instrumentation_hooks:
            try:
                hook({**payload, "event": event})
            except Exception as exc:  # pragma: no cover - hooks must not break requests
                logger.warning("gateway_instrumentation_hook_failed", hook_event=event, error=str(exc))
        logger.debug("gateway_request_event", gateway_event=event, **payload)


__all__ = [
    "AuthHeaderProvider",
    "MCPClient",
    "MCPClientConfig",
    "classify_transport_error",
    "raise_for_gateway_status",
]
