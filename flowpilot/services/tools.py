from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol, runtime_checkable
from urllib.parse import quote

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..core.config import Settings, ToolSettings, get_settings
from ..core.logging import get_logger
from ..tools.exceptions import InvocationFailed
from .mcp_client import MCPClient, MCPClientConfig

logger = get_logger(name=__name__)


class OperationSchema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    description: str = Field(default="")
    input_schema: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("input_schema", "inputSchema"),
    )

    @property
    def property_names(self) -> list[str]:
        properties = self.input_schema.get("properties")
        if isinstance(properties, dict):
            return list(properties.keys())
        return []

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


@runtime_checkable
class ToolAdapter(Protocol):
    async def list_operations(self, capability: str, principal: str | None = None) -> list[OperationSchema]:
        ...

    async def invoke(
        self,
        capability: str,
        operation: str,
        args: dict[str, Any],
        principal: str | None = None,
    ) -> Any:
        ...


class _OperationCache:
    def __init__(self, ttl_seconds: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._storage: dict[str, tuple[float, list[OperationSchema]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> list[OperationSchema] | None:
        if self._ttl <= 0:
            return None
        async with self._lock:
            entry = self._storage.get(key)
            if not entry:
                return None
            timestamp, value = entry
            if self._clock() - timestamp > self._ttl:
                del self._storage[key]
                return None
            return value

    async def set(self, key: str, value: list[OperationSchema]) -> None:
        if self._ttl <= 0:
            return
        now = self._clock()
        async with self._lock:
            expired = [name for name, (stamp, _) in self._storage.items() if now - stamp > self._ttl]
            for name in expired:
                del self._storage[name]
            self._storage[key] = (now, value)


class HTTPToolAdapter:
    """Tool Adapter backed by a tool-provider gateway speaking JSON over HTTP."""

    def __init__(
        self,
        settings: ToolSettings,
        *,
        client: MCPClient | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or MCPClient(
            MCPClientConfig(
                base_url=settings.endpoint,
                timeout_seconds=settings.timeout_seconds,
                verify_ssl=settings.verify_ssl,
                default_headers=dict(settings.extra_headers),
                principal_header=settings.principal_header,
                auth_header_provider=self._build_auth_header_provider(),
            ),
            client=http_client,
        )
        self._cache = _OperationCache(settings.catalog_cache_ttl_seconds)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "HTTPToolAdapter":
        resolved = settings or get_settings()
        return cls(resolved.tools, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_operations(self, capability: str, principal: str | None = None) -> list[OperationSchema]:
        cache_key = f"{principal or ''}:{capability}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return cached

        path = self._settings.operations_path_template.format(capability=quote(capability, safe=""))
        payload = await self._client.call("GET", path, capability=capability, principal=principal)
        entries: Any = payload
        if isinstance(payload, dict):
            entries = payload.get("operations", payload.get("tools", []))

        operations: list[OperationSchema] = []
        if isinstance(entries, list):
            for raw in entries:
                if not isinstance(raw, dict) or not isinstance(raw.get("name"), str) or not raw["name"]:
                    continue
                operations.append(OperationSchema.model_validate(raw))
        else:
            logger.debug("tool_operations_unexpected_payload", capability=capability, payload=payload)

        await self._cache.set(cache_key, operations)
        logger.debug("tool_operations_listed", capability=capability, count=len(operations))
        return operations

    async def invoke(
        self,
        capability: str,
        operation: str,
        args: dict[str, Any],
        principal: str | None = None,
    ) -> Any:
        path = self._settings.invoke_path_template.format(
            capability=quote(capability, safe=""),
            operation=quote(operation, safe=""),
        )
        payload = await self._client.call(
            "POST",
            path,
            capability=capability,
            principal=principal,
            json={"arguments": args},
        )
        if isinstance(payload, dict):
            if payload.get("isError") or payload.get("is_error"):
                raise InvocationFailed(f"{capability}.{operation} reported an error: {payload.get('content') or payload}")
            if "result" in payload:
                return payload["result"]
        return payload

    def _build_auth_header_provider(self):
        header_name = (self._settings.api_key_header or "Authorization").strip() or "Authorization"
        scheme = (self._settings.auth_scheme or "").strip()
        api_key = self._settings.api_key
        if not api_key:
            return None

        async def _bearer_provider() -> dict[str, str]:
            value = f"{scheme} {api_key}".strip() if scheme else api_key
            return {header_name: value}

        return _bearer_provider


__all__ = ["HTTPToolAdapter", "OperationSchema", "ToolAdapter"]
