"""JSON-RPC client for the MCP audit data server used by the wrangler helper."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic_ai.tools import ToolDefinition

from .config import DataSourceConfig
from .contracts import ToolResult

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SESSION_HEADER = "Mcp-Session-Id"


class GetSchemaArgs(BaseModel):
    table: Optional[str] = Field(
        None, description="Only describe this table. Omit to list every table."
    )


class QueryDataArgs(BaseModel):
    table: str = Field(..., description="Table name as returned by data_get_schema")
    filter: Optional[str] = Field(None, description="SQL WHERE clause, e.g. \"amount > 100000\"")
    order_by: Optional[str] = Field(
        None, alias="orderBy", description='SQL ORDER BY clause, e.g. "amount DESC"'
    )
    limit: int = Field(50, ge=1, le=500, description="Maximum records to return")
    offset: int = Field(0, ge=0, description="Records to skip for pagination")

    model_config = ConfigDict(populate_by_name=True)


def data_tools(prefix: str = "data_") -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name=f"{prefix}get_schema",
            description=(
                "Get the database schema: tables, their columns with types and "
                "row counts. Call this first."
            ),
            parameters_json_schema=GetSchemaArgs.model_json_schema(),
        ),
        ToolDefinition(
            name=f"{prefix}query_data",
            description="Query a table with filtering, sorting and pagination.",
            parameters_json_schema=QueryDataArgs.model_json_schema(by_alias=True),
        ),
    ]


DATA_TOOLS = data_tools()


class DataSourceError(Exception):
    """The data server answered with a JSON-RPC error."""


class DataSourceClient:
    """Minimal MCP client: ``initialize`` once, then ``tools/call``."""

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or DataSourceConfig()
        self._client = client
        self._request_id = 0
        self.session_id: Optional[str] = None
        self._initialized = False

    @property
    def endpoint(self) -> str:
        return f"{self.config.url.rstrip('/')}/mcp"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self._request_id += 1
        response = await self._http().post(
            self.endpoint,
            headers=self._headers(),
            json={"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id},
        )
        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self.session_id = session_id
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            raise DataSourceError(data["error"].get("message") or f"{method} failed")
        return data

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self._rpc(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "auditswarm", "version": "0.1.0"},
            },
        )
        self._initialized = True
        logger.debug(f"Initialized data source session {self.session_id}")

    async def call_tool(self, name: str, args: Dict[str, Any]) -> ToolResult:
        tool_name = name[len(self.config.tool_prefix):] if name.startswith(self.config.tool_prefix) else name
        try:
            await self.initialize()
            data = await self._rpc("tools/call", {"name": tool_name, "arguments": args})
        except (httpx.HTTPError, DataSourceError, ValueError) as exc:
            logger.warning(f"Data source call {tool_name} failed: {exc}")
            return ToolResult.fail(str(exc) or "Data source call failed")

        result = data.get("result") or {}
        for part in result.get("content") or []:
            if part.get("type") == "text" and part.get("text"):
                if result.get("isError"):
                    return ToolResult.fail(part["text"])
                try:
                    return ToolResult.ok(json.loads(part["text"]))
                except ValueError:
                    return ToolResult.ok(part["text"])
        return ToolResult.ok(result)
