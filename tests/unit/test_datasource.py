import json

import httpx
import pytest

from auditswarm.config import DataSourceConfig
from auditswarm.datasource import (
    PROTOCOL_VERSION,
    SESSION_HEADER,
    DataSourceClient,
    QueryDataArgs,
    data_tools,
)


class FakeServer:
    """MCP server stand-in recording the JSON-RPC requests it receives."""

    def __init__(self, tool_response=None, status_code=200):
        self.requests = []
        self.tool_response = tool_response or {
            "result": {"content": [{"type": "text", "text": json.dumps({"tables": ["vendors"]})}]}
        }
        self.status_code = status_code

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request, body))
        if body["method"] == "initialize":
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "result": {"protocolVersion": PROTOCOL_VERSION}},
                headers={SESSION_HEADER: "session-abc"},
            )
        return httpx.Response(
            self.status_code, json={"jsonrpc": "2.0", "id": body["id"], **self.tool_response}
        )


def client_for(server):
    config = DataSourceConfig(url="http://data.test/")
    return DataSourceClient(config, httpx.AsyncClient(transport=httpx.MockTransport(server.handler)))


def test_data_tools_use_prefix_and_camel_case_order_by():
    get_schema, query = data_tools("db_")
    assert get_schema.name == "db_get_schema"
    assert query.name == "db_query_data"
    assert "orderBy" in query.parameters_json_schema["properties"]
    args = QueryDataArgs.model_validate({"table": "vendors", "orderBy": "amount DESC"})
    assert args.order_by == "amount DESC"


@pytest.mark.asyncio
async def test_initializes_once_and_reuses_session():
    server = FakeServer()
    client = client_for(server)

    first = await client.call_tool("data_get_schema", {})
    second = await client.call_tool("data_query_data", {"table": "vendors", "limit": 5})
    await client.aclose()

    assert first.success
    assert first.result == {"tables": ["vendors"]}
    assert second.success
    methods = [body["method"] for _, body in server.requests]
    assert methods == ["initialize", "tools/call", "tools/call"]
    request, body = server.requests[2]
    assert str(request.url) == "http://data.test/mcp"
    assert request.headers[SESSION_HEADER] == "session-abc"
    assert body["params"] == {"name": "query_data", "arguments": {"table": "vendors", "limit": 5}}
    assert body["id"] == 3


@pytest.mark.asyncio
async def test_plain_text_content_is_returned_verbatim():
    server = FakeServer({"result": {"content": [{"type": "text", "text": "no rows"}]}})
    result = await client_for(server).call_tool("data_query_data", {"table": "x"})
    assert result.success
    assert result.result == "no rows"


@pytest.mark.asyncio
async def test_tool_level_error_is_a_failed_result():
    server = FakeServer(
        {"result": {"isError": True, "content": [{"type": "text", "text": "unknown table"}]}}
    )
    result = await client_for(server).call_tool("data_query_data", {"table": "x"})
    assert not result.success
    assert result.error == "unknown table"


@pytest.mark.asyncio
async def test_json_rpc_error_is_a_failed_result():
    server = FakeServer({"error": {"code": -32602, "message": "Invalid params"}})
    result = await client_for(server).call_tool("data_query_data", {})
    assert not result.success
    assert result.error == "Invalid params"


@pytest.mark.asyncio
async def test_http_error_is_a_failed_result():
    server = FakeServer(status_code=503)
    result = await client_for(server).call_tool("data_get_schema", {})
    assert not result.success
    assert "503" in result.error
