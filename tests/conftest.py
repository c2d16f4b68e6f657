"""
Shared test doubles: an in-process MCP server behind ``httpx.MockTransport`` and a scripted
planner that replays canned model responses.
"""

import json
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
)

import httpx
import pytest

from mcpilot.agent.planner_interface import BasePlanner
from mcpilot.core.schema import (
    ConversationTurn,
    ModelResponse,
    TextBlock,
    Tool,
    ToolUseBlock,
    Usage,
)
from mcpilot.mcp.endpoints import DEFAULT_ENDPOINTS

FOOD, INSTAMART, DINEOUT = DEFAULT_ENDPOINTS

CallHandler = Callable[[str, Dict[str, Any]], Any]


def text_result(payload: Any) -> Dict[str, Any]:
    """Wrap *payload* the way the servers do: one text segment holding JSON."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"content": [{"type": "text", "text": text}]}


class FakeMcpServer:
    """Answers JSON-RPC posts for any number of endpoint URLs and records every request."""

    def __init__(self) -> None:
        self.servers: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.calls: List[Dict[str, Any]] = []

    def add(
        self,
        url: str,
        tools: Sequence[Dict[str, Any]] = (),
        session_id: str | None = None,
        fail_status: int | None = None,
        require_auth: bool = False,
        on_call: CallHandler | None = None,
    ) -> None:
        self.servers[url] = {
            "tools": list(tools),
            "session_id": session_id,
            "fail_status": fail_status,
            "require_auth": require_auth,
            "on_call": on_call or (lambda name, args: text_result({"ok": True})),
        }

    def count(self, method: str) -> int:
        return sum(1 for r in self.requests if json.loads(r.content)["method"] == method)

    def requests_for(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if json.loads(r.content)["method"] == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        cfg = self.servers.get(str(request.url))
        if cfg is None:
            return httpx.Response(404, text="no such server")
        if cfg["fail_status"]:
            return httpx.Response(cfg["fail_status"], text="upstream unavailable")
        if cfg["require_auth"] and "authorization" not in request.headers:
            return httpx.Response(401, text="unauthorized")

        method = body["method"]
        if method == "initialize":
            headers = {"mcp-session-id": cfg["session_id"]} if cfg["session_id"] else {}
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "result": {"protocolVersion": "2024-11-05"},
                },
                headers=headers,
            )
        if method == "notifications/initialized":
            return httpx.Response(202)
        if method == "tools/list":
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"tools": cfg["tools"]}}
            )
        if method == "tools/call":
            params = body["params"]
            self.calls.append(params)
            outcome = cfg["on_call"](params["name"], params["arguments"])
            if isinstance(outcome, httpx.Response):
                return outcome
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": outcome})
        return httpx.Response(400, json={"jsonrpc": "2.0", "error": {"message": "bad method"}})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class ScriptedPlanner(BasePlanner):
    """Replays *responses* in order; a callable is asked for each response instead."""

    def __init__(self, responses: Sequence[ModelResponse] | Callable[[int], ModelResponse]):
        self.responses = responses
        self.transcripts: List[List[ConversationTurn]] = []
        self.tool_names: List[List[str]] = []

    async def complete(
        self,
        transcript: Sequence[ConversationTurn],
        tools: Sequence[Tool],
        system: str | None = None,
    ) -> ModelResponse:
        index = len(self.transcripts)
        self.transcripts.append([turn.model_copy(deep=True) for turn in transcript])
        self.tool_names.append([tool.name for tool in tools])
        if callable(self.responses):
            return self.responses(index)
        return self.responses[index]


def say(text: str, stop_reason: str = "end_turn") -> ModelResponse:
    return ModelResponse(
        stop_reason=stop_reason,
        content=[TextBlock(text=text)],
        usage=Usage(input_tokens=10, output_tokens=5),
    )


def use_tool(
    name: str, args: Dict[str, Any] | None = None, use_id: str = "toolu_1"
) -> ModelResponse:
    return ModelResponse(
        stop_reason="tool_use",
        content=[ToolUseBlock(id=use_id, name=name, input=args or {})],
        usage=Usage(input_tokens=10, output_tokens=5),
    )


@pytest.fixture
def server() -> FakeMcpServer:
    return FakeMcpServer()
