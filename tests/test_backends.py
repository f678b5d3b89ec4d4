"""Tests for tools/backends.py — MCP stdio back-end adapter."""
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.shared.exceptions import McpError
from mcp.types import (
    METHOD_NOT_FOUND, CallToolResult, ErrorData, GetPromptResult, ImageContent, ListPromptsResult,
    ListToolsResult, Prompt, PromptArgument, PromptMessage, TextContent, Tool,
)

from agentloop.config import BackendSpec
from agentloop.conversation import Role, Turn
from agentloop.errors import FatalStartupError, RecoverableToolError
from agentloop.tools.backends import McpBackend, PromptDescriptor, ToolContent, ToolDescriptor


def _connected(session):
    backend = McpBackend(BackendSpec(name="srv", command="srv-bin"))
    backend._session = session
    return backend


class TestToolContent:
    def test_text(self):
        assert ToolContent(type="text", text="hello").as_text() == "hello"

    def test_payload(self):
        content = ToolContent(type="resource", payload={"uri": "file:///a"})
        assert content.as_text() == '{"type": "resource", "payload": {"uri": "file:///a"}}'


class TestMcpBackend:
    @pytest.mark.asyncio
    async def test_list_tools(self):
        session = AsyncMock()
        session.list_tools.return_value = ListToolsResult(tools=[
            Tool(name="weather", description="Get weather", inputSchema={"type": "object"}),
            Tool(name="ping", inputSchema={"type": "object"}),
        ])
        tools = await _connected(session).list_tools()
        assert tools == [
            ToolDescriptor("weather", "Get weather", {"type": "object"}),
            ToolDescriptor("ping", "", {"type": "object"}),
        ]

    @pytest.mark.asyncio
    async def test_list_tools_failure_is_fatal(self):
        session = AsyncMock()
        session.list_tools.side_effect = RuntimeError("pipe closed")
        with pytest.raises(FatalStartupError):
            await _connected(session).list_tools()

    @pytest.mark.asyncio
    async def test_call_tool_success(self):
        session = AsyncMock()
        session.call_tool.return_value = CallToolResult(content=[
            TextContent(type="text", text="22C, clear"),
            ImageContent(type="image", data="aGk=", mimeType="image/png"),
        ])
        content = await _connected(session).call_tool("weather", {"location": "Tokyo"})

        session.call_tool.assert_awaited_once_with("weather", arguments={"location": "Tokyo"})
        assert content[0] == ToolContent(type="text", text="22C, clear")
        assert content[1].type == "image"
        assert content[1].payload["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_call_tool_is_error_result(self):
        session = AsyncMock()
        session.call_tool.return_value = CallToolResult(
            content=[TextContent(type="text", text="repository not found")], isError=True,
        )
        with pytest.raises(RecoverableToolError) as exc_info:
            await _connected(session).call_tool("get_repo", {})
        assert exc_info.value.message == "repository not found"

    @pytest.mark.asyncio
    async def test_call_tool_mcp_error(self):
        session = AsyncMock()
        session.call_tool.side_effect = McpError(ErrorData(code=-32602, message="Invalid params", data={"field": "q"}))
        with pytest.raises(RecoverableToolError) as exc_info:
            await _connected(session).call_tool("search", {})
        assert exc_info.value.as_dict() == {"code": -32602, "message": "Invalid params", "data": {"field": "q"}}

    @pytest.mark.asyncio
    async def test_call_tool_transport_error(self):
        session = AsyncMock()
        session.call_tool.side_effect = BrokenPipeError("broken pipe")
        with pytest.raises(RecoverableToolError) as exc_info:
            await _connected(session).call_tool("search", {})
        assert exc_info.value.code is None
        assert "broken pipe" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_open_failure_is_fatal(self):
        @asynccontextmanager
        async def _refuse(params):
            raise FileNotFoundError("srv-bin")
            yield  # pragma: no cover

        backend = McpBackend(BackendSpec(name="srv", command="srv-bin"))
        with patch("agentloop.tools.backends.stdio_client", _refuse):
            with pytest.raises(FatalStartupError) as exc_info:
                await backend.open()
        assert exc_info.value.backend == "srv"
        await backend.close()

    @pytest.mark.asyncio
    async def test_open_and_close(self):
        exited = []

        @asynccontextmanager
        async def _streams(params):
            assert params.command == "srv-bin"
            assert params.env == {"TOKEN": "abc"}
            yield MagicMock(), MagicMock()
            exited.append("stdio")

        session = AsyncMock()
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=False)

        spec = BackendSpec(name="srv", command="srv-bin", env={"TOKEN": "${MY_TOKEN}"})
        backend = McpBackend(spec, environ={"MY_TOKEN": "abc"})
        with patch("agentloop.tools.backends.stdio_client", _streams), \
                patch("agentloop.tools.backends.ClientSession", return_value=session_cm):
            await backend.open()
            session.initialize.assert_awaited_once()
            await backend.close()
            await backend.close()

        assert exited == ["stdio"]
        session_cm.__aexit__.assert_awaited_once()


class TestMcpBackendPrompts:
    @pytest.mark.asyncio
    async def test_list_prompts(self):
        session = AsyncMock()
        session.list_prompts.return_value = ListPromptsResult(prompts=[
            Prompt(name="code_review", description="Review code", arguments=[
                PromptArgument(name="code", description="Code to review", required=True),
            ]),
            Prompt(name="summary"),
        ])
        prompts = await _connected(session).list_prompts()
        assert prompts == [
            PromptDescriptor("code_review", "Review code", [
                {"name": "code", "description": "Code to review", "required": True},
            ]),
            PromptDescriptor("summary", "", []),
        ]

    @pytest.mark.asyncio
    async def test_list_prompts_unsupported_is_empty(self):
        session = AsyncMock()
        session.list_prompts.side_effect = McpError(ErrorData(code=METHOD_NOT_FOUND, message="Method not found"))
        assert await _connected(session).list_prompts() == []

    @pytest.mark.asyncio
    async def test_list_prompts_other_error(self):
        session = AsyncMock()
        session.list_prompts.side_effect = McpError(ErrorData(code=-32603, message="Internal error"))
        with pytest.raises(RecoverableToolError) as exc_info:
            await _connected(session).list_prompts()
        assert exc_info.value.code == -32603

    @pytest.mark.asyncio
    async def test_get_prompt(self):
        session = AsyncMock()
        session.get_prompt.return_value = GetPromptResult(description="Review code", messages=[
            PromptMessage(role="user", content=TextContent(type="text", text="Please review: x = 1")),
            PromptMessage(role="assistant", content=TextContent(type="text", text="Looking at it.")),
        ])
        result = await _connected(session).get_prompt("code_review", {"code": "x = 1"})

        session.get_prompt.assert_awaited_once_with("code_review", arguments={"code": "x = 1"})
        assert result.description == "Review code"
        assert result.messages == [
            Turn(Role.USER, "Please review: x = 1"),
            Turn(Role.ASSISTANT, "Looking at it."),
        ]

    @pytest.mark.asyncio
    async def test_get_prompt_error(self):
        session = AsyncMock()
        session.get_prompt.side_effect = McpError(ErrorData(code=-32602, message="Missing argument: code"))
        with pytest.raises(RecoverableToolError) as exc_info:
            await _connected(session).get_prompt("code_review", {})
        assert exc_info.value.message == "Missing argument: code"
