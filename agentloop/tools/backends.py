"""Tool back-ends — MCP servers launched over stdio."""
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import METHOD_NOT_FOUND

from ..config import BackendSpec
from ..conversation import Role, Turn
from ..errors import FatalStartupError, RecoverableToolError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolContent:
    """One fragment of a successful tool result."""
    type: str
    text: str = ""
    payload: Any = None

    def as_text(self) -> str:
        if self.type == "text":
            return self.text
        return json.dumps({"type": self.type, "payload": self.payload}, ensure_ascii=False, default=str)


@dataclass(frozen=True)
class PromptDescriptor:
    name: str
    description: str
    arguments: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class PromptResult:
    """A rendered prompt, ready to seed a conversation."""
    name: str
    description: str
    messages: List[Turn]


class ToolBackend:
    """An open connection to one tool back-end."""

    name: str = ""

    async def open(self) -> None:
        raise NotImplementedError

    async def list_tools(self) -> List[ToolDescriptor]:
        raise NotImplementedError

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> List[ToolContent]:
        """Return content fragments, or raise RecoverableToolError."""
        raise NotImplementedError

    async def list_prompts(self) -> List[PromptDescriptor]:
        return []

    async def get_prompt(self, name: str, arguments: Dict[str, str]) -> PromptResult:
        raise RecoverableToolError(f"Backend '{self.name}' has no prompts")

    async def close(self) -> None:
        raise NotImplementedError


def _content_from_block(block) -> ToolContent:
    block_type = getattr(block, "type", "text")
    if block_type == "text":
        return ToolContent(type="text", text=getattr(block, "text", ""))
    try:
        payload = block.model_dump(exclude={"type"})
    except AttributeError:
        payload = str(block)
    return ToolContent(type=block_type, payload=payload)


class McpBackend(ToolBackend):
    """MCP client session over a stdio subprocess.

    Opening enters stdio_client and ClientSession on a private exit stack;
    close() unwinds it. Both must run in the same task.
    """

    def __init__(self, spec: BackendSpec, environ: Optional[Mapping[str, str]] = None):
        self.spec = spec
        self.name = spec.name
        self._environ = environ
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None

    async def open(self) -> None:
        env = self.spec.resolved_env(self._environ)
        params = StdioServerParameters(
            command=self.spec.command,
            args=list(self.spec.args),
            env=env or None,
        )
        logger.info(f"[{self.name}] Connecting: {self.spec.command} {' '.join(self.spec.args)}")
        self._stack = AsyncExitStack()
        try:
            read_stream, write_stream = await self._stack.enter_async_context(stdio_client(params))
            session = await self._stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
        except Exception as e:
            raise FatalStartupError(self.name, str(e)) from e
        self._session = session

    async def list_tools(self) -> List[ToolDescriptor]:
        if self._session is None:
            raise FatalStartupError(self.name, "not connected")
        try:
            result = await self._session.list_tools()
        except Exception as e:
            raise FatalStartupError(self.name, f"list_tools failed: {e}") from e
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> List[ToolContent]:
        if self._session is None:
            raise RecoverableToolError(f"Backend '{self.name}' is not connected")
        try:
            result = await self._session.call_tool(name, arguments=arguments)
        except McpError as e:
            raise RecoverableToolError(e.error.message, code=e.error.code, data=e.error.data) from e
        except Exception as e:
            raise RecoverableToolError(str(e) or type(e).__name__) from e

        content = [_content_from_block(block) for block in result.content or []]
        if result.isError:
            message = "\n".join(c.as_text() for c in content) or "tool returned an error"
            raise RecoverableToolError(message)
        return content

    async def list_prompts(self) -> List[PromptDescriptor]:
        """Prompts advertised by the server; empty if it has no prompt support."""
        if self._session is None:
            raise RecoverableToolError(f"Backend '{self.name}' is not connected")
        try:
            result = await self._session.list_prompts()
        except McpError as e:
            if e.error.code == METHOD_NOT_FOUND:
                logger.debug(f"[{self.name}] No prompt support")
                return []
            raise RecoverableToolError(e.error.message, code=e.error.code, data=e.error.data) from e
        except Exception as e:
            raise RecoverableToolError(str(e) or type(e).__name__) from e
        return [
            PromptDescriptor(
                name=prompt.name,
                description=prompt.description or "",
                arguments=[a.model_dump(exclude_none=True) for a in prompt.arguments or []],
            )
            for prompt in result.prompts
        ]

    async def get_prompt(self, name: str, arguments: Dict[str, str]) -> PromptResult:
        if self._session is None:
            raise RecoverableToolError(f"Backend '{self.name}' is not connected")
        try:
            result = await self._session.get_prompt(name, arguments=arguments or None)
        except McpError as e:
            raise RecoverableToolError(e.error.message, code=e.error.code, data=e.error.data) from e
        except Exception as e:
            raise RecoverableToolError(str(e) or type(e).__name__) from e
        messages = [
            Turn(Role(message.role), _content_from_block(message.content).as_text())
            for message in result.messages
        ]
        return PromptResult(name=name, description=result.description or "", messages=messages)

    async def close(self) -> None:
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()
            logger.info(f"[{self.name}] Closed")
