"""Shared fakes: in-memory tool back-ends and a scripted completion client."""
from typing import Dict, List

import pytest

from agentloop.config import BackendSpec
from agentloop.errors import CompletionError
from agentloop.llm import TextSegment, ToolUseSegment
from agentloop.tools.backends import PromptDescriptor, ToolBackend, ToolContent, ToolDescriptor


class FakeBackend(ToolBackend):
    def __init__(self, name: str, tools=(), results=None, fail_open=False, fail_close=False, prompts=None):
        self.name = name
        self.tools = [ToolDescriptor(t, f"{t} tool", {"type": "object"}) for t in tools]
        self.results = results or {}
        self.prompts = prompts or {}
        self.prompt_calls: List[tuple] = []
        self.fail_open = fail_open
        self.fail_close = fail_close
        self.opened = False
        self.close_count = 0
        self.calls: List[tuple] = []

    async def open(self):
        if self.fail_open:
            raise ConnectionError("connection refused")
        self.opened = True

    async def list_tools(self):
        return list(self.tools)

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        result = self.results.get(name, [ToolContent(type="text", text=f"{name} ok")])
        if isinstance(result, Exception):
            raise result
        return result

    async def list_prompts(self):
        return [PromptDescriptor(name, f"{name} prompt") for name in self.prompts]

    async def get_prompt(self, name, arguments):
        self.prompt_calls.append((name, arguments))
        result = self.prompts[name]
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.close_count += 1
        if self.fail_close:
            raise RuntimeError("close failed")


class FakeFactory:
    """backend_factory that hands out pre-built FakeBackends by back-end name."""

    def __init__(self, *backends: FakeBackend):
        self.backends: Dict[str, FakeBackend] = {b.name: b for b in backends}
        self.created: List[str] = []

    def __call__(self, spec, environ=None):
        self.created.append(spec.name)
        return self.backends[spec.name]

    def specs(self) -> List[BackendSpec]:
        return [BackendSpec(name=name, command="fake") for name in self.backends]


class ScriptedCompletion:
    """Returns canned segment lists in order; repeats the last one when exhausted."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: List[dict] = []

    async def complete(self, system_prompt, turns, tools):
        self.calls.append({"system": system_prompt, "turns": list(turns), "tools": list(tools)})
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


def text(value: str) -> List:
    return [TextSegment(value)]


def tool_use(name: str, arguments=None, call_id: str = "call-1") -> List:
    return [ToolUseSegment(name=name, arguments=arguments or {}, id=call_id)]


@pytest.fixture
def weather_backend():
    return FakeBackend("backendA", tools=["weather"], results={
        "weather": [ToolContent(type="text", text="22C, clear")],
    })


@pytest.fixture
def completion_failure():
    return CompletionError("Completion failed: APIConnectionError: boom")
