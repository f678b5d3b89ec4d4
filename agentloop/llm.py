"""Completion client — one chat completion per call, split into tagged segments."""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from openai import AsyncOpenAI

from .config import settings
from .conversation import Turn
from .errors import CompletionError, CompletionTimeoutError
from .tools.backends import ToolDescriptor

logger = logging.getLogger(__name__)

# Shared by every CompletionClient; no retries, failures go straight to the loop's caller
_client = AsyncOpenAI(
    api_key=settings.openai_api_key,
    base_url=settings.openai_base_url,
    max_retries=0,
)


class SegmentKind(str, Enum):
    TEXT = "text"
    TOOL_USE = "tool_use"


@dataclass(frozen=True)
class TextSegment:
    text: str
    kind: SegmentKind = field(default=SegmentKind.TEXT, init=False)


@dataclass(frozen=True)
class ToolUseSegment:
    """A tool invocation request emitted by the model."""
    name: str
    arguments: Dict[str, Any]
    id: str
    # Set when the model sent arguments that are not a JSON object
    arguments_error: Optional[str] = None
    raw_arguments: Optional[str] = None
    kind: SegmentKind = field(default=SegmentKind.TOOL_USE, init=False)

    def as_dict(self) -> dict:
        arguments = self.raw_arguments if self.arguments_error else self.arguments
        return {"type": self.kind.value, "id": self.id, "name": self.name, "input": arguments}


Segment = Union[TextSegment, ToolUseSegment]


def tools_for_openai(descriptors: Sequence[ToolDescriptor]) -> List[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": d.name,
                "description": d.description,
                "parameters": d.input_schema or {"type": "object", "properties": {}},
            },
        }
        for d in descriptors
    ]


def _parse_arguments(raw: Optional[str]) -> Tuple[Dict[str, Any], Optional[str]]:
    """Return (arguments, error); error is set when ``raw`` is not a JSON object."""
    if not raw:
        return {}, None
    try:
        args = json.loads(raw)
    except json.JSONDecodeError as e:
        return {}, f"arguments are not valid JSON ({e.msg} at position {e.pos})"
    if not isinstance(args, dict):
        return {}, f"arguments must be a JSON object, got {type(args).__name__}"
    return args, None


def segments_from_message(message) -> List[Segment]:
    """Text first, then tool calls in the order the model emitted them."""
    segments: List[Segment] = []
    if message.content:
        segments.append(TextSegment(message.content))
    for call in message.tool_calls or []:
        arguments, error = _parse_arguments(call.function.arguments)
        if error:
            logger.warning(f"Tool call {call.function.name}: {error}")
        segments.append(ToolUseSegment(
            name=call.function.name,
            arguments=arguments,
            id=call.id,
            arguments_error=error,
            raw_arguments=call.function.arguments if error else None,
        ))
    return segments


class CompletionClient:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = "",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client or _client
        self.model = model or settings.openai_chat_model
        self.max_tokens = max_tokens if max_tokens is not None else settings.max_tokens
        self.temperature = temperature if temperature is not None else settings.temperature
        self.timeout = timeout

    async def complete(
        self,
        system_prompt: str,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
    ) -> List[Segment]:
        messages = [{"role": "system", "content": system_prompt}] + [t.to_message() for t in turns]
        kwargs = dict(
            model=self.model,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if tools:
            kwargs["tools"] = tools_for_openai(tools)

        try:
            if self.timeout:
                response = await asyncio.wait_for(
                    self._client.chat.completions.create(**kwargs), timeout=self.timeout
                )
            else:
                response = await self._client.chat.completions.create(**kwargs)
        except asyncio.TimeoutError as e:
            raise CompletionTimeoutError(self.timeout) from e
        except Exception as e:
            raise CompletionError(f"Completion failed: {type(e).__name__}: {e}") from e

        if not response.choices:
            raise CompletionError("Completion failed: response has no choices")
        segments = segments_from_message(response.choices[0].message)
        logger.info(f"Completion ({self.model}): {len(segments)} segment(s)")
        return segments
