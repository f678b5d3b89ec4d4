"""Conversation engine — drives completion ↔ tool rounds under an iteration cap."""
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Optional, Sequence

from .config import BackendSpec, load_backend_specs, settings
from .conversation import Conversation
from .lifecycle import BackendLifecycle
from .llm import CompletionClient, Segment, SegmentKind, ToolUseSegment
from .tools.backends import McpBackend, ToolBackend
from .tools.executor import execute_tool
from .tools.registry import build_catalog

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 10


class LoopState(Enum):
    AWAITING_COMPLETION = "awaiting_completion"
    HANDLING_TOOL = "handling_tool"
    DONE = "done"


@dataclass
class LoopResult:
    conversation: Conversation
    completions: int = 0
    rounds: int = 0
    capped: bool = False  # iteration cap hit; the last reply may be incomplete

    @property
    def reply(self) -> str:
        return self.conversation.last_assistant_text()


def classify(segments: Sequence[Segment], conversation: Conversation) -> Optional[ToolUseSegment]:
    """Append text segments as assistant turns; return the last tool request, if any."""
    active: Optional[ToolUseSegment] = None
    dropped: List[ToolUseSegment] = []
    for segment in segments:
        if segment.kind is SegmentKind.TEXT:
            conversation.add_assistant(segment.text)
            logger.info(f"Assistant: {segment.text[:200]}")
        elif segment.kind is SegmentKind.TOOL_USE:
            if active is not None:
                dropped.append(active)
            active = segment
        else:
            raise ValueError(f"Unknown segment kind: {segment.kind!r}")
    # TODO: decide whether every tool request in a message should run instead of only the last
    for request in dropped:
        logger.warning(f"Dropping tool request {request.name} ({request.id}): only the last request per message runs")
    return active


class ConversationEngine:
    """One value per request; holds configuration only.

    Each ``run`` opens its own back-ends and closes them before returning,
    whether the loop finishes, hits the cap, or raises.
    """

    def __init__(
        self,
        specs: Sequence[BackendSpec],
        completion_client: CompletionClient,
        system_prompt: str = "",
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        tool_timeout: Optional[float] = None,
        environ: Optional[Mapping[str, str]] = None,
        backend_factory: Callable[..., ToolBackend] = McpBackend,
    ):
        self.specs = list(specs)
        self.completion_client = completion_client
        self.system_prompt = system_prompt or settings.system_prompt
        self.max_rounds = max_rounds
        self.tool_timeout = tool_timeout
        self.environ = environ
        self.backend_factory = backend_factory

    async def run(self, conversation: Conversation) -> LoopResult:
        result = LoopResult(conversation=conversation)
        environ = os.environ if self.environ is None else self.environ

        async with BackendLifecycle() as lifecycle:
            catalog = await build_catalog(self.specs, lifecycle, environ, self.backend_factory)
            tools = catalog.descriptors()
            logger.info(f"Catalog ready: {len(tools)} tool(s) from {lifecycle.tracked} backend(s)")

            state = LoopState.AWAITING_COMPLETION
            active: Optional[ToolUseSegment] = None
            while state is not LoopState.DONE:
                if state is LoopState.AWAITING_COMPLETION:
                    segments = await self.completion_client.complete(
                        self.system_prompt, conversation.turns, tools
                    )
                    result.completions += 1
                    active = classify(segments, conversation)
                    state = LoopState.HANDLING_TOOL if active else LoopState.DONE

                elif state is LoopState.HANDLING_TOOL:
                    if result.rounds >= self.max_rounds:
                        logger.warning(f"Iteration cap reached ({self.max_rounds} rounds); returning partial conversation")
                        result.capped = True
                        state = LoopState.DONE
                        continue
                    result.rounds += 1
                    await execute_tool(active, catalog, conversation, timeout=self.tool_timeout)
                    active = None
                    state = LoopState.AWAITING_COMPLETION

        logger.info(
            f"Loop done: {result.completions} completion(s), {result.rounds} round(s)"
            + (" (capped)" if result.capped else "")
        )
        return result


def build_engine(specs: Optional[Sequence[BackendSpec]] = None,
                 completion_client: Optional[CompletionClient] = None) -> ConversationEngine:
    """Engine configured from settings."""
    return ConversationEngine(
        specs=specs if specs is not None else load_backend_specs(),
        completion_client=completion_client or CompletionClient(timeout=settings.completion_timeout_s),
        system_prompt=settings.system_prompt,
        max_rounds=settings.max_rounds,
        tool_timeout=settings.tool_timeout_s,
    )
