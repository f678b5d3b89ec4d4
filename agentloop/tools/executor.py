"""Tool executor — routes one tool request to its back-end and folds the result into the conversation."""
import asyncio
import json
import logging
import time
from typing import Optional

from ..conversation import Conversation
from ..errors import RecoverableToolError, UnknownToolError
from .registry import Catalog

logger = logging.getLogger(__name__)


def _error_turn_text(request, error: RecoverableToolError) -> str:
    return f"ToolUse: {json.dumps(request.as_dict(), ensure_ascii=False)}, Error: {error.message}"


async def execute_tool(request, catalog: Catalog, conversation: Conversation,
                       timeout: Optional[float] = None) -> bool:
    """Run ``request`` and append its outcome as user turns.

    Returns True on success, False when a back-end error was absorbed.
    Raises UnknownToolError if no back-end owns the tool.
    """
    backend = catalog.get_backend(request.name)
    if backend is None:
        logger.warning(f"Unknown tool: {request.name}")
        raise UnknownToolError(request.name)

    arg_str = ", ".join(f"{k}={v!r}" for k, v in request.arguments.items())
    logger.info(f"Executing tool: {request.name}({arg_str}) on {backend.name}")
    t0 = time.monotonic()

    try:
        if getattr(request, "arguments_error", None):
            raise RecoverableToolError(f"Invalid tool arguments: {request.arguments_error}")
        call = backend.call_tool(request.name, request.arguments)
        if timeout:
            try:
                content = await asyncio.wait_for(call, timeout=timeout)
            except asyncio.TimeoutError as e:
                raise RecoverableToolError(f"Tool call timed out after {timeout}s") from e
        else:
            content = await call
    except RecoverableToolError as e:
        elapsed = time.monotonic() - t0
        logger.warning(f"Tool {request.name} failed after {elapsed:.1f}s: {e.message}")
        # Presented to the model as user context, like any tool output
        conversation.add_user(_error_turn_text(request, e))
        return False

    for fragment in content:
        text = fragment.as_text()
        logger.info(f"Tool result: {text[:255]}")
        conversation.add_user(text)

    elapsed = time.monotonic() - t0
    logger.info(f"Tool {request.name}: {elapsed:.1f}s -> {len(content)} fragment(s)")
    return True
