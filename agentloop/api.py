"""REST API routes: conversation, tool listing, direct tool calls, prompts."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from .config import settings
from .conversation import Conversation, HistoryMessage
from .engine import ConversationEngine, build_engine
from .errors import (
    AgentLoopError, CompletionError, CompletionTimeoutError, FatalStartupError,
    RecoverableToolError, UnknownToolError, user_message,
)
from .lifecycle import BackendLifecycle
from .tools.backends import PromptResult
from .tools.registry import build_catalog, collect_prompts

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")


# ── Pydantic schemas ──────────────────────────────────────────

class HistoryItem(BaseModel):
    author_id: str
    text: str
    timestamp: float

class ConversationRequest(BaseModel):
    prompt: Optional[str] = None
    history: List[HistoryItem] = Field(default_factory=list)
    self_id: Optional[str] = None

class TurnOut(BaseModel):
    role: str
    content: Any

class ConversationResponse(BaseModel):
    reply: str
    turns: List[TurnOut]
    completions: int
    rounds: int
    capped: bool

class ToolOut(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any]

class ToolCallRequest(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

class PromptOut(BaseModel):
    name: str
    description: str
    arguments: List[Dict[str, Any]]

class RenderedPromptOut(BaseModel):
    name: str
    description: str
    messages: List[TurnOut]

class PromptRunRequest(BaseModel):
    arguments: Dict[str, str] = Field(default_factory=dict)
    text: Optional[str] = None


def get_engine() -> ConversationEngine:
    """FastAPI dependency: a fresh engine per request."""
    return build_engine()


def _status_for(error: AgentLoopError) -> int:
    if isinstance(error, FatalStartupError):
        return 503
    if isinstance(error, CompletionTimeoutError):
        return 504
    if isinstance(error, (CompletionError, UnknownToolError)):
        return 502
    return 500


# ── Conversation ──────────────────────────────────────────────

@router.post("/conversation", response_model=ConversationResponse)
async def converse(req: ConversationRequest, engine: ConversationEngine = Depends(get_engine)):
    prompt = (req.prompt or "").strip()
    if req.history:
        conversation = Conversation.from_history(
            [HistoryMessage(h.author_id, h.text, h.timestamp) for h in req.history],
            req.self_id or settings.self_id,
        )
        # A prompt sent with history is the newest user message
        if prompt:
            conversation.add_user(prompt)
    elif prompt:
        conversation = Conversation.from_prompt(prompt)
    else:
        raise HTTPException(status_code=400, detail="prompt or history required")

    return await _run_conversation(engine, conversation)


async def _run_conversation(engine: ConversationEngine, conversation: Conversation) -> ConversationResponse:
    try:
        result = await engine.run(conversation)
    except AgentLoopError as e:
        logger.error(f"Conversation failed: {e}", exc_info=True)
        raise HTTPException(status_code=_status_for(e), detail=user_message(e))

    return ConversationResponse(
        reply=result.reply,
        turns=[TurnOut(role=t.role.value, content=t.content) for t in result.conversation],
        completions=result.completions,
        rounds=result.rounds,
        capped=result.capped,
    )


# ── Tools ─────────────────────────────────────────────────────

@router.get("/tools", response_model=List[ToolOut])
async def list_tools(engine: ConversationEngine = Depends(get_engine)):
    try:
        async with BackendLifecycle() as lifecycle:
            catalog = await build_catalog(engine.specs, lifecycle, engine.environ, engine.backend_factory)
            descriptors = catalog.descriptors()
    except FatalStartupError as e:
        logger.error(f"Tool listing failed: {e}")
        raise HTTPException(status_code=503, detail=user_message(e))
    return [ToolOut(name=d.name, description=d.description, input_schema=d.input_schema) for d in descriptors]


@router.post("/tools/call")
async def call_tool(req: ToolCallRequest, engine: ConversationEngine = Depends(get_engine)):
    try:
        async with BackendLifecycle() as lifecycle:
            catalog = await build_catalog(engine.specs, lifecycle, engine.environ, engine.backend_factory)
            backend = catalog.get_backend(req.name)
            if backend is None:
                raise UnknownToolError(req.name)
            try:
                content = await backend.call_tool(req.name, req.arguments)
            except RecoverableToolError as e:
                logger.warning(f"Tool {req.name} returned error: {e.message}")
                return {"error": e.as_dict()}
    except UnknownToolError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FatalStartupError as e:
        logger.error(f"Tool call failed: {e}")
        raise HTTPException(status_code=503, detail=user_message(e))

    return {"content": [{"type": c.type, "text": c.text, "payload": c.payload} for c in content]}


# ── Prompts ───────────────────────────────────────────────────

@router.get("/prompts", response_model=List[PromptOut])
async def list_prompts(engine: ConversationEngine = Depends(get_engine)):
    try:
        async with BackendLifecycle() as lifecycle:
            catalog = await build_catalog(engine.specs, lifecycle, engine.environ, engine.backend_factory)
            prompts = await collect_prompts(catalog)
    except FatalStartupError as e:
        logger.error(f"Prompt listing failed: {e}")
        raise HTTPException(status_code=503, detail=user_message(e))
    except RecoverableToolError as e:
        logger.warning(f"Prompt listing failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)
    return [PromptOut(name=p.name, description=p.description, arguments=p.arguments) for p, _ in prompts.values()]


async def _fetch_prompt(engine: ConversationEngine, name: str, arguments: Dict[str, str]) -> PromptResult:
    """Render one prompt on a short-lived set of back-ends."""
    try:
        async with BackendLifecycle() as lifecycle:
            catalog = await build_catalog(engine.specs, lifecycle, engine.environ, engine.backend_factory)
            prompts = await collect_prompts(catalog)
            if name not in prompts:
                raise HTTPException(status_code=404, detail=f"Prompt not found: {name}")
            _, backend = prompts[name]
            return await backend.get_prompt(name, arguments)
    except FatalStartupError as e:
        logger.error(f"Prompt {name} failed: {e}")
        raise HTTPException(status_code=503, detail=user_message(e))
    except RecoverableToolError as e:
        logger.warning(f"Prompt {name} returned error: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)


@router.get("/prompts/{name}", response_model=RenderedPromptOut)
async def get_prompt(name: str, request: Request, engine: ConversationEngine = Depends(get_engine)):
    """Query parameters are passed through as prompt arguments."""
    prompt = await _fetch_prompt(engine, name, dict(request.query_params))
    return RenderedPromptOut(
        name=prompt.name,
        description=prompt.description,
        messages=[TurnOut(role=t.role.value, content=t.content) for t in prompt.messages],
    )


@router.post("/prompts/{name}/run", response_model=ConversationResponse)
async def run_prompt(name: str, req: PromptRunRequest, engine: ConversationEngine = Depends(get_engine)):
    """Seed a conversation with a rendered prompt, plus optional user text, and run it."""
    prompt = await _fetch_prompt(engine, name, req.arguments)
    conversation = Conversation(prompt.messages)
    if req.text and req.text.strip():
        conversation.add_user(req.text.strip())
    if not len(conversation):
        raise HTTPException(status_code=400, detail=f"Prompt {name} rendered no messages")
    return await _run_conversation(engine, conversation)
