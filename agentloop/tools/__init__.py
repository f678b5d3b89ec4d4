"""Tool system — back-ends, catalog, executor."""
from .backends import ToolBackend, McpBackend, ToolDescriptor, ToolContent, PromptDescriptor, PromptResult
from .registry import Catalog, build_catalog, collect_prompts
from .executor import execute_tool
