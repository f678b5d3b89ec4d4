from pydantic import BaseModel, Field
import json
import os
import logging
from pathlib import Path
from string import Template
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Load .env file if it exists (before reading os.getenv)
_env_path = Path(__file__).resolve().parent.parent / ".env"
if _env_path.exists():
    with open(_env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Only set if not already in environment (env vars take precedence)
                if key not in os.environ:
                    os.environ[key] = value


def _sanitize_ascii(val: str) -> str:
    """Strip non-ASCII characters from config values (prevents encoding errors)"""
    return val.encode('ascii', errors='ignore').decode('ascii').strip()


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


DEFAULT_SYSTEM_PROMPT = (
    "You are Mini Coder, a highly skilled software engineer with extensive knowledge in "
    "various programming languages, frameworks, design patterns, and best practices.\n"
    "For more information about tasks, you can read the documentation in the docs/ directory.\n"
)


class Settings(BaseModel):
    # Network
    http_host: str = os.getenv("HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("HTTP_PORT", "8000"))

    # Completion service (sanitized to prevent 'ascii' codec errors)
    openai_api_key: str = _sanitize_ascii(os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str = _sanitize_ascii(os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    openai_chat_model: str = _sanitize_ascii(os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini"))
    max_tokens: int = int(os.getenv("AGENT_MAX_TOKENS", "2024"))
    temperature: float = float(os.getenv("AGENT_TEMPERATURE", "0.0"))

    # Loop
    max_rounds: int = int(os.getenv("AGENT_MAX_ROUNDS", "10"))
    system_prompt: str = os.getenv("AGENT_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)
    self_id: str = os.getenv("AGENT_SELF_ID", "assistant")

    # Deadlines in seconds; unset means wait forever
    completion_timeout_s: Optional[float] = _optional_float("COMPLETION_TIMEOUT_S")
    tool_timeout_s: Optional[float] = _optional_float("TOOL_TIMEOUT_S")

    # Tool back-ends
    mcp_servers_config: str = os.getenv("MCP_SERVERS_CONFIG", "")

settings = Settings()


class BackendSpec(BaseModel):
    """How to launch one tool back-end over stdio."""
    name: str
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    # Skip the back-end entirely when this variable is missing
    required_env: Optional[str] = Field(default=None, alias="requiredEnv")

    model_config = {"populate_by_name": True}

    def is_enabled(self, environ: Optional[Mapping[str, str]] = None) -> bool:
        if not self.required_env:
            return True
        environ = os.environ if environ is None else environ
        return bool(environ.get(self.required_env))

    def resolved_env(self, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Env overrides with ${VAR} references filled in from the environment."""
        environ = os.environ if environ is None else environ
        return {k: Template(v).safe_substitute(environ) for k, v in self.env.items()}


DEFAULT_BACKENDS: List[BackendSpec] = [
    BackendSpec(
        name="github",
        command="/usr/local/bin/docker",
        args=["run", "-i", "--rm", "-e", "GITHUB_PERSONAL_ACCESS_TOKEN", "mcp/github"],
        env={"GITHUB_PERSONAL_ACCESS_TOKEN": "${GITHUB_TOKEN}"},
        required_env="GITHUB_TOKEN",
    ),
]


def parse_backend_specs(data: dict) -> List[BackendSpec]:
    """Parse ``{"mcpServers": {name: {...}}}`` preserving key order."""
    servers = data.get("mcpServers", {})
    return [BackendSpec(name=name, **params) for name, params in servers.items()]


def load_backend_specs(path: str = "") -> List[BackendSpec]:
    path = path or settings.mcp_servers_config
    if not path:
        return list(DEFAULT_BACKENDS)
    with open(path, "r", encoding="utf-8") as f:
        specs = parse_backend_specs(json.load(f))
    logger.info(f"Config: loaded {len(specs)} backend spec(s) from {path}")
    return specs


# Log config for debugging
_oai_key = '***' + settings.openai_api_key[-4:] if len(settings.openai_api_key) > 4 else 'EMPTY'
logger.info(f"Config: completion → {settings.openai_base_url}, model={settings.openai_chat_model} (key={_oai_key})")
