"""Tool catalog — name-keyed map from tool to the back-end that owns it."""
import logging
import os
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config import BackendSpec
from ..errors import FatalStartupError
from ..lifecycle import BackendLifecycle
from .backends import McpBackend, PromptDescriptor, ToolBackend, ToolDescriptor

logger = logging.getLogger(__name__)


class Catalog:
    """Tools available to a single conversation request.

    Overwrite policy: registering a name that is already present replaces the
    earlier entry (descriptor and back-end) and logs a warning. Entries are
    never merged.
    """

    def __init__(self):
        self._tools: Dict[str, Tuple[ToolDescriptor, ToolBackend]] = {}
        self._backends: List[ToolBackend] = []

    def add_backend(self, backend: ToolBackend) -> None:
        if not any(b is backend for b in self._backends):
            self._backends.append(backend)

    def backends(self) -> List[ToolBackend]:
        """Open back-ends in configured order, including ones with no tools."""
        return list(self._backends)

    def register(self, descriptor: ToolDescriptor, backend: ToolBackend) -> None:
        previous = self._tools.get(descriptor.name)
        if previous is not None:
            logger.warning(
                f'Tool name "{descriptor.name}" is already registered by {previous[1].name}. '
                f"Overwriting with {backend.name}."
            )
        self._tools[descriptor.name] = (descriptor, backend)
        self.add_backend(backend)

    def get_backend(self, name: str) -> Optional[ToolBackend]:
        entry = self._tools.get(name)
        return entry[1] if entry else None

    def descriptors(self) -> List[ToolDescriptor]:
        return [d for d, _ in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


async def build_catalog(
    specs: Iterable[BackendSpec],
    lifecycle: BackendLifecycle,
    environ: Optional[Mapping[str, str]] = None,
    backend_factory: Callable[..., ToolBackend] = McpBackend,
) -> Catalog:
    """Open every enabled back-end and merge their tools, in configured order.

    Raises FatalStartupError if any enabled back-end cannot be opened or listed.
    """
    environ = os.environ if environ is None else environ
    catalog = Catalog()
    for spec in specs:
        if not spec.is_enabled(environ):
            logger.info(f"Skipping backend {spec.name}: {spec.required_env} is not set")
            continue

        backend = backend_factory(spec, environ=environ)
        # Tracked before opening so a half-open connection is still released
        lifecycle.track(backend)
        try:
            await backend.open()
            descriptors = await backend.list_tools()
        except FatalStartupError:
            raise
        except Exception as e:
            raise FatalStartupError(spec.name, str(e)) from e

        catalog.add_backend(backend)
        for descriptor in descriptors:
            catalog.register(descriptor, backend)
        logger.info(f"[{spec.name}] Registered {len(descriptors)} tool(s)")
    return catalog


async def collect_prompts(catalog: Catalog) -> Dict[str, Tuple[PromptDescriptor, ToolBackend]]:
    """Prompts across the catalog's back-ends, same overwrite policy as tools."""
    prompts: Dict[str, Tuple[PromptDescriptor, ToolBackend]] = {}
    for backend in catalog.backends():
        for prompt in await backend.list_prompts():
            previous = prompts.get(prompt.name)
            if previous is not None:
                logger.warning(
                    f'Prompt name "{prompt.name}" is already registered by {previous[1].name}. '
                    f"Overwriting with {backend.name}."
                )
            prompts[prompt.name] = (prompt, backend)
    return prompts
