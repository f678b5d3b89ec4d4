"""Release list for back-end connections opened during one conversation."""
import logging
from typing import List

logger = logging.getLogger(__name__)


class BackendLifecycle:
    """Closes every tracked back-end exactly once, on every exit path.

    Use as ``async with BackendLifecycle() as lifecycle``. Back-ends are closed
    in reverse order of tracking; stdio sessions are nested task-scoped
    contexts and must unwind LIFO.
    """

    def __init__(self):
        self._backends: List = []

    def track(self, backend) -> None:
        if not any(b is backend for b in self._backends):
            self._backends.append(backend)

    @property
    def tracked(self) -> int:
        return len(self._backends)

    async def close_all(self) -> None:
        """Best effort: a failing close is logged and the rest still run."""
        backends, self._backends = self._backends, []
        for backend in reversed(backends):
            try:
                await backend.close()
            except Exception as e:
                logger.error(f"Failed to close backend {getattr(backend, 'name', backend)}: {e}", exc_info=True)

    async def __aenter__(self) -> "BackendLifecycle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
