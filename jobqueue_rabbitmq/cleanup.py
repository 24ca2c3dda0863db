"""Resource teardown for queue connections.

Queues register the broker objects they open (connection first, channel
second) and release them in reverse order, so a channel is always closed
before the connection that carries it.
"""

import asyncio
import typing as t

from .logger import logger


class CleanupMixin:
    """Simple mixin for resource cleanup."""

    def __init__(self) -> None:
        self._resources: list[t.Any] = []
        self._cleaned_up = False
        self._cleanup_lock: asyncio.Lock | None = None

    def register_resource(self, resource: t.Any) -> None:
        """Register a resource for cleanup."""
        if resource not in self._resources:
            self._resources.append(resource)
            self._cleaned_up = False

    async def cleanup_resource(self, resource: t.Any) -> None:
        """Close a single resource, logging and suppressing any failure."""
        if resource is None:
            return

        for method_name in ("close", "aclose"):
            if not hasattr(resource, method_name):
                continue
            try:
                result = getattr(resource, method_name)()
                if asyncio.iscoroutine(result):
                    await result
                logger.debug(f"Cleaned up resource using {method_name}()")
                return
            except Exception as e:
                logger.warning(f"Failed to cleanup using {method_name}(): {e}")
                return

    async def cleanup(self) -> None:
        """Clean up all registered resources, newest first."""
        if self._cleanup_lock is None:
            self._cleanup_lock = asyncio.Lock()

        async with self._cleanup_lock:
            if self._cleaned_up:
                return

            for resource in reversed(self._resources.copy()):
                await self.cleanup_resource(resource)

            self._resources.clear()
            self._cleaned_up = True
