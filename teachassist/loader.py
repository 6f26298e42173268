"""
teachassist - Lazy loading of the agent runtime dependencies.

The OpenAI SDK and the MCP client are heavyweight imports that are only needed
once an agent is actually built. ``ModuleLoader`` imports them on first use and
memoizes the result for the lifetime of its owner.
"""

import asyncio
import importlib
import logging
from dataclasses import dataclass
from types import ModuleType
from typing import Callable, Optional

from .exceptions import DependencyLoadError

logger = logging.getLogger("teachassist.loader")

Importer = Callable[[str], ModuleType]

REQUIRED_MODULES = ("openai", "mcp", "mcp.client.stdio")


@dataclass(frozen=True)
class ModuleSet:
    """The resolved runtime dependencies."""

    openai: ModuleType
    mcp: ModuleType
    mcp_stdio: ModuleType


class ModuleLoader:
    """Imports runtime dependencies once, shared by concurrent callers.

    Example:
        ```python
        loader = ModuleLoader()
        modules = await loader.load()
        client = modules.openai.AsyncOpenAI(api_key=key)
        ```
    """

    def __init__(self, importer: Optional[Importer] = None) -> None:
        self._importer = importer or importlib.import_module
        self._modules: Optional[ModuleSet] = None
        self._lock = asyncio.Lock()
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._modules is not None

    async def load(self) -> ModuleSet:
        """Return the module set, importing it on the first call.

        Raises:
            DependencyLoadError: If any module fails to import. Nothing is
                cached, so a later call retries.
        """
        if self._modules is not None:
            return self._modules

        async with self._lock:
            if self._modules is None:
                self._modules = await self._import_all()
                self.load_count += 1
                logger.info("All modules loaded successfully")
        return self._modules

    async def _import_all(self) -> ModuleSet:
        resolved: dict[str, ModuleType] = {}
        for name in REQUIRED_MODULES:
            try:
                resolved[name] = await asyncio.to_thread(self._importer, name)
            except Exception as e:
                logger.error("Failed to load module '%s': %s", name, e)
                raise DependencyLoadError(
                    f"Failed to load required module '{name}': {e}",
                    module_name=name,
                    cause=e,
                ) from e
        return ModuleSet(
            openai=resolved["openai"],
            mcp=resolved["mcp"],
            mcp_stdio=resolved["mcp.client.stdio"],
        )
