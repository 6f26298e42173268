"""
teachassist - Agent lifecycle management.

Owns the cached Teaching Assistant and the API key it was built with. The
agent is expensive to build (runtime imports, MCP server start-up, memory
database), so it is built once and reused until the key changes.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from .config import AssistantSettings
from .exceptions import AgentInitError
from .instructions import AGENT_NAME, INSTRUCTIONS
from .llm import Agent, OpenAIChatModel, OpenAIEmbedder, ToolSet, mask_credential
from .loader import ModuleLoader, ModuleSet
from .mcp import ToolProvisioner
from .memory import Embedder, MemoryStore

logger = logging.getLogger("teachassist.lifecycle")

MemoryFactory = Callable[[AssistantSettings, Embedder], MemoryStore]


def _default_memory_factory(settings: AssistantSettings, embedder: Embedder) -> MemoryStore:
    return MemoryStore(settings.memory_db_path, embedder, settings.memory)


@dataclass
class AgentHandle:
    """The cached agent and the API key it is bound to.

    Generations hold the handle through ``in_use`` so a key rotation can
    retire it without closing the model client under a running request.
    """

    agent: Agent
    credential: str
    model: OpenAIChatModel
    tools: ToolSet
    memory: MemoryStore
    built_at: float = field(default_factory=time.time)
    active: int = 0
    retired: bool = False
    closed: bool = False

    @asynccontextmanager
    async def in_use(self) -> AsyncIterator["AgentHandle"]:
        self.active += 1
        try:
            yield self
        finally:
            self.active -= 1
            if self.retired and self.active == 0:
                await self.close()

    async def retire(self) -> None:
        """Stop handing out this handle; close it once the last user leaves."""
        self.retired = True
        if self.active == 0:
            await self.close()
        else:
            logger.debug(
                "Deferring close of previous model client, %d generation(s) in flight",
                self.active,
            )

    async def close(self) -> None:
        """Release what is bound to the key; tools and memory are shared."""
        if self.closed:
            return
        self.closed = True
        try:
            await self.model.close()
        except Exception as e:
            logger.warning("Error closing model client for previous API key: %s", e)


class AgentLifecycle:
    """Builds, caches and rebuilds the agent.

    ``ensure_ready`` is serialized by a lock so concurrent callers never run
    two rebuilds at once nor observe a half-built handle.

    Usage:
        lifecycle = AgentLifecycle(AssistantSettings(), ModuleLoader())
        handle = await lifecycle.ensure_ready("sk-...")
        async with handle.in_use():
            result = await handle.agent.generate(messages, resource_id=..., thread_id=...)
    """

    def __init__(
        self,
        settings: AssistantSettings,
        loader: ModuleLoader,
        tool_provisioner: Optional[ToolProvisioner] = None,
        memory_factory: Optional[MemoryFactory] = None,
    ) -> None:
        self._settings = settings
        self._loader = loader
        self._provisioner = tool_provisioner
        self._memory_factory = memory_factory or _default_memory_factory
        self._memory: Optional[MemoryStore] = None
        self._handle: Optional[AgentHandle] = None
        self._lock = asyncio.Lock()
        self.rebuild_count = 0

    @property
    def current(self) -> Optional[AgentHandle]:
        return self._handle

    @property
    def credential(self) -> Optional[str]:
        return self._handle.credential if self._handle else None

    async def ensure_ready(self, credential: str) -> AgentHandle:
        """Return an agent built with ``credential``, building it if needed.

        Raises:
            AgentInitError: If construction fails. The cache is left empty.
        """
        async with self._lock:
            if self._handle is not None and self._handle.credential != credential:
                logger.info("API key changed, reinitializing Teaching Assistant agent")
                previous, self._handle = self._handle, None
                await previous.retire()

            if self._handle is not None:
                logger.debug("Reusing existing agent with same API key")
                return self._handle

            logger.info(
                "Initializing Teaching Assistant with API key: %s",
                mask_credential(credential),
            )
            try:
                handle = await self._build(credential)
            except Exception as e:
                logger.error("Failed to initialize Teaching Assistant agent: %s", e)
                raise AgentInitError(
                    f"Failed to initialize Teaching Assistant agent: {e}", cause=e
                ) from e

            self._handle = handle
            self.rebuild_count += 1
            logger.info("Teaching Assistant agent initialized successfully")
            return handle

    async def _build(self, credential: str) -> AgentHandle:
        modules = await self._loader.load()
        tools = await self._get_tools(modules)

        client = modules.openai.AsyncOpenAI(
            api_key=credential, base_url=self._settings.api_base_url
        )
        model = OpenAIChatModel(client, self._settings.model)
        embedder = OpenAIEmbedder(client, self._settings.embedding_model)

        if self._memory is None:
            self._memory = await asyncio.to_thread(
                self._memory_factory, self._settings, embedder
            )
        else:
            self._memory.set_embedder(embedder)

        agent = Agent(
            name=AGENT_NAME,
            instructions=INSTRUCTIONS,
            model=model,
            tools=tools,
            memory=self._memory,
        )
        return AgentHandle(
            agent=agent,
            credential=credential,
            model=model,
            tools=tools,
            memory=self._memory,
        )

    async def _get_tools(self, modules: ModuleSet) -> ToolSet:
        if not self._settings.tools_enabled:
            return ToolSet()
        if self._provisioner is None:
            self._provisioner = ToolProvisioner(self._settings.mcp_server, modules)
        return await self._provisioner.get_tools()

    async def shutdown(self) -> None:
        """Close the agent, the MCP connection and the memory database."""
        async with self._lock:
            if self._handle is not None:
                await self._handle.close()
                self._handle = None
            if self._provisioner is not None:
                await self._provisioner.close()
            if self._memory is not None:
                self._memory.close()
                self._memory = None
