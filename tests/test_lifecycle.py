"""
Tests for building, caching and rebuilding the agent.
"""

import asyncio
import types
from unittest.mock import AsyncMock, MagicMock

import pytest

from teachassist.config import AssistantSettings
from teachassist.exceptions import AgentInitError
from teachassist.executor import GenerationExecutor, GenerationOptions
from teachassist.instructions import AGENT_NAME
from teachassist.lifecycle import AgentLifecycle
from teachassist.llm import ToolDef, ToolSet
from teachassist.loader import ModuleLoader
from teachassist.memory import MemoryStore
from teachassist.models import GenerationResult, Message


def _fake_openai():
    clients = []

    def make_client(**kwargs):
        client = MagicMock()
        client.kwargs = kwargs
        client.close = AsyncMock()
        clients.append(client)
        return client

    module = types.ModuleType("openai")
    module.AsyncOpenAI = MagicMock(side_effect=make_client)
    module.clients = clients
    return module


def _fake_mcp_modules():
    mcp = types.ModuleType("mcp")
    mcp.StdioServerParameters = MagicMock()
    mcp.ClientSession = MagicMock()
    stdio = types.ModuleType("mcp.client.stdio")
    stdio.stdio_client = MagicMock(side_effect=FileNotFoundError("npx not found"))
    return mcp, stdio


def _make_loader(openai_module=None, fail_on=None):
    mcp, stdio = _fake_mcp_modules()
    modules = {"openai": openai_module or _fake_openai(), "mcp": mcp, "mcp.client.stdio": stdio}

    def importer(name):
        if name == fail_on:
            raise ImportError(name)
        return modules[name]

    return ModuleLoader(importer=importer)


def _make_memory_factory():
    memory = MagicMock(spec=MemoryStore)
    factory = MagicMock(return_value=memory)
    return factory, memory


def _make_provisioner(tools=None):
    provisioner = MagicMock()
    provisioner.get_tools = AsyncMock(return_value=tools or ToolSet())
    provisioner.close = AsyncMock()
    return provisioner


@pytest.fixture
def settings(tmp_path):
    return AssistantSettings(memory_dir=tmp_path)


# ---------------------------------------------------------------------------
# Caching and rotation
# ---------------------------------------------------------------------------


class TestEnsureReady:
    @pytest.mark.asyncio
    async def test_same_credential_reuses_handle(self, settings):
        factory, _ = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(), _make_provisioner(), memory_factory=factory
        )

        first = await lifecycle.ensure_ready("sk-one")
        second = await lifecycle.ensure_ready("sk-one")

        assert first is second
        assert lifecycle.rebuild_count == 1
        assert lifecycle.credential == "sk-one"

    @pytest.mark.asyncio
    async def test_agent_configuration(self, settings):
        openai = _fake_openai()
        tools = ToolSet(tools=(ToolDef(name="search_courses", description=""),))
        factory, memory = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(openai), _make_provisioner(tools), memory_factory=factory
        )

        handle = await lifecycle.ensure_ready("sk-one")

        assert handle.agent.name == AGENT_NAME
        assert handle.agent.tools is tools
        assert handle.agent.memory is memory
        assert handle.model.model == "gpt-4o"
        assert openai.clients[0].kwargs == {
            "api_key": "sk-one",
            "base_url": "https://api.openai.com/v1",
        }
        factory.assert_called_once()
        assert factory.call_args.args[0] is settings

    @pytest.mark.asyncio
    async def test_credential_change_rebuilds(self, settings):
        openai = _fake_openai()
        factory, memory = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(openai), _make_provisioner(), memory_factory=factory
        )

        first = await lifecycle.ensure_ready("sk-one")
        second = await lifecycle.ensure_ready("sk-two")

        assert second is not first
        assert second.credential == "sk-two"
        assert lifecycle.rebuild_count == 2
        openai.clients[0].close.assert_awaited_once()
        # memory is shared and rebound to the new key's embedder
        factory.assert_called_once()
        memory.set_embedder.assert_called_once()
        assert second.memory is first.memory

    @pytest.mark.asyncio
    async def test_concurrent_calls_build_once(self, settings):
        factory, _ = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(), _make_provisioner(), memory_factory=factory
        )

        handles = await asyncio.gather(*(lifecycle.ensure_ready("sk-one") for _ in range(5)))

        assert all(h is handles[0] for h in handles)
        assert lifecycle.rebuild_count == 1

    @pytest.mark.asyncio
    async def test_rotation_waits_for_in_flight_generation(self, settings):
        openai = _fake_openai()
        factory, _ = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(openai), _make_provisioner(), memory_factory=factory
        )
        executor = GenerationExecutor(lifecycle)
        old = await lifecycle.ensure_ready("sk-one")
        old_client = openai.clients[0]
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_generate(messages, **kwargs):
            started.set()
            await release.wait()
            if old_client.close.await_count:
                raise RuntimeError("client closed mid-generation")
            return GenerationResult(text="done")

        old.agent.generate = AsyncMock(side_effect=slow_generate)
        task = asyncio.create_task(
            executor.generate(
                [Message.user("hi")], GenerationOptions(resource_id="r", thread_id="t")
            )
        )
        await started.wait()

        new = await lifecycle.ensure_ready("sk-two")

        assert new is not old
        assert old.retired
        old_client.close.assert_not_awaited()

        release.set()
        result = await task

        assert result.text == "done"
        old_client.close.assert_awaited_once()
        assert old.active == 0
        await lifecycle.shutdown()
        old_client.close.assert_awaited_once()
        openai.clients[1].close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Tools and failures
# ---------------------------------------------------------------------------


class TestBuildFailures:
    @pytest.mark.asyncio
    async def test_tool_server_unavailable_yields_empty_toolset(self, settings):
        factory, _ = _make_memory_factory()
        lifecycle = AgentLifecycle(settings, _make_loader(), memory_factory=factory)

        handle = await lifecycle.ensure_ready("sk-one")

        assert len(handle.tools) == 0
        assert handle.agent is not None

    @pytest.mark.asyncio
    async def test_tools_disabled_skips_provisioner(self, tmp_path):
        settings = AssistantSettings(memory_dir=tmp_path, tools_enabled=False)
        provisioner = _make_provisioner()
        factory, _ = _make_memory_factory()
        lifecycle = AgentLifecycle(settings, _make_loader(), provisioner, memory_factory=factory)

        handle = await lifecycle.ensure_ready("sk-one")

        provisioner.get_tools.assert_not_awaited()
        assert len(handle.tools) == 0

    @pytest.mark.asyncio
    async def test_dependency_failure_leaves_cache_empty(self, settings):
        factory, _ = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(fail_on="openai"), _make_provisioner(), memory_factory=factory
        )

        with pytest.raises(AgentInitError):
            await lifecycle.ensure_ready("sk-one")

        assert lifecycle.current is None
        assert lifecycle.credential is None
        assert lifecycle.rebuild_count == 0

    @pytest.mark.asyncio
    async def test_failed_rebuild_drops_previous_agent(self, settings):
        factory, memory = _make_memory_factory()
        lifecycle = AgentLifecycle(
            settings, _make_loader(), _make_provisioner(), memory_factory=factory
        )
        await lifecycle.ensure_ready("sk-one")
        memory.set_embedder.side_effect = RuntimeError("boom")

        with pytest.raises(AgentInitError) as exc_info:
            await lifecycle.ensure_ready("sk-two")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert lifecycle.current is None

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, settings):
        factory = MagicMock(side_effect=[RuntimeError("disk full"), MagicMock(spec=MemoryStore)])
        lifecycle = AgentLifecycle(
            settings, _make_loader(), _make_provisioner(), memory_factory=factory
        )

        with pytest.raises(AgentInitError):
            await lifecycle.ensure_ready("sk-one")
        handle = await lifecycle.ensure_ready("sk-one")

        assert handle.credential == "sk-one"
        assert lifecycle.rebuild_count == 1


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_releases_resources(self, settings):
        openai = _fake_openai()
        provisioner = _make_provisioner()
        factory, memory = _make_memory_factory()
        lifecycle = AgentLifecycle(settings, _make_loader(openai), provisioner, memory_factory=factory)
        await lifecycle.ensure_ready("sk-one")

        await lifecycle.shutdown()

        assert lifecycle.current is None
        openai.clients[0].close.assert_awaited_once()
        provisioner.close.assert_awaited_once()
        memory.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_without_agent(self, settings):
        lifecycle = AgentLifecycle(settings, _make_loader())
        await lifecycle.shutdown()
        assert lifecycle.current is None


class TestDefaultMemoryFactory:
    @pytest.mark.asyncio
    async def test_real_store_created_in_memory_dir(self, settings):
        lifecycle = AgentLifecycle(settings, _make_loader(), _make_provisioner())

        handle = await lifecycle.ensure_ready("sk-one")

        assert isinstance(handle.memory, MemoryStore)
        assert handle.memory.path == settings.memory_db_path
        assert settings.memory_db_path.exists()
        await lifecycle.shutdown()
