"""
teachassist - MCP (Model Context Protocol) tool provisioning.

Connects to an external MCP tool server over stdio and exposes its tools to
the agent as ``ToolDef`` entries. Tool access is a best-effort enhancement:
when the server cannot be started or listed, the provisioner logs a warning
and hands the agent an empty ``ToolSet``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional

from .exceptions import ToolProvisionError
from .llm import ToolDef, ToolSet
from .loader import ModuleSet

logger = logging.getLogger("teachassist.mcp")


@dataclass
class MCPServerConfig:
    """Configuration for launching an external MCP server.

    ``timeout`` bounds session start-up and tool listing, in seconds.
    """

    name: str = "basics-courses"
    command: str = "npx"
    args: list[str] = field(
        default_factory=lambda: ["-y", "@basicsu/courses-mcp@latest"]
    )
    env: dict[str, str] = field(default_factory=dict)
    timeout: float = 30
    allowed_tools: Optional[list[str]] = None

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> MCPServerConfig:
        """Build from a YAML ``mcp.servers.<name>`` block."""
        defaults = cls()
        return cls(
            name=name,
            command=data.get("command", defaults.command),
            args=list(data.get("args", defaults.args)),
            env=dict(data.get("env", {})),
            timeout=data.get("timeout", defaults.timeout),
            allowed_tools=data.get("allowed_tools"),
        )


def _resolve_env(env: dict[str, str]) -> dict[str, str]:
    """Expand ``${VAR}`` values from the process environment."""
    return {
        k: os.environ.get(v.strip("${}"), v) if v.startswith("${") else v
        for k, v in env.items()
    }


def _decode_content(content: list[Any]) -> Any:
    """Unwrap MCP content: a single JSON text part becomes its decoded value."""
    texts = [getattr(c, "text", None) for c in content]
    if len(texts) == 1 and texts[0] is not None:
        try:
            return json.loads(texts[0])
        except json.JSONDecodeError:
            return texts[0]
    return [
        {"type": getattr(c, "type", "text"), "text": getattr(c, "text", str(c))}
        for c in content
    ]


class MCPToolProvider:
    """One stdio connection to an MCP server."""

    def __init__(self, config: MCPServerConfig, modules: ModuleSet) -> None:
        self._config = config
        self._modules = modules
        self._session: Any = None
        self._stdio_context: Any = None
        self._connected = False

    @property
    def connected(self) -> bool:
        """Whether the provider is currently connected to the MCP server."""
        return self._connected

    @property
    def name(self) -> str:
        return self._config.name

    async def connect(self) -> None:
        """Start the server process and initialize the MCP session."""
        server_params = self._modules.mcp.StdioServerParameters(
            command=self._config.command,
            args=self._config.args,
            env=_resolve_env(self._config.env) or None,
        )
        logger.info(
            "Connecting to MCP server '%s': %s %s",
            self._config.name,
            self._config.command,
            " ".join(self._config.args),
        )
        self._stdio_context = self._modules.mcp_stdio.stdio_client(server_params)
        streams = await self._stdio_context.__aenter__()
        self._session = self._modules.mcp.ClientSession(*streams)
        await self._session.__aenter__()
        await asyncio.wait_for(self._session.initialize(), self._config.timeout)
        self._connected = True
        logger.info("Connected to MCP server '%s'", self._config.name)

    async def disconnect(self) -> None:
        """Close the session and stop the server process."""
        if self._session is not None:
            try:
                await self._session.__aexit__(None, None, None)
            except Exception as exc:
                logger.debug("Error closing MCP session '%s': %s", self._config.name, exc)
            self._session = None
        if self._stdio_context is not None:
            try:
                await self._stdio_context.__aexit__(None, None, None)
            except Exception as exc:
                logger.debug("Error closing MCP stdio '%s': %s", self._config.name, exc)
            self._stdio_context = None
        self._connected = False

    async def list_tools(self) -> list[dict[str, Any]]:
        """List available tools from the MCP server, applying the allow-list."""
        if not self._connected or self._session is None:
            raise RuntimeError(
                f"Not connected to MCP server '{self._config.name}'. "
                "Call connect() first."
            )
        response = await asyncio.wait_for(self._session.list_tools(), self._config.timeout)
        tools: list[dict[str, Any]] = []
        for t in response.tools:
            if self._config.allowed_tools is not None:
                if t.name not in self._config.allowed_tools:
                    continue
            tools.append(
                {
                    "name": t.name,
                    "description": getattr(t, "description", "") or "",
                    "inputSchema": getattr(t, "inputSchema", None)
                    or {"type": "object", "properties": {}},
                }
            )
        return tools

    async def invoke(self, tool_name: str, /, **arguments: Any) -> Any:
        """Invoke a tool on the MCP server and return its decoded content."""
        if not self._connected or self._session is None:
            raise RuntimeError(
                f"Not connected to MCP server '{self._config.name}'. "
                "Call connect() first."
            )
        logger.info(
            "MCP tool invoke: server='%s' tool='%s' args=%s",
            self._config.name,
            tool_name,
            list(arguments.keys()),
        )
        result = await self._session.call_tool(tool_name, arguments)
        decoded = _decode_content(list(result.content))
        if getattr(result, "isError", False):
            return {"error": decoded}
        return decoded


class ToolProvisioner:
    """Supplies the agent's ToolSet from one long-lived MCP connection.

    The connection is created on first use and reused. Failures never
    propagate: they are logged and an empty ToolSet is returned, and the next
    call reconnects.
    """

    def __init__(self, config: MCPServerConfig, modules: ModuleSet) -> None:
        self._config = config
        self._modules = modules
        self._provider: Optional[MCPToolProvider] = None

    @property
    def provider(self) -> Optional[MCPToolProvider]:
        return self._provider

    async def get_tools(self) -> ToolSet:
        try:
            tools = await self._provision()
        except ToolProvisionError as e:
            logger.warning(
                "Failed to connect to MCP server, continuing without course tools: %s",
                e.message,
            )
            if self._provider is not None:
                await self._provider.disconnect()
            return ToolSet()
        logger.info("Successfully connected to MCP course server (%d tools)", len(tools))
        return tools

    async def _provision(self) -> ToolSet:
        if self._provider is None:
            self._provider = MCPToolProvider(self._config, self._modules)
        provider = self._provider
        try:
            if not provider.connected:
                await provider.connect()
            listed = await provider.list_tools()
        except asyncio.TimeoutError as e:
            raise ToolProvisionError(
                f"MCP server '{self._config.name}' timed out after {self._config.timeout}s",
                server_name=self._config.name,
                cause=e,
            ) from e
        except Exception as e:
            raise ToolProvisionError(
                f"MCP server '{self._config.name}' unavailable: {e}",
                server_name=self._config.name,
                cause=e,
            ) from e

        return ToolSet(
            tools=tuple(
                ToolDef(
                    name=t["name"],
                    description=t["description"],
                    parameters=t["inputSchema"],
                    handler=partial(provider.invoke, t["name"]),
                )
                for t in listed
            )
        )

    async def close(self) -> None:
        if self._provider is not None:
            await self._provider.disconnect()
            self._provider = None
