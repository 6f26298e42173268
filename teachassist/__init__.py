"""
Teaching Assistant - a memory-backed tutoring agent behind a chat-provider facade.

Builds an OpenAI-backed agent with course tools from an MCP server and a
durable per-student memory, and streams its replies as chat-completion chunks.
"""

from .config import AssistantSettings
from .exceptions import (
    AgentInitError,
    ConfigError,
    DependencyLoadError,
    MissingCredentialError,
    NotInitializedError,
    TeachAssistError,
    ToolProvisionError,
    UpstreamGenerationError,
    ValidationNetworkError,
)
from .executor import DEFAULT_RESOURCE_ID, GenerationExecutor, GenerationOptions
from .lifecycle import AgentHandle, AgentLifecycle
from .llm import Agent, ToolDef, ToolSet
from .loader import ModuleLoader, ModuleSet
from .mcp import MCPServerConfig, MCPToolProvider, ToolProvisioner
from .memory import MemoryOptions, MemoryStore
from .models import (
    GenerationResult,
    ImagePart,
    Message,
    MessageRole,
    Step,
    StreamChunk,
    StructuredContent,
    TextContent,
    TextPart,
    ToolCallRecord,
)
from .provider import (
    AssistantContext,
    SessionConfig,
    StreamingSession,
    TeachingAssistantProvider,
    ValidationResult,
)
from .streaming import ChunkStream, StreamResponse, build_chunks, emit

__version__ = "0.1.0"
__all__ = [
    "TeachingAssistantProvider",
    "AssistantContext",
    "SessionConfig",
    "StreamingSession",
    "ValidationResult",
    "AssistantSettings",
    "ModuleLoader",
    "ModuleSet",
    "AgentLifecycle",
    "AgentHandle",
    "GenerationExecutor",
    "GenerationOptions",
    "DEFAULT_RESOURCE_ID",
    "Agent",
    "ToolDef",
    "ToolSet",
    "MCPServerConfig",
    "MCPToolProvider",
    "ToolProvisioner",
    "MemoryOptions",
    "MemoryStore",
    "Message",
    "MessageRole",
    "TextPart",
    "ImagePart",
    "TextContent",
    "StructuredContent",
    "ToolCallRecord",
    "Step",
    "GenerationResult",
    "StreamChunk",
    "ChunkStream",
    "StreamResponse",
    "build_chunks",
    "emit",
    "TeachAssistError",
    "ConfigError",
    "DependencyLoadError",
    "ToolProvisionError",
    "AgentInitError",
    "NotInitializedError",
    "MissingCredentialError",
    "ValidationNetworkError",
    "UpstreamGenerationError",
]
