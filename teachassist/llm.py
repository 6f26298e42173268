"""
teachassist - LLM-powered Teaching Assistant agent.

Provides the agent that sits behind the provider facade: tool definitions,
the OpenAI-compatible model binding and embedder, and the agentic loop that
reasons, calls tools, observes their results and repeats until it can answer.
Each generation is scoped to a Subject (``resource_id``) and a conversation
thread (``thread_id``) so the memory store can supply working memory,
semantic recall and the recency window.

Usage:
    ```python
    agent = Agent(
        name="Teaching Assistant",
        instructions=INSTRUCTIONS,
        model=OpenAIChatModel(AsyncOpenAI(api_key=key), "gpt-4o"),
        tools=await provisioner.get_tools(),
        memory=MemoryStore(path, OpenAIEmbedder(client)),
    )
    result = await agent.generate(messages, resource_id="student-1", thread_id="t-1")
    ```
"""

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional

from .exceptions import UpstreamGenerationError
from .instructions import RECALL_HEADER, WORKING_MEMORY_GUIDE
from .models import GenerationResult, Message, MessageRole, Step, ToolCallRecord

if TYPE_CHECKING:
    from .memory import MemoryContext, MemoryStore

logger = logging.getLogger("teachassist.llm")

DEFAULT_MODEL = "gpt-4o"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_MAX_STEPS = 10


@dataclass
class ToolDef:
    """Definition for a tool the agent can call.

    The ``handler`` receives the tool arguments as keyword arguments and may
    be a plain or an async callable.
    """

    name: str
    description: str
    parameters: dict = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: Optional[Callable[..., Any]] = None

    def to_schema(self) -> dict:
        """Return the tool definition as a JSON-schema dict for the LLM."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    async def call(self, arguments: dict[str, Any]) -> Any:
        if self.handler is None:
            raise RuntimeError(f"Tool '{self.name}' has no handler")
        result = self.handler(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass(frozen=True)
class ToolSet:
    """Immutable, ordered collection of tools attached to an agent."""

    tools: tuple[ToolDef, ...] = ()

    def __iter__(self) -> Iterator[ToolDef]:
        return iter(self.tools)

    def __len__(self) -> int:
        return len(self.tools)

    @property
    def names(self) -> list[str]:
        return [t.name for t in self.tools]

    def get(self, name: str) -> Optional[ToolDef]:
        for t in self.tools:
            if t.name == name:
                return t
        return None


WORKING_MEMORY_TOOL = ToolDef(
    name="update_working_memory",
    description=(
        "Replace the student's working memory profile. Pass the complete "
        "updated profile in the same Markdown format."
    ),
    parameters={
        "type": "object",
        "properties": {
            "memory": {
                "type": "string",
                "description": "The full updated working memory profile.",
            },
        },
        "required": ["memory"],
    },
)


def _tools_to_openai_format(tools: list[dict]) -> list[dict]:
    """Convert tool definitions to OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t["description"],
                "parameters": t["parameters"],
            },
        }
        for t in tools
    ]


def mask_credential(credential: Optional[str]) -> str:
    """Render an API key safely for logs."""
    if not credential:
        return "null"
    return credential[:7] + "..."


# ---------------------------------------------------------------------------
# Model binding
# ---------------------------------------------------------------------------


@dataclass
class ModelResponse:
    """Text and tool calls of one chat completion."""

    text: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


class OpenAIChatModel:
    """Chat model bound to one API key through an ``AsyncOpenAI`` client."""

    def __init__(self, client: Any, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self.model = model

    @property
    def client(self) -> Any:
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ModelResponse:
        """Call the chat completions endpoint (non-streaming)."""
        call_kwargs: dict[str, Any] = {"model": self.model, "messages": messages}
        if temperature is not None:
            call_kwargs["temperature"] = temperature
        if max_tokens:
            call_kwargs["max_tokens"] = max_tokens
        if tools:
            call_kwargs["tools"] = tools

        try:
            response = await self._client.chat.completions.create(**call_kwargs)
        except Exception as e:
            status_code = getattr(e, "status_code", None)
            logger.error("Chat completion failed (status=%s): %s", status_code, e)
            raise UpstreamGenerationError(
                f"Model call failed: {e}", status_code=status_code, cause=e
            ) from e

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> ModelResponse:
        if not response.choices:
            return ModelResponse()
        message = response.choices[0].message
        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            tool_calls.append(
                {
                    "id": tc.id,
                    "name": tc.function.name,
                    "arguments": tc.function.arguments,
                }
            )
        return ModelResponse(text=message.content or "", tool_calls=tool_calls)

    async def close(self) -> None:
        await self._client.close()


class OpenAIEmbedder:
    """Embedding function backed by the OpenAI embeddings endpoint."""

    def __init__(self, client: Any, model: str = DEFAULT_EMBEDDING_MODEL) -> None:
        self._client = client
        self.model = model

    async def __call__(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class Agent:
    """The Teaching Assistant: instructions, model, tools and memory.

    Handles the agentic loop: send messages to the model, execute tool calls,
    feed results back, repeat until the model produces a final answer or the
    step budget is spent.
    """

    def __init__(
        self,
        name: str,
        instructions: str,
        model: OpenAIChatModel,
        tools: Optional[ToolSet] = None,
        memory: Optional["MemoryStore"] = None,
    ) -> None:
        self.name = name
        self._instructions = instructions
        self._model = model
        self._tools = tools or ToolSet()
        self._memory = memory

    @property
    def instructions(self) -> str:
        return self._instructions

    @property
    def model(self) -> OpenAIChatModel:
        return self._model

    @property
    def tools(self) -> ToolSet:
        return self._tools

    @property
    def memory(self) -> Optional["MemoryStore"]:
        return self._memory

    @property
    def _working_memory_enabled(self) -> bool:
        return self._memory is not None and self._memory.options.working_memory_enabled

    def _format_tools(self) -> list[dict]:
        schemas = [t.to_schema() for t in self._tools]
        if self._working_memory_enabled:
            schemas.insert(0, WORKING_MEMORY_TOOL.to_schema())
        return _tools_to_openai_format(schemas)

    async def generate(
        self,
        messages: list[Message],
        *,
        resource_id: str,
        thread_id: str,
        max_steps: int = DEFAULT_MAX_STEPS,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """Run the agentic loop for a conversation.

        Args:
            messages: The full conversation, oldest first.
            resource_id: Subject the memory is scoped to.
            thread_id: Conversation thread for the recency window.
            max_steps: Maximum number of model calls.
            temperature: Sampling temperature.
            max_tokens: Maximum tokens per model call.

        Returns:
            The final text and every step taken.

        Raises:
            UpstreamGenerationError: If a model call fails.
        """
        context = None
        if self._memory is not None:
            context = await self._memory.build_context(
                resource_id, thread_id, query=_latest_user_text(messages)
            )

        api_messages = self._assemble_messages(messages, context)
        tools_formatted = self._format_tools()

        steps: list[Step] = []
        text = ""
        for _step in range(max(1, max_steps)):
            response = await self._model.complete(
                api_messages,
                tools_formatted,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            step = Step(text=response.text)
            steps.append(step)
            text = response.text

            if not response.tool_calls:
                break

            api_messages.append(_build_assistant_message(response))
            for tc in response.tool_calls:
                arguments = _parse_arguments(tc["arguments"])
                result = await self._execute_tool(tc, arguments, step, resource_id)
                api_messages.append(_build_tool_result_message(tc, result))
        else:
            logger.info("Step budget of %d exhausted for thread %s", max_steps, thread_id)

        if self._memory is not None:
            await self._remember(resource_id, thread_id, messages, text)

        return GenerationResult(
            text=text, steps=steps, resource_id=resource_id, thread_id=thread_id
        )

    def _assemble_messages(
        self, messages: list[Message], context: Optional["MemoryContext"]
    ) -> list[dict[str, Any]]:
        system = self._instructions
        if context is not None and context.working_memory is not None:
            system += (
                f"{WORKING_MEMORY_GUIDE}\n<working_memory>\n"
                f"{context.working_memory}\n</working_memory>"
            )
        api_messages: list[dict[str, Any]] = [{"role": "system", "content": system}]

        if context is not None and context.recalled:
            lines = [RECALL_HEADER]
            lines.extend(f"[{r.role}] {r.content}" for r in context.recalled)
            api_messages.append({"role": "system", "content": "\n".join(lines)})

        if context is not None:
            seen = {(m.role.value, m.text) for m in messages}
            for record in context.recent:
                if (record.role, record.content) not in seen:
                    api_messages.append({"role": record.role, "content": record.content})

        api_messages.extend(m.to_dict() for m in messages)
        return api_messages

    async def _execute_tool(
        self,
        tool_call: dict[str, Any],
        arguments: dict[str, Any],
        step: Step,
        resource_id: str,
    ) -> Any:
        """Route a tool call to the working memory or a provisioned tool.

        Working-memory updates are a memory channel, not a provisioned tool,
        so they are not recorded on the step's tool calls.
        """
        name = tool_call["name"]
        if name == WORKING_MEMORY_TOOL.name and self._working_memory_enabled:
            step.working_memory_updated = True
            await self._memory.update_working_memory(
                resource_id, str(arguments.get("memory", ""))
            )
            return {"success": True}

        record = ToolCallRecord(id=tool_call["id"], name=name, arguments=arguments)
        step.tool_calls.append(record)

        tool = self._tools.get(name)
        if tool is None:
            record.result = {"error": f"Unknown tool: {name}"}
            return record.result
        try:
            record.result = await tool.call(arguments)
        except Exception as e:
            logger.warning("Tool '%s' failed: %s", name, e)
            record.result = {"error": str(e)}
        return record.result

    async def _remember(
        self, resource_id: str, thread_id: str, messages: list[Message], text: str
    ) -> None:
        turns: list[tuple[str, str]] = []
        if messages and messages[-1].role == MessageRole.USER:
            turns.append((MessageRole.USER.value, messages[-1].text))
        if text:
            turns.append((MessageRole.ASSISTANT.value, text))
        if turns:
            await self._memory.save_messages(resource_id, thread_id, turns)


def _latest_user_text(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            return message.text
    return ""


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _build_assistant_message(response: ModelResponse) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": response.text or None,
        "tool_calls": [
            {
                "id": tc["id"],
                "type": "function",
                "function": {
                    "name": tc["name"],
                    "arguments": tc["arguments"]
                    if isinstance(tc["arguments"], str)
                    else json.dumps(tc["arguments"]),
                },
            }
            for tc in response.tool_calls
        ],
    }


def _build_tool_result_message(tool_call: dict, result: Any) -> dict[str, Any]:
    content = result if isinstance(result, str) else json.dumps(result, default=str)
    return {"role": "tool", "tool_call_id": tool_call["id"], "content": content}
