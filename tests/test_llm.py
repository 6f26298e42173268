"""
Unit tests for the Teaching Assistant agent engine.

Tests tool definitions, the OpenAI model binding, context assembly from
memory, and the agentic tool loop.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from teachassist.exceptions import UpstreamGenerationError
from teachassist.instructions import RECALL_HEADER
from teachassist.llm import (
    WORKING_MEMORY_TOOL,
    Agent,
    ModelResponse,
    OpenAIChatModel,
    OpenAIEmbedder,
    ToolDef,
    ToolSet,
    _parse_arguments,
    _tools_to_openai_format,
    mask_credential,
)
from teachassist.memory import MemoryContext, MemoryOptions, MemoryRecord
from teachassist.models import Message


def _tool_call(name, arguments, call_id="call_1"):
    return {"id": call_id, "name": name, "arguments": json.dumps(arguments)}


def _make_model(*responses):
    model = MagicMock()
    model.complete = AsyncMock(side_effect=list(responses))
    return model


def _make_memory(context=None, options=None):
    memory = MagicMock()
    memory.options = options or MemoryOptions()
    memory.build_context = AsyncMock(return_value=context or MemoryContext())
    memory.update_working_memory = AsyncMock()
    memory.save_messages = AsyncMock(return_value=[])
    return memory


def _record(content, role="user", seq=1):
    return MemoryRecord(id=f"id-{seq}", resource_id="r", thread_id="t", role=role, content=content, seq=seq)


# ---------------------------------------------------------------------------
# Tool Definitions
# ---------------------------------------------------------------------------


class TestToolFormatConversion:
    def test_openai_format(self):
        tools = [{"name": "search", "description": "Search", "parameters": {"type": "object"}}]
        result = _tools_to_openai_format(tools)
        assert result == [
            {
                "type": "function",
                "function": {
                    "name": "search",
                    "description": "Search",
                    "parameters": {"type": "object"},
                },
            }
        ]


class TestToolDef:
    @pytest.mark.asyncio
    async def test_sync_handler(self):
        tool = ToolDef(name="add", description="", handler=lambda a, b: a + b)
        assert await tool.call({"a": 1, "b": 2}) == 3

    @pytest.mark.asyncio
    async def test_async_handler(self):
        async def lookup(course_id):
            return {"id": course_id}

        tool = ToolDef(name="lookup", description="", handler=lookup)
        assert await tool.call({"course_id": "py101"}) == {"id": "py101"}

    @pytest.mark.asyncio
    async def test_missing_handler(self):
        with pytest.raises(RuntimeError):
            await ToolDef(name="x", description="").call({})

    def test_toolset_lookup(self):
        tools = ToolSet(tools=(ToolDef(name="a", description=""), ToolDef(name="b", description="")))
        assert tools.names == ["a", "b"]
        assert tools.get("b").name == "b"
        assert tools.get("c") is None
        assert len(tools) == 2

    def test_default_parameters_schema(self):
        assert ToolDef(name="x", description="d").to_schema()["parameters"] == {
            "type": "object",
            "properties": {},
        }


class TestHelpers:
    def test_mask_credential(self):
        assert mask_credential("sk-abcdefghijkl") == "sk-abcd..."
        assert mask_credential(None) == "null"
        assert mask_credential("") == "null"

    def test_parse_arguments(self):
        assert _parse_arguments('{"a": 1}') == {"a": 1}
        assert _parse_arguments({"a": 1}) == {"a": 1}
        assert _parse_arguments("") == {}
        assert _parse_arguments("not json") == {}
        assert _parse_arguments("[1, 2]") == {}


# ---------------------------------------------------------------------------
# OpenAI Binding
# ---------------------------------------------------------------------------


class TestOpenAIChatModel:
    def _client(self, response=None, error=None):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
        client.close = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_text_response(self):
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = "The answer is 42."
        response.choices[0].message.tool_calls = None
        client = self._client(response)
        model = OpenAIChatModel(client, "gpt-4o")

        result = await model.complete([{"role": "user", "content": "?"}], temperature=0.7, max_tokens=2048)

        assert result.text == "The answer is 42."
        assert result.tool_calls == []
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 2048
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_tool_call_response(self):
        tc = MagicMock()
        tc.id = "call_1"
        tc.function.name = "search_courses"
        tc.function.arguments = '{"q": "python"}'
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = None
        response.choices[0].message.tool_calls = [tc]
        model = OpenAIChatModel(self._client(response))

        result = await model.complete([], tools=[{"type": "function"}])

        assert result.text == ""
        assert result.tool_calls == [
            {"id": "call_1", "name": "search_courses", "arguments": '{"q": "python"}'}
        ]

    @pytest.mark.asyncio
    async def test_empty_choices(self):
        response = MagicMock()
        response.choices = []
        model = OpenAIChatModel(self._client(response))
        assert await model.complete([]) == ModelResponse()

    @pytest.mark.asyncio
    async def test_error_wrapped_with_status(self):
        error = Exception("Incorrect API key provided")
        error.status_code = 401
        model = OpenAIChatModel(self._client(error=error))

        with pytest.raises(UpstreamGenerationError) as exc_info:
            await model.complete([])

        assert exc_info.value.status_code == 401
        assert exc_info.value.cause is error

    @pytest.mark.asyncio
    async def test_close(self):
        client = self._client()
        await OpenAIChatModel(client).close()
        client.close.assert_awaited_once()


class TestOpenAIEmbedder:
    @pytest.mark.asyncio
    async def test_embed(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(
            return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])])
        )
        embedder = OpenAIEmbedder(client)

        assert await embedder("hello") == [0.1, 0.2]
        client.embeddings.create.assert_awaited_once_with(
            model="text-embedding-3-small", input="hello"
        )


# ---------------------------------------------------------------------------
# Agent: Context Assembly
# ---------------------------------------------------------------------------


class TestAgentContextAssembly:
    @pytest.mark.asyncio
    async def test_system_prompt_includes_working_memory(self):
        model = _make_model(ModelResponse(text="Hi!"))
        memory = _make_memory(MemoryContext(working_memory="# Student Profile\n- **Name**: Ada"))
        agent = Agent("TA", "You teach.", model, memory=memory)

        await agent.generate([Message.user("hello")], resource_id="r", thread_id="t")

        messages = model.complete.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert messages[0]["content"].startswith("You teach.")
        assert "<working_memory>" in messages[0]["content"]
        assert "Ada" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    async def test_recalled_and_recent_messages(self):
        model = _make_model(ModelResponse(text="ok"))
        context = MemoryContext(
            recalled=[_record("we covered for loops", role="assistant", seq=1)],
            recent=[_record("earlier question", seq=2), _record("hello", seq=3)],
        )
        agent = Agent("TA", "You teach.", model, memory=_make_memory(context))

        await agent.generate([Message.user("hello")], resource_id="r", thread_id="t")

        messages = model.complete.call_args.args[0]
        assert messages[1]["role"] == "system"
        assert messages[1]["content"].startswith(RECALL_HEADER)
        assert "[assistant] we covered for loops" in messages[1]["content"]
        assert messages[2] == {"role": "user", "content": "earlier question"}
        # the recent "hello" duplicates the caller's message and is dropped
        assert [m["content"] for m in messages].count("hello") == 1

    @pytest.mark.asyncio
    async def test_memory_queried_with_latest_user_text(self):
        memory = _make_memory()
        agent = Agent("TA", "x", _make_model(ModelResponse(text="ok")), memory=memory)

        await agent.generate(
            [Message.user("first"), Message.assistant("reply"), Message.user("second")],
            resource_id="student-1",
            thread_id="lesson-1",
        )

        memory.build_context.assert_awaited_once_with("student-1", "lesson-1", query="second")

    @pytest.mark.asyncio
    async def test_working_memory_tool_advertised(self):
        model = _make_model(ModelResponse(text="ok"))
        tools = ToolSet(tools=(ToolDef(name="search_courses", description="s"),))
        agent = Agent("TA", "x", model, tools=tools, memory=_make_memory())

        await agent.generate([Message.user("hi")], resource_id="r", thread_id="t")

        names = [t["function"]["name"] for t in model.complete.call_args.args[1]]
        assert names == [WORKING_MEMORY_TOOL.name, "search_courses"]

    @pytest.mark.asyncio
    async def test_no_memory_no_memory_tool(self):
        model = _make_model(ModelResponse(text="ok"))
        agent = Agent("TA", "x", model)

        await agent.generate([Message.user("hi")], resource_id="r", thread_id="t")

        assert model.complete.call_args.args[1] == []

    @pytest.mark.asyncio
    async def test_sampling_options_forwarded(self):
        model = _make_model(ModelResponse(text="ok"))
        agent = Agent("TA", "x", model)

        await agent.generate(
            [Message.user("hi")], resource_id="r", thread_id="t", temperature=0.2, max_tokens=100
        )

        kwargs = model.complete.call_args.kwargs
        assert kwargs == {"temperature": 0.2, "max_tokens": 100}


# ---------------------------------------------------------------------------
# Agent: Tool Loop
# ---------------------------------------------------------------------------


class TestAgentToolLoop:
    @pytest.mark.asyncio
    async def test_no_tools_single_step(self):
        agent = Agent("TA", "x", _make_model(ModelResponse(text="The answer is 42.")))

        result = await agent.generate([Message.user("?")], resource_id="r", thread_id="t")

        assert result.text == "The answer is 42."
        assert len(result.steps) == 1
        assert result.resource_id == "r"
        assert result.thread_id == "t"

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self):
        handler = AsyncMock(return_value={"courses": ["Python 101"]})
        tools = ToolSet(tools=(ToolDef(name="search_courses", description="", handler=handler),))
        model = _make_model(
            ModelResponse(tool_calls=[_tool_call("search_courses", {"q": "python"})]),
            ModelResponse(text="Try Python 101."),
        )
        agent = Agent("TA", "x", model, tools=tools)

        result = await agent.generate([Message.user("courses?")], resource_id="r", thread_id="t")

        assert result.text == "Try Python 101."
        assert model.complete.await_count == 2
        handler.assert_awaited_once_with(q="python")
        calls = list(result.iter_tool_calls())
        assert len(calls) == 1
        assert calls[0].id == "call_1"
        assert calls[0].arguments == {"q": "python"}
        assert calls[0].result == {"courses": ["Python 101"]}

        second_messages = model.complete.call_args_list[1].args[0]
        assert second_messages[-2]["role"] == "assistant"
        assert second_messages[-2]["tool_calls"][0]["function"]["name"] == "search_courses"
        assert second_messages[-1] == {
            "role": "tool",
            "tool_call_id": "call_1",
            "content": json.dumps({"courses": ["Python 101"]}),
        }

    @pytest.mark.asyncio
    async def test_unknown_tool_reports_error(self):
        model = _make_model(
            ModelResponse(tool_calls=[_tool_call("nope", {})]),
            ModelResponse(text="Sorry."),
        )
        agent = Agent("TA", "x", model)

        result = await agent.generate([Message.user("?")], resource_id="r", thread_id="t")

        calls = list(result.iter_tool_calls())
        assert calls[0].result == {"error": "Unknown tool: nope"}

    @pytest.mark.asyncio
    async def test_handler_error_fed_back(self):
        handler = AsyncMock(side_effect=RuntimeError("server down"))
        tools = ToolSet(tools=(ToolDef(name="search_courses", description="", handler=handler),))
        model = _make_model(
            ModelResponse(tool_calls=[_tool_call("search_courses", {})]),
            ModelResponse(text="The catalog is unavailable."),
        )
        agent = Agent("TA", "x", model, tools=tools)

        result = await agent.generate([Message.user("?")], resource_id="r", thread_id="t")

        assert result.text == "The catalog is unavailable."
        assert list(result.iter_tool_calls())[0].result == {"error": "server down"}

    @pytest.mark.asyncio
    async def test_working_memory_update_not_recorded_as_tool_call(self):
        memory = _make_memory()
        model = _make_model(
            ModelResponse(tool_calls=[_tool_call(WORKING_MEMORY_TOOL.name, {"memory": "- **Name**: Ada"})]),
            ModelResponse(text="Nice to meet you, Ada."),
        )
        agent = Agent("TA", "x", model, memory=memory)

        result = await agent.generate([Message.user("I'm Ada")], resource_id="student-1", thread_id="t")

        memory.update_working_memory.assert_awaited_once_with("student-1", "- **Name**: Ada")
        assert result.steps[0].working_memory_updated
        assert list(result.iter_tool_calls()) == []

    @pytest.mark.asyncio
    async def test_step_budget_exhausted(self):
        handler = AsyncMock(return_value="again")
        tools = ToolSet(tools=(ToolDef(name="loop", description="", handler=handler),))
        model = MagicMock()
        model.complete = AsyncMock(
            return_value=ModelResponse(text="still working", tool_calls=[_tool_call("loop", {})])
        )
        agent = Agent("TA", "x", model, tools=tools)

        result = await agent.generate([Message.user("?")], resource_id="r", thread_id="t", max_steps=3)

        assert model.complete.await_count == 3
        assert len(result.steps) == 3
        assert result.text == "still working"

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self):
        model = MagicMock()
        model.complete = AsyncMock(side_effect=UpstreamGenerationError("rate limited", status_code=429))
        agent = Agent("TA", "x", model, memory=_make_memory())

        with pytest.raises(UpstreamGenerationError):
            await agent.generate([Message.user("?")], resource_id="r", thread_id="t")

    @pytest.mark.asyncio
    async def test_turn_saved_to_memory(self):
        memory = _make_memory()
        agent = Agent("TA", "x", _make_model(ModelResponse(text="A loop repeats code.")), memory=memory)

        await agent.generate(
            [Message.user("What is a loop?", ["data:image/png;base64,AAA"])],
            resource_id="r",
            thread_id="t",
        )

        memory.save_messages.assert_awaited_once_with(
            "r",
            "t",
            [
                ("user", "What is a loop? [Screenshot provided]"),
                ("assistant", "A loop repeats code."),
            ],
        )
