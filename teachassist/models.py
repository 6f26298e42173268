"""
teachassist - Data models for conversations, generation results and stream chunks.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Optional, Union

SCREENSHOT_MARKER = "[Screenshot provided]"


class MessageRole(str, Enum):
    """Role of a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class TextPart:
    """A text fragment of a multimodal message."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImagePart:
    """An image reference (URL or data URL) of a multimodal message."""

    url: str
    detail: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        image: dict[str, Any] = {"url": self.url}
        if self.detail:
            image["detail"] = self.detail
        return {"type": "image_url", "image_url": image}


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class TextContent:
    """Plain text message content."""

    text: str

    @property
    def has_image(self) -> bool:
        return False

    def to_api(self) -> str:
        return self.text

    def summary(self) -> str:
        return self.text


@dataclass(frozen=True)
class StructuredContent:
    """Message content made of typed parts (text and images)."""

    parts: tuple[ContentPart, ...] = ()

    @property
    def has_image(self) -> bool:
        return any(isinstance(p, ImagePart) for p in self.parts)

    def to_api(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self.parts]

    def summary(self) -> str:
        """Flatten to text; images are replaced with a screenshot marker."""
        pieces = []
        for part in self.parts:
            if isinstance(part, TextPart):
                pieces.append(part.text)
            else:
                pieces.append(SCREENSHOT_MARKER)
        return " ".join(p for p in pieces if p)


MessageContent = Union[TextContent, StructuredContent]


def _parse_part(data: dict[str, Any]) -> ContentPart:
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(text=data.get("text", ""))
    if part_type == "image_url":
        image = data.get("image_url", {})
        if isinstance(image, str):
            return ImagePart(url=image)
        return ImagePart(url=image.get("url", ""), detail=image.get("detail"))
    raise ValueError(f"Unsupported content part type: {part_type!r}")


def parse_content(raw: Any) -> MessageContent:
    """Build the tagged content union from an OpenAI-style ``content`` value."""
    if raw is None:
        return TextContent("")
    if isinstance(raw, str):
        return TextContent(raw)
    if isinstance(raw, (list, tuple)):
        return StructuredContent(parts=tuple(_parse_part(p) for p in raw))
    raise ValueError(f"Unsupported message content: {type(raw).__name__}")


@dataclass(frozen=True)
class Message:
    """One turn of a conversation."""

    role: MessageRole
    content: MessageContent

    @classmethod
    def user(cls, text: str, images: Iterable[str] = ()) -> "Message":
        image_list = list(images)
        if not image_list:
            return cls(MessageRole.USER, TextContent(text))
        parts: list[ContentPart] = [TextPart(text)]
        parts.extend(ImagePart(url=u) for u in image_list)
        return cls(MessageRole.USER, StructuredContent(parts=tuple(parts)))

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(MessageRole.ASSISTANT, TextContent(text))

    @property
    def text(self) -> str:
        return self.content.summary()

    @property
    def has_image(self) -> bool:
        return self.content.has_image

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content.to_api()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=MessageRole(data.get("role", "user")),
            content=parse_content(data.get("content")),
        )


def coerce_conversation(conversation: Iterable[Any]) -> list[Message]:
    """Accept ``Message`` objects or OpenAI message dicts."""
    messages = []
    for item in conversation:
        if isinstance(item, Message):
            messages.append(item)
        elif isinstance(item, dict):
            messages.append(Message.from_dict(item))
        else:
            raise TypeError(f"Cannot use {type(item).__name__} as a message")
    return messages


@dataclass
class ToolCallRecord:
    """A tool invocation made by the agent during one step."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "result": self.result,
        }


@dataclass
class Step:
    """One model call of the agentic loop."""

    text: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    working_memory_updated: bool = False


@dataclass
class GenerationResult:
    """Output of one agent invocation."""

    text: str
    steps: list[Step] = field(default_factory=list)
    resource_id: Optional[str] = None
    thread_id: Optional[str] = None

    def iter_tool_calls(self) -> Iterator[ToolCallRecord]:
        for step in self.steps:
            yield from step.tool_calls

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "steps": [
                {"text": s.text, "tool_calls": [tc.to_dict() for tc in s.tool_calls]}
                for s in self.steps
            ],
            "resource_id": self.resource_id,
            "thread_id": self.thread_id,
        }


DONE_LINE = "data: [DONE]\n\n"


@dataclass(frozen=True)
class StreamChunk:
    """An incremental content fragment in chat-completion streaming shape."""

    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"choices": [{"delta": {"content": self.content}}]}

    def to_sse(self) -> str:
        payload = json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return f"data: {payload}\n\n"

    def encode(self) -> bytes:
        return self.to_sse().encode("utf-8")
