"""
teachassist - Generation executor.

Runs one agent invocation for a conversation, scoping memory to a Subject
(``resource_id``) and a conversation thread (``thread_id``).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .exceptions import (
    MissingCredentialError,
    NotInitializedError,
    TeachAssistError,
    UpstreamGenerationError,
)
from .lifecycle import AgentLifecycle
from .llm import DEFAULT_MAX_STEPS
from .models import GenerationResult, coerce_conversation

logger = logging.getLogger("teachassist.executor")

DEFAULT_RESOURCE_ID = "teachassist_user_default"


@dataclass
class GenerationOptions:
    """Per-call routing and sampling options.

    Callers should always pass ``resource_id`` and ``thread_id``: the default
    Subject pools every anonymous caller into one memory profile, and the
    default thread id is new on every call.
    """

    resource_id: Optional[str] = None
    thread_id: Optional[str] = None
    max_steps: Optional[int] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


def new_thread_id() -> str:
    return f"session_{int(time.time() * 1000)}"


class GenerationExecutor:
    """Invokes the cached agent of an ``AgentLifecycle``."""

    def __init__(self, lifecycle: AgentLifecycle) -> None:
        self._lifecycle = lifecycle

    async def generate(
        self,
        conversation: Iterable[Any],
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        """Generate a completion for the full conversation.

        Raises:
            NotInitializedError: No agent has been built yet.
            MissingCredentialError: No API key is cached.
            UpstreamGenerationError: The model provider failed.
        """
        options = options or GenerationOptions()
        handle = self._lifecycle.current
        if handle is None:
            raise NotInitializedError("Teaching Assistant agent not initialized")
        if not self._lifecycle.credential:
            raise MissingCredentialError("No API key available for agent generation")

        messages = coerce_conversation(conversation)
        if not messages:
            raise ValueError("Conversation must contain at least one message")

        resource_id = options.resource_id
        if not resource_id:
            resource_id = DEFAULT_RESOURCE_ID
            logger.warning(
                "No resource_id supplied; using shared default subject '%s'",
                DEFAULT_RESOURCE_ID,
            )
        thread_id = options.thread_id or new_thread_id()

        logger.info(
            "Processing request with %s (resource=%s thread=%s)",
            "screenshot" if messages[-1].has_image else "text only",
            resource_id,
            thread_id,
        )

        try:
            async with handle.in_use():
                return await handle.agent.generate(
                    messages,
                    resource_id=resource_id,
                    thread_id=thread_id,
                    max_steps=options.max_steps or DEFAULT_MAX_STEPS,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                )
        except TeachAssistError:
            raise
        except Exception as e:
            logger.error("Error during agent generation: %s", e)
            raise UpstreamGenerationError(f"Generation failed: {e}", cause=e) from e
