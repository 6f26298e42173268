"""
teachassist - Provider facade.

Exposes the Teaching Assistant through the same contract as the other chat
providers of the host application: key validation and streaming sessions.

Example:
    ```python
    provider = TeachingAssistantProvider()

    check = await provider.validate_credential(api_key)
    if not check.success:
        print(check.error)

    session = provider.create_streaming_session(
        SessionConfig(credential=api_key, resource_id="student-42", thread_id="lesson-1")
    )
    response = await session.stream_chat([{"role": "user", "content": "Hi!"}])
    async for line in response.body:
        ...
    ```
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from .config import CREDENTIAL_PREFIX, AssistantSettings
from .exceptions import ValidationNetworkError
from .executor import GenerationExecutor, GenerationOptions
from .lifecycle import AgentHandle, AgentLifecycle
from .loader import ModuleLoader
from .streaming import StreamResponse, emit

logger = logging.getLogger("teachassist.provider")

INVALID_FORMAT_MESSAGE = "Invalid OpenAI API key format."
NETWORK_ERROR_MESSAGE = "A network error occurred during validation."


@dataclass
class ValidationResult:
    """Outcome of an API key check."""

    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SessionConfig:
    """Options recognized by ``create_streaming_session``.

    ``model`` is accepted for compatibility with other providers; the agent
    always runs its own fixed model.
    """

    credential: str
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2048
    resource_id: Optional[str] = None
    thread_id: Optional[str] = None
    max_steps: Optional[int] = None


class AssistantContext:
    """Everything one provider instance owns: loader, lifecycle, executor."""

    def __init__(
        self,
        settings: AssistantSettings,
        loader: Optional[ModuleLoader] = None,
        lifecycle: Optional[AgentLifecycle] = None,
    ) -> None:
        self.settings = settings
        self.loader = loader or ModuleLoader()
        self.lifecycle = lifecycle or AgentLifecycle(settings, self.loader)
        self.executor = GenerationExecutor(self.lifecycle)


def check_credential_format(credential: Any) -> Optional[str]:
    """Return an error message when the key is malformed, else None."""
    if not credential or not isinstance(credential, str):
        return INVALID_FORMAT_MESSAGE
    if not credential.startswith(CREDENTIAL_PREFIX):
        return INVALID_FORMAT_MESSAGE
    return None


class StreamingSession:
    """A configured chat session; each ``stream_chat`` is one generation."""

    def __init__(self, context: AssistantContext, config: SessionConfig) -> None:
        self._context = context
        self._config = config

    @property
    def config(self) -> SessionConfig:
        return self._config

    async def stream_chat(self, conversation: Iterable[Any]) -> StreamResponse:
        """Generate a reply and return it as a paced chunk stream.

        Errors from initialization or generation are raised here; no stream
        is created for a failed generation.
        """
        if self._context.lifecycle.current is None:
            await self._context.lifecycle.ensure_ready(self._config.credential)

        if self._config.model and self._config.model != self._context.settings.model:
            logger.debug(
                "Ignoring requested model '%s'; agent runs '%s'",
                self._config.model,
                self._context.settings.model,
            )

        settings = self._context.settings
        result = await self._context.executor.generate(
            conversation,
            GenerationOptions(
                resource_id=self._config.resource_id,
                thread_id=self._config.thread_id,
                max_steps=self._config.max_steps or settings.max_steps,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            ),
        )
        return StreamResponse(
            body=emit(result, chunk_size=settings.chunk_size, delay=settings.chunk_delay)
        )


class TeachingAssistantProvider:
    """Provider facade for the Teaching Assistant agent."""

    def __init__(
        self,
        settings: Optional[AssistantSettings] = None,
        context: Optional[AssistantContext] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if context is None:
            context = AssistantContext(settings or AssistantSettings())
        self.context = context
        self._http_transport = http_transport

    @property
    def settings(self) -> AssistantSettings:
        return self.context.settings

    async def validate_credential(self, credential: str) -> ValidationResult:
        """Check an API key locally, then against the provider's models endpoint.

        Never raises: network problems are reported as a failed result.
        """
        format_error = check_credential_format(credential)
        if format_error:
            return ValidationResult(success=False, error=format_error)

        try:
            response = await self._fetch_models(credential)
        except ValidationNetworkError as e:
            logger.error("Network error during key validation: %s", e.message)
            return ValidationResult(success=False, error=NETWORK_ERROR_MESSAGE)

        if response.is_success:
            logger.info("API key validation successful")
            return ValidationResult(success=True)

        message = None
        try:
            message = (response.json().get("error") or {}).get("message")
        except (ValueError, AttributeError):
            message = None
        return ValidationResult(
            success=False,
            error=message or f"Validation failed with status: {response.status_code}",
        )

    async def _fetch_models(self, credential: str) -> httpx.Response:
        url = f"{self.settings.api_base_url.rstrip('/')}/models"
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.validation_timeout,
                transport=self._http_transport,
            ) as client:
                return await client.get(
                    url, headers={"Authorization": f"Bearer {credential}"}
                )
        except httpx.HTTPError as e:
            raise ValidationNetworkError(str(e), cause=e) from e

    def create_streaming_session(self, config: SessionConfig) -> StreamingSession:
        return StreamingSession(self.context, config)

    async def initialize(self, credential: str) -> AgentHandle:
        """Build (or rebuild after a key change) the agent ahead of time."""
        return await self.context.lifecycle.ensure_ready(credential)

    async def shutdown(self) -> None:
        await self.context.lifecycle.shutdown()
