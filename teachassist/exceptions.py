"""
teachassist - Custom exceptions for error handling.
"""

from typing import Optional


class TeachAssistError(Exception):
    """Base exception for all teachassist errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigError(TeachAssistError):
    """Raised when settings cannot be loaded or are invalid."""

    pass


class DependencyLoadError(TeachAssistError):
    """Raised when a runtime dependency fails to import.

    Nothing is cached when this is raised; the next load retries from scratch.
    """

    def __init__(
        self, message: str, module_name: str = "", cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(message, cause=cause)
        self.module_name = module_name


class ToolProvisionError(TeachAssistError):
    """Raised when the MCP tool server cannot be reached or listed.

    Never escapes the tool provisioner: it is logged and degrades to an
    empty tool set.
    """

    def __init__(
        self, message: str, server_name: str = "", cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(message, cause=cause)
        self.server_name = server_name


class AgentInitError(TeachAssistError):
    """Raised when the agent could not be built. The agent cache is left empty."""

    pass


class NotInitializedError(TeachAssistError):
    """Raised when generation is attempted before the agent was initialized."""

    pass


class MissingCredentialError(TeachAssistError):
    """Raised when generation is attempted without a cached API key."""

    pass


class ValidationNetworkError(TeachAssistError):
    """Raised internally when the key validation request cannot be sent.

    Converted to a failed ValidationResult at the provider boundary.
    """

    pass


class UpstreamGenerationError(TeachAssistError):
    """Raised when the model provider fails during generation."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code
