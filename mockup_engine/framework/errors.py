from __future__ import annotations


class MockupEngineError(Exception):
    """Base class for every error raised by mockup_engine."""


class ConfigurationError(MockupEngineError, ValueError):
    """Invalid configuration, spec, step inputs or model choice."""


class PipelineValidationError(ConfigurationError):
    pass


class ProviderError(MockupEngineError):
    """A provider call failed for a single unit of work."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        model: str | None = None,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.retryable = retryable
        self.status_code = status_code


class MissingCredentialsError(ProviderError):
    pass


class CritiqueParseError(MockupEngineError):
    """Critique text contained neither valid JSON nor any recoverable score."""

    def __init__(self, message: str, *, raw_text: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text
