from typing import Optional


class StoryTailorError(Exception):
    """Base class for errors raised by the backend."""


class ConfigurationError(StoryTailorError):
    """A required setting (usually an API key) is missing or invalid."""


class ProviderError(StoryTailorError):
    """A third-party service call failed."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class GenerationError(StoryTailorError):
    """A provider answered but the output could not be used."""


class JobNotFoundError(StoryTailorError):
    pass


class JobStateError(StoryTailorError):
    pass


class RenderError(StoryTailorError):
    pass


class RenderCancelledError(RenderError):
    pass
