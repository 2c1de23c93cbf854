class GeoPipelineError(Exception):
    """Base class for errors raised by the geocoding pipeline."""


class InputDataError(GeoPipelineError):
    """A source file is missing or lacks required columns. Aborts the run."""


class ConfigError(GeoPipelineError):
    """Pipeline or provider configuration is invalid."""


class ProviderError(GeoPipelineError):
    """A single call to an external geocoder failed (network, timeout, bad payload)."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderAuthError(ProviderError):
    """Credentials were rejected; the provider is unusable for the rest of the run."""


class DailyCapExceeded(ProviderError):
    """The provider's per-run request quota is spent."""
