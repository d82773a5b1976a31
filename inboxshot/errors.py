from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised before any network call when the run cannot be configured."""


class SubmissionError(RuntimeError):
    """The rendering service rejected the upload or returned no job id."""


class AuthenticationError(RuntimeError):
    """The rendering service rejected our credentials."""


class PreviewGenerationError(RuntimeError):
    """Run-level failure raised by the coordinator."""
