from __future__ import annotations


class SchedulerError(Exception):
    """Base class for errors raised by the scheduling service."""


class ConfigurationError(SchedulerError):
    """A required setting (usually a credential) is missing."""


class GenerationError(SchedulerError):
    """The schedule model returned nothing usable."""


class ConflictError(SchedulerError):
    """A conditional update lost: the row changed since it was read."""
