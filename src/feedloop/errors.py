"""Exception hierarchy for the feedback loop."""

from __future__ import annotations


class FeedloopError(Exception):
    """Base class for all feedloop errors."""


class StorageUnavailable(FeedloopError):
    """The backing store cannot be reached or refused the operation.

    Fatal for the current invocation; the scheduler retries on its next tick.
    """


class ProviderUnavailable(FeedloopError):
    """The completion capability is unreachable, timed out, or errored."""


class MalformedJudgeOutput(FeedloopError):
    """A scoring or categorization judge returned unparseable content."""


class ExportIOFailure(FeedloopError):
    """The corpus artifact could not be written."""


class RegistryError(FeedloopError):
    """Unknown model version or an invalid promotion request."""


class FineTuneError(FeedloopError):
    """A fine-tuning job could not be submitted, polled, or registered."""


class ConfigError(FeedloopError):
    """Configuration could not be loaded or is inconsistent."""


__all__ = [
    "FeedloopError",
    "StorageUnavailable",
    "ProviderUnavailable",
    "MalformedJudgeOutput",
    "ExportIOFailure",
    "RegistryError",
    "FineTuneError",
    "ConfigError",
]
