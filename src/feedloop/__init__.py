"""feedloop: a continuous learning loop for support assistant replies."""

__version__ = "0.1.0"

from .config import load_config, load_config_model
from .errors import (
    ConfigError,
    ExportIOFailure,
    FeedloopError,
    FineTuneError,
    MalformedJudgeOutput,
    ProviderUnavailable,
    RegistryError,
    StorageUnavailable,
)
from .schema import FeedloopConfig

__all__ = [
    "__version__",
    "ConfigError",
    "ExportIOFailure",
    "FeedloopConfig",
    "FeedloopError",
    "FineTuneError",
    "MalformedJudgeOutput",
    "ProviderUnavailable",
    "RegistryError",
    "StorageUnavailable",
    "load_config",
    "load_config_model",
]
