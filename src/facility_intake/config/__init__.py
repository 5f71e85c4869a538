"""Configuration for the facility intake pipeline.

Resolve once with :func:`resolve_config`, then hand the resulting
:class:`FrozenConfig` to the router, run registry and API factory.
"""

from .loaders import ConfigFileError, EnvironmentConfigLoader, FileConfigLoader
from .resolver import ConfigResolver, resolve_config
from .routing import DEFAULT_PROVIDER_CONFIGS, DEFAULT_ROUTING_RULES
from .schema import IntakeSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap

__all__ = [
    "DEFAULT_PROVIDER_CONFIGS",
    "DEFAULT_ROUTING_RULES",
    "ConfigFileError",
    "ConfigOrigin",
    "ConfigResolver",
    "EnvironmentConfigLoader",
    "FileConfigLoader",
    "FrozenConfig",
    "IntakeSettings",
    "ResolvedConfig",
    "SourceMap",
    "resolve_config",
]
