"""Config subsystem public API.

Provides:
    get_config() -> AggregatedConfig (schema_version + sections)
    as_dict()    -> dict representation
    ConfigError  -> raised on validation / unknown key
"""

from .loader import (  # noqa: F401
    AggregatedConfig,
    get_config,
    as_dict,
    ConfigError,
    clear_config_cache,
)
from .schemas.messaging import MessagingConfig  # noqa: F401


__all__ = [
    "AggregatedConfig",
    "MessagingConfig",
    "get_config",
    "as_dict",
    "ConfigError",
    "clear_config_cache",
]
