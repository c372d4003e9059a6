from .config import (
    BackendMode,
    ConfigurationError,
    DataAccessConfig,
    RelationalProvider,
    load_data_access_config,
)

__all__ = [
    "BackendMode",
    "ConfigurationError",
    "DataAccessConfig",
    "RelationalProvider",
    "load_data_access_config",
]
