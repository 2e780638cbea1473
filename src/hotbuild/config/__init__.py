"""Configuration management for hotbuild.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/hotbuild/ or %PROGRAMDATA%)
- User-level config (~/.config/hotbuild/ or %APPDATA%)
- Project-level config (<project>/.hotbuild/config.yaml)
- An explicit --config file
- Environment variable overrides (highest priority)

Example usage:
    from hotbuild.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.watch.debounce_delay)
    print(config.build.output_root)
"""

from hotbuild.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
    save_config,
    validate_config,
)
from hotbuild.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from hotbuild.config.schema import (
    BuildConfig,
    Config,
    LoggingConfig,
    RestartConfig,
    WatchConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "save_config",
    "validate_config",
    # Schema types
    "WatchConfig",
    "BuildConfig",
    "RestartConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
