"""Configuration file loading and caching.

Handles:
- YAML file parsing (JSON config files load too, YAML being a superset)
- Environment variable overrides
- Validation of the merged result
- Config caching with explicit reload support
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from hotbuild.config.merge import merge_configs
from hotbuild.config.paths import get_config_paths
from hotbuild.config.schema import (
    BuildConfig,
    Config,
    LoggingConfig,
    RestartConfig,
    WatchConfig,
)
from hotbuild.errors import ConfigError
from hotbuild.logging import LEVEL_MAP

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("hotbuild.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_KNOWN_KEYS = {"template_path", "default_targets", "watch", "build", "restart", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config layer from HOTBUILD_* environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("HOTBUILD_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    debounce = os.environ.get("HOTBUILD_DEBOUNCE")
    if debounce:
        try:
            overrides.setdefault("watch", {})["debounce_delay"] = float(debounce)
        except ValueError:
            _log.warning("Ignoring non-numeric HOTBUILD_DEBOUNCE=%r", debounce)

    max_parallel = os.environ.get("HOTBUILD_MAX_PARALLEL")
    if max_parallel:
        try:
            overrides.setdefault("build", {})["max_parallel"] = int(max_parallel)
        except ValueError:
            _log.warning("Ignoring non-integer HOTBUILD_MAX_PARALLEL=%r", max_parallel)

    return overrides


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    defaults = Config()

    watch_data = data.get("watch") or {}
    watch = WatchConfig(
        debounce_delay=float(watch_data.get("debounce_delay", defaults.watch.debounce_delay)),
        poll_interval=float(watch_data.get("poll_interval", defaults.watch.poll_interval)),
        extensions=_str_list(watch_data["extensions"])
        if "extensions" in watch_data
        else defaults.watch.extensions,
        # User patterns extend the defaults rather than replacing them
        ignore_patterns=defaults.watch.ignore_patterns
        + [p for p in _str_list(watch_data.get("ignore_patterns"))
           if p not in defaults.watch.ignore_patterns],
        max_files=int(watch_data.get("max_files", defaults.watch.max_files)),
    )

    build_data = data.get("build") or {}
    settings_data = build_data.get("settings") or {}
    build = BuildConfig(
        parallel=build_data.get("parallel", defaults.build.parallel),
        max_parallel=build_data.get("max_parallel"),
        output_root=str(build_data.get("output_root", defaults.build.output_root)),
        timeout=build_data.get("timeout"),
        settings={
            str(k): dict(v) for k, v in settings_data.items() if isinstance(v, dict)
        },
    )

    restart_data = data.get("restart") or {}
    restart = RestartConfig(
        max_attempts=int(restart_data.get("max_attempts", defaults.restart.max_attempts)),
        base_delay=float(restart_data.get("base_delay", defaults.restart.base_delay)),
    )

    log_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        template_path=str(data.get("template_path", defaults.template_path)),
        default_targets=_str_list(data.get("default_targets")),
        watch=watch,
        build=build,
        restart=restart,
        logging=logging_config,
        extra=extra,
    )


def validate_config(config: Config) -> Config:
    """Check value ranges, raising ConfigError on the first violation."""
    if config.watch.debounce_delay < 0:
        raise ConfigError("watch.debounce_delay must be a non-negative number")
    if config.watch.poll_interval <= 0:
        raise ConfigError("watch.poll_interval must be positive")
    if config.watch.max_files <= 0:
        raise ConfigError("watch.max_files must be positive")
    if not isinstance(config.build.parallel, bool):
        raise ConfigError("build.parallel must be true or false")
    if config.build.max_parallel is not None and (
        not isinstance(config.build.max_parallel, int) or config.build.max_parallel < 1
    ):
        raise ConfigError("build.max_parallel must be a positive integer")
    if config.build.timeout is not None and config.build.timeout <= 0:
        raise ConfigError("build.timeout must be positive")
    if config.restart.max_attempts < 0:
        raise ConfigError("restart.max_attempts must be non-negative")
    if config.restart.base_delay < 0:
        raise ConfigError("restart.base_delay must be non-negative")
    level = config.logging.level
    if level and level.upper() not in LEVEL_MAP:
        raise ConfigError(
            f"Invalid logging.level: {level}. Must be one of: "
            + ", ".join(sorted(name.lower() for name in LEVEL_MAP))
        )
    return config


def load_config(
    project_root: str | Path | None = None,
    config_path: str | Path | None = None,
    reload: bool = False,
) -> Config:
    """Load, merge and validate config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config file (``--config``)
    3. Project config (<project_root>/.hotbuild/config.yaml)
    4. User config
    5. System config

    Args:
        project_root: Project directory for project-level config.
        config_path: Explicit config file, layered above the project config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.

    Raises:
        ConfigError: If the merged configuration fails validation.
    """
    global _cached_config

    is_global = project_root is None and config_path is None
    if _cached_config is not None and not reload and is_global:
        return _cached_config

    layers: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        data = load_yaml_file(path)
        if data:
            _log.debug("Loaded config from %s", path)
            layers.append(data)

    if config_path is not None:
        explicit = Path(config_path)
        if not explicit.exists():
            _log.info("Config file %s not found, using defaults", explicit)
        data = load_yaml_file(explicit)
        if data:
            _log.debug("Loaded config from %s", explicit)
            layers.append(data)

    env_layer = env_overrides()
    if env_layer:
        layers.append(env_layer)

    try:
        config = validate_config(dict_to_config(merge_configs(*layers)))
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Invalid configuration value: {e}") from e

    if is_global:
        _cached_config = config

    return config


def config_to_dict(config: Config) -> dict[str, Any]:
    """Plain dict form of a Config, with extra keys back at the top level."""
    data = asdict(config)
    extra = data.pop("extra")
    data.update(extra)
    return data


def save_config(config: Config, path: str | Path) -> Path:
    """Write a config to a YAML (.yaml/.yml) or JSON (.json) file.

    Parent directories are created as needed.

    Raises:
        ConfigError: If the extension is unsupported or the file cannot be written.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    data = config_to_dict(config)
    if suffix == ".json":
        content = json.dumps(data, indent=2) + "\n"
    elif suffix in (".yaml", ".yml"):
        content = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    else:
        raise ConfigError(f"Unsupported configuration file format: {suffix or path.name}")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to write config to {path}: {e}") from e
    _log.info("Saved config to %s", path)
    return path


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config (for tests or to force a reload)."""
    global _cached_config
    _cached_config = None


def reload_config(
    project_root: str | Path | None = None,
    config_path: str | Path | None = None,
) -> Config:
    """Reload config from files and notify callbacks.

    Running components do not pick the new values up on their own; a
    callback (typically Orchestrator.apply_config) must re-apply them.
    """
    config = load_config(project_root=project_root, config_path=config_path, reload=True)

    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
