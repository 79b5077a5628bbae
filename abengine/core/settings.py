"""abengine configuration management.

Configuration is loaded from multiple sources with the following priority
(highest to lowest):
1. Explicit overrides (keyword arguments, CLI options)
2. Environment variables (with ABENGINE_ prefix) and ``.env``
3. Configuration file (``abengine.config.yaml``, discovered upwards from the
   working directory, or passed explicitly)
4. Default values

Nested sections merge key by key across sources, so an environment variable
for ``store.backend`` keeps ``store.redis_url`` from the file.

Example usage:
    from abengine.core.settings import get_settings

    settings = get_settings()
    print(settings.store.backend)

Environment variable support:
    ABENGINE_STORE__BACKEND=redis
    ABENGINE_STORE__REDIS_URL=redis://cache:6379/0
    ABENGINE_LOGGING__LEVEL=DEBUG
"""

import logging
from contextvars import ContextVar
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("abengine.config.yaml", "abengine.config.yml")
CONFIG_SEARCH_DEPTH = 10

# File selection for the settings instance under construction:
# (skip discovery, explicit path)
_file_request: ContextVar[tuple[bool, Path | None]] = ContextVar(
    "abengine_config_file_request", default=(False, None)
)


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Return the nearest abengine config file at or above ``start_dir``.

    At most ``CONFIG_SEARCH_DEPTH`` directories are inspected, starting with
    ``start_dir`` (the working directory by default).
    """
    start = (start_dir or Path.cwd()).resolve()
    for directory in [start, *start.parents][:CONFIG_SEARCH_DEPTH]:
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a mapping.

    Unreadable or malformed files and documents that are not a mapping are
    reported as a warning and treated as empty.
    """
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring config file %s: %s", path, e)
        return {}
    if document is None:
        return {}
    if not isinstance(document, dict):
        logger.warning("Ignoring config file %s: top level is not a mapping", path)
        return {}
    return document


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source backed by an abengine YAML config file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path | None) -> None:
        super().__init__(settings_cls)
        self.path = path
        self.data = load_config_file(path) if path else {}
        if self.data:
            logger.debug("Loaded configuration from %s", path)

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        return self.data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return {
            name: self.data[name]
            for name in self.settings_cls.model_fields
            if name in self.data
        }


class StoreSettings(BaseSettings):
    """Durable key-value store settings."""

    model_config = SettingsConfigDict(env_prefix="ABENGINE_STORE_", extra="ignore")

    backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Store backend (memory, redis)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL used by the redis backend",
    )
    timeout_seconds: float = Field(
        default=2.0,
        ge=0.1,
        le=60.0,
        description="Upper bound for a single store call in seconds",
    )
    key_prefix: str = Field(
        default="",
        description="Prefix prepended to every key (namespacing)",
    )
    record_ttl_seconds: int | None = Field(
        default=None,
        ge=60,
        description=(
            "TTL for experiment, assignment and event records; "
            "unset keeps them until the experiment is deleted"
        ),
    )
    analysis_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        le=3600,
        description="TTL for cached analysis output (at most one hour)",
    )


class LoggingSettings(BaseSettings):
    """How abengine log output is rendered and where it goes."""

    model_config = SettingsConfigDict(env_prefix="ABENGINE_LOGGING_", extra="ignore")

    level: str = Field(
        default="INFO",
        description="Root log level name (DEBUG, INFO, WARNING, ...)",
    )
    json_output: bool = Field(
        default=False,
        description="Render JSON lines instead of console output",
    )
    file: str | None = Field(
        default=None,
        description="Also write every record to this file",
    )

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        name = v.upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"Invalid log level: {v}")
        return name


class ABEngineSettings(BaseSettings):
    """Main abengine configuration settings.

    Two private keyword arguments control the config file:
    ``_skip_file_loading=True`` ignores config files entirely (tests use
    this), and ``_config_file`` reads the given file instead of searching
    for one.

    Example:
        settings = ABEngineSettings()
        print(settings.store.backend)

        settings = ABEngineSettings(store={"backend": "redis"})
        print(settings.store.redis_url)
    """

    model_config = SettingsConfigDict(
        env_prefix="ABENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def __init__(
        self,
        _skip_file_loading: bool = False,
        _config_file: Path | None = None,
        **values: Any,
    ) -> None:
        token = _file_request.set((_skip_file_loading, _config_file))
        try:
            super().__init__(**values)
        finally:
            _file_request.reset(token)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        skip, explicit = _file_request.get()
        path = None if skip else explicit or find_config_file()
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSource(settings_cls, path),
            file_secret_settings,
        )


def get_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> ABEngineSettings:
    """Get abengine settings instance.

    Args:
        config_file: Config file to read instead of searching for one.
        **overrides: Explicit configuration overrides. Nested sections are
            merged into the file's sections key by key.

    Returns:
        Configured ABEngineSettings instance.
    """
    return ABEngineSettings(_config_file=config_file, **overrides)


@lru_cache
def get_cached_settings() -> ABEngineSettings:
    """Get cached settings instance.

    Call ``get_cached_settings.cache_clear()`` after changing the environment.
    """
    return get_settings()
