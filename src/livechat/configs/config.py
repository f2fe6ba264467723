"""Application settings built with pydantic-settings.

``get_app_config()`` builds a fresh ``AppConfig`` on every call, so an
edited ConfigMap is seen by the next request without a restart.  The
lifespan and the per-request dependencies both go through it, which is
also the single seam tests override.

Sources, first match wins:

1. ConfigMap YAML named by ``LIVECHAT_CONFIGMAP_FILE`` (if it exists)
2. ``LIVECHAT_*`` environment variables, ``__`` between nesting levels,
   e.g. ``LIVECHAT_PRESENCE__CACHE_TTL=PT10S``
3. ``.env`` in the project root
4. ``configs/config.yaml`` shipped with the image
5. Constructor arguments and field defaults
6. File secrets

The file *locations* are fixed at import time; only their contents are
re-read.
"""

import os
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .system import (
    ChatConfig,
    LoggingConfig,
    NotificationConfig,
    PresenceConfig,
    ThirdPartyConfig,
    TracingConfig,
)

PROJECT_ROOT = Path(__file__).resolve().parents[3]
STATIC_CONFIG_FILE = PROJECT_ROOT / "configs" / "config.yaml"
DOTENV_FILE_PATH = PROJECT_ROOT / ".env"

ENV_PREFIX = "LIVECHAT_"
ENV_DELIMITER = "__"
CONFIGMAP_ENV_VAR = f"{ENV_PREFIX}CONFIGMAP_FILE"

_configmap_env = os.environ.get(CONFIGMAP_ENV_VAR)
CONFIGMAP_CONFIG_FILE: Optional[Path] = Path(_configmap_env) if _configmap_env else None

DEFAULT_ENCODING = "utf-8"


class AppConfig(BaseSettings):
    """Every setting of the chat service, grouped by concern."""

    model_config = SettingsConfigDict(
        env_file=DOTENV_FILE_PATH,
        env_file_encoding=DEFAULT_ENCODING,
        env_nested_delimiter=ENV_DELIMITER,
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
        yaml_file=STATIC_CONFIG_FILE,
        yaml_file_encoding=DEFAULT_ENCODING,
    )

    third_party: ThirdPartyConfig = Field(
        default_factory=ThirdPartyConfig,
        description="Postgres and Redis connections",
    )
    chat: ChatConfig = Field(
        default_factory=ChatConfig, description="Greeting, language and message limits"
    )
    presence: PresenceConfig = Field(
        default_factory=PresenceConfig,
        description="Operator freshness window, cache TTL and poll interval",
    )
    notification: NotificationConfig = Field(
        default_factory=NotificationConfig,
        description="Where offline leads are announced",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Root logger settings"
    )
    tracing: TracingConfig = Field(
        default_factory=TracingConfig, description="OpenTelemetry export"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        configmap: list[PydanticBaseSettingsSource] = []
        if CONFIGMAP_CONFIG_FILE is not None and CONFIGMAP_CONFIG_FILE.is_file():
            configmap.append(
                YamlConfigSettingsSource(settings_cls, yaml_file=CONFIGMAP_CONFIG_FILE)
            )
        return (
            *configmap,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
            file_secret_settings,
        )


def get_app_config() -> AppConfig:
    """Build the configuration from its sources (not cached)."""
    return AppConfig()


def get_chat_config(
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> ChatConfig:
    return config.chat
