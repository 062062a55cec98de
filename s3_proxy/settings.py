from __future__ import annotations

import json
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .keys import DEFAULT_INDEX_DOCUMENT


class ProxySettings(BaseSettings):
    """Configuration for the S3 proxy handler."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    root: str = Field(
        default="{http.vars.root}",
        validation_alias="S3_PROXY_ROOT",
    )
    bucket: str = Field(validation_alias="S3_PROXY_BUCKET")
    region: str | None = Field(
        default=None,
        validation_alias=AliasChoices("S3_PROXY_REGION", "AWS_REGION"),
    )
    endpoint: str | None = Field(
        default=None,
        validation_alias="S3_PROXY_ENDPOINT",
    )
    use_accelerate: bool = Field(
        default=False,
        validation_alias="S3_PROXY_USE_ACCELERATE",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("S3_PROXY_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "S3_PROXY_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("S3_PROXY_SESSION_TOKEN", "AWS_SESSION_TOKEN"),
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="auto",
        validation_alias="S3_PROXY_ADDRESSING_STYLE",
    )
    index_document: str = Field(
        default=DEFAULT_INDEX_DOCUMENT,
        validation_alias="S3_PROXY_INDEX_DOCUMENT",
    )
    vars: dict[str, str] | None = Field(
        default=None,
        validation_alias="S3_PROXY_VARS",
    )
    fallback_url: str | None = Field(
        default=None,
        validation_alias="S3_PROXY_FALLBACK_URL",
    )
    stream_chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        validation_alias="S3_PROXY_STREAM_CHUNK_SIZE",
    )

    @field_validator("bucket")
    @classmethod
    def _require_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "bucket must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("vars", mode="before")
    @classmethod
    def _parse_vars(cls, value: object) -> dict[str, str] | None:
        if value is None:
            return None
        if isinstance(value, str) and value.strip().startswith("{"):
            value = json.loads(value)
        if isinstance(value, dict):
            return {str(k).strip(): str(v) for k, v in value.items()}
        if isinstance(value, str):
            stripped = value.strip()
            mapping: dict[str, str] = {}
            for pair in stripped.split(","):
                if ":" in pair:
                    name, var_value = pair.split(":", 1)
                    mapping[name.strip()] = var_value.strip()
            return mapping or None
        msg = "Invalid vars format"
        raise ValueError(msg)


def load_settings_from_env() -> ProxySettings:
    """Load proxy settings from environment variables.

    Returns:
        ProxySettings instance populated from environment variables.
    """
    return ProxySettings()
