"""Skin runtime configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SKIP_SCRIPTS = ("standardframe.maki",)


class SkinConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    layout_document: str = Field(
        default="skin.xml",
        description="Archive member holding the root layout document (SKIN_LAYOUT_DOCUMENT)",
    )
    skip_scripts: tuple[str, ...] = Field(
        default=DEFAULT_SKIP_SCRIPTS,
        description=(
            "Script file names handled by a built-in mechanism and never "
            "executed by the binder (SKIN_SKIP_SCRIPTS, comma separated)"
        ),
    )
    script_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Maximum time one script may run during binding (SKIN_SCRIPT_TIMEOUT)",
    )
    max_include_depth: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Maximum nesting of <include> documents (SKIN_MAX_INCLUDE_DEPTH)",
    )
    engine_log: bool = Field(
        default=False,
        description="Log every native call made by scripts (SKIN_ENGINE_LOG)",
    )
    fetch_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout when loading a skin from a URL (SKIN_FETCH_TIMEOUT)",
    )

    @field_validator("skip_scripts", mode="before")
    @classmethod
    def _split_names(cls, value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        return tuple(v.strip() for v in value if v and v.strip())

    @field_validator("layout_document", mode="before")
    @classmethod
    def _normalize_layout(cls, value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            raise ValueError("SKIN_LAYOUT_DOCUMENT cannot be empty")
        return str(value).strip().replace("\\", "/")


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


@lru_cache(maxsize=1)
def get_config() -> SkinConfig:
    """Load and cache skin runtime configuration."""
    layout_document = _read_env("SKIN_LAYOUT_DOCUMENT", "skin.xml")
    skip_scripts = _read_env("SKIN_SKIP_SCRIPTS", ",".join(DEFAULT_SKIP_SCRIPTS))
    engine_log = _read_env("SKIN_ENGINE_LOG", "false").lower() in {"true", "1", "yes"}

    try:
        script_timeout = float(_read_env("SKIN_SCRIPT_TIMEOUT", "5.0"))
    except ValueError:
        script_timeout = 5.0
    try:
        max_include_depth = int(_read_env("SKIN_MAX_INCLUDE_DEPTH", "16"))
    except ValueError:
        max_include_depth = 16
    try:
        fetch_timeout = float(_read_env("SKIN_FETCH_TIMEOUT", "30.0"))
    except ValueError:
        fetch_timeout = 30.0

    return SkinConfig(
        layout_document=layout_document,
        skip_scripts=skip_scripts,
        script_timeout_seconds=script_timeout,
        max_include_depth=max_include_depth,
        engine_log=engine_log,
        fetch_timeout_seconds=fetch_timeout,
    )


def reload_config() -> SkinConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()
