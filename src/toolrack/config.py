"""Runtime settings for toolrack registries.

Values resolve from explicit overrides, then ``TOOLRACK_<SETTING>`` environment
variables (``OPENAI_API_KEY`` for the api key), then
``$TOOLRACK_HOME/config.toml``, then defaults.
"""

from __future__ import annotations

import hashlib
import os
import stat
import tomllib
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, field_validator

from toolrack.paths import default_config_path
from toolrack.policy import ApprovalPolicy
from toolrack.search.embeddings import DEFAULT_EMBEDDING_MODEL, OpenAIEmbedder
from toolrack.types import OutputValidationMode


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class RuntimeSettings(BaseModel):
    """Resolved registry defaults."""

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    read_only: bool = False
    allow_mutation: bool | None = None
    allow_dangerous: bool = True
    approval_policy: ApprovalPolicy = ApprovalPolicy.NEVER
    output_validation_mode: OutputValidationMode = OutputValidationMode.REPORT
    concurrency: int | None = None
    default_timeout_ms: float | None = None
    budget_max_calls: int | None = None
    budget_max_duration_ms: float | None = None
    telemetry: bool = False
    digests: bool = True
    digest_algorithm: str = "sha256"
    log_level: LogLevel = LogLevel.INFO
    embeddings_enabled: bool = False
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    api_key: str | None = None

    @field_validator("api_key")
    @classmethod
    def _strip_api_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped if stripped else None

    @field_validator("embedding_model")
    @classmethod
    def _validate_model(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("embedding_model cannot be empty")
        return value.strip()

    @field_validator("concurrency")
    @classmethod
    def _validate_concurrency(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("concurrency must be at least 1")
        return value

    @field_validator("default_timeout_ms", "budget_max_calls", "budget_max_duration_ms")
    @classmethod
    def _validate_non_negative(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError("value must be at least 0")
        return value

    @field_validator("digest_algorithm")
    @classmethod
    def _validate_algorithm(cls, value: str) -> str:
        name = value.strip().lower()
        if name not in hashlib.algorithms_available:
            raise ValueError(f"unsupported digest algorithm: {value}")
        return name


EXPECTED_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600
ENV_PREFIX = "TOOLRACK_"


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    config_path: Path | str | None = None,
    *,
    create_if_missing: bool = False,
) -> RuntimeSettings:
    env = os.environ if env is None else env
    overrides = overrides or {}
    path = Path(config_path) if config_path else default_config_path()

    created_new = False
    if not path.exists() and create_if_missing:
        write_config(RuntimeSettings(), path)
        created_new = True

    config_data: dict[str, Any] = {}
    if path.exists() and not created_new:
        _ensure_permissions(path)
        config_data = _read_toml(path)

    defaults = RuntimeSettings()

    def pick(key: str, section: str, config_key: str | None = None, env_key: str | None = None) -> Any:
        return _first_value(
            _clean_str(overrides.get(key)),
            _clean_str(env.get(env_key or f"{ENV_PREFIX}{key.upper()}")),
            _clean_str(_get_config_value(config_data, section, config_key or key)),
            getattr(defaults, key),
        )

    approval_policy = _coerce_enum(pick("approval_policy", "registry"), ApprovalPolicy, defaults.approval_policy)
    output_mode = _coerce_enum(
        pick("output_validation_mode", "registry"), OutputValidationMode, defaults.output_validation_mode
    )
    log_level = _coerce_enum(pick("log_level", "logging"), LogLevel, defaults.log_level)

    return RuntimeSettings(
        read_only=pick("read_only", "registry"),
        allow_mutation=pick("allow_mutation", "registry"),
        allow_dangerous=pick("allow_dangerous", "registry"),
        approval_policy=cast(ApprovalPolicy, approval_policy),
        output_validation_mode=cast(OutputValidationMode, output_mode),
        concurrency=pick("concurrency", "registry"),
        default_timeout_ms=pick("default_timeout_ms", "registry"),
        budget_max_calls=pick("budget_max_calls", "budget", "max_calls"),
        budget_max_duration_ms=pick("budget_max_duration_ms", "budget", "max_duration_ms"),
        telemetry=pick("telemetry", "registry"),
        digests=pick("digests", "registry"),
        digest_algorithm=pick("digest_algorithm", "registry"),
        log_level=cast(LogLevel, log_level),
        embeddings_enabled=pick("embeddings_enabled", "embeddings", "enabled"),
        embedding_model=pick("embedding_model", "embeddings", "model"),
        api_key=pick("api_key", "embeddings", env_key="OPENAI_API_KEY"),
    )


def write_config(settings: RuntimeSettings, config_path: Path | str | None = None) -> Path:
    path = Path(config_path) if config_path else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    sections: list[str] = []
    _append_section(
        sections,
        "registry",
        {
            "read_only": settings.read_only,
            "allow_mutation": settings.allow_mutation,
            "allow_dangerous": settings.allow_dangerous,
            "approval_policy": settings.approval_policy,
            "output_validation_mode": settings.output_validation_mode,
            "concurrency": settings.concurrency,
            "default_timeout_ms": settings.default_timeout_ms,
            "telemetry": settings.telemetry,
            "digests": settings.digests,
            "digest_algorithm": settings.digest_algorithm,
        },
    )
    _append_section(
        sections,
        "budget",
        {"max_calls": settings.budget_max_calls, "max_duration_ms": settings.budget_max_duration_ms},
    )
    _append_section(sections, "logging", {"log_level": settings.log_level})
    _append_section(
        sections,
        "embeddings",
        {"enabled": settings.embeddings_enabled, "model": settings.embedding_model, "api_key": settings.api_key},
    )

    content = "\n\n".join(filter(None, sections)) + "\n"
    path.write_text(content, encoding="utf-8")
    path.chmod(EXPECTED_FILE_MODE)
    return path


def create_embedder(settings: RuntimeSettings) -> OpenAIEmbedder | None:
    """OpenAI embedder for the configured model, or None when embeddings are off."""

    if not settings.embeddings_enabled:
        return None
    return OpenAIEmbedder(model=settings.embedding_model, api_key=settings.api_key)


def _ensure_permissions(path: Path) -> None:
    current_mode = stat.S_IMODE(path.stat().st_mode)
    if current_mode != EXPECTED_FILE_MODE:
        path.chmod(EXPECTED_FILE_MODE)


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _get_config_value(config: Mapping[str, Any], section: str, key: str) -> Any:
    section_data = config.get(section)
    if not isinstance(section_data, dict):
        return None
    return section_data.get(key)


def _clean_str(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def _first_value(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def _coerce_enum(value: Any, enum_cls: type[Enum], default: Enum | None = None) -> Enum | None:
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.lower())
        except ValueError:
            return default
    return default


def _render_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, list | tuple):
        return "[" + ", ".join(_render_value(item) for item in value) + "]"
    return str(value)


def _append_section(parts: list[str], name: str, values: Mapping[str, Any]) -> None:
    filtered = {k: v for k, v in values.items() if v is not None and v != [] and v != ()}
    if not filtered:
        return
    lines = [f"[{name}]"]
    for key, val in filtered.items():
        lines.append(f"{key} = {_render_value(val)}")
    parts.append("\n".join(lines))


__all__ = [
    "EXPECTED_FILE_MODE",
    "LogLevel",
    "RuntimeSettings",
    "create_embedder",
    "load_settings",
    "write_config",
]
