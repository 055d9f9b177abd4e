"""Helpers around pydantic models used as tool schemas."""

from __future__ import annotations

import types
import typing
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, create_model
from pydantic.fields import FieldInfo


class EmptyArguments(BaseModel):
    """Schema for tools that take no arguments."""


class PassthroughArguments(BaseModel):
    """Accepts any object and keeps every key."""

    model_config = ConfigDict(extra="allow")


def normalize_schema(schema: Any, *, name: str = "Arguments") -> type[BaseModel]:
    """Coerce a schema declaration into a pydantic model class.

    Accepts a ``BaseModel`` subclass, ``None`` (no arguments), or a mapping of
    field name to a type, a ``(type, default)`` tuple, or a ``FieldInfo``.
    """

    if schema is None:
        return EmptyArguments
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema
    if isinstance(schema, Mapping):
        fields: dict[str, Any] = {}
        for key, declared in schema.items():
            if not isinstance(key, str):
                raise TypeError("schema field names must be strings")
            fields[key] = _field_definition(declared)
        return create_model(_model_name(name), **fields)
    raise TypeError("tool schema must be a pydantic model class or a mapping of field definitions")


def _field_definition(declared: Any) -> Any:
    if isinstance(declared, tuple):
        if len(declared) != 2:
            raise TypeError("tuple field definitions must be (type, default)")
        return declared
    if isinstance(declared, FieldInfo):
        return (declared.annotation if declared.annotation is not None else Any, declared)
    return (declared, ...)


def _model_name(name: str) -> str:
    parts = [part for part in name.replace("-", " ").replace("_", " ").split() if part]
    base = "".join(part[:1].upper() + part[1:] for part in parts) or "Tool"
    return base if base.endswith("Arguments") else f"{base}Arguments"


def schema_keys(schema: type[BaseModel]) -> list[str]:
    return list(schema.model_fields)


def omit_keys(schema: type[BaseModel], keys: set[str] | frozenset[str]) -> type[BaseModel]:
    """Derive a model without ``keys``; field validators are not carried over."""

    fields = {
        key: (info.annotation if info.annotation is not None else Any, info)
        for key, info in schema.model_fields.items()
        if key not in keys
    }
    return create_model(f"{schema.__name__}Partial", __config__=schema.model_config, **fields)


def schemas_loosely_match(target: type[BaseModel], candidate: type[BaseModel]) -> bool:
    """True when every key of ``candidate`` also exists on ``target``."""

    target_keys = set(schema_keys(target))
    return all(key in target_keys for key in schema_keys(candidate))


def coerce_arguments(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def to_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def validation_issues(error: ValidationError) -> tuple[dict[str, Any], ...]:
    issues = []
    for item in error.errors(include_url=False, include_context=False):
        issue = dict(item)
        issue["loc"] = list(issue.get("loc", ()))
        issues.append(issue)
    return tuple(issues)


def describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors(include_url=False, include_context=False):
        location = ".".join(str(piece) for piece in item.get("loc", ())) or "(root)"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts) or str(error)


def to_json_schema(schema: type[BaseModel]) -> dict[str, Any]:
    params = schema.model_json_schema()
    if isinstance(params, dict) and not schema.model_config.get("extra") == "allow":
        params.setdefault("additionalProperties", False)
    return params


def field_type_name(info: FieldInfo) -> str:
    name = _annotation_name(info.annotation)
    return name if info.is_required() else f"{name}?"


def _annotation_name(annotation: Any) -> str:
    if annotation is None or annotation is type(None):
        return "null"
    if annotation is Any:
        return "unknown"
    origin = typing.get_origin(annotation)
    args = typing.get_args(annotation)
    if origin in (typing.Union, types.UnionType):
        return " | ".join(_annotation_name(arg) for arg in args)
    if origin is typing.Literal:
        return "literal"
    if origin in (list, tuple, set, frozenset):
        inner = _annotation_name(args[0]) if args else "unknown"
        return f"array<{inner}>"
    if origin in (dict, Mapping):
        return "record"
    if isinstance(annotation, type):
        if issubclass(annotation, bool):
            return "boolean"
        if issubclass(annotation, Enum):
            return "enum"
        if issubclass(annotation, int):
            return "integer"
        if issubclass(annotation, float):
            return "number"
        if issubclass(annotation, str):
            return "string"
        if issubclass(annotation, BaseModel):
            return "object"
        if issubclass(annotation, (list, tuple, set, frozenset)):
            return "array"
        if issubclass(annotation, dict):
            return "record"
        return annotation.__name__
    return "unknown"


__all__ = [
    "EmptyArguments",
    "PassthroughArguments",
    "coerce_arguments",
    "describe_validation_error",
    "field_type_name",
    "normalize_schema",
    "omit_keys",
    "schema_keys",
    "schemas_loosely_match",
    "to_json_schema",
    "to_plain",
    "validation_issues",
]
