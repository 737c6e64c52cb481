"""
Serializable mixin for dataclasses.

Provides to_dict()/from_dict() using dataclasses.fields() introspection.
Handles nested Serializable objects, lists and tuples of them, enums, and
Path coercion, so plans, descriptors and settings can be dumped to JSON or
YAML without per-class boilerplate.

Deserialization is lenient: keys the dataclass does not know are ignored and
missing fields that have defaults are skipped. Descriptor files written by an
older or newer dirforge therefore still load.
"""

import dataclasses
from enum import Enum
from pathlib import Path
from typing import get_args, get_origin, get_type_hints


class Serializable:
    """Mixin that adds to_dict() and from_dict() to dataclasses.

    Usage:
        @dataclass
        class Descriptor(Serializable):
            world_type: str
            version: str = ""

        d = Descriptor("JOURNAL_WORLD", "1.0.22").to_dict()
        obj = Descriptor.from_dict(d)

    Set `_skip_none = True` on the class to omit None-valued fields from to_dict().
    """

    _skip_none: bool = False

    def to_dict(self) -> dict:
        result = {}
        for f in dataclasses.fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if self._skip_none and value is None:
                continue
            result[f.name] = _serialize(value)
        return result

    @classmethod
    def from_dict(cls, d: dict):
        hints = get_type_hints(cls)
        kwargs = {}
        for f in dataclasses.fields(cls):  # type: ignore[arg-type]
            if not f.init or f.name not in d:
                continue
            kwargs[f.name] = _deserialize(d[f.name], hints.get(f.name))
        return cls(**kwargs)


def _serialize(value):
    if isinstance(value, Serializable):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_serialize(v) for v in value)
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, Path):
        return str(value)
    return value


def _deserialize(value, field_type):
    if value is None:
        return None

    actual_type = _unwrap_optional(field_type)

    if isinstance(actual_type, type):
        if issubclass(actual_type, Serializable) and isinstance(value, dict):
            return actual_type.from_dict(value)
        if issubclass(actual_type, Enum):
            return actual_type(value)
        if actual_type is Path and isinstance(value, str):
            return Path(value)

    if isinstance(value, list):
        origin = get_origin(actual_type)
        inner = _get_sequence_inner_type(actual_type)
        items = value
        if inner and isinstance(inner, type) and issubclass(inner, Serializable):
            items = [inner.from_dict(v) if isinstance(v, dict) else v for v in value]
        if origin is tuple:
            return tuple(items)
        if origin is frozenset:
            return frozenset(items)
        return list(items)

    return value


def _unwrap_optional(tp):
    """Unwrap X | None to X."""
    origin = get_origin(tp)
    if origin is type(int | str):  # types.UnionType for X | Y syntax
        non_none = [a for a in get_args(tp) if a is not type(None)]
        if len(non_none) == 1:
            return non_none[0]
    return tp


def _get_sequence_inner_type(tp):
    """Extract T from list[T], tuple[T, ...] or frozenset[T]."""
    if get_origin(tp) in (list, tuple, frozenset):
        args = get_args(tp)
        if args:
            return args[0]
    return None
