"""
Helpers for declared property types.

A property type is a plain Python type. ``Optional[T]`` (or ``T | None``)
is the nullable form of ``T``; everything else is non-nullable.
"""

import types
from typing import Any, Optional, Union, get_args, get_origin

NoneType = type(None)


def is_nullable_type(clr_type: Any) -> bool:
    """Check whether a declared type admits None."""
    origin = get_origin(clr_type)
    if origin is Union or origin is types.UnionType:
        return NoneType in get_args(clr_type)
    return clr_type is NoneType


def unwrap_nullable(clr_type: Any) -> Any:
    """Strip None from a declared type: Optional[int] -> int."""
    if not is_nullable_type(clr_type):
        return clr_type
    args = tuple(arg for arg in get_args(clr_type) if arg is not NoneType)
    if len(args) == 1:
        return args[0]
    return Union[args]


def make_nullable(clr_type: Any) -> Any:
    """Return the nullable form of a declared type."""
    if is_nullable_type(clr_type):
        return clr_type
    return Optional[clr_type]


def types_compatible(first: Any, second: Any) -> bool:
    """Two types line up in a key/foreign key pair when they match ignoring nullability."""
    return unwrap_nullable(first) == unwrap_nullable(second)


def type_display_name(clr_type: Any) -> str:
    """Short name for messages: int, str, Optional[int]."""
    if is_nullable_type(clr_type):
        return f"Optional[{type_display_name(unwrap_nullable(clr_type))}]"
    return getattr(clr_type, "__name__", None) or repr(clr_type)
