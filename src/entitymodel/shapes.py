"""
Source shapes: the member layout of a record type.

Conventions read shapes to discover scalar properties and the reference
and collection members that become navigations.
"""

import collections.abc
import logging
import typing
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from entitymodel.metadata.types import unwrap_nullable

logger = logging.getLogger(__name__)

SCALAR_TYPES = (int, float, bool, str, bytes, Decimal, datetime, date, time, timedelta, UUID)

COLLECTION_ORIGINS = (
    list,
    set,
    frozenset,
    tuple,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Collection,
    collections.abc.Iterable,
)


class MemberKind(str, Enum):
    """Kinds of members on a record type."""

    SCALAR = "scalar"
    REFERENCE = "reference"  # Single related record
    COLLECTION = "collection"  # Many related records


@dataclass
class MemberInfo:
    """A single member of a record type."""

    name: str
    clr_type: Any
    kind: MemberKind = MemberKind.SCALAR
    target: Optional[str] = None  # Related type name for navigations

    @property
    def is_navigation(self) -> bool:
        return self.kind != MemberKind.SCALAR


@dataclass
class EntityShape:
    """Member layout of a record type."""

    name: str
    members: list[MemberInfo] = field(default_factory=list)
    clr_class: Optional[type] = None

    @property
    def scalar_members(self) -> list[MemberInfo]:
        return [m for m in self.members if m.kind == MemberKind.SCALAR]

    @property
    def navigation_members(self) -> list[MemberInfo]:
        return [m for m in self.members if m.is_navigation]

    def find_member(self, name: str) -> Optional[MemberInfo]:
        for member in self.members:
            if member.name == name:
                return member
        return None

    @classmethod
    def from_class(cls, clr_class: type, name: Optional[str] = None) -> "EntityShape":
        """
        Build a shape from a class's annotations.

        Annotations are resolved with typing.get_type_hints, so forward
        references must be resolvable from the class's module by the time
        the shape is built.
        """
        hints = typing.get_type_hints(clr_class)
        members = []
        for member_name, annotation in hints.items():
            if member_name.startswith("_") or typing.get_origin(annotation) is typing.ClassVar:
                continue
            members.append(classify_member(member_name, annotation))
        logger.debug(
            f"Built shape for {clr_class.__name__} with {len(members)} member(s)"
        )
        return cls(name=name or clr_class.__name__, members=members, clr_class=clr_class)

    @classmethod
    def coerce(cls, shape: Any, name: Optional[str] = None) -> Optional["EntityShape"]:
        """Accept None, an EntityShape, or a class."""
        if shape is None or isinstance(shape, EntityShape):
            return shape
        if isinstance(shape, type):
            return cls.from_class(shape, name)
        raise TypeError(f"Cannot build an entity shape from {shape!r}")


def is_scalar_type(clr_type: Any) -> bool:
    """Check whether a type maps to a property rather than a navigation."""
    base = unwrap_nullable(clr_type)
    if typing.get_origin(base) is not None or not isinstance(base, type):
        return True
    return issubclass(base, SCALAR_TYPES) or issubclass(base, Enum)


def classify_member(name: str, annotation: Any) -> MemberInfo:
    """Classify one annotated member as scalar, reference or collection."""
    base = unwrap_nullable(annotation)
    origin = typing.get_origin(base)
    if origin in COLLECTION_ORIGINS:
        args = [arg for arg in typing.get_args(base) if arg is not Ellipsis]
        if len(args) == 1 and not is_scalar_type(args[0]):
            target = unwrap_nullable(args[0])
            return MemberInfo(name, annotation, MemberKind.COLLECTION, target.__name__)
        return MemberInfo(name, annotation, MemberKind.SCALAR)
    if origin is None and isinstance(base, type) and not is_scalar_type(base):
        return MemberInfo(name, annotation, MemberKind.REFERENCE, base.__name__)
    return MemberInfo(name, annotation, MemberKind.SCALAR)
