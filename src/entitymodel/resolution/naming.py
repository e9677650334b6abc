"""
Foreign key property naming.

Discovery looks for existing dependent properties that follow the
``<Principal><KeyProperty>`` / ``<Principal>Id`` naming patterns, or,
for one-to-one relationships, a dependent primary key that mirrors the
principal key. Synthesis picks names for new shadow properties when
discovery finds nothing.
"""

import logging
from typing import Iterable, Optional

from entitymodel.config import Settings, settings as default_settings
from entitymodel.metadata.elements import EntityType, Key, Property
from entitymodel.metadata.types import types_compatible

logger = logging.getLogger(__name__)


def candidate_name_sets(
    principal: EntityType,
    key: Key,
    settings: Optional[Settings] = None,
) -> list[tuple[str, ...]]:
    """Property name lists that conventionally reference ``key``, most specific first."""
    settings = settings or default_settings
    key_names = key.property_names
    candidates = [tuple(f"{principal.name}{name}" for name in key_names)]
    if len(key_names) == 1:
        short = (f"{principal.name}{settings.key_property_name}",)
        if short not in candidates:
            candidates.append(short)
    return candidates


def synthesized_base_names(
    principal: EntityType,
    key: Key,
    settings: Optional[Settings] = None,
) -> tuple[str, ...]:
    """Base names for new shadow foreign key properties."""
    settings = settings or default_settings
    if key.is_primary_key and len(key.property_handles) == 1:
        return (f"{principal.name}{settings.key_property_name}",)
    return tuple(f"{principal.name}{name}" for name in key.property_names)


def find_foreign_key_properties(
    dependent: EntityType,
    principal: EntityType,
    key: Key,
    unique: Optional[bool],
    claimed: Iterable[tuple[int, ...]] = (),
    settings: Optional[Settings] = None,
    skip: Iterable[int] = (),
) -> Optional[list[Property]]:
    """
    Find existing dependent properties that can serve as the foreign key.

    ``claimed`` holds property handle lists already used by other foreign
    keys between the same two types; those are skipped, as is any
    property whose handle is in ``skip``.
    """
    claimed = set(claimed)
    skip = set(skip)
    key_props = key.properties

    for names in candidate_name_sets(principal, key, settings):
        props = [dependent.find_property(name) for name in names]
        if all(p is not None for p in props) and _usable(props, key_props, claimed, skip):
            logger.debug(f"Found foreign key properties {list(names)} on '{dependent.name}' by name")
            return props

    # One-to-one: a dependent primary key mirroring the principal key
    if unique and dependent is not principal and dependent.primary_key is not None:
        props = dependent.primary_key.properties
        if tuple(p.name for p in props) == key.property_names and _usable(props, key_props, claimed, skip):
            logger.debug(f"Using primary key of '{dependent.name}' as foreign key")
            return props
    return None


def unique_member_name(entity_type: EntityType, base: str, start: int) -> str:
    """
    Return ``base`` or the first free ``base<N>`` for N counting from ``start``.

    Names taken by properties, navigations or ignored members are skipped.
    """

    def taken(name: str) -> bool:
        return (
            entity_type.find_property(name) is not None
            or entity_type.find_navigation(name) is not None
            or entity_type.is_ignored(name)
        )

    if not taken(base):
        return base
    ordinal = start
    while taken(f"{base}{ordinal}"):
        ordinal += 1
    return f"{base}{ordinal}"


def _usable(props: list[Property], key_props: list[Property], claimed: set, skip: set) -> bool:
    if len(props) != len(key_props):
        return False
    if any(p.handle in skip for p in props):
        return False
    if tuple(p.handle for p in props) in claimed:
        return False
    return all(types_compatible(p.clr_type, k.clr_type) for p, k in zip(props, key_props))
