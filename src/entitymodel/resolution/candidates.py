"""
Candidate foreign keys for a relationship request.

Two lookups, tried in order by the resolver: foreign keys reached
through an already-named navigation, then foreign keys between the two
types that are structurally eligible for reuse.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from entitymodel.errors import AmbiguousRelationshipError, format_error
from entitymodel.metadata.elements import EntityType, ForeignKey, Navigation
from entitymodel.provenance import ConfigurationSource, Facet, get_authority_level
from entitymodel.resolution.request import RelateRequest

logger = logging.getLogger(__name__)


@dataclass
class NavigationMatch:
    """A foreign key found through a requested navigation name."""

    foreign_key: ForeignKey
    reversed: bool  # Existing orientation is opposite to the request
    navigations: list[Navigation] = field(default_factory=list)


@dataclass
class ForeignKeyMatch:
    """Outcome of the existing foreign key search."""

    foreign_key: Optional[ForeignKey] = None
    conflicting: list[ForeignKey] = field(default_factory=list)  # Eligible but wrong uniqueness


def match_navigations(
    request: RelateRequest,
    principal: EntityType,
    dependent: EntityType,
) -> Optional[NavigationMatch]:
    """
    Find a foreign key through navigations that already carry a requested name.

    When the two names resolve to different foreign keys, the one whose
    navigation was configured explicitly wins; a tie is ambiguous.
    """
    hits: list[tuple[Navigation, bool]] = []
    for owner, name, expects_principal in (
        (dependent, request.navigation_to_principal, True),
        (principal, request.navigation_to_dependent, False),
    ):
        if name is None:
            continue
        navigation = owner.find_navigation(name)
        if navigation is None or not navigation.foreign_key.connects(principal, dependent):
            continue
        hits.append((navigation, navigation.points_to_principal != expects_principal))

    if not hits:
        return None

    by_fk: dict[int, list[tuple[Navigation, bool]]] = {}
    for navigation, is_reversed in hits:
        by_fk.setdefault(navigation.foreign_key_handle, []).append((navigation, is_reversed))

    if len(by_fk) > 1:
        ranked = sorted(
            (sorted(group, key=lambda hit: _authority(hit[0])) for group in by_fk.values()),
            key=lambda group: _authority(group[0][0]),
        )
        first, second = ranked[0][0][0], ranked[1][0][0]
        if _authority(first) == _authority(second):
            raise AmbiguousRelationshipError(
                format_error(
                    "ambiguous_navigations",
                    first=first,
                    second=second,
                    principal=principal.name,
                    dependent=dependent.name,
                )
            )
        logger.info(f"Navigation {first} outranks {second}; using its foreign key")
        group = ranked[0]
    else:
        group = next(iter(by_fk.values()))

    navigation, is_reversed = group[0]
    return NavigationMatch(
        foreign_key=navigation.foreign_key,
        reversed=is_reversed,
        navigations=[n for n, _ in group],
    )


def find_foreign_key(
    request: RelateRequest,
    principal: EntityType,
    dependent: EntityType,
) -> ForeignKeyMatch:
    """
    Search the dependent's foreign keys to the principal.

    The first structurally eligible foreign key whose uniqueness agrees
    with the request is reused. Eligible ones with the opposite
    uniqueness are reported as conflicting and left untouched.
    """
    eligible = [
        fk for fk in dependent.find_foreign_keys(principal)
        if is_structurally_eligible(fk, request)
    ]
    for fk in eligible:
        if request.unique is None or fk.is_unique == request.unique:
            return ForeignKeyMatch(foreign_key=fk)
    return ForeignKeyMatch(conflicting=eligible)


def is_structurally_eligible(fk: ForeignKey, request: RelateRequest) -> bool:
    """
    Check whether ``fk`` could be the relationship described by ``request``.

    Explicit property names must match, either directly or as the names
    this foreign key was created in place of. A navigation the foreign key
    already has must not carry a different requested name.
    """
    if request.foreign_key_properties is not None:
        if request.foreign_key_properties not in (fk.property_names, fk.substituted_property_names):
            return False
    if request.referenced_key_properties is not None:
        if fk.referenced_key.property_names != request.referenced_key_properties:
            return False
    for existing, requested in (
        (fk.navigation_to_principal, request.navigation_to_principal),
        (fk.navigation_to_dependent, request.navigation_to_dependent),
    ):
        if existing is not None and requested is not None and existing.name != requested:
            return False
    return True


def claimed_property_lists(
    dependent: EntityType,
    principal: EntityType,
    exclude: Optional[ForeignKey] = None,
) -> set[tuple[int, ...]]:
    """Property handle lists used by other foreign keys between the same two types."""
    return {
        fk.property_handles
        for fk in dependent.find_foreign_keys(principal)
        if fk is not exclude
    }


def _authority(navigation: Navigation) -> int:
    return get_authority_level(navigation.source(Facet.EXISTS) or ConfigurationSource.CONVENTION)
