"""
Relationship discovery from reference and collection members.
"""

import logging
from typing import Optional

from entitymodel.config import Settings, settings as default_settings
from entitymodel.conventions.base import EntityTypeConvention
from entitymodel.errors import ModelError
from entitymodel.metadata.elements import EntityType
from entitymodel.provenance import ConfigurationSource
from entitymodel.resolution.resolver import RelationshipResolver
from entitymodel.shapes import MemberInfo, MemberKind

logger = logging.getLogger(__name__)


class RelationshipDiscoveryConvention(EntityTypeConvention):
    """
    Pairs navigation members into relationships.

    Runs for the members of a newly added type and for members of
    existing types that point at it:
    - reference + inverse collection: one-to-many, reference side dependent
    - reference or collection without inverse: many-to-one / one-to-many
    - reference + inverse reference: one-to-one
    - collection + inverse collection: skipped (many-to-many)
    """

    def __init__(self, resolver: RelationshipResolver, settings: Optional[Settings] = None):
        self.resolver = resolver
        self.settings = settings or default_settings

    def apply(self, entity_type: EntityType) -> None:
        model = entity_type.model
        pending: list[tuple[EntityType, MemberInfo]] = []
        if entity_type.shape is not None:
            pending.extend((entity_type, m) for m in entity_type.shape.navigation_members)
        for other in model.entity_types:
            if other is entity_type or other.shape is None:
                continue
            pending.extend(
                (other, m) for m in other.shape.navigation_members
                if m.target == entity_type.name
            )

        for owner, member in pending:
            try:
                with model.atomic():
                    self._discover(owner, member)
            except ModelError as e:
                logger.warning(
                    f"Could not discover relationship for {owner.name}.{member.name}: {e}"
                )

    def _discover(self, owner: EntityType, member: MemberInfo) -> None:
        model = owner.model
        target = model.find_entity_type(member.target)
        if target is None or not model.contains(owner):
            return
        if (
            owner.is_ignored(member.name)
            or owner.find_navigation(member.name) is not None
            or owner.find_property(member.name) is not None
        ):
            return

        inverse = self._find_inverse(owner, member, target)
        convention = ConfigurationSource.CONVENTION
        is_reference = member.kind == MemberKind.REFERENCE

        if not is_reference and inverse is not None and inverse.kind == MemberKind.COLLECTION:
            logger.debug(f"Skipping many-to-many {owner.name}.{member.name} <-> {target.name}.{inverse.name}")
            return

        if is_reference and inverse is not None and inverse.kind == MemberKind.REFERENCE:
            dependent = self._one_to_one_dependent(owner, target)
            principal = target if dependent is owner else owner
            to_principal, to_dependent = (member, inverse) if dependent is owner else (inverse, member)
            self.resolver.relate(
                principal,
                dependent,
                navigation_to_dependent=to_dependent.name,
                navigation_to_principal=to_principal.name,
                unique=True,
                source=convention,
            )
        elif is_reference:
            self.resolver.relate(
                target,
                owner,
                navigation_to_dependent=inverse.name if inverse is not None else None,
                navigation_to_principal=member.name,
                unique=False,
                source=convention,
            )
        else:
            self.resolver.relate(
                owner,
                target,
                navigation_to_dependent=member.name,
                navigation_to_principal=inverse.name if inverse is not None else None,
                unique=False,
                source=convention,
            )

    def _find_inverse(
        self,
        owner: EntityType,
        member: MemberInfo,
        target: EntityType,
    ) -> Optional[MemberInfo]:
        """The single unconfigured member on ``target`` pointing back at ``owner``."""
        if target.shape is None:
            return None
        candidates = [
            m for m in target.shape.navigation_members
            if m.target == owner.name
            and not (target is owner and m.name == member.name)
            and not target.is_ignored(m.name)
            and target.find_navigation(m.name) is None
            and target.find_property(m.name) is None
        ]
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.debug(
                f"{len(candidates)} possible inverses of {owner.name}.{member.name} on "
                f"'{target.name}'; treating it as unidirectional"
            )
        return None

    def _one_to_one_dependent(self, owner: EntityType, target: EntityType) -> EntityType:
        """The side holding a ``<Other>Id`` property is the dependent; otherwise ``owner``."""
        suffix = self.settings.key_property_name
        owner_points = owner.find_property(f"{target.name}{suffix}") is not None
        target_points = target.find_property(f"{owner.name}{suffix}") is not None
        if target_points and not owner_points:
            return target
        return owner
