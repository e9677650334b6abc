"""
Property discovery from source shapes.
"""

import logging

from entitymodel.conventions.base import EntityTypeConvention
from entitymodel.metadata.elements import EntityType
from entitymodel.provenance import ConfigurationSource

logger = logging.getLogger(__name__)


class PropertyDiscoveryConvention(EntityTypeConvention):
    """Adds a property for every scalar member of the entity type's shape."""

    def apply(self, entity_type: EntityType) -> None:
        if entity_type.shape is None:
            return
        added = 0
        for member in entity_type.shape.scalar_members:
            if entity_type.is_ignored(member.name):
                continue
            if entity_type.find_property(member.name) is not None:
                continue
            if entity_type.find_navigation(member.name) is not None:
                continue
            entity_type.add_property(member.name, member.clr_type, ConfigurationSource.CONVENTION)
            added += 1
        if added:
            logger.debug(f"Discovered {added} propert{'y' if added == 1 else 'ies'} on '{entity_type.name}'")
