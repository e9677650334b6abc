"""
Foreign key property discovery for existing relationships.

When a relationship was resolved before its conventional foreign key
property existed, the foreign key got shadow properties. Once a matching
property shows up, the foreign key is rebound to it and the unused shadow
properties are dropped.
"""

import logging
from typing import Optional

from entitymodel.config import Settings, settings as default_settings
from entitymodel.conventions.base import EntityTypeConvention, PropertyConvention
from entitymodel.metadata.elements import EntityType, ForeignKey, Property
from entitymodel.provenance import ConfigurationSource, Facet
from entitymodel.resolution.candidates import claimed_property_lists
from entitymodel.resolution.naming import find_foreign_key_properties

logger = logging.getLogger(__name__)


class ForeignKeyPropertyConvention(EntityTypeConvention, PropertyConvention):
    """Rebinds convention foreign keys to conventionally named properties."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def apply(self, entity_type: EntityType) -> None:
        for fk in entity_type.foreign_keys:
            self._rebind(fk)

    def apply_property(self, prop: Property) -> None:
        if prop.is_shadow:
            return
        for fk in prop.entity_type.foreign_keys:
            self._rebind(fk, trigger=prop)

    def _rebind(self, fk: ForeignKey, trigger: Optional[Property] = None) -> None:
        if fk.source(Facet.PROPERTIES) != ConfigurationSource.CONVENTION:
            return
        dependent = fk.entity_type
        principal = fk.principal_entity_type
        current = fk.properties
        synthesized = [
            p.handle for p in current
            if p.is_shadow and p.source(Facet.EXISTS) == ConfigurationSource.CONVENTION
        ]
        found = find_foreign_key_properties(
            dependent,
            principal,
            fk.referenced_key,
            fk.is_unique,
            claimed_property_lists(dependent, principal, exclude=fk),
            self.settings,
            skip=synthesized,
        )
        if found is None or tuple(p.handle for p in found) == fk.property_handles:
            return
        if trigger is not None and trigger not in found:
            return
        if dependent.model.set_foreign_key_properties(fk, found, None, ConfigurationSource.CONVENTION):
            logger.info(f"Rebound foreign key to discovered properties: {fk}")
