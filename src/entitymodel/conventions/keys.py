"""
Primary key detection.
"""

import logging
from typing import Optional

from entitymodel.config import Settings, settings as default_settings
from entitymodel.conventions.base import EntityTypeConvention, PropertyConvention
from entitymodel.metadata.elements import EntityType, Property
from entitymodel.provenance import ConfigurationSource

logger = logging.getLogger(__name__)


class KeyConvention(EntityTypeConvention, PropertyConvention):
    """
    Makes a property named ``Id`` or ``<TypeName>Id`` the primary key.

    Names match case-insensitively and ``Id`` wins over ``<TypeName>Id``.
    Nullable properties are never picked.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def apply(self, entity_type: EntityType) -> None:
        if entity_type.primary_key is not None:
            return
        candidate = self.find_key_property(entity_type)
        if candidate is None:
            return
        key = entity_type.set_primary_key([candidate], ConfigurationSource.CONVENTION)
        if key is not None:
            logger.debug(f"Detected primary key {key}")

    def apply_property(self, prop: Property) -> None:
        self.apply(prop.entity_type)

    def find_key_property(self, entity_type: EntityType) -> Optional[Property]:
        suffix = self.settings.key_property_name
        for name in (suffix, f"{entity_type.name}{suffix}"):
            for prop in entity_type.properties:
                if prop.name.lower() == name.lower() and not prop.is_nullable:
                    return prop
        return None
