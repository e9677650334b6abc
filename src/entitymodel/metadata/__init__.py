"""
Metadata graph: entity types, properties, keys, foreign keys, navigations.
"""

from entitymodel.metadata.elements import (
    EntityType,
    ForeignKey,
    Index,
    Key,
    MetadataElement,
    Navigation,
    Property,
)
from entitymodel.metadata.model import Model, ModelChangeListener
from entitymodel.metadata.types import (
    is_nullable_type,
    make_nullable,
    type_display_name,
    types_compatible,
    unwrap_nullable,
)

__all__ = [
    # Elements
    "EntityType",
    "ForeignKey",
    "Index",
    "Key",
    "MetadataElement",
    "Navigation",
    "Property",
    # Model
    "Model",
    "ModelChangeListener",
    # Types
    "is_nullable_type",
    "make_nullable",
    "type_display_name",
    "types_compatible",
    "unwrap_nullable",
]
