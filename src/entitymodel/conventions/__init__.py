"""
Conventions that fill in metadata the user did not state.
"""

from entitymodel.conventions.base import EntityTypeConvention, PropertyConvention
from entitymodel.conventions.foreign_keys import ForeignKeyPropertyConvention
from entitymodel.conventions.keys import KeyConvention
from entitymodel.conventions.pipeline import ConventionPipeline
from entitymodel.conventions.properties import PropertyDiscoveryConvention
from entitymodel.conventions.relationships import RelationshipDiscoveryConvention

__all__ = [
    "ConventionPipeline",
    "EntityTypeConvention",
    "ForeignKeyPropertyConvention",
    "KeyConvention",
    "PropertyConvention",
    "PropertyDiscoveryConvention",
    "RelationshipDiscoveryConvention",
]
