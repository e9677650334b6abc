"""
entitymodel - Metadata Model for Object/Relational Mapping

Builds and maintains a consistent graph of entity types, keys, foreign
keys and navigations from partial configuration statements:
- Resolves relationship statements into exactly one foreign key
- Synthesizes shadow key properties and default orientation
- Lets explicit configuration override conventions, never the reverse
"""

__version__ = "0.1.0"

from entitymodel.config import Settings, configure_logging, settings
from entitymodel.errors import (
    AmbiguousRelationshipError,
    ModelArgumentError,
    ModelError,
    ModelInvariantError,
    ModelShapeError,
    ModelValidationError,
)
from entitymodel.provenance import ConfigurationSource, Facet, ProvenanceTracker
from entitymodel.metadata import (
    EntityType,
    ForeignKey,
    Index,
    Key,
    Model,
    ModelChangeListener,
    Navigation,
    Property,
)
from entitymodel.shapes import EntityShape, MemberInfo, MemberKind
from entitymodel.resolution import RelateRequest, RelationshipResolver
from entitymodel.conventions import ConventionPipeline
from entitymodel.builder import (
    EntityHandle,
    ForeignKeyHandle,
    IndexHandle,
    KeyHandle,
    ModelBuilder,
    PropertyHandle,
)
from entitymodel.validation import Severity, ValidationIssue, assert_valid, validate_model

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "configure_logging",
    "settings",
    # Errors
    "AmbiguousRelationshipError",
    "ModelArgumentError",
    "ModelError",
    "ModelInvariantError",
    "ModelShapeError",
    "ModelValidationError",
    # Provenance
    "ConfigurationSource",
    "Facet",
    "ProvenanceTracker",
    # Metadata
    "EntityType",
    "ForeignKey",
    "Index",
    "Key",
    "Model",
    "ModelChangeListener",
    "Navigation",
    "Property",
    # Shapes
    "EntityShape",
    "MemberInfo",
    "MemberKind",
    # Resolution and conventions
    "ConventionPipeline",
    "RelateRequest",
    "RelationshipResolver",
    # Builder
    "EntityHandle",
    "ForeignKeyHandle",
    "IndexHandle",
    "KeyHandle",
    "ModelBuilder",
    "PropertyHandle",
    # Validation
    "Severity",
    "ValidationIssue",
    "assert_valid",
    "validate_model",
]
