"""
Convention pipeline.

Listens to model changes and applies conventions in a fixed order:
property discovery, primary key detection, foreign key property
discovery, relationship discovery.
"""

import logging
from typing import Callable, Optional

from entitymodel.config import Settings, settings as default_settings
from entitymodel.conventions.base import EntityTypeConvention, PropertyConvention
from entitymodel.conventions.foreign_keys import ForeignKeyPropertyConvention
from entitymodel.conventions.keys import KeyConvention
from entitymodel.conventions.properties import PropertyDiscoveryConvention
from entitymodel.conventions.relationships import RelationshipDiscoveryConvention
from entitymodel.errors import ModelError
from entitymodel.metadata.elements import EntityType, MetadataElement, Property
from entitymodel.metadata.model import Model, ModelChangeListener
from entitymodel.resolution.resolver import RelationshipResolver

logger = logging.getLogger(__name__)


class ConventionPipeline(ModelChangeListener):
    """
    Applies conventions as entity types and properties are added.

    Each convention step runs in its own atomic block. A step that fails
    with a ModelError is rolled back and logged; the change that
    triggered it still goes through.
    """

    def __init__(
        self,
        model: Model,
        resolver: RelationshipResolver,
        settings: Optional[Settings] = None,
    ):
        self.model = model
        self.settings = settings or default_settings

        key_convention = KeyConvention(self.settings)
        foreign_key_convention = ForeignKeyPropertyConvention(self.settings)

        self.entity_type_conventions: list[EntityTypeConvention] = [PropertyDiscoveryConvention()]
        self.property_conventions: list[PropertyConvention] = []
        if self.settings.discover_keys:
            self.entity_type_conventions.append(key_convention)
            self.property_conventions.append(key_convention)
        self.entity_type_conventions.append(foreign_key_convention)
        self.property_conventions.append(foreign_key_convention)
        if self.settings.discover_relationships:
            self.entity_type_conventions.append(RelationshipDiscoveryConvention(resolver, self.settings))

        model.add_listener(self)

    def detach(self) -> None:
        """Stop applying conventions to the model."""
        self.model.remove_listener(self)

    def on_entity_type_added(self, entity_type: EntityType) -> None:
        for convention in self.entity_type_conventions:
            self._run(convention, convention.apply, entity_type)

    def on_property_added(self, prop: Property) -> None:
        for convention in self.property_conventions:
            self._run(convention, convention.apply_property, prop)

    def _run(
        self,
        convention: object,
        action: Callable[[MetadataElement], None],
        element: MetadataElement,
    ) -> None:
        if not self.model.contains(element):
            return
        try:
            with self.model.atomic():
                action(element)
        except ModelError as e:
            logger.warning(f"{type(convention).__name__} skipped for {element}: {e}")
