"""
Convention interfaces.
"""

from abc import ABC, abstractmethod

from entitymodel.metadata.elements import EntityType, Property


class EntityTypeConvention(ABC):
    """A convention applied when an entity type is added or gains a shape."""

    @abstractmethod
    def apply(self, entity_type: EntityType) -> None:
        """Apply the convention to a newly added entity type."""
        pass


class PropertyConvention(ABC):
    """A convention applied when a property is added."""

    @abstractmethod
    def apply_property(self, prop: Property) -> None:
        """Apply the convention to a newly added property."""
        pass
