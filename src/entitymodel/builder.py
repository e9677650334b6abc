"""
Model builder and configuration handles.

One handle type per metadata kind. Every handle call is explicit
configuration and returns the handle, so calls can be chained:

    builder = ModelBuilder()
    builder.entity("Customer").property("Id", int)
    builder.entity(Order).key("OrderId")
    builder.relate("Customer", "Order", "Orders", "Customer").set_required(True)
"""

import logging
from typing import Any, Optional, Union

from entitymodel.config import Settings, settings as default_settings
from entitymodel.conventions.pipeline import ConventionPipeline
from entitymodel.errors import ModelArgumentError, ModelInvariantError, format_error
from entitymodel.metadata.elements import EntityType, ForeignKey, Index, Key, Property
from entitymodel.metadata.model import Model
from entitymodel.provenance import ConfigurationSource, Facet
from entitymodel.resolution.resolver import RelationshipResolver, TypeRef
from entitymodel.validation import ValidationIssue, assert_valid, validate_model

logger = logging.getLogger(__name__)

EXPLICIT = ConfigurationSource.EXPLICIT

EntityRef = Union[str, type, EntityType]


class ModelBuilder:
    """
    Entry point for configuring a model.

    Wires a Model, a RelationshipResolver and, unless ``conventions`` is
    False, a ConventionPipeline that fills in keys, properties and
    relationships from class shapes.
    """

    def __init__(
        self,
        model: Optional[Model] = None,
        settings: Optional[Settings] = None,
        conventions: bool = True,
    ):
        self.settings = settings or default_settings
        self.model = model if model is not None else Model()
        self.resolver = RelationshipResolver(self.model, self.settings)
        self.pipeline: Optional[ConventionPipeline] = None
        if conventions:
            self.pipeline = ConventionPipeline(self.model, self.resolver, self.settings)

    def entity(self, entity_type: EntityRef) -> "EntityHandle":
        """Get or add an entity type by name or class."""
        if isinstance(entity_type, EntityType):
            return EntityHandle(self, entity_type)
        if isinstance(entity_type, type):
            found = self.model.get_or_add_entity_type(entity_type.__name__, EXPLICIT, entity_type)
        else:
            found = self.model.get_or_add_entity_type(entity_type, EXPLICIT)
        return EntityHandle(self, found)

    def ignore(self, entity_type: Union[str, type]) -> "ModelBuilder":
        """Remove an entity type and keep conventions from adding it back."""
        name = entity_type.__name__ if isinstance(entity_type, type) else entity_type
        self.model.ignore_entity_type(name, EXPLICIT)
        return self

    def relate(
        self,
        principal: EntityRef,
        dependent: EntityRef,
        navigation_to_dependent: Optional[str] = None,
        navigation_to_principal: Optional[str] = None,
        foreign_key_properties: Optional[tuple[str, ...]] = None,
        referenced_key_properties: Optional[tuple[str, ...]] = None,
        unique: Optional[bool] = None,
        prefer_principal: Optional[EntityRef] = None,
        foreign_key_on: Optional[EntityRef] = None,
        referenced_key_on: Optional[EntityRef] = None,
    ) -> "ForeignKeyHandle":
        """
        Configure the relationship between two entity types.

        Arguments mean the same as for RelationshipResolver.relate. Types
        can be given by name, class or EntityType.
        """
        request = {
            "principal": _type_name(principal),
            "dependent": _type_name(dependent),
            "navigation_to_dependent": navigation_to_dependent,
            "navigation_to_principal": navigation_to_principal,
            "foreign_key_properties": foreign_key_properties,
            "referenced_key_properties": referenced_key_properties,
            "unique": unique,
            "prefer_principal": _type_name(prefer_principal),
            "foreign_key_on": _type_name(foreign_key_on),
            "referenced_key_on": _type_name(referenced_key_on),
        }
        fk = self._resolve(request)
        return ForeignKeyHandle(self, fk, request)

    def annotation(self, key: str, value: Any) -> "ModelBuilder":
        self.model.set_annotation(self.model, key, value, EXPLICIT)
        return self

    def validate(self) -> list[ValidationIssue]:
        """Check the model for structural problems."""
        return validate_model(self.model)

    def finalize(self) -> Model:
        """Validate the model and return it; raises ModelValidationError on errors."""
        assert_valid(self.model)
        return self.model

    def _resolve(self, request: dict[str, Any]) -> ForeignKey:
        fk = self.resolver.relate(**request, source=EXPLICIT)
        if fk is None:
            raise ModelInvariantError(
                f"Relationship '{request['principal']}' -> '{request['dependent']}' could not be configured."
            )
        return fk


# =============================================================================
# Handles
# =============================================================================


class _Handle:
    """Base for handles wrapping one metadata element."""

    def __init__(self, builder: ModelBuilder, metadata: Any):
        self.builder = builder
        self.metadata = metadata

    @property
    def model(self) -> Model:
        return self.builder.model

    def annotation(self, key: str, value: Any) -> "_Handle":
        self.model.set_annotation(self.metadata, key, value, EXPLICIT)
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.metadata})"


class EntityHandle(_Handle):
    """Configures one entity type."""

    metadata: EntityType

    @property
    def name(self) -> str:
        return self.metadata.name

    def property(
        self,
        name: str,
        clr_type: Any = None,
        shadow: bool = False,
    ) -> "PropertyHandle":
        """
        Get or add a property.

        Without a type the property must already exist or be a scalar
        member of the entity type's class.
        """
        entity_type = self.metadata
        if clr_type is None:
            existing = entity_type.find_property(name)
            if existing is not None:
                self.model.add_property(entity_type, name, existing.clr_type, EXPLICIT, shadow=existing.is_shadow)
                return PropertyHandle(self.builder, existing)
            member = entity_type.shape.find_member(name) if entity_type.shape is not None else None
            if member is None or member.is_navigation:
                raise ModelArgumentError(format_error("unknown_property", name=name, entity=entity_type.name))
            clr_type = member.clr_type
        prop = self.model.add_property(entity_type, name, clr_type, EXPLICIT, shadow=shadow)
        return PropertyHandle(self.builder, prop)

    def ignore_property(self, name: str) -> "EntityHandle":
        self.model.ignore_property(self.metadata, name, EXPLICIT)
        return self

    def key(self, *names: str, force: bool = False) -> "KeyHandle":
        """Set the primary key."""
        key = self.model.set_primary_key(self.metadata, list(names), EXPLICIT, force=force)
        return KeyHandle(self.builder, key)

    def alternate_key(self, *names: str) -> "KeyHandle":
        key = self.model.add_key(self.metadata, list(names), EXPLICIT)
        return KeyHandle(self.builder, key)

    def index(self, *names: str, unique: bool = False) -> "IndexHandle":
        index = self.model.add_index(self.metadata, list(names), EXPLICIT, unique=unique)
        return IndexHandle(self.builder, index)

    def foreign_key(self, principal: EntityRef, *names: str) -> "ForeignKeyHandle":
        """Relate this type, as dependent, to ``principal`` through the named properties."""
        return self.builder.relate(
            principal,
            self.metadata,
            foreign_key_properties=names or None,
            foreign_key_on=self.metadata,
        )


class PropertyHandle(_Handle):
    """Configures one property."""

    metadata: Property

    def required(self, required: bool = True) -> "PropertyHandle":
        self.model.set_property_nullable(self.metadata, not required, EXPLICIT)
        return self

    def max_length(self, length: Optional[int]) -> "PropertyHandle":
        return self._facet(Facet.MAX_LENGTH, length)

    def concurrency_token(self, enabled: bool = True) -> "PropertyHandle":
        return self._facet(Facet.CONCURRENCY_TOKEN, enabled)

    def shadow(self, enabled: bool = True) -> "PropertyHandle":
        return self._facet(Facet.SHADOW, enabled)

    def generate_value_on_add(self, enabled: bool = True) -> "PropertyHandle":
        return self._facet(Facet.VALUE_GENERATED_ON_ADD, enabled)

    def store_computed(self, enabled: bool = True) -> "PropertyHandle":
        return self._facet(Facet.STORE_COMPUTED, enabled)

    def use_store_default(self, enabled: bool = True) -> "PropertyHandle":
        return self._facet(Facet.USE_STORE_DEFAULT, enabled)

    def _facet(self, facet: Facet, value: Any) -> "PropertyHandle":
        self.model.set_property_facet(self.metadata, facet, value, EXPLICIT)
        return self


class KeyHandle(_Handle):
    """Configures one key."""

    metadata: Key


class IndexHandle(_Handle):
    """Configures one index."""

    metadata: Index

    def unique(self, unique: bool = True) -> "IndexHandle":
        self.model.set_index_unique(self.metadata, unique, EXPLICIT)
        return self


class ForeignKeyHandle(_Handle):
    """
    Configures one relationship.

    ``with_foreign_key`` and ``with_referenced_key`` re-resolve the same
    relationship with the extra hint. The handle follows the resolved
    foreign key, so hints can be given in any order.
    """

    metadata: ForeignKey

    def __init__(self, builder: ModelBuilder, metadata: ForeignKey, request: dict[str, Any]):
        super().__init__(builder, metadata)
        self._request = dict(request)

    @property
    def foreign_key(self) -> ForeignKey:
        return self.metadata

    def set_required(self, required: bool = True) -> "ForeignKeyHandle":
        self.model.set_foreign_key_required(self.metadata, required, EXPLICIT)
        return self

    def set_unique(self, unique: bool = True) -> "ForeignKeyHandle":
        self.model.set_foreign_key_unique(self.metadata, unique, EXPLICIT)
        self._request["unique"] = unique
        return self

    def set_annotation(self, key: str, value: Any) -> "ForeignKeyHandle":
        self.model.set_annotation(self.metadata, key, value, EXPLICIT)
        return self

    def with_foreign_key(self, *names: str, on: Optional[EntityRef] = None) -> "ForeignKeyHandle":
        """Use the named properties of ``on`` (the current dependent by default) as the foreign key."""
        return self._rerelate(
            foreign_key_properties=names,
            foreign_key_on=_type_name(on) or self.metadata.entity_type.name,
        )

    def with_referenced_key(self, *names: str, on: Optional[EntityRef] = None) -> "ForeignKeyHandle":
        """Reference the named properties of ``on`` (the current principal by default)."""
        return self._rerelate(
            referenced_key_properties=names,
            referenced_key_on=_type_name(on) or self.metadata.principal_entity_type.name,
        )

    def _rerelate(self, **hints: Any) -> "ForeignKeyHandle":
        fk = self.metadata
        if not self.model.contains(fk):
            raise ModelArgumentError(f"The foreign key {fk.handle} is no longer part of the model.")
        request = dict(self._request)
        request.update(hints)
        request["principal"] = fk.principal_entity_type.name
        request["dependent"] = fk.entity_type.name
        to_dependent = fk.navigation_to_dependent
        to_principal = fk.navigation_to_principal
        request["navigation_to_dependent"] = to_dependent.name if to_dependent is not None else None
        request["navigation_to_principal"] = to_principal.name if to_principal is not None else None
        if request.get("unique") is None and fk.is_unique:
            request["unique"] = True
        # A preference from the first call must not undo an explicit key placement
        if request.get("foreign_key_on") or request.get("referenced_key_on"):
            request["prefer_principal"] = None

        self.metadata = self.builder._resolve(request)
        self._request = request
        logger.debug(f"Re-resolved relationship as {self.metadata}")
        return self


def _type_name(value: Optional[TypeRef]) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, EntityType):
        return value.name
    if isinstance(value, type):
        return value.__name__
    raise ModelArgumentError(f"Cannot use {value!r} as an entity type reference.")
