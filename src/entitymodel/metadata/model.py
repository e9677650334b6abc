"""
The metadata graph.

The Model owns every metadata element in an arena keyed by integer
handle, keeps a networkx MultiDiGraph of relationships (dependent ->
principal, keyed by foreign key handle) and records the provenance of
every fact it stores.

All mutations run inside ``Model.atomic()``. Each primitive change is
journaled with its inverse, so an exception anywhere inside the block
restores the model, provenance included, to its state on entry.
"""

import itertools
import logging
from abc import ABC
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Optional, Union

import networkx as nx

from entitymodel.errors import (
    ModelArgumentError,
    ModelInvariantError,
    ModelShapeError,
    format_error,
)
from entitymodel.metadata.elements import (
    EntityType,
    ForeignKey,
    Index,
    Key,
    MetadataElement,
    Navigation,
    Property,
    PropertyRef,
)
from entitymodel.metadata.types import (
    is_nullable_type,
    make_nullable,
    type_display_name,
    types_compatible,
)
from entitymodel.provenance import (
    ConfigurationSource,
    Facet,
    ProvenanceTracker,
    annotation_facet,
)
from entitymodel.shapes import EntityShape

logger = logging.getLogger(__name__)

EXPLICIT = ConfigurationSource.EXPLICIT
CONVENTION = ConfigurationSource.CONVENTION

MODEL_HANDLE = 0

# Property facets settable through set_property_facet, and the attribute each one drives
PROPERTY_FACETS = {
    Facet.SHADOW: "is_shadow",
    Facet.CONCURRENCY_TOKEN: "is_concurrency_token",
    Facet.VALUE_GENERATED_ON_ADD: "value_generated_on_add",
    Facet.STORE_COMPUTED: "is_store_computed",
    Facet.USE_STORE_DEFAULT: "use_store_default",
    Facet.MAX_LENGTH: "max_length",
}


class ModelChangeListener(ABC):
    """Receives notifications after elements are added to a model."""

    def on_entity_type_added(self, entity_type: EntityType) -> None:
        pass

    def on_property_added(self, prop: Property) -> None:
        pass


class Model:
    """
    Root container of entity types and their relationships.

    Entity type names are unique. Element handles are never reused, even
    after removal or rollback.
    """

    handle = MODEL_HANDLE

    def __init__(self):
        self._arena: dict[int, Any] = {}
        self._handles = itertools.count(MODEL_HANDLE + 1)
        self._entity_types: dict[str, int] = {}
        self.ignored_entity_types: set[str] = set()
        self.graph = nx.MultiDiGraph()
        self.provenance = ProvenanceTracker()
        self.annotations: dict[str, Any] = {}
        self._listeners: list[ModelChangeListener] = []
        self._journal: Optional[list[Callable[[], None]]] = None

    def __repr__(self) -> str:
        return f"Model(entity_types={list(self._entity_types)})"

    def __contains__(self, name: str) -> bool:
        return name in self._entity_types

    def __len__(self) -> int:
        return len(self._entity_types)

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: ModelChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ModelChangeListener) -> None:
        self._listeners.remove(listener)

    def _notify(self, event: str, element: MetadataElement) -> None:
        for listener in list(self._listeners):
            getattr(listener, event)(element)

    # =========================================================================
    # Atomic blocks and the undo journal
    # =========================================================================

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a block of mutations all-or-nothing.

        Blocks nest as savepoints: a failure inside an inner block undoes
        only the inner block's changes before the exception propagates.
        """
        outermost = self._journal is None
        if outermost:
            self._journal = []
        mark = len(self._journal)
        try:
            yield
        except Exception:
            self._rollback(mark)
            raise
        finally:
            if outermost:
                self._journal = None

    @property
    def in_atomic(self) -> bool:
        return self._journal is not None

    def _rollback(self, mark: int) -> None:
        undone = 0
        while len(self._journal) > mark:
            undo = self._journal.pop()
            undo()
            undone += 1
        if undone:
            logger.debug(f"Rolled back {undone} change(s)")

    def _on_undo(self, undo: Callable[[], None]) -> None:
        if self._journal is not None:
            self._journal.append(undo)

    def _set_attr(self, obj: Any, attr: str, value: Any) -> None:
        previous = getattr(obj, attr)
        setattr(obj, attr, value)
        self._on_undo(lambda: setattr(obj, attr, previous))

    def _list_append(self, items: list, item: Any) -> None:
        items.append(item)
        self._on_undo(lambda: items.remove(item))

    def _list_remove(self, items: list, item: Any) -> None:
        position = items.index(item)
        del items[position]
        self._on_undo(lambda: items.insert(position, item))

    def _set_add(self, items: set, item: Any) -> None:
        if item not in items:
            items.add(item)
            self._on_undo(lambda: items.discard(item))

    def _set_discard(self, items: set, item: Any) -> None:
        if item in items:
            items.discard(item)
            self._on_undo(lambda: items.add(item))

    def _dict_set(self, mapping: dict, key: Any, value: Any) -> None:
        missing = key not in mapping
        previous = mapping.get(key)
        mapping[key] = value

        def undo():
            if missing:
                mapping.pop(key, None)
            else:
                mapping[key] = previous

        self._on_undo(undo)

    def _dict_pop(self, mapping: dict, key: Any) -> None:
        previous = mapping.pop(key)
        self._on_undo(lambda: mapping.__setitem__(key, previous))

    def _tag(self, element: Any, facet: str, source: ConfigurationSource) -> None:
        """Record a re-asserted fact; provenance only ever upgrades."""
        handle = element.handle
        previous = self.provenance.get(handle, facet)
        self.provenance.record(handle, facet, source)
        self._on_undo(lambda: self.provenance.restore(handle, facet, previous))

    def _retag(self, element: Any, facet: str, source: ConfigurationSource) -> None:
        """Record the source of a fact whose value just changed."""
        handle = element.handle
        previous = self.provenance.get(handle, facet)
        self.provenance.overwrite(handle, facet, source)
        self._on_undo(lambda: self.provenance.restore(handle, facet, previous))

    def _register(self, element: MetadataElement) -> None:
        self._arena[element.handle] = element
        self._on_undo(lambda: self._arena.pop(element.handle, None))

    def _unregister(self, element: MetadataElement) -> None:
        handle = element.handle
        del self._arena[handle]
        dropped = self.provenance.forget(handle)

        def undo():
            self._arena[handle] = element
            self.provenance.restore_all(handle, dropped)

        self._on_undo(undo)

    def _graph_add_edge(self, fk: ForeignKey) -> None:
        edge = (fk.entity_type_handle, fk.principal_entity_type_handle, fk.handle)
        self.graph.add_edge(edge[0], edge[1], key=edge[2])
        self._on_undo(lambda: self.graph.remove_edge(*edge))

    def _graph_remove_edge(self, fk: ForeignKey) -> None:
        edge = (fk.entity_type_handle, fk.principal_entity_type_handle, fk.handle)
        self.graph.remove_edge(*edge)
        self._on_undo(lambda: self.graph.add_edge(edge[0], edge[1], key=edge[2]))

    # =========================================================================
    # Arena and provenance access
    # =========================================================================

    def element(self, handle: int) -> Any:
        """Resolve a handle to its element."""
        try:
            return self._arena[handle]
        except KeyError:
            raise ModelArgumentError(f"No metadata element with handle {handle}.") from None

    def has_element(self, handle: int) -> bool:
        return handle in self._arena

    def contains(self, element: MetadataElement) -> bool:
        """Check whether an element is still part of the model."""
        return self._arena.get(element.handle) is element

    def record_source(
        self,
        element: Any,
        facet: str,
        source: ConfigurationSource,
    ) -> None:
        """Re-assert a fact without changing it; provenance only upgrades."""
        with self.atomic():
            self._tag(element, facet, source)

    def can_configure(
        self,
        element: Any,
        facet: str,
        source: ConfigurationSource,
    ) -> bool:
        """Check whether ``source`` may change a facet of an element."""
        return self.provenance.can_set(element.handle, facet, source)

    # =========================================================================
    # Entity types
    # =========================================================================

    @property
    def entity_types(self) -> list[EntityType]:
        return [self._arena[h] for h in self._entity_types.values()]

    def find_entity_type(self, name: str) -> Optional[EntityType]:
        handle = self._entity_types.get(name)
        return None if handle is None else self._arena[handle]

    def get_entity_type(self, name: str) -> EntityType:
        entity_type = self.find_entity_type(name)
        if entity_type is None:
            raise ModelArgumentError(format_error("unknown_entity_type", name=name))
        return entity_type

    def add_entity_type(
        self,
        name: str,
        source: ConfigurationSource = EXPLICIT,
        shape: Any = None,
    ) -> EntityType:
        """Add an entity type. Fails if the name is already in the model."""
        name = _check_name(name, "Entity type name")
        if name in self._entity_types:
            raise ModelArgumentError(format_error("duplicate_entity_type", name=name))
        if name in self.ignored_entity_types and source != EXPLICIT:
            raise ModelInvariantError(format_error("ignored_entity_type", name=name))
        entity_shape = _coerce_shape(shape, name)

        with self.atomic():
            self._set_discard(self.ignored_entity_types, name)
            entity_type = EntityType(
                handle=next(self._handles),
                model=self,
                name=name,
                shape=entity_shape,
            )
            self._register(entity_type)
            self._dict_set(self._entity_types, name, entity_type.handle)
            self.graph.add_node(entity_type.handle, name=name)
            self._on_undo(lambda: self.graph.remove_node(entity_type.handle))
            self._tag(entity_type, Facet.EXISTS, source)
            logger.debug(f"Added entity type '{name}' ({source.value})")
            self._notify("on_entity_type_added", entity_type)
        return entity_type

    def get_or_add_entity_type(
        self,
        name: str,
        source: ConfigurationSource = EXPLICIT,
        shape: Any = None,
    ) -> EntityType:
        """Return the named entity type, adding it if needed; attaches a shape once."""
        existing = self.find_entity_type(name)
        if existing is None:
            return self.add_entity_type(name, source, shape)

        with self.atomic():
            self._tag(existing, Facet.EXISTS, source)
            if shape is not None and existing.shape is None:
                self._set_attr(existing, "shape", _coerce_shape(shape, name))
                # Members are known now, so discovery has something to work with
                self._notify("on_entity_type_added", existing)
        return existing

    def remove_entity_type(self, name: str) -> None:
        """
        Remove an entity type and everything that depends on it.

        Foreign keys in other types that reference this type's keys are
        removed together with their navigations.
        """
        entity_type = self.get_entity_type(name)

        with self.atomic():
            for fk in self.referencing_foreign_keys(entity_type):
                if self.contains(fk):
                    self._remove_foreign_key_element(fk)
            for fk in entity_type.foreign_keys:
                self._remove_foreign_key_element(fk)
            for navigation in entity_type.navigations:
                self._remove_navigation_element(navigation)
            for index in entity_type.indexes:
                self._remove_index_element(index)
            self._set_attr(entity_type, "primary_key_handle", None)
            for key in entity_type.keys:
                self._remove_key_element(key)
            for prop in entity_type.properties:
                self._remove_property_element(prop)

            self.graph.remove_node(entity_type.handle)
            self._on_undo(lambda: self.graph.add_node(entity_type.handle, name=name))
            self._dict_pop(self._entity_types, name)
            self._unregister(entity_type)
        logger.info(f"Removed entity type '{name}'")

    def ignore_entity_type(self, name: str, source: ConfigurationSource = EXPLICIT) -> bool:
        """Remove an entity type if present and keep conventions from adding it back."""
        existing = self.find_entity_type(name)
        if existing is not None and not self.can_configure(existing, Facet.EXISTS, source):
            return False

        with self.atomic():
            if existing is not None:
                self.remove_entity_type(name)
            self._set_add(self.ignored_entity_types, name)
        logger.debug(f"Ignoring entity type '{name}'")
        return True

    # =========================================================================
    # Properties
    # =========================================================================

    def get_property(self, entity_type: EntityType, name: str) -> Property:
        prop = entity_type.find_property(name)
        if prop is None:
            raise ModelArgumentError(
                format_error("unknown_property", name=name, entity=entity_type.name)
            )
        return prop

    def resolve_properties(
        self,
        entity_type: EntityType,
        properties: Union[PropertyRef, Iterable[PropertyRef]],
        what: str,
    ) -> list[Property]:
        """Resolve names or Property objects on ``entity_type``, in order."""
        if isinstance(properties, (str, Property)):
            properties = [properties]
        resolved = []
        for item in properties:
            if isinstance(item, Property):
                if item.entity_type_handle != entity_type.handle or not self.contains(item):
                    raise ModelArgumentError(
                        format_error("unknown_property", name=item.name, entity=entity_type.name)
                    )
                resolved.append(item)
            else:
                resolved.append(self.get_property(entity_type, _check_name(item, "Property name")))
        if not resolved:
            raise ModelArgumentError(format_error("empty_properties", what=what))
        if len({p.handle for p in resolved}) != len(resolved):
            raise ModelArgumentError(
                format_error("duplicate_properties", names=[p.name for p in resolved])
            )
        return resolved

    def add_property(
        self,
        entity_type: EntityType,
        name: str,
        clr_type: Any,
        source: ConfigurationSource = EXPLICIT,
        shadow: bool = False,
    ) -> Property:
        """
        Add a property, or return the existing one when the type matches.

        An explicit call may retype a property that a convention created,
        as long as every key and foreign key using it still lines up.
        """
        name = _check_name(name, "Property name")
        if clr_type is None:
            raise ModelArgumentError(f"A type is required for property '{name}'.")
        existing = entity_type.find_property(name)
        if existing is not None:
            return self._redeclare_property(existing, clr_type, source, shadow)
        if entity_type.find_navigation(name) is not None:
            raise ModelShapeError(
                format_error("member_is_navigation", name=name, entity=entity_type.name)
            )
        if entity_type.is_ignored(name) and source != EXPLICIT:
            raise ModelInvariantError(
                format_error("ignored_property", name=name, entity=entity_type.name)
            )

        with self.atomic():
            self._set_discard(entity_type.ignored_members, name)
            prop = Property(
                handle=next(self._handles),
                model=self,
                entity_type_handle=entity_type.handle,
                name=name,
                clr_type=clr_type,
                is_nullable=is_nullable_type(clr_type),
                is_shadow=shadow,
            )
            self._register(prop)
            self._list_append(entity_type.property_handles, prop.handle)
            self._tag(prop, Facet.EXISTS, source)
            self._tag(prop, Facet.CLR_TYPE, source)
            logger.debug(
                f"Added {'shadow ' if shadow else ''}property {prop} "
                f"of type {type_display_name(clr_type)} ({source.value})"
            )
            self._notify("on_property_added", prop)
        return prop

    def _redeclare_property(
        self,
        prop: Property,
        clr_type: Any,
        source: ConfigurationSource,
        shadow: bool,
    ) -> Property:
        upgrade = source == EXPLICIT and prop.source(Facet.CLR_TYPE) == CONVENTION
        if prop.clr_type != clr_type and not upgrade:
            raise ModelShapeError(
                format_error(
                    "property_type_conflict",
                    name=prop.name,
                    entity=prop.entity_type.name,
                    existing=type_display_name(prop.clr_type),
                    requested=type_display_name(clr_type),
                )
            )

        with self.atomic():
            if prop.clr_type != clr_type:
                self._check_retype(prop, clr_type)
                self._set_attr(prop, "clr_type", clr_type)
                keep_required = prop.is_key or any(fk.required_override for fk in prop.foreign_keys)
                self._set_attr(prop, "is_nullable", is_nullable_type(clr_type) and not keep_required)
                logger.debug(f"Retyped property {prop} to {type_display_name(clr_type)}")
            if upgrade and prop.is_shadow != shadow and self.can_configure(prop, Facet.SHADOW, source):
                self._set_attr(prop, "is_shadow", shadow)
            self._tag(prop, Facet.EXISTS, source)
            self._tag(prop, Facet.CLR_TYPE, source)
        return prop

    def _check_retype(self, prop: Property, clr_type: Any) -> None:
        for fk in prop.foreign_keys:
            position = fk.property_handles.index(prop.handle)
            key_property = fk.referenced_properties[position]
            if not types_compatible(clr_type, key_property.clr_type):
                raise _type_mismatch(prop.name, clr_type, key_property)
        for key in prop.keys:
            position = key.property_handles.index(prop.handle)
            for fk in self.referencing_foreign_keys(key):
                dependent_property = fk.properties[position]
                if not types_compatible(clr_type, dependent_property.clr_type):
                    raise _type_mismatch(dependent_property.name, dependent_property.clr_type, prop)

    def remove_property(self, prop: Property, source: ConfigurationSource = EXPLICIT) -> bool:
        """Remove a property that no key, foreign key or index uses."""
        if not self.can_configure(prop, Facet.EXISTS, source):
            return False
        for usage, users in (("key", prop.keys), ("foreign key", prop.foreign_keys), ("index", prop.indexes)):
            if users:
                raise ModelShapeError(
                    format_error("property_in_use", name=prop.name, entity=prop.entity_type.name, usage=usage)
                )
        with self.atomic():
            self._remove_property_element(prop)
        logger.debug(f"Removed property {prop.name} from '{prop.entity_type.name}'")
        return True

    def ignore_property(
        self,
        entity_type: EntityType,
        name: str,
        source: ConfigurationSource = EXPLICIT,
    ) -> bool:
        """Remove a property or navigation and keep conventions from adding it back."""
        name = _check_name(name, "Property name")
        prop = entity_type.find_property(name)
        navigation = entity_type.find_navigation(name)
        for element in (prop, navigation):
            if element is not None and not self.can_configure(element, Facet.EXISTS, source):
                return False

        with self.atomic():
            if prop is not None:
                self.remove_property(prop, source)
            if navigation is not None:
                self._remove_navigation_element(navigation)
            self._set_add(entity_type.ignored_members, name)
        logger.debug(f"Ignoring member '{name}' on '{entity_type.name}'")
        return True

    def set_property_nullable(
        self,
        prop: Property,
        nullable: bool,
        source: ConfigurationSource = EXPLICIT,
    ) -> bool:
        """Change nullability; non-shadow properties need an Optional type to become nullable."""
        if prop.is_nullable == nullable:
            with self.atomic():
                self._tag(prop, Facet.NULLABLE, source)
            return True
        if not self.can_configure(prop, Facet.NULLABLE, source):
            return False
        if nullable:
            _check_can_be_nullable(prop)
        with self.atomic():
            self._set_nullable(prop, nullable, source)
        return True

    def _set_nullable(self, prop: Property, nullable: bool, source: ConfigurationSource) -> None:
        if prop.is_nullable == nullable:
            self._tag(prop, Facet.NULLABLE, source)
            return
        self._set_attr(prop, "is_nullable", nullable)
        if nullable and prop.is_shadow:
            self._set_attr(prop, "clr_type", make_nullable(prop.clr_type))
        self._retag(prop, Facet.NULLABLE, source)
        logger.debug(f"Property {prop} is now {'nullable' if nullable else 'required'}")

    def set_property_facet(
        self,
        prop: Property,
        facet: Facet,
        value: Any,
        source: ConfigurationSource = EXPLICIT,
    ) -> bool:
        """Set one of the store-related property facets."""
        facet = Facet(facet)
        if facet not in PROPERTY_FACETS:
            raise ModelArgumentError(f"'{facet.value}' is not a configurable property facet.")
        if facet == Facet.MAX_LENGTH:
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value <= 0):
                raise ModelArgumentError(f"max_length must be a positive integer, got {value!r}.")
        else:
            value = bool(value)
        attr = PROPERTY_FACETS[facet]
        if getattr(prop, attr) == value:
            with self.atomic():
                self._tag(prop, facet, source)
            return True
        if not self.can_configure(prop, facet, source):
            return False
        with self.atomic():
            self._set_attr(prop, attr, value)
            self._retag(prop, facet, source)
        return True

    def _remove_property_element(self, prop: Property) -> None:
        self._list_remove(prop.entity_type.property_handles, prop.handle)
        self._unregister(prop)

    def _remove_if_orphaned(self, prop: Property) -> None:
        """Drop a convention-created shadow property nothing uses anymore."""
        if not self.contains(prop):
            return
        if not prop.is_shadow or prop.source(Facet.EXISTS) != CONVENTION:
            return
        if prop.keys or prop.foreign_keys or prop.indexes:
            return
        self._remove_property_element(prop)
        logger.debug(f"Removed unused shadow property {prop.name}")

    # =========================================================================
    # Keys
    # =========================================================================

    def add_key(
        self,
        entity_type: EntityType,
        properties: Iterable[PropertyRef],
        source: ConfigurationSource = EXPLICIT,
        force: bool = False,
    ) -> Key:
        """
        Add a key, or return the identical existing key.

        Nullable properties are rejected unless ``force`` is set, in which
        case they are made non-nullable.
        """
        props = self.resolve_properties(entity_type, properties, "key")
        handles = tuple(p.handle for p in props)
        for key in entity_type.keys:
            if key.property_handles == handles:
                with self.atomic():
                    self._tag(key, Facet.EXISTS, source)
                return key
        if not force:
            for prop in props:
                if prop.is_nullable:
                    raise ModelInvariantError(
                        format_error("key_property_nullable", name=prop.name, entity=entity_type.name)
                    )

        with self.atomic():
            for prop in props:
                if prop.is_nullable:
                    self._set_nullable(prop, False, source)
            key = Key(
                handle=next(self._handles),
                model=self,
                entity_type_handle=entity_type.handle,
                property_handles=handles,
            )
            self._register(key)
            self._list_append(entity_type.key_handles, key.handle)
            self._tag(key, Facet.EXISTS, source)
            logger.debug(f"Added key {key} ({source.value})")
        return key

    def set_primary_key(
        self,
        entity_type: EntityType,
        properties: Iterable[PropertyRef],
        source: ConfigurationSource = EXPLICIT,
        force: bool = False,
    ) -> Optional[Key]:
        """
        Make the given properties the primary key.

        Returns None when a convention tries to replace an explicit primary
        key. Foreign keys that referenced the old primary key by convention
        follow it when their properties still line up; the old key is
        dropped once nothing references it.
        """
        props = self.resolve_properties(entity_type, properties, "key")
        current = entity_type.primary_key
        if current is not None and current.property_handles == tuple(p.handle for p in props):
            with self.atomic():
                self._tag(current, Facet.EXISTS, source)
                self._tag(entity_type, Facet.PRIMARY_KEY, source)
            return current
        if not self.can_configure(entity_type, Facet.PRIMARY_KEY, source):
            logger.debug(f"Primary key of '{entity_type.name}' is explicit; {source.value} change skipped")
            return None

        with self.atomic():
            key = self.add_key(entity_type, props, source, force=force)
            self._set_attr(entity_type, "primary_key_handle", key.handle)
            self._retag(entity_type, Facet.PRIMARY_KEY, source)
            if current is not None:
                for fk in self.referencing_foreign_keys(current):
                    if fk.source(Facet.REFERENCED_KEY) == CONVENTION and _shape_matches(fk.properties, key):
                        self.set_foreign_key_properties(fk, fk.properties, key, CONVENTION)
                if not self.referencing_foreign_keys(current) and self.can_configure(current, Facet.EXISTS, source):
                    self._remove_key_element(current)
            logger.info(f"Primary key of '{entity_type.name}' set to {key} ({source.value})")
        return key

    def remove_key(self, key: Key, source: ConfigurationSource = EXPLICIT) -> bool:
        """Remove a key that no foreign key references."""
        referencing = self.referencing_foreign_keys(key)
        if referencing:
            raise ModelShapeError(
                format_error("key_in_use", key=key, entity=key.entity_type.name, count=len(referencing))
            )
        if not self.can_configure(key, Facet.EXISTS, source):
            return False
        with self.atomic():
            if key.is_primary_key:
                self._set_attr(key.entity_type, "primary_key_handle", None)
            self._remove_key_element(key)
        return True

    def _remove_key_element(self, key: Key) -> None:
        self._list_remove(key.entity_type.key_handles, key.handle)
        self._unregister(key)

    # =========================================================================
    # Foreign keys
    # =========================================================================

    def add_foreign_key(
        self,
        dependent: EntityType,
        properties: Iterable[PropertyRef],
        principal: EntityType,
        referenced_key: Optional[Key] = None,
        source: ConfigurationSource = EXPLICIT,
        unique: bool = False,
    ) -> ForeignKey:
        """Add a foreign key from ``dependent`` to a key of ``principal`` (its primary key by default)."""
        props = self.resolve_properties(dependent, properties, "foreign key")
        key = _principal_key(principal, referenced_key)
        _check_foreign_key_shape(props, key)

        with self.atomic():
            fk = ForeignKey(
                handle=next(self._handles),
                model=self,
                entity_type_handle=dependent.handle,
                property_handles=tuple(p.handle for p in props),
                principal_entity_type_handle=principal.handle,
                referenced_key_handle=key.handle,
                is_unique=bool(unique),
            )
            self._register(fk)
            self._list_append(dependent.foreign_key_handles, fk.handle)
            self._graph_add_edge(fk)
            for facet in (Facet.EXISTS, Facet.PROPERTIES, Facet.REFERENCED_KEY, Facet.UNIQUE):
                self._tag(fk, facet, source)
            logger.debug(f"Added foreign key {fk} ({source.value})")
        return fk

    def set_foreign_key_properties(
        self,
        fk: ForeignKey,
        properties: Iterable[PropertyRef],
        referenced_key: Optional[Key] = None,
        source: ConfigurationSource = EXPLICIT,
        key_source: Optional[ConfigurationSource] = None,
    ) -> bool:
        """
        Rebind a foreign key to other dependent properties and/or another key.

        ``key_source`` tags the referenced key when it differs from the
        source of the property list. Convention shadow properties that are
        left unused are removed.
        """
        key_source = key_source or source
        props = self.resolve_properties(fk.entity_type, properties, "foreign key")
        key = _principal_key(fk.principal_entity_type, referenced_key or fk.referenced_key)
        handles = tuple(p.handle for p in props)
        properties_changed = handles != fk.property_handles
        key_changed = key.handle != fk.referenced_key_handle
        if properties_changed and not self.can_configure(fk, Facet.PROPERTIES, source):
            return False
        if key_changed and not self.can_configure(fk, Facet.REFERENCED_KEY, key_source):
            return False
        _check_foreign_key_shape(props, key)

        with self.atomic():
            previous = fk.properties
            if properties_changed:
                self._set_attr(fk, "property_handles", handles)
                self._retag(fk, Facet.PROPERTIES, source)
            else:
                self._tag(fk, Facet.PROPERTIES, source)
            if key_changed:
                self._set_attr(fk, "referenced_key_handle", key.handle)
                self._retag(fk, Facet.REFERENCED_KEY, key_source)
            if fk.required_override:
                for prop in props:
                    self._set_nullable(prop, False, source)
            for prop in previous:
                if prop.handle not in handles:
                    self._remove_if_orphaned(prop)
            if properties_changed or key_changed:
                logger.debug(f"Rebound foreign key to {fk} ({source.value})")
        return True

    def reorient_foreign_key(
        self,
        fk: ForeignKey,
        dependent: EntityType,
        properties: Iterable[PropertyRef],
        principal: EntityType,
        referenced_key: Optional[Key] = None,
        source: ConfigurationSource = EXPLICIT,
        key_source: Optional[ConfigurationSource] = None,
    ) -> ForeignKey:
        """
        Swap the principal and dependent ends of a foreign key in place.

        The handle is kept; navigations stay on their owners and change
        direction.
        """
        if not fk.connects(dependent, principal):
            raise ModelArgumentError(format_error("not_in_relationship", name=dependent.name))
        props = self.resolve_properties(dependent, properties, "foreign key")
        key = _principal_key(principal, referenced_key)
        _check_foreign_key_shape(props, key)

        with self.atomic():
            previous = fk.properties
            navigations = fk.navigations
            self._graph_remove_edge(fk)
            self._list_remove(fk.entity_type.foreign_key_handles, fk.handle)
            self._set_attr(fk, "entity_type_handle", dependent.handle)
            self._set_attr(fk, "principal_entity_type_handle", principal.handle)
            self._set_attr(fk, "property_handles", tuple(p.handle for p in props))
            self._set_attr(fk, "referenced_key_handle", key.handle)
            self._list_append(dependent.foreign_key_handles, fk.handle)
            self._graph_add_edge(fk)
            for navigation in navigations:
                self._set_attr(navigation, "points_to_principal", not navigation.points_to_principal)
            self._retag(fk, Facet.PROPERTIES, source)
            self._retag(fk, Facet.REFERENCED_KEY, key_source or source)
            for prop in previous:
                self._remove_if_orphaned(prop)
            logger.info(f"Reoriented foreign key to {fk}")
        return fk

    def remove_foreign_key(self, fk: ForeignKey, source: ConfigurationSource = EXPLICIT) -> bool:
        """Remove a foreign key together with its navigations."""
        if not self.can_configure(fk, Facet.EXISTS, source):
            return False
        with self.atomic():
            self._remove_foreign_key_element(fk)
        return True

    def _remove_foreign_key_element(self, fk: ForeignKey) -> None:
        for navigation in fk.navigations:
            self._remove_navigation_element(navigation)
        previous = fk.properties
        self._list_remove(fk.entity_type.foreign_key_handles, fk.handle)
        self._graph_remove_edge(fk)
        self._unregister(fk)
        for prop in previous:
            self._remove_if_orphaned(prop)
        logger.debug(f"Removed foreign key {fk.handle}")

    def set_foreign_key_unique(
        self,
        fk: ForeignKey,
        unique: bool,
        source: ConfigurationSource = EXPLICIT,
    ) -> bool:
        if fk.is_unique == unique:
            with self.atomic():
                self._tag(fk, Facet.UNIQUE, source)
            return True
        if not self.can_configure(fk, Facet.UNIQUE, source):
            return False
        with self.atomic():
            self._set_attr(fk, "is_unique", bool(unique))
            self._retag(fk, Facet.UNIQUE, source)
        logger.debug(f"Foreign key {fk} is now {'unique' if unique else 'non-unique'}")
        return True

    def set_substituted_property_names(
        self, fk: ForeignKey, names: Optional[tuple[str, ...]]
    ) -> None:
        """Remember explicit names that were replaced because another foreign key uses them."""
        if fk.substituted_property_names == names:
            return
        with self.atomic():
            self._set_attr(fk, "substituted_property_names", names)

    def set_foreign_key_required(
        self,
        fk: ForeignKey,
        required: bool,
        source: ConfigurationSource = EXPLICIT,
    ) -> bool:
        """
        Make a relationship required or optional.

        Required makes every foreign key property non-nullable. Optional
        makes them nullable and fails for the first property whose
        declared type cannot hold None.
        """
        if not self.can_configure(fk, Facet.REQUIRED, source):
            return False
        props = fk.properties
        for prop in props:
            if not self.can_configure(prop, Facet.NULLABLE, source) and prop.is_nullable == required:
                return False
        if not required:
            for prop in props:
                if not prop.is_nullable:
                    _check_can_be_nullable(prop)

        with self.atomic():
            for prop in props:
                self._set_nullable(prop, not required, source)
            self._set_attr(fk, "required_override", bool(required))
            self._retag(fk, Facet.REQUIRED, source)
        logger.debug(f"Foreign key {fk} is now {'required' if required else 'optional'}")
        return True

    # =========================================================================
    # Navigations
    # =========================================================================

    def add_navigation(
        self,
        entity_type: EntityType,
        name: str,
        foreign_key: ForeignKey,
        points_to_principal: bool,
        source: ConfigurationSource = EXPLICIT,
    ) -> Navigation:
        """Attach a navigation to one end of a foreign key."""
        name = _check_name(name, "Navigation name")
        owner = foreign_key.entity_type if points_to_principal else foreign_key.principal_entity_type
        if owner is not entity_type:
            raise ModelShapeError(
                format_error("navigation_wrong_side", name=name, entity=entity_type.name, foreign_key=foreign_key)
            )
        existing = entity_type.find_navigation(name)
        if existing is not None:
            if existing.foreign_key is foreign_key and existing.points_to_principal == points_to_principal:
                with self.atomic():
                    self._tag(existing, Facet.EXISTS, source)
                return existing
            raise ModelShapeError(format_error("navigation_in_use", name=name, entity=entity_type.name))
        if entity_type.find_property(name) is not None:
            raise ModelShapeError(format_error("member_is_property", name=name, entity=entity_type.name))
        slot = foreign_key.navigation_to_principal if points_to_principal else foreign_key.navigation_to_dependent
        if slot is not None:
            raise ModelShapeError(
                format_error(
                    "navigation_slot_taken", foreign_key=foreign_key, existing=slot.name, entity=entity_type.name
                )
            )
        if entity_type.is_ignored(name) and source != EXPLICIT:
            raise ModelInvariantError(format_error("ignored_property", name=name, entity=entity_type.name))

        with self.atomic():
            self._set_discard(entity_type.ignored_members, name)
            navigation = Navigation(
                handle=next(self._handles),
                model=self,
                entity_type_handle=entity_type.handle,
                name=name,
                foreign_key_handle=foreign_key.handle,
                points_to_principal=points_to_principal,
            )
            self._register(navigation)
            self._list_append(entity_type.navigation_handles, navigation.handle)
            self._tag(navigation, Facet.EXISTS, source)
            logger.debug(f"Added navigation {navigation} ({source.value})")
        return navigation

    def remove_navigation(self, navigation: Navigation, source: ConfigurationSource = EXPLICIT) -> bool:
        if not self.can_configure(navigation, Facet.EXISTS, source):
            return False
        with self.atomic():
            self._remove_navigation_element(navigation)
        return True

    def _remove_navigation_element(self, navigation: Navigation) -> None:
        self._list_remove(navigation.entity_type.navigation_handles, navigation.handle)
        self._unregister(navigation)
        logger.debug(f"Removed navigation {navigation.name}")

    # =========================================================================
    # Indexes
    # =========================================================================

    def add_index(
        self,
        entity_type: EntityType,
        properties: Iterable[PropertyRef],
        source: ConfigurationSource = EXPLICIT,
        unique: bool = False,
    ) -> Index:
        props = self.resolve_properties(entity_type, properties, "index")
        handles = tuple(p.handle for p in props)
        for index in entity_type.indexes:
            if index.property_handles == handles:
                with self.atomic():
                    self._tag(index, Facet.EXISTS, source)
                    if index.is_unique != unique:
                        self.set_index_unique(index, unique, source)
                return index

        with self.atomic():
            index = Index(
                handle=next(self._handles),
                model=self,
                entity_type_handle=entity_type.handle,
                property_handles=handles,
                is_unique=bool(unique),
            )
            self._register(index)
            self._list_append(entity_type.index_handles, index.handle)
            self._tag(index, Facet.EXISTS, source)
            self._tag(index, Facet.UNIQUE, source)
        return index

    def set_index_unique(self, index: Index, unique: bool, source: ConfigurationSource = EXPLICIT) -> bool:
        if index.is_unique == unique:
            return True
        if not self.can_configure(index, Facet.UNIQUE, source):
            return False
        with self.atomic():
            self._set_attr(index, "is_unique", bool(unique))
            self._retag(index, Facet.UNIQUE, source)
        return True

    def _remove_index_element(self, index: Index) -> None:
        self._list_remove(index.entity_type.index_handles, index.handle)
        self._unregister(index)

    # =========================================================================
    # Annotations
    # =========================================================================

    def set_annotation(
        self,
        element: Any,
        key: str,
        value: Any,
        source: ConfigurationSource = EXPLICIT,
    ) -> bool:
        """Set an annotation on the model or any of its elements."""
        key = _check_name(key, "Annotation key")
        facet = annotation_facet(key)
        if not self.can_configure(element, facet, source):
            return False
        with self.atomic():
            self._dict_set(element.annotations, key, value)
            self._retag(element, facet, source)
        return True

    # =========================================================================
    # Relationship queries
    # =========================================================================

    def referencing_foreign_keys(self, target: Union[EntityType, Key]) -> list[ForeignKey]:
        """Foreign keys whose principal is the entity type, or which reference the key."""
        if isinstance(target, Key):
            return [
                fk for fk in self._incoming(target.entity_type_handle)
                if fk.referenced_key_handle == target.handle
            ]
        return self._incoming(target.handle)

    def _incoming(self, node: int) -> list[ForeignKey]:
        return [self._arena[k] for _, _, k in self.graph.in_edges(node, keys=True)]

    def foreign_keys_between(self, first: EntityType, second: EntityType) -> list[ForeignKey]:
        """Foreign keys linking two entity types in either direction."""
        pairs = [(first.handle, second.handle)]
        if first is not second:
            pairs.append((second.handle, first.handle))
        found = []
        for dependent, principal in pairs:
            if self.graph.has_edge(dependent, principal):
                found.extend(self._arena[k] for k in self.graph[dependent][principal])
        return found

    def dependency_order(self) -> list[EntityType]:
        """Entity types ordered principals first; types on a cycle stay together."""
        principal_first = nx.DiGraph(self.graph.reverse(copy=False))
        condensed = nx.condensation(principal_first)
        ordered = []
        for component in nx.topological_sort(condensed):
            ordered.extend(sorted(condensed.nodes[component]["members"]))
        return [self._arena[h] for h in ordered]


def _check_name(name: Any, what: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ModelArgumentError(format_error("empty_name", what=what))
    return name


def _coerce_shape(shape: Any, name: str) -> Optional[EntityShape]:
    try:
        return EntityShape.coerce(shape, name)
    except TypeError as e:
        raise ModelArgumentError(str(e)) from e


def _principal_key(principal: EntityType, referenced_key: Optional[Key]) -> Key:
    if referenced_key is None:
        if principal.primary_key is None:
            raise ModelShapeError(format_error("no_primary_key", name=principal.name))
        return principal.primary_key
    if referenced_key.entity_type_handle != principal.handle:
        raise ModelShapeError(format_error("key_not_on_principal", key=referenced_key, entity=principal.name))
    return referenced_key


def _shape_matches(props: list[Property], key: Key) -> bool:
    key_props = key.properties
    return len(props) == len(key_props) and all(
        types_compatible(p.clr_type, k.clr_type) for p, k in zip(props, key_props)
    )


def _check_foreign_key_shape(props: list[Property], key: Key) -> None:
    key_props = key.properties
    if len(props) != len(key_props):
        raise ModelShapeError(
            format_error(
                "foreign_key_count_mismatch",
                properties=[p.name for p in props],
                count=len(key_props),
                key=key,
            )
        )
    for prop, key_property in zip(props, key_props):
        if not types_compatible(prop.clr_type, key_property.clr_type):
            raise _type_mismatch(prop.name, prop.clr_type, key_property)


def _type_mismatch(name: str, clr_type: Any, key_property: Property) -> ModelShapeError:
    return ModelShapeError(
        format_error(
            "foreign_key_type_mismatch",
            name=name,
            type=type_display_name(clr_type),
            key_property=key_property.name,
            key_type=type_display_name(key_property.clr_type),
        )
    )


def _check_can_be_nullable(prop: Property) -> None:
    if prop.is_key:
        raise ModelInvariantError(
            format_error("key_property_nullable", name=prop.name, entity=prop.entity_type.name)
        )
    if not prop.is_shadow and not is_nullable_type(prop.clr_type):
        raise ModelInvariantError(
            format_error(
                "cannot_be_nullable",
                property=prop.name,
                entity=prop.entity_type.name,
                type=type_display_name(prop.clr_type),
            )
        )
