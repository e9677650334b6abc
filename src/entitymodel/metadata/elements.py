"""
Metadata elements stored in the model arena.

Elements reference each other by integer handle and resolve handles
through their owning model, so cycles and self-references are plain
edges. All mutation goes through the Model; the convenience methods on
EntityType delegate to it.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence, Union

from entitymodel.provenance import ConfigurationSource, Facet

if TYPE_CHECKING:
    from entitymodel.metadata.model import Model
    from entitymodel.shapes import EntityShape

PropertyRef = Union[str, "Property"]


class MetadataElement:
    """Shared behaviour for arena elements."""

    handle: int
    model: "Model"
    annotations: dict[str, Any]

    def source(self, facet: str = Facet.EXISTS) -> Optional[ConfigurationSource]:
        """Provenance of one facet of this element."""
        return self.model.provenance.get(self.handle, facet)

    def set_annotation(
        self,
        key: str,
        value: Any,
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
    ) -> bool:
        return self.model.set_annotation(self, key, value, source)

    def get_annotation(self, key: str, default: Any = None) -> Any:
        return self.annotations.get(key, default)


@dataclass(eq=False)
class Property(MetadataElement):
    """A scalar member of an entity type."""

    handle: int
    model: "Model" = field(repr=False)
    entity_type_handle: int
    name: str
    clr_type: Any
    is_nullable: bool
    is_shadow: bool = False
    is_concurrency_token: bool = False
    value_generated_on_add: bool = False
    is_store_computed: bool = False
    use_store_default: bool = False
    max_length: Optional[int] = None
    annotations: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def entity_type(self) -> "EntityType":
        return self.model.element(self.entity_type_handle)

    @property
    def keys(self) -> list["Key"]:
        return [k for k in self.entity_type.keys if self.handle in k.property_handles]

    @property
    def foreign_keys(self) -> list["ForeignKey"]:
        return [
            fk for fk in self.entity_type.foreign_keys if self.handle in fk.property_handles
        ]

    @property
    def indexes(self) -> list["Index"]:
        return [i for i in self.entity_type.indexes if self.handle in i.property_handles]

    @property
    def is_key(self) -> bool:
        return bool(self.keys)

    @property
    def is_foreign_key(self) -> bool:
        return bool(self.foreign_keys)

    @property
    def is_primary_key(self) -> bool:
        primary_key = self.entity_type.primary_key
        return primary_key is not None and self.handle in primary_key.property_handles

    def __str__(self) -> str:
        return f"{self.entity_type.name}.{self.name}"


class _PropertyListMixin:
    """Elements holding an ordered tuple of property handles."""

    property_handles: tuple[int, ...]
    model: "Model"

    @property
    def properties(self) -> list[Property]:
        return [self.model.element(h) for h in self.property_handles]

    @property
    def property_names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.properties)


@dataclass(eq=False)
class Key(_PropertyListMixin, MetadataElement):
    """An ordered set of properties that uniquely identifies an instance."""

    handle: int
    model: "Model" = field(repr=False)
    entity_type_handle: int
    property_handles: tuple[int, ...]
    annotations: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def entity_type(self) -> "EntityType":
        return self.model.element(self.entity_type_handle)

    @property
    def is_primary_key(self) -> bool:
        return self.entity_type.primary_key_handle == self.handle

    @property
    def referencing_foreign_keys(self) -> list["ForeignKey"]:
        return self.model.referencing_foreign_keys(self)

    def __str__(self) -> str:
        return f"{self.entity_type.name}{{{', '.join(self.property_names)}}}"


@dataclass(eq=False)
class Index(_PropertyListMixin, MetadataElement):
    """An index over properties. Not consulted by relationship resolution."""

    handle: int
    model: "Model" = field(repr=False)
    entity_type_handle: int
    property_handles: tuple[int, ...]
    is_unique: bool = False
    annotations: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def entity_type(self) -> "EntityType":
        return self.model.element(self.entity_type_handle)


@dataclass(eq=False)
class ForeignKey(_PropertyListMixin, MetadataElement):
    """
    Dependent properties referencing a key on the principal.

    ``entity_type`` is the dependent. ``is_required`` follows the
    nullability of the foreign key properties unless set explicitly.
    """

    handle: int
    model: "Model" = field(repr=False)
    entity_type_handle: int
    property_handles: tuple[int, ...]
    principal_entity_type_handle: int
    referenced_key_handle: int
    is_unique: bool = False
    required_override: Optional[bool] = None
    substituted_property_names: Optional[tuple[str, ...]] = None
    annotations: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def entity_type(self) -> "EntityType":
        return self.model.element(self.entity_type_handle)

    @property
    def dependent_entity_type(self) -> "EntityType":
        return self.entity_type

    @property
    def principal_entity_type(self) -> "EntityType":
        return self.model.element(self.principal_entity_type_handle)

    @property
    def referenced_key(self) -> Key:
        return self.model.element(self.referenced_key_handle)

    @property
    def referenced_properties(self) -> list[Property]:
        return self.referenced_key.properties

    @property
    def is_required(self) -> bool:
        if self.required_override is not None:
            return self.required_override
        return all(not p.is_nullable for p in self.properties)

    @property
    def is_self_referencing(self) -> bool:
        return self.entity_type_handle == self.principal_entity_type_handle

    @property
    def navigations(self) -> list["Navigation"]:
        owners = {self.entity_type_handle, self.principal_entity_type_handle}
        found = []
        for owner in owners:
            found.extend(
                n for n in self.model.element(owner).navigations
                if n.foreign_key_handle == self.handle
            )
        return found

    @property
    def navigation_to_principal(self) -> Optional["Navigation"]:
        for navigation in self.navigations:
            if navigation.points_to_principal:
                return navigation
        return None

    @property
    def navigation_to_dependent(self) -> Optional["Navigation"]:
        for navigation in self.navigations:
            if not navigation.points_to_principal:
                return navigation
        return None

    def connects(self, first: "EntityType", second: "EntityType") -> bool:
        """Check whether this foreign key links the two types, in either direction."""
        ends = {self.entity_type_handle, self.principal_entity_type_handle}
        return ends == {first.handle, second.handle}

    def __str__(self) -> str:
        return (
            f"{self.entity_type.name}({', '.join(self.property_names)}) -> "
            f"{self.principal_entity_type.name}({', '.join(self.referenced_key.property_names)})"
        )


@dataclass(eq=False)
class Navigation(MetadataElement):
    """A named link from one end of a foreign key to the other."""

    handle: int
    model: "Model" = field(repr=False)
    entity_type_handle: int
    name: str
    foreign_key_handle: int
    points_to_principal: bool
    annotations: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def entity_type(self) -> "EntityType":
        return self.model.element(self.entity_type_handle)

    @property
    def foreign_key(self) -> ForeignKey:
        return self.model.element(self.foreign_key_handle)

    @property
    def target_entity_type(self) -> "EntityType":
        fk = self.foreign_key
        return fk.principal_entity_type if self.points_to_principal else fk.entity_type

    @property
    def is_collection(self) -> bool:
        return not self.points_to_principal and not self.foreign_key.is_unique

    @property
    def inverse(self) -> Optional["Navigation"]:
        fk = self.foreign_key
        if self.points_to_principal:
            return fk.navigation_to_dependent
        return fk.navigation_to_principal

    def __str__(self) -> str:
        return f"{self.entity_type.name}.{self.name}"


@dataclass(eq=False)
class EntityType(MetadataElement):
    """A record type in the model."""

    handle: int
    model: "Model" = field(repr=False)
    name: str
    shape: Optional["EntityShape"] = field(default=None, repr=False)
    property_handles: list[int] = field(default_factory=list, repr=False)
    key_handles: list[int] = field(default_factory=list, repr=False)
    primary_key_handle: Optional[int] = None
    foreign_key_handles: list[int] = field(default_factory=list, repr=False)
    navigation_handles: list[int] = field(default_factory=list, repr=False)
    index_handles: list[int] = field(default_factory=list, repr=False)
    ignored_members: set[str] = field(default_factory=set, repr=False)
    annotations: dict[str, Any] = field(default_factory=dict, repr=False)

    # Collections

    @property
    def properties(self) -> list[Property]:
        return [self.model.element(h) for h in self.property_handles]

    @property
    def keys(self) -> list[Key]:
        return [self.model.element(h) for h in self.key_handles]

    @property
    def primary_key(self) -> Optional[Key]:
        if self.primary_key_handle is None:
            return None
        return self.model.element(self.primary_key_handle)

    @property
    def foreign_keys(self) -> list[ForeignKey]:
        return [self.model.element(h) for h in self.foreign_key_handles]

    @property
    def navigations(self) -> list[Navigation]:
        return [self.model.element(h) for h in self.navigation_handles]

    @property
    def indexes(self) -> list[Index]:
        return [self.model.element(h) for h in self.index_handles]

    @property
    def referencing_foreign_keys(self) -> list[ForeignKey]:
        return self.model.referencing_foreign_keys(self)

    # Lookups

    def find_property(self, name: str) -> Optional[Property]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def get_property(self, name: str) -> Property:
        return self.model.get_property(self, name)

    def find_navigation(self, name: str) -> Optional[Navigation]:
        for navigation in self.navigations:
            if navigation.name == name:
                return navigation
        return None

    def find_key(self, properties: Sequence[PropertyRef]) -> Optional[Key]:
        handles = tuple(p.handle for p in self.model.resolve_properties(self, properties, "key"))
        for key in self.keys:
            if key.property_handles == handles:
                return key
        return None

    def find_foreign_keys(self, principal: "EntityType") -> list[ForeignKey]:
        return [fk for fk in self.foreign_keys if fk.principal_entity_type is principal]

    def is_ignored(self, name: str) -> bool:
        return name in self.ignored_members

    # Mutation (delegates to the model)

    def add_property(
        self,
        name: str,
        clr_type: Any,
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
        shadow: bool = False,
    ) -> Property:
        return self.model.add_property(self, name, clr_type, source, shadow=shadow)

    def ignore_property(
        self,
        name: str,
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
    ) -> bool:
        return self.model.ignore_property(self, name, source)

    def add_key(
        self,
        properties: Iterable[PropertyRef],
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
        force: bool = False,
    ) -> Key:
        return self.model.add_key(self, properties, source, force=force)

    def set_primary_key(
        self,
        properties: Iterable[PropertyRef],
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
        force: bool = False,
    ) -> Optional[Key]:
        return self.model.set_primary_key(self, properties, source, force=force)

    def add_index(
        self,
        properties: Iterable[PropertyRef],
        unique: bool = False,
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
    ) -> Index:
        return self.model.add_index(self, properties, source, unique=unique)

    def add_navigation(
        self,
        name: str,
        foreign_key: ForeignKey,
        points_to_principal: bool,
        source: ConfigurationSource = ConfigurationSource.EXPLICIT,
    ) -> Navigation:
        return self.model.add_navigation(self, name, foreign_key, points_to_principal, source)

    def __str__(self) -> str:
        return self.name
