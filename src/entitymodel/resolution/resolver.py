"""
Relationship resolution pipeline.

Turns a partial relationship statement into exactly one foreign key with
its navigations, reusing what the model already holds where possible.
"""

import logging
from typing import Any, Optional, Sequence, Union

from pydantic import ValidationError

from entitymodel.config import Settings, settings as default_settings
from entitymodel.errors import ModelArgumentError, ModelShapeError, format_error
from entitymodel.metadata.elements import EntityType, ForeignKey, Key, Property
from entitymodel.metadata.model import Model
from entitymodel.metadata.types import make_nullable, types_compatible, unwrap_nullable
from entitymodel.provenance import ConfigurationSource, Facet
from entitymodel.resolution.candidates import (
    claimed_property_lists,
    find_foreign_key,
    match_navigations,
)
from entitymodel.resolution.naming import (
    find_foreign_key_properties,
    synthesized_base_names,
    unique_member_name,
)
from entitymodel.resolution.request import RelateRequest

logger = logging.getLogger(__name__)

EXPLICIT = ConfigurationSource.EXPLICIT
CONVENTION = ConfigurationSource.CONVENTION

TypeRef = Union[str, EntityType]


class ConventionBlocked(Exception):
    """A convention request would have to overwrite an explicit fact."""

    pass


class RelationshipResolver:
    """
    Main relationship resolution pipeline.

    Flow:
    1. Navigation match: adopt the foreign key behind a requested navigation
    2. Foreign key match: reuse an eligible foreign key of the same uniqueness
    3. Conflict split: eligible foreign keys of the other uniqueness stay put
    4. Reconciliation: settle the referenced key and foreign key properties
    5. Orientation: adopt or flip the orientation of a reused foreign key
    6. Navigations: attach the requested navigation names
    7. Requiredness: follows foreign key nullability unless set explicitly

    Every request runs inside one atomic block. A convention request that
    runs into an explicit fact is rolled back and returns None.
    """

    def __init__(self, model: Model, settings: Optional[Settings] = None):
        self.model = model
        self.settings = settings or default_settings

    def relate(
        self,
        principal: TypeRef,
        dependent: TypeRef,
        navigation_to_dependent: Optional[str] = None,
        navigation_to_principal: Optional[str] = None,
        foreign_key_properties: Optional[Sequence[str]] = None,
        referenced_key_properties: Optional[Sequence[str]] = None,
        unique: Optional[bool] = None,
        prefer_principal: Optional[TypeRef] = None,
        foreign_key_on: Optional[TypeRef] = None,
        referenced_key_on: Optional[TypeRef] = None,
        source: ConfigurationSource = EXPLICIT,
    ) -> Optional[ForeignKey]:
        """
        Find or create the foreign key described by the arguments.

        Args:
            principal: Principal type (the "one" side of one-to-many)
            dependent: Dependent type holding the foreign key
            navigation_to_dependent: Navigation name on the principal
            navigation_to_principal: Navigation name on the dependent
            foreign_key_properties: Explicit foreign key property names
            referenced_key_properties: Explicit principal key property names
            unique: True for one-to-one, False for one-to-many, None for either
            prefer_principal: Preferred principal for one-to-one relationships
            foreign_key_on: Type declaring foreign_key_properties
            referenced_key_on: Type declaring referenced_key_properties
            source: Provenance of the request

        Returns:
            The resolved foreign key, or None for a blocked convention request
        """
        request = self.build_request(
            principal=_type_name(principal),
            dependent=_type_name(dependent),
            navigation_to_dependent=navigation_to_dependent,
            navigation_to_principal=navigation_to_principal,
            foreign_key_properties=foreign_key_properties,
            referenced_key_properties=referenced_key_properties,
            unique=unique,
            prefer_principal=_type_name(prefer_principal),
            foreign_key_on=_type_name(foreign_key_on),
            referenced_key_on=_type_name(referenced_key_on),
            source=source,
        )
        return self.resolve(request)

    def build_request(self, **kwargs: Any) -> RelateRequest:
        """Validate raw arguments into a RelateRequest."""
        try:
            return RelateRequest(**kwargs)
        except ValidationError as e:
            raise ModelArgumentError(f"Invalid relationship request: {e}") from e

    def resolve(self, request: RelateRequest) -> Optional[ForeignKey]:
        """Resolve a validated request."""
        self._check_request(request)
        try:
            with self.model.atomic():
                fk = self._resolve(request.oriented())
        except ConventionBlocked as blocked:
            logger.debug(
                f"Skipped {request.source.value} relationship "
                f"'{request.principal}' -> '{request.dependent}': {blocked}"
            )
            return None
        logger.info(f"Resolved relationship {fk} ({request.source.value})")
        return fk

    # =========================================================================
    # Request checks (before any mutation)
    # =========================================================================

    def _check_request(self, request: RelateRequest) -> None:
        self.model.get_entity_type(request.principal)
        self.model.get_entity_type(request.dependent)

        fk_names = request.foreign_key_properties
        key_names = request.referenced_key_properties
        if fk_names is not None and key_names is not None and len(fk_names) != len(key_names):
            raise ModelShapeError(
                format_error(
                    "foreign_key_count_mismatch",
                    properties=list(fk_names),
                    count=len(key_names),
                    key=list(key_names),
                )
            )
        if (
            not request.is_self_referencing
            and request.foreign_key_on is not None
            and request.foreign_key_on == request.referenced_key_on
        ):
            raise ModelShapeError(
                format_error(
                    "orientation_conflict",
                    foreign_key_on=request.foreign_key_on,
                    referenced_key_on=request.referenced_key_on,
                )
            )
        if (
            request.is_self_referencing
            and request.navigation_to_principal is not None
            and request.navigation_to_principal == request.navigation_to_dependent
        ):
            raise ModelShapeError(
                format_error(
                    "self_navigation_clash",
                    entity=request.principal,
                    name=request.navigation_to_principal,
                )
            )

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _resolve(self, request: RelateRequest) -> ForeignKey:
        principal = self.model.get_entity_type(request.principal)
        dependent = self.model.get_entity_type(request.dependent)
        fk = None

        # Step 1: Existing navigations
        match = match_navigations(request, principal, dependent)
        if match is not None:
            fk = match.foreign_key
            if match.reversed:
                if request.fixed_orientation:
                    fk = self._flip(fk, request, principal, dependent)
                else:
                    logger.debug(f"Adopting existing orientation of {fk}")
                    request = request.flipped()
                    principal, dependent = dependent, principal

        # Step 2-3: Existing foreign keys, split on uniqueness conflict
        if fk is None:
            found = find_foreign_key(request, principal, dependent)
            if (
                found.foreign_key is None
                and not request.fixed_orientation
                and not request.is_self_referencing
            ):
                reverse = find_foreign_key(request.flipped(), dependent, principal)
                if reverse.foreign_key is not None:
                    request = request.flipped()
                    principal, dependent = dependent, principal
                    found = reverse
            fk = found.foreign_key
            if fk is None and found.conflicting:
                logger.info(
                    f"Uniqueness of {len(found.conflicting)} existing foreign key(s) "
                    f"from '{dependent.name}' to '{principal.name}' conflicts; creating a new one"
                )

        # Step 4: Keys and properties
        if fk is None:
            fk = self._create(request, principal, dependent)
        else:
            self._reconcile(fk, request, principal, dependent)
        self._note_substitution(fk, request)

        # Step 6: Navigations
        self._attach_navigations(fk, request, principal, dependent)

        if request.unique is not None:
            self._allow(
                self.model.set_foreign_key_unique(fk, request.unique, request.source),
                f"uniqueness of {fk} is explicit",
            )
        return fk

    def _create(
        self,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
    ) -> ForeignKey:
        key, key_source = self._resolve_referenced_key(request, principal, dependent)
        claimed = claimed_property_lists(dependent, principal)
        props, props_source = self._resolve_foreign_key_properties(
            request, principal, dependent, key, claimed
        )
        fk = self.model.add_foreign_key(
            dependent,
            props,
            principal,
            key,
            CONVENTION,
            unique=bool(request.unique),
        )
        self.model.record_source(fk, Facet.EXISTS, request.source)
        self.model.record_source(fk, Facet.PROPERTIES, props_source)
        self.model.record_source(fk, Facet.REFERENCED_KEY, key_source)
        logger.info(f"Created foreign key {fk}")
        return fk

    def _reconcile(
        self,
        fk: ForeignKey,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
    ) -> None:
        """Bring a reused foreign key in line with explicit key and property names."""
        self.model.record_source(fk, Facet.EXISTS, request.source)

        key = fk.referenced_key
        key_source = CONVENTION
        if (
            request.referenced_key_properties is not None
            and key.property_names != request.referenced_key_properties
        ):
            self._allow(
                self.model.can_configure(fk, Facet.REFERENCED_KEY, request.source),
                f"referenced key of {fk} is explicit",
            )
            key, key_source = self._resolve_referenced_key(request, principal, dependent)
        elif request.referenced_key_properties is not None:
            key_source = request.source

        claimed = claimed_property_lists(dependent, principal, exclude=fk)
        props = fk.properties
        props_source = CONVENTION
        if request.foreign_key_properties is not None:
            if fk.property_names != request.foreign_key_properties:
                self._allow(
                    self.model.can_configure(fk, Facet.PROPERTIES, request.source),
                    f"properties of {fk} are explicit",
                )
                props, props_source = self._resolve_foreign_key_properties(
                    request, principal, dependent, key, claimed, current=fk
                )
            else:
                props_source = request.source
        elif key is not fk.referenced_key and not _lines_up(props, key):
            if fk.source(Facet.PROPERTIES) != EXPLICIT:
                props, props_source = self._resolve_foreign_key_properties(
                    request, principal, dependent, key, claimed
                )

        self._allow(
            self.model.set_foreign_key_properties(fk, props, key, props_source, key_source),
            f"properties of {fk} are explicit",
        )

    def _flip(
        self,
        fk: ForeignKey,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
    ) -> Optional[ForeignKey]:
        """
        Reorient a reused foreign key to match a request with fixed orientation.

        Returns None, leaving the foreign key alone, when it carries an
        explicit navigation the request does not name.
        """
        requested = {
            (dependent.handle, request.navigation_to_principal),
            (principal.handle, request.navigation_to_dependent),
        }
        for navigation in fk.navigations:
            if (
                (navigation.entity_type_handle, navigation.name) not in requested
                and navigation.source(Facet.EXISTS) == EXPLICIT
            ):
                logger.info(
                    f"Not flipping {fk}: explicit navigation {navigation} would be invalidated"
                )
                return None
        for facet in (Facet.PROPERTIES, Facet.REFERENCED_KEY):
            self._allow(
                self.model.can_configure(fk, facet, request.source),
                f"{facet.value} of {fk} are explicit",
            )

        key, key_source = self._resolve_referenced_key(request, principal, dependent)
        claimed = claimed_property_lists(dependent, principal, exclude=fk)
        props, props_source = self._resolve_foreign_key_properties(
            request, principal, dependent, key, claimed
        )
        self.model.reorient_foreign_key(
            fk, dependent, props, principal, key, props_source, key_source
        )
        return fk

    def _note_substitution(self, fk: ForeignKey, request: RelateRequest) -> None:
        # Requested names taken by another foreign key still identify this one.
        names = request.foreign_key_properties
        if names is None:
            return
        self.model.set_substituted_property_names(
            fk, None if fk.property_names == names else names
        )

    # =========================================================================
    # Keys and properties
    # =========================================================================

    def _resolve_referenced_key(
        self,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
    ) -> tuple[Key, ConfigurationSource]:
        """Find or create the principal key, and the provenance of that choice."""
        names = request.referenced_key_properties
        if names is None:
            if principal.primary_key is None:
                raise ModelShapeError(format_error("no_primary_key", name=principal.name))
            return principal.primary_key, CONVENTION

        props = []
        for position, name in enumerate(names):
            prop = principal.find_property(name)
            if prop is None:
                prop = self._add_principal_key_property(request, principal, dependent, position, name)
            props.append(prop)
        key = principal.find_key(props)
        if key is None:
            key = self.model.add_key(principal, props, request.source)
            logger.info(f"Added alternate key {key} for relationship")
        return key, request.source

    def _add_principal_key_property(
        self,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
        position: int,
        name: str,
    ) -> Property:
        """A missing principal key property takes its type from the matching foreign key property."""
        fk_names = request.foreign_key_properties
        counterpart = None
        if fk_names is not None and position < len(fk_names):
            counterpart = dependent.find_property(fk_names[position])
        if counterpart is None:
            raise ModelArgumentError(
                format_error("unknown_property", name=name, entity=principal.name)
            )
        return self.model.add_property(
            principal,
            name,
            unwrap_nullable(counterpart.clr_type),
            request.source,
            shadow=True,
        )

    def _resolve_foreign_key_properties(
        self,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
        key: Key,
        claimed: set[tuple[int, ...]],
        current: Optional[ForeignKey] = None,
    ) -> tuple[list[Property], ConfigurationSource]:
        """
        Pick the dependent properties for a foreign key to ``key``.

        Explicit names are used verbatim, creating missing ones as shadow
        properties, unless another foreign key between the same two types
        already uses exactly those properties. Without explicit names,
        naming conventions are tried before shadow properties are
        synthesized.
        """
        names = request.foreign_key_properties
        if names is not None:
            if len(names) != len(key.property_handles):
                raise ModelShapeError(
                    format_error(
                        "foreign_key_count_mismatch",
                        properties=list(names),
                        count=len(key.property_handles),
                        key=key,
                    )
                )
            existing = [dependent.find_property(name) for name in names]
            if all(p is not None for p in existing) and tuple(p.handle for p in existing) in claimed:
                logger.info(
                    f"Properties {list(names)} on '{dependent.name}' already belong to "
                    f"another foreign key to '{principal.name}'"
                )
                if current is not None and _lines_up(current.properties, key):
                    return current.properties, CONVENTION
                return self._synthesize(principal, dependent, key), CONVENTION

            props = []
            for prop, name, key_property in zip(existing, names, key.properties):
                if prop is None:
                    prop = self.model.add_property(
                        dependent,
                        name,
                        make_nullable(key_property.clr_type),
                        request.source,
                        shadow=True,
                    )
                props.append(prop)
            return props, request.source

        found = find_foreign_key_properties(
            dependent, principal, key, request.unique, claimed, self.settings
        )
        if found is not None:
            return found, CONVENTION
        return self._synthesize(principal, dependent, key), CONVENTION

    def _synthesize(self, principal: EntityType, dependent: EntityType, key: Key) -> list[Property]:
        """Create nullable shadow properties named after the principal and its key."""
        props = []
        for base, key_property in zip(synthesized_base_names(principal, key, self.settings), key.properties):
            name = unique_member_name(dependent, base, self.settings.shadow_name_ordinal_start)
            props.append(
                self.model.add_property(
                    dependent,
                    name,
                    make_nullable(key_property.clr_type),
                    CONVENTION,
                    shadow=True,
                )
            )
        logger.info(
            f"Synthesized shadow foreign key properties {[p.name for p in props]} on '{dependent.name}'"
        )
        return props

    # =========================================================================
    # Navigations
    # =========================================================================

    def _attach_navigations(
        self,
        fk: ForeignKey,
        request: RelateRequest,
        principal: EntityType,
        dependent: EntityType,
    ) -> None:
        """Attach requested names; a missing name never adds or removes a navigation."""
        for owner, name, to_principal in (
            (dependent, request.navigation_to_principal, True),
            (principal, request.navigation_to_dependent, False),
        ):
            if name is None:
                continue
            slot = fk.navigation_to_principal if to_principal else fk.navigation_to_dependent
            if slot is not None and slot.name == name:
                self.model.record_source(slot, Facet.EXISTS, request.source)
                continue
            if slot is not None:
                self._allow(
                    self.model.remove_navigation(slot, request.source),
                    f"navigation {slot} is explicit",
                )
            clash = owner.find_navigation(name)
            if clash is not None:
                logger.info(f"Moving navigation {clash} to {fk}")
                self._allow(
                    self.model.remove_navigation(clash, request.source),
                    f"navigation {clash} is explicit",
                )
            self.model.add_navigation(owner, name, fk, to_principal, request.source)

    @staticmethod
    def _allow(allowed: bool, reason: str) -> None:
        if not allowed:
            raise ConventionBlocked(reason)


def _type_name(value: Optional[TypeRef]) -> Optional[str]:
    if isinstance(value, EntityType):
        return value.name
    return value


def _lines_up(props: list[Property], key: Key) -> bool:
    key_props = key.properties
    return len(props) == len(key_props) and all(
        types_compatible(p.clr_type, k.clr_type) for p, k in zip(props, key_props)
    )
