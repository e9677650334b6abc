"""
Relationship configuration requests.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from entitymodel.provenance import ConfigurationSource


class RelateRequest(BaseModel):
    """
    A single, possibly partial, statement about a relationship.

    ``navigation_to_dependent`` lives on the principal and
    ``navigation_to_principal`` on the dependent. ``foreign_key_on`` and
    ``referenced_key_on`` name the type holding explicit property names,
    which pins the orientation of one-to-one relationships.
    """

    model_config = ConfigDict(frozen=True)

    principal: str
    dependent: str
    navigation_to_dependent: Optional[str] = None
    navigation_to_principal: Optional[str] = None
    foreign_key_properties: Optional[tuple[str, ...]] = None
    referenced_key_properties: Optional[tuple[str, ...]] = None
    unique: Optional[bool] = None
    prefer_principal: Optional[str] = None
    foreign_key_on: Optional[str] = None
    referenced_key_on: Optional[str] = None
    source: ConfigurationSource = ConfigurationSource.EXPLICIT

    @field_validator("principal", "dependent")
    @classmethod
    def validate_type_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("entity type name must not be empty")
        return v

    @field_validator("navigation_to_dependent", "navigation_to_principal")
    @classmethod
    def validate_navigation_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("navigation name must not be empty")
        return v

    @field_validator("foreign_key_properties", "referenced_key_properties", mode="before")
    @classmethod
    def validate_property_names(cls, v):
        if v is None:
            return v
        if isinstance(v, str):
            v = (v,)
        names = tuple(v)
        if not names:
            raise ValueError("at least one property name is required")
        if any(not isinstance(n, str) or not n.strip() for n in names):
            raise ValueError("property names must be non-empty strings")
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate property names in {list(names)}")
        return names

    @model_validator(mode="after")
    def validate_hints(self) -> "RelateRequest":
        """Orientation hints must name one of the two related types."""
        for hint in ("prefer_principal", "foreign_key_on", "referenced_key_on"):
            value = getattr(self, hint)
            if value is not None and value not in (self.principal, self.dependent):
                raise ValueError(f"{hint} must be '{self.principal}' or '{self.dependent}', got '{value}'")
        return self

    @property
    def is_self_referencing(self) -> bool:
        return self.principal == self.dependent

    @property
    def fixed_orientation(self) -> bool:
        """
        Whether the principal/dependent assignment is a hard fact.

        Explicit key placement, a one-to-many cardinality or a principal
        preference all pin it; a bare one-to-one request does not.
        """
        return (
            self.foreign_key_on is not None
            or self.referenced_key_on is not None
            or self.unique is False
            or self.prefer_principal is not None
        )

    def flipped(self) -> "RelateRequest":
        """The same statement with principal and dependent exchanged."""
        return self.model_copy(
            update={
                "principal": self.dependent,
                "dependent": self.principal,
                "navigation_to_dependent": self.navigation_to_principal,
                "navigation_to_principal": self.navigation_to_dependent,
            }
        )

    def oriented(self) -> "RelateRequest":
        """
        Apply explicit orientation hints.

        Foreign key properties live on the dependent and the referenced key
        on the principal; a principal preference comes last.
        """
        if self.is_self_referencing:
            return self
        if self.foreign_key_on is not None and self.foreign_key_on != self.dependent:
            return self.flipped()
        if self.foreign_key_on is None and self.referenced_key_on is not None:
            if self.referenced_key_on != self.principal:
                return self.flipped()
        if (
            self.foreign_key_on is None
            and self.referenced_key_on is None
            and self.prefer_principal is not None
            and self.prefer_principal != self.principal
        ):
            return self.flipped()
        return self
