"""
Exceptions raised by the metadata model.

Every mutation runs inside an atomic block, so any of these errors
leaves the model exactly as it was before the failing call.
"""

from typing import Any


class ModelError(Exception):
    """Base exception for metadata model errors."""

    pass


class ModelArgumentError(ModelError, ValueError):
    """Unknown entity type or property, empty name, or malformed argument."""

    pass


class ModelShapeError(ModelError):
    """Property counts or types of a key and foreign key do not line up."""

    pass


class ModelInvariantError(ModelError):
    """The requested change would break a structural invariant."""

    pass


class AmbiguousRelationshipError(ModelError):
    """Navigations on both sides are bound to different foreign keys."""

    pass


class ModelValidationError(ModelError):
    """Raised by assert_valid when the model has error-level issues."""

    def __init__(self, message: str, issues: list[Any]):
        super().__init__(message)
        self.issues = issues


ERROR_MESSAGES = {
    "empty_name": "{what} must be a non-empty string.",
    "unknown_entity_type": "The entity type '{name}' was not found in the model.",
    "duplicate_entity_type": "The entity type '{name}' has already been added to the model.",
    "ignored_entity_type": "The entity type '{name}' is ignored and cannot be added by convention.",
    "unknown_property": "The property '{name}' was not found on entity type '{entity}'.",
    "ignored_property": "The property '{name}' is ignored on entity type '{entity}'.",
    "property_type_conflict": (
        "The property '{name}' on entity type '{entity}' is of type {existing} "
        "and cannot be redeclared as {requested}."
    ),
    "property_in_use": "The property '{name}' on entity type '{entity}' is in use by a {usage}.",
    "duplicate_properties": "The property list {names} contains duplicates.",
    "empty_properties": "At least one property is required for a {what}.",
    "member_is_navigation": (
        "The name '{name}' on entity type '{entity}' is already used by a navigation."
    ),
    "member_is_property": "The name '{name}' on entity type '{entity}' is already used by a property.",
    "navigation_in_use": (
        "The navigation '{name}' on entity type '{entity}' is bound to another relationship."
    ),
    "navigation_slot_taken": (
        "The foreign key {foreign_key} already has a navigation '{existing}' "
        "on entity type '{entity}'."
    ),
    "navigation_wrong_side": (
        "The navigation '{name}' cannot be placed on entity type '{entity}' "
        "for foreign key {foreign_key}."
    ),
    "key_property_nullable": (
        "The property '{name}' on entity type '{entity}' is nullable and cannot be part of a key."
    ),
    "key_in_use": "The key {key} on entity type '{entity}' is referenced by {count} foreign key(s).",
    "foreign_key_count_mismatch": (
        "The foreign key properties {properties} do not match the {count} "
        "property key {key}."
    ),
    "foreign_key_type_mismatch": (
        "The foreign key property '{name}' of type {type} is not compatible with "
        "the key property '{key_property}' of type {key_type}."
    ),
    "key_not_on_principal": "The key {key} is not declared on entity type '{entity}'.",
    "no_primary_key": (
        "The entity type '{name}' has no primary key. Declare a key or pass "
        "referenced key properties."
    ),
    "cannot_be_nullable": "{property} on {entity} of type {type} cannot be nullable",
    "ambiguous_navigations": (
        "The navigations '{first}' and '{second}' between '{principal}' and "
        "'{dependent}' are bound to different foreign keys."
    ),
    "self_navigation_clash": (
        "Both navigations of the self-referencing relationship on '{entity}' are named '{name}'."
    ),
    "orientation_conflict": (
        "The foreign key properties are declared on '{foreign_key_on}' but the "
        "referenced key on '{referenced_key_on}' is the same type."
    ),
    "not_in_relationship": "The entity type '{name}' is not part of the relationship.",
}


def format_error(message_key: str, /, **kwargs: Any) -> str:
    """Render an error message template."""
    return ERROR_MESSAGES[message_key].format(**kwargs)
