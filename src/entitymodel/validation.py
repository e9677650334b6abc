"""
Structural validation of a finished model.

Resolution keeps the model consistent call by call; validation reports
what is still incomplete or suspicious once configuration is done.
"""

import logging
from enum import Enum
from typing import Optional

import networkx as nx
from pydantic import BaseModel

from entitymodel.errors import ModelValidationError
from entitymodel.metadata.model import Model
from entitymodel.metadata.types import types_compatible

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """How serious a validation issue is."""

    ERROR = "error"  # Model cannot be used
    WARNING = "warning"  # Usable, but probably not what was meant


VALIDATION_MESSAGES = {
    "no_primary_key": "The entity type '{entity}' has no primary key.",
    "foreign_key_count": "The foreign key {foreign_key} has {count} properties but its key has {key_count}.",
    "foreign_key_type": (
        "The foreign key property '{name}' is not compatible with key property '{key_property}' "
        "in {foreign_key}."
    ),
    "foreign_owner": "The {what} {element} uses property '{name}' of another entity type.",
    "nullable_key": "The key property '{name}' on '{entity}' is nullable.",
    "dangling_navigation": "The navigation '{name}' on '{entity}' is not backed by one of its foreign keys.",
    "required_cycle": "The required relationships between {entities} form a cycle.",
}


class ValidationIssue(BaseModel):
    """A single problem found in the model."""

    severity: Severity
    code: str
    message: str
    entity_type: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.message}"


def _issue(severity: Severity, code: str, entity_type: Optional[str] = None, **kwargs) -> ValidationIssue:
    return ValidationIssue(
        severity=severity,
        code=code,
        message=VALIDATION_MESSAGES[code].format(**kwargs),
        entity_type=entity_type,
    )


def validate_model(model: Model) -> list[ValidationIssue]:
    """
    Check a model for structural problems.

    Checks for:
    - Entity types without a primary key (warning)
    - Foreign keys whose properties do not line up with their key
    - Keys and foreign keys using properties of another type
    - Nullable key properties
    - Navigations not backed by a foreign key of their type
    - Cycles made only of required relationships (warning)

    Returns:
        All issues found, errors and warnings alike
    """
    issues: list[ValidationIssue] = []

    for entity_type in model.entity_types:
        name = entity_type.name
        if entity_type.primary_key is None:
            issues.append(_issue(Severity.WARNING, "no_primary_key", name, entity=name))

        for key in entity_type.keys:
            for prop in key.properties:
                if prop.entity_type_handle != entity_type.handle:
                    issues.append(
                        _issue(Severity.ERROR, "foreign_owner", name, what="key", element=key, name=prop.name)
                    )
                elif prop.is_nullable:
                    issues.append(_issue(Severity.ERROR, "nullable_key", name, name=prop.name, entity=name))

        for fk in entity_type.foreign_keys:
            props = fk.properties
            key_props = fk.referenced_properties
            if len(props) != len(key_props):
                issues.append(
                    _issue(
                        Severity.ERROR,
                        "foreign_key_count",
                        name,
                        foreign_key=fk,
                        count=len(props),
                        key_count=len(key_props),
                    )
                )
            for prop, key_prop in zip(props, key_props):
                if prop.entity_type_handle != entity_type.handle:
                    issues.append(
                        _issue(Severity.ERROR, "foreign_owner", name, what="foreign key", element=fk, name=prop.name)
                    )
                elif not types_compatible(prop.clr_type, key_prop.clr_type):
                    issues.append(
                        _issue(
                            Severity.ERROR,
                            "foreign_key_type",
                            name,
                            name=prop.name,
                            key_property=key_prop.name,
                            foreign_key=fk,
                        )
                    )

        for navigation in entity_type.navigations:
            owner = None
            if model.has_element(navigation.foreign_key_handle):
                fk = navigation.foreign_key
                owner = fk.entity_type_handle if navigation.points_to_principal else fk.principal_entity_type_handle
            if owner != entity_type.handle:
                issues.append(
                    _issue(Severity.ERROR, "dangling_navigation", name, name=navigation.name, entity=name)
                )

    issues.extend(_required_cycles(model))

    errors = sum(1 for issue in issues if issue.severity == Severity.ERROR)
    logger.debug(f"Validated model: {errors} error(s), {len(issues) - errors} warning(s)")
    return issues


def _required_cycles(model: Model) -> list[ValidationIssue]:
    required = nx.DiGraph()
    for dependent, principal, handle in model.graph.edges(keys=True):
        if model.element(handle).is_required:
            required.add_edge(dependent, principal)

    issues = []
    for cycle in nx.simple_cycles(required):
        names = sorted(model.element(h).name for h in cycle)
        issues.append(_issue(Severity.WARNING, "required_cycle", None, entities=names))
    return issues


def assert_valid(model: Model) -> None:
    """Raise ModelValidationError if the model has any error-level issue."""
    issues = validate_model(model)
    errors = [issue for issue in issues if issue.severity == Severity.ERROR]
    if errors:
        raise ModelValidationError(
            f"Model has {len(errors)} error(s): " + "; ".join(issue.message for issue in errors),
            errors,
        )
    for issue in issues:
        logger.warning(str(issue))
