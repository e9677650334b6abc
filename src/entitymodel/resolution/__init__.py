"""
Relationship resolution for the metadata model.

This module resolves partial relationship statements into foreign keys:
- Request: Validated relationship statements and orientation hints
- Candidates: Navigation and foreign key reuse lookups
- Naming: Foreign key property discovery and shadow name synthesis
- Resolver: Main resolution pipeline
"""

from entitymodel.resolution.request import RelateRequest
from entitymodel.resolution.candidates import (
    ForeignKeyMatch,
    NavigationMatch,
    find_foreign_key,
    match_navigations,
)
from entitymodel.resolution.naming import (
    candidate_name_sets,
    find_foreign_key_properties,
    synthesized_base_names,
    unique_member_name,
)
from entitymodel.resolution.resolver import ConventionBlocked, RelationshipResolver

__all__ = [
    # Request
    "RelateRequest",
    # Candidates
    "ForeignKeyMatch",
    "NavigationMatch",
    "find_foreign_key",
    "match_navigations",
    # Naming
    "candidate_name_sets",
    "find_foreign_key_properties",
    "synthesized_base_names",
    "unique_member_name",
    # Main resolver
    "ConventionBlocked",
    "RelationshipResolver",
]
