"""
Provenance tracking for configuration facts.

Every fact written into the model records whether it was inferred by a
convention or stated explicitly. Explicit facts are authoritative: a
convention may never overwrite them, while an explicit call may overwrite
anything.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ConfigurationSource(str, Enum):
    """Origin of a configuration fact."""

    CONVENTION = "convention"  # Inferred by the convention pipeline
    EXPLICIT = "explicit"  # Stated by a user call


class Facet(str, Enum):
    """Individually tracked aspects of a metadata element."""

    EXISTS = "exists"
    CLR_TYPE = "clr_type"
    NULLABLE = "nullable"
    SHADOW = "shadow"
    CONCURRENCY_TOKEN = "concurrency_token"
    VALUE_GENERATED_ON_ADD = "value_generated_on_add"
    STORE_COMPUTED = "store_computed"
    USE_STORE_DEFAULT = "use_store_default"
    MAX_LENGTH = "max_length"
    PRIMARY_KEY = "primary_key"
    UNIQUE = "unique"
    REQUIRED = "required"
    PROPERTIES = "properties"
    REFERENCED_KEY = "referenced_key"


# Lower authority_level = more authoritative
AUTHORITY_LEVELS = {
    ConfigurationSource.EXPLICIT: 1,
    ConfigurationSource.CONVENTION: 2,
}


def annotation_facet(key: str) -> str:
    """Facet name for a single annotation key."""
    return f"annotation:{key}"


def get_authority_level(source: ConfigurationSource) -> int:
    """Get authority level for a configuration source."""
    return AUTHORITY_LEVELS[ConfigurationSource(source)]


def can_override(
    existing: Optional[ConfigurationSource],
    incoming: ConfigurationSource,
) -> bool:
    """
    Check whether a fact recorded with ``existing`` may be changed by ``incoming``.

    A fact that was never recorded can always be written.
    """
    if existing is None:
        return True
    return get_authority_level(incoming) <= get_authority_level(existing)


def resolve_conflict(
    existing: Optional[ConfigurationSource],
    incoming: ConfigurationSource,
) -> ConfigurationSource:
    """
    Resolve which source a re-asserted fact ends up tagged with.

    The more authoritative source wins, so a convention fact restated
    explicitly is upgraded and never downgraded again.
    """
    if existing is None:
        return ConfigurationSource(incoming)
    if get_authority_level(incoming) < get_authority_level(existing):
        return ConfigurationSource(incoming)
    return existing


class ProvenanceEntry(BaseModel):
    """A single recorded fact, as reported by ProvenanceTracker.entries."""

    handle: int
    facet: str
    source: ConfigurationSource


class ProvenanceTracker:
    """
    Stores a ConfigurationSource per (element handle, facet).

    The tracker itself is unaware of rollback; the model journals every
    write through ``restore`` so failed operations leave no trace.
    """

    def __init__(self):
        self._tags: dict[tuple[int, str], ConfigurationSource] = {}

    def get(self, handle: int, facet: str) -> Optional[ConfigurationSource]:
        """Get the source of a fact, or None if it was never recorded."""
        return self._tags.get((handle, _facet_key(facet)))

    def can_set(self, handle: int, facet: str, source: ConfigurationSource) -> bool:
        """Check whether ``source`` is allowed to change the fact."""
        return can_override(self.get(handle, facet), source)

    def record(
        self,
        handle: int,
        facet: str,
        source: ConfigurationSource,
    ) -> ConfigurationSource:
        """Record a fact, upgrading its provenance where ``source`` outranks it."""
        key = (handle, _facet_key(facet))
        winner = resolve_conflict(self._tags.get(key), source)
        self._tags[key] = winner
        return winner

    def overwrite(self, handle: int, facet: str, source: ConfigurationSource) -> None:
        """Replace a fact's provenance after its value was changed by ``source``."""
        self._tags[(handle, _facet_key(facet))] = ConfigurationSource(source)

    def restore(
        self,
        handle: int,
        facet: str,
        previous: Optional[ConfigurationSource],
    ) -> None:
        """Put back a previous value; None removes the record."""
        key = (handle, _facet_key(facet))
        if previous is None:
            self._tags.pop(key, None)
        else:
            self._tags[key] = previous

    def forget(self, handle: int) -> dict[str, ConfigurationSource]:
        """Drop every fact of a removed element and return what was dropped."""
        dropped = {
            facet: source
            for (owner, facet), source in self._tags.items()
            if owner == handle
        }
        for facet in dropped:
            del self._tags[(handle, facet)]
        return dropped

    def restore_all(self, handle: int, facts: dict[str, ConfigurationSource]) -> None:
        """Undo a forget."""
        for facet, source in facts.items():
            self._tags[(handle, facet)] = source

    def entries(self, handle: Optional[int] = None) -> list[ProvenanceEntry]:
        """List recorded facts, optionally for one element."""
        return [
            ProvenanceEntry(handle=owner, facet=facet, source=source)
            for (owner, facet), source in self._tags.items()
            if handle is None or owner == handle
        ]

    def __len__(self) -> int:
        return len(self._tags)


def _facet_key(facet: str) -> str:
    return facet.value if isinstance(facet, Facet) else str(facet)
