"""In-memory registry of loaded mapping sets and lookup tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from ehrmap.core.types import CodeTranslationTable, MappingDirection, MappingSet


@dataclass(frozen=True)
class RegistryStats:
    """Counts of registered definitions."""

    total_mappings: int
    total_lookup_tables: int
    forward_mappings: int
    reverse_mappings: int

    def __str__(self) -> str:
        return (
            f"Mappings: {self.total_mappings} (forward: {self.forward_mappings}, "
            f"reverse: {self.reverse_mappings}), Lookup tables: {self.total_lookup_tables}"
        )


class MappingRegistry:
    """Holds mapping sets and lookup tables, indexed for fast access.

    Populated once by the loader and then only read, so it can be shared
    across concurrent transformations.
    """

    def __init__(self) -> None:
        self.loaded_at = datetime.now(timezone.utc)
        self._mappings: list[MappingSet] = []
        self._by_id: dict[str, MappingSet] = {}
        self._by_name: dict[str, MappingSet] = {}
        self._lookup_tables: dict[str, CodeTranslationTable] = {}

    def add_mapping_set(self, mapping: MappingSet) -> None:
        """Register a mapping set.

        Raises:
            ValueError: If a mapping set with the same id is already registered.
        """
        if mapping.id in self._by_id:
            raise ValueError(f"Duplicate mapping set id '{mapping.id}'")
        self._mappings.append(mapping)
        self._by_id[mapping.id] = mapping
        self._by_name.setdefault(mapping.name, mapping)

    def add_lookup_table(self, table: CodeTranslationTable) -> None:
        """Register a lookup table, replacing any table with the same id."""
        self._lookup_tables[table.id] = table

    def find_by_id(self, mapping_id: str) -> MappingSet | None:
        return self._by_id.get(mapping_id)

    def find_by_name(self, name: str) -> MappingSet | None:
        """Find a mapping set by name; the first registered wins on duplicates."""
        return self._by_name.get(name)

    def find_by_source_and_direction(
        self, source_type: str, direction: MappingDirection
    ) -> MappingSet | None:
        for mapping in self._mappings:
            if mapping.source_type == source_type and mapping.direction == direction:
                return mapping
        return None

    def find_by_source_type(self, source_type: str) -> list[MappingSet]:
        return [m for m in self._mappings if m.source_type == source_type]

    def find_by_target_type(self, target_type: str) -> list[MappingSet]:
        return [m for m in self._mappings if m.target_type == target_type]

    def find_by_direction(self, direction: MappingDirection) -> list[MappingSet]:
        return [m for m in self._mappings if m.direction == direction]

    def get_lookup_table(self, table_id: str) -> CodeTranslationTable | None:
        return self._lookup_tables.get(table_id)

    def mapping_sets(self) -> list[MappingSet]:
        """Return all mapping sets in registration order."""
        return list(self._mappings)

    def lookup_tables(self) -> list[CodeTranslationTable]:
        return list(self._lookup_tables.values())

    def mapping_ids(self) -> list[str]:
        return [m.id for m in self._mappings]

    def has_mapping(self, mapping_id: str) -> bool:
        return mapping_id in self._by_id

    def stats(self) -> RegistryStats:
        return RegistryStats(
            total_mappings=len(self._mappings),
            total_lookup_tables=len(self._lookup_tables),
            forward_mappings=len(self.find_by_direction(MappingDirection.FORWARD)),
            reverse_mappings=len(self.find_by_direction(MappingDirection.REVERSE)),
        )

    def __len__(self) -> int:
        return len(self._mappings)

    def __contains__(self, mapping_id: object) -> bool:
        return mapping_id in self._by_id
