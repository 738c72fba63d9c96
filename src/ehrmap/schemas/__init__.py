"""Mapping definition loading and registry for ehrmap."""

from ehrmap.schemas.loader import MappingLoader, parse_lookup_table, parse_mapping_set
from ehrmap.schemas.registry import MappingRegistry, RegistryStats

__all__ = [
    "MappingLoader",
    "MappingRegistry",
    "RegistryStats",
    "parse_lookup_table",
    "parse_mapping_set",
]
