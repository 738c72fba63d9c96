"""Direction-aware code translation through registered lookup tables."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ehrmap.core.exceptions import LookupTableNotFound
from ehrmap.core.types import CodeMappingResult, CodeTranslationTable, MappingDirection

logger = logging.getLogger(__name__)

TableResolver = Callable[[str], CodeTranslationTable | None]


class CodeLookupService:
    """Resolves a table id and translates a code in the mapping's direction.

    Forward mapping sets translate with ``lookup_forward``; reverse mapping
    sets translate target codes back with ``lookup_reverse``.
    """

    def __init__(self, resolver: TableResolver) -> None:
        """Initialize the service.

        Args:
            resolver: Callable returning a table for an id, or None.
                ``MappingRegistry.get_lookup_table`` fits.
        """
        self._resolver = resolver

    def get_table(self, table_id: str) -> CodeTranslationTable:
        """Return a table by id.

        Raises:
            LookupTableNotFound: If no table is registered under the id.
        """
        table = self._resolver(table_id)
        if table is None:
            raise LookupTableNotFound(f"Lookup table not found: {table_id}", table_id=table_id)
        return table

    def translate(
        self,
        table_id: str,
        code: Any,
        direction: MappingDirection = MappingDirection.FORWARD,
    ) -> CodeMappingResult:
        """Translate a code.

        Raises:
            LookupMiss: If the table is unknown, the code is not declared, or a
                reverse lookup is requested on a one-way table.
        """
        table = self.get_table(table_id)
        if direction == MappingDirection.REVERSE:
            result = table.lookup_reverse(code)
        else:
            result = table.lookup_forward(code)
        logger.debug("Lookup %s (%s): %r -> %r", table_id, direction.value, code, result.code)
        return result
