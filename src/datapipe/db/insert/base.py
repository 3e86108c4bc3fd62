from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from datapipe.cursor import RowCursor
from datapipe.errors import ConfigError


class Insert(ABC):
    """Bulk-loading strategy: consume source rows and write them to one destination table.

    The orchestrator drives ``append`` once per source row, calls ``flush`` exactly once after the
    row loop (also when no rows were appended), then ``close``.
    """

    def __init__(self, columns: Sequence[str]):
        if not columns:
            raise ConfigError('at least one column is required')
        self._columns: tuple[str, ...] = tuple(columns)
        # row buffer reused for every scan
        self._values: list[Any] = [None] * len(self._columns)
        self._total_row_count = 0
        self._closed = False

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def total_row_count(self) -> int:
        return self._total_row_count

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def append(self, rows: RowCursor) -> None:
        """Consume the current row of ``rows``; raises LoadError if the write it triggers fails."""

    @abstractmethod
    def flush(self) -> int:
        """Send everything still buffered and return the number of rows processed."""

    @abstractmethod
    def close(self) -> None:
        """Release statement resources. Calling it again is a no-op."""

    def __enter__(self) -> 'Insert':
        return self

    def __exit__(self, *exc) -> None:
        self.close()
