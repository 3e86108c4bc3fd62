from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterator, MutableSequence, Sequence

import polars as pl
import sqlalchemy as sa

from .errors import LoadError


class RowCursor(ABC):
    """Forward-only view over the rows of a source query.

    Mirrors a DB-API result: call :meth:`advance` to move to the next row, then :meth:`scan` to copy
    that row's values into caller-owned slots. The cursor never allocates a buffer for the caller.
    """

    def __init__(self, columns: Sequence[str]):
        self._columns = list(columns)
        self._row: Sequence[Any] | None = None

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @abstractmethod
    def _next_row(self) -> Sequence[Any] | None:
        """Fetch the next row or None when exhausted."""

    def advance(self) -> bool:
        """Move to the next row. Returns False once the source is exhausted."""
        self._row = self._next_row()
        return self._row is not None

    def scan(self, dest: MutableSequence[Any]) -> None:
        """Write the current row's values into ``dest`` in column order."""
        if self._row is None:
            raise LoadError('scan() called without a current row; call advance() first')
        if len(dest) != len(self._row):
            raise LoadError(f'scan() expected {len(self._row)} slots, got {len(dest)}')
        dest[:] = self._row

    def close(self) -> None:
        self._row = None

    def __enter__(self) -> 'RowCursor':
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ResultCursor(RowCursor):
    """Row cursor over a streaming sqlalchemy result."""

    def __init__(self, result: sa.CursorResult):
        super().__init__(list(result.keys()))
        self._result = result
        self._it: Iterator[sa.Row] = iter(result)

    def _next_row(self) -> Sequence[Any] | None:
        return next(self._it, None)

    def close(self) -> None:
        super().close()
        self._result.close()


class FrameCursor(RowCursor):
    """Row cursor over an in-memory polars DataFrame."""

    def __init__(self, df: pl.DataFrame):
        super().__init__(df.columns)
        self._it: Iterator[tuple[Any, ...]] = df.iter_rows()

    def _next_row(self) -> Sequence[Any] | None:
        return next(self._it, None)
