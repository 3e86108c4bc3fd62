from __future__ import annotations

from typing import Any, MutableSequence, Sequence

import sqlalchemy as sa

from datapipe.cursor import RowCursor
from datapipe.db.insert.base import Insert
from datapipe.engine import _dbapi_connection, qualify, quote_ident
from datapipe.errors import ConfigError, DecodeError, LoadError, MetadataError

# catalog types whose raw byte values are parsed as floats before streaming
NUMERIC_TYPES = frozenset({'numeric', 'decimal', 'real', 'double precision'})

COLUMN_TYPES_SQL = (
    'SELECT column_name, data_type FROM information_schema.columns '
    'WHERE table_schema = :schema AND table_name = :table'
)


def find_column_types(conn: sa.Connection, schema: str, table: str, columns: Sequence[str]) -> list[str]:
    """Look up the catalog type of each column, positionally; unknown columns get ``''``."""
    try:
        rows = conn.execute(sa.text(COLUMN_TYPES_SQL), {'schema': schema, 'table': table}).fetchall()
    except sa.exc.SQLAlchemyError as exc:
        raise MetadataError(f'could not read column types of {qualify(schema, table)}: {exc}') from exc

    types = [''] * len(columns)
    for name, data_type in rows:
        for i, col in enumerate(columns):
            if name == col:
                types[i] = data_type
    return types


def copy_sql(schema: str, table: str, columns: Sequence[str]) -> str:
    col_list = ', '.join(quote_ident(c) for c in columns)
    return f'COPY {quote_ident(schema)}.{quote_ident(table)} ({col_list}) FROM STDIN'


def coerce_row(values: MutableSequence[Any], types: Sequence[str]) -> None:
    """Replace raw byte values in place: floats for numeric columns, text for the rest.

    Nulls and values the driver already typed are left alone.
    """
    for i, typ in enumerate(types):
        v = values[i]
        if not isinstance(v, (bytes, bytearray, memoryview)):
            continue
        raw = bytes(v)
        try:
            if typ in NUMERIC_TYPES:
                values[i] = float(raw.decode('ascii'))
            else:
                values[i] = raw.decode('utf-8')
        except ValueError as exc:
            raise DecodeError(f'cannot coerce {raw!r} for {typ or "untyped"} column at position {i}') from exc


class StreamCopyInsert(Insert):
    """
    Stream rows into postgres with COPY FROM STDIN (psycopg 3), one row per ``append``.

    One transaction and one COPY are opened at construction. ``flush`` sends end-of-data,
    ``close`` then commits. Closing a stream that was never flushed, or that failed, cancels the
    COPY and rolls the transaction back.
    """

    def __init__(self, conn: sa.Connection, columns: Sequence[str], schema: str, table: str):
        super().__init__(columns)
        if not schema:
            raise ConfigError('a destination schema is required for COPY')
        self._conn = conn
        self._schema = schema
        self._table = table
        self._error: BaseException | None = None
        self._cursor: Any = None
        self._copy_cm: Any = None
        self._copy: Any = None

        try:
            self._tx = conn.begin()
        except sa.exc.SQLAlchemyError as exc:
            raise LoadError(f'could not begin transaction: {exc}') from exc

        try:
            self._types = find_column_types(conn, schema, table, self._columns)
            self._begin_stream()
        except Exception:
            self._tx.rollback()
            raise

    @property
    def column_types(self) -> list[str]:
        return list(self._types)

    @property
    def streaming(self) -> bool:
        return self._copy is not None

    def _begin_stream(self) -> None:
        try:
            self._cursor = _dbapi_connection(self._conn).cursor()
            self._copy_cm = self._cursor.copy(copy_sql(self._schema, self._table, self._columns))
            self._copy = self._copy_cm.__enter__()
        except Exception as exc:
            if self._cursor is not None:
                self._cursor.close()
            raise LoadError(f'could not start COPY into {qualify(self._schema, self._table)}: {exc}') from exc

    def _end_stream(self, exc: BaseException | None = None) -> None:
        """Terminate the COPY: end-of-data when ``exc`` is None, otherwise cancel it with ``exc``."""
        cm, self._copy_cm = self._copy_cm, None
        self._copy = None
        if cm is None:
            return
        try:
            if exc is None:
                cm.__exit__(None, None, None)
            else:
                cm.__exit__(type(exc), exc, exc.__traceback__)
        except Exception as err:
            raise LoadError(f'could not terminate COPY into {qualify(self._schema, self._table)}: {err}') from err
        finally:
            self._cursor.close()

    def _abort(self, exc: BaseException) -> None:
        self._error = exc
        self._end_stream(exc)

    def _check_usable(self) -> None:
        if self._closed:
            raise LoadError('insert engine is closed')
        if self._error is not None:
            raise LoadError('COPY stream was aborted by an earlier error') from self._error
        if self._copy is None:
            raise LoadError('COPY stream already terminated')

    def append(self, rows: RowCursor) -> None:
        self._check_usable()
        rows.scan(self._values)
        try:
            coerce_row(self._values, self._types)
            self._copy.write_row(self._values)
        except DecodeError as exc:
            self._abort(exc)
            raise
        except Exception as exc:
            self._abort(exc)
            raise LoadError(f'streaming row {self._total_row_count + 1} failed: {exc}') from exc
        self._total_row_count += 1

    def flush(self) -> int:
        self._check_usable()
        try:
            # the server reports constraint violations on end-of-data
            self._end_stream()
        except LoadError as exc:
            self._error = exc
            raise
        return self._total_row_count

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._copy_cm is not None:
            self._error = LoadError('COPY stream closed before flush()')
            try:
                self._end_stream(self._error)
            finally:
                self._rollback()
            return

        if self._error is not None:
            self._rollback()
            return

        try:
            self._tx.commit()
        except sa.exc.SQLAlchemyError as exc:
            raise LoadError(f'commit failed after {self._total_row_count} rows: {exc}') from exc

    def _rollback(self) -> None:
        try:
            self._tx.rollback()
        except sa.exc.SQLAlchemyError as exc:
            raise LoadError(f'rollback failed: {exc}') from exc
