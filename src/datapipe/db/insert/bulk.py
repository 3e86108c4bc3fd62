from __future__ import annotations

from typing import Any, Sequence

import sqlalchemy as sa

from datapipe.cursor import RowCursor
from datapipe.db.insert.base import Insert
from datapipe.engine import _DriverInfo, _raw_cursor, qualify
from datapipe.errors import ConfigError, LoadError

PLACEHOLDER_STYLES = ('dollar', 'qmark', 'numeric', 'format', 'named')


def _placeholder(style: str, pos: int) -> str:
    if style == 'dollar':
        return f'${pos}'
    if style == 'numeric':
        return f':{pos}'
    if style == 'format':
        return '%s'
    if style == 'named':
        return f':p{pos}'
    return '?'


def build_insert_sql(
        schema: str | None,
        table: str,
        columns: Sequence[str],
        row_count: int,
        placeholder: str = 'dollar',
) -> str:
    """
    Build a multi-row INSERT for exactly ``row_count`` rows.

    Placeholders are numbered from 1 across the whole statement, e.g. for two columns and two rows:
    ``INSERT INTO s.t (a,b) VALUES ($1,$2),($3,$4)``

    Args:
        placeholder: 'dollar' ($1), 'numeric' (:1), 'qmark' (?), 'format' (%s) or 'named' (:p1)
    """
    if not isinstance(row_count, int) or row_count <= 0:
        raise ConfigError(f'row_count must be a positive integer, got {row_count!r}')
    if placeholder not in PLACEHOLDER_STYLES:
        raise ConfigError(f'placeholder must be one of {PLACEHOLDER_STYLES}, got {placeholder!r}')
    if not columns:
        raise ConfigError('at least one column is required')

    col_count = len(columns)
    rows = []
    pos = 1
    for _ in range(row_count):
        rows.append('(' + ','.join(_placeholder(placeholder, p) for p in range(pos, pos + col_count)) + ')')
        pos += col_count

    return f'INSERT INTO {qualify(schema, table)} ({",".join(columns)}) VALUES {",".join(rows)}'


class PreparedInsert:
    """An INSERT statement bound to one row count, with the driver cursor it runs on."""

    def __init__(
            self,
            cursor: Any,
            sql: str,
            row_count: int,
            column_count: int,
            *,
            server_prepare: bool = False,
            named: bool = False,
    ):
        self._cursor = cursor
        self.sql = sql
        self.row_count = row_count
        self.param_count = row_count * column_count
        self._server_prepare = server_prepare
        self._named = named

    @property
    def closed(self) -> bool:
        return self._cursor is None

    def execute(self, params: Sequence[Any]) -> None:
        if self._cursor is None:
            raise LoadError('statement is closed')
        if len(params) != self.param_count:
            raise LoadError(f'statement expects {self.param_count} parameters, got {len(params)}')
        if self._named:
            params = {f'p{i}': v for i, v in enumerate(params, start=1)}
        try:
            if self._server_prepare:
                # psycopg 3: keep a server-side prepared statement for repeated batches
                self._cursor.execute(self.sql, params, prepare=True)
            else:
                self._cursor.execute(self.sql, params)
        except Exception as exc:
            raise LoadError(f'insert of {self.row_count} rows failed: {exc}') from exc

    def close(self) -> None:
        if self._cursor is None:
            return
        cursor, self._cursor = self._cursor, None
        cursor.close()


class BatchInsert(Insert):
    """Buffer rows and write them as multi-row parameterized INSERT statements.

    Batch size (statement cadence) and commit interval (transaction cadence) are independent: every
    ``commit_every`` appended rows the open transaction is committed, every ``batch_rows`` buffered
    rows the batch statement is executed, opening a transaction first if none is open. Rows still
    buffered when a commit falls due are written in the next transaction.

    Args:
        conn: destination connection; the engine owns its transactions until ``flush``
        columns: destination columns, in the order the source yields values
        batch_rows: rows per INSERT statement
        commit_every: rows per transaction
        placeholder: statement placeholder style, see :func:`build_insert_sql`
    """

    def __init__(
            self,
            conn: sa.Connection,
            columns: Sequence[str],
            schema: str | None,
            table: str,
            batch_rows: int = 100,
            commit_every: int = 500,
            *,
            placeholder: str = 'dollar',
    ):
        super().__init__(columns)
        if not isinstance(batch_rows, int) or batch_rows <= 0:
            raise ConfigError(f'batch_rows must be a positive integer, got {batch_rows!r}')
        if not isinstance(commit_every, int) or commit_every <= 0:
            raise ConfigError(f'commit_every must be a positive integer, got {commit_every!r}')
        if placeholder not in PLACEHOLDER_STYLES:
            raise ConfigError(f'placeholder must be one of {PLACEHOLDER_STYLES}, got {placeholder!r}')

        self._conn = conn
        self._schema = schema
        self._table = table
        self._batch_rows = batch_rows
        self._commit_every = commit_every
        self._placeholder = placeholder
        self._server_prepare = _DriverInfo.of(conn).supports_copy

        self._col_count = len(self._columns)
        self._buf: list[Any] = [None] * (self._col_count * batch_rows)
        self._buf_pos = 0
        self._row_pos = 0  # rows in the current batch
        self._tx_row_count = 0  # rows in the current commit epoch

        self._tx: sa.RootTransaction | None = None
        self._tx_opened = False
        self._error: BaseException | None = None
        self._batch_count = 0
        self._commit_count = 0

        self._stmt = self._prepare(batch_rows)

    @property
    def batch_rows(self) -> int:
        return self._batch_rows

    @property
    def commit_every(self) -> int:
        return self._commit_every

    @property
    def batch_count(self) -> int:
        """Number of INSERT statements executed so far."""
        return self._batch_count

    @property
    def commit_count(self) -> int:
        """Number of transactions committed so far."""
        return self._commit_count

    @property
    def in_transaction(self) -> bool:
        return self._tx is not None

    def _prepare(self, row_count: int) -> PreparedInsert:
        sql = build_insert_sql(self._schema, self._table, self._columns, row_count, self._placeholder)
        try:
            cursor = _raw_cursor(self._conn)
        except Exception as exc:
            raise LoadError(f'could not open cursor for {qualify(self._schema, self._table)}: {exc}') from exc
        return PreparedInsert(
            cursor, sql, row_count, self._col_count,
            server_prepare=self._server_prepare,
            named=self._placeholder == 'named',
        )

    def _begin(self) -> None:
        if self._tx is not None:
            return
        try:
            self._tx = self._conn.begin()
        except Exception as exc:
            raise LoadError(f'could not begin transaction: {exc}') from exc
        self._tx_opened = True

    def _commit(self) -> None:
        if self._tx is None:
            return
        try:
            self._tx.commit()
        except Exception as exc:
            self._error = exc
            raise LoadError(f'commit failed after {self._total_row_count} rows: {exc}') from exc
        self._tx = None
        self._commit_count += 1

    def _write(self, stmt: PreparedInsert, params: Sequence[Any]) -> None:
        try:
            stmt.execute(params)
        except LoadError as exc:
            # the buffered rows are gone with the failed statement
            self._error = exc
            self._buf_pos = 0
            self._row_pos = 0
            raise
        self._batch_count += 1
        self._buf_pos = 0
        self._row_pos = 0

    def _check_open(self) -> None:
        if self._closed:
            raise LoadError('insert engine is closed')
        if self._error is not None:
            raise LoadError('insert engine was aborted by an earlier error') from self._error

    def append(self, rows: RowCursor) -> None:
        self._check_open()
        rows.scan(self._values)
        # a commit epoch starts with its first row
        self._begin()

        end = self._buf_pos + self._col_count
        self._buf[self._buf_pos:end] = self._values
        self._buf_pos = end

        self._row_pos += 1
        self._tx_row_count += 1
        self._total_row_count += 1

        # the commit boundary is checked before the batch boundary; when both fall on this row the
        # transaction is committed and then reopened for the batch
        if self._total_row_count % self._commit_every == 0:
            self._commit()
            self._tx_row_count = 0

        if self._row_pos >= self._batch_rows:
            self._begin()
            self._write(self._stmt, self._buf)

    def flush(self) -> int:
        self._check_open()
        if self._row_pos > 0:
            self._begin()
            stmt = self._prepare(self._row_pos)
            try:
                self._write(stmt, self._buf[:self._buf_pos])
            finally:
                stmt.close()

        if self._tx is not None:
            self._commit()
            self._tx_row_count = 0
        elif self._tx_opened:
            raise LoadError('no open transaction to commit; flush() must be called once after the last append()')
        # nothing was ever appended: there is no transaction to finish

        return self._total_row_count

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stmt.close()
