from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa

from datapipe.db.insert.base import Insert
from datapipe.db.insert.bulk import BatchInsert
from datapipe.db.insert.copyin import StreamCopyInsert
from datapipe.engine import _DriverInfo
from datapipe.errors import ConfigError

STRATEGIES = ('copy', 'batch')

# DB-API paramstyle -> BatchInsert placeholder style
_PLACEHOLDERS = {
    'qmark': 'qmark',
    'numeric': 'numeric',
    'numeric_dollar': 'dollar',
    'format': 'format',
    'pyformat': 'format',
    'named': 'named',
}


def new_insert(
        conn: sa.Connection,
        columns: Sequence[str],
        schema: str | None,
        table: str,
        *,
        batch_rows: int = 100,
        commit_every: int = 500,
        strategy: str | None = None,
) -> Insert:
    """Pick the bulk-loading strategy for the destination connection.

    postgres through psycopg 3 streams with COPY; every other destination gets batched INSERTs using
    the placeholder style of its driver. ``strategy`` ('copy' or 'batch') overrides the choice.
    """
    info = _DriverInfo.of(conn)  # e.g. postgresql+psycopg, sqlite+pysqlite, mssql+pyodbc

    if strategy is not None and strategy not in STRATEGIES:
        raise ConfigError(f'strategy must be one of {STRATEGIES}, got {strategy!r}')

    if strategy == 'copy' or (strategy is None and info.supports_copy):
        if not info.supports_copy:
            raise ConfigError(f'COPY streaming is not available for {info.dialect}+{info.driver}')
        return StreamCopyInsert(conn, columns, schema, table)

    if info.supports_copy:
        # psycopg 3 runs $N statements through its raw cursor
        placeholder = 'dollar'
    elif info.paramstyle in _PLACEHOLDERS:
        placeholder = _PLACEHOLDERS[info.paramstyle]
    else:
        raise ConfigError(f'no INSERT placeholder style for {info.dialect}+{info.driver} '
                          f'(paramstyle {info.paramstyle!r})')

    return BatchInsert(
        conn, columns, schema, table,
        batch_rows=batch_rows,
        commit_every=commit_every,
        placeholder=placeholder,
    )
