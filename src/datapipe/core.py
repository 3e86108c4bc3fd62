from __future__ import annotations

import logging
import time
from datetime import timedelta

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from .cursor import RowCursor
from .db.insert.base import Insert
from .db.insert.dispatch import new_insert
from .engine import _DriverInfo, qualify
from .errors import ConfigError, VerificationError
from .sql import scan_sql_query

logger = logging.getLogger(__name__)


def clear_table(conn: sa.Connection, schema: str | None, table: str) -> None:
    """Remove every row from the destination table (sqlite has no TRUNCATE)."""
    target = qualify(schema, table)
    if _DriverInfo.of(conn).dialect == 'sqlite':
        conn.execute(sa.text(f'DELETE FROM {target}'))
    else:
        conn.execute(sa.text(f'TRUNCATE TABLE {target}'))


def count_rows(conn: sa.Connection, schema: str | None, table: str) -> int:
    return conn.execute(sa.text(f'SELECT COUNT(*) FROM {qualify(schema, table)}')).scalar_one()


def copy_rows(insert: Insert, rows: RowCursor, *, progress_every: int | None = None) -> int:
    """Drive the row loop: append every source row, then flush once.

    ``flush`` runs even when the source is empty so the engine can finish its transaction.
    """
    i = 0
    while rows.advance():
        insert.append(rows)
        i += 1
        if progress_every and i % progress_every == 0:
            logger.info('%d rows appended', i)
    return insert.flush()


def copy_table(
        src_engine: Engine,
        dst_engine: Engine,
        select_sql: str,
        schema: str | None,
        table: str,
        *,
        batch_rows: int = 100,
        commit_every: int = 500,
        truncate: bool = True,
        verify: bool = True,
        strategy: str | None = None,
) -> int:
    """Copy the result of ``select_sql`` on the source into ``schema.table`` on the destination.

    Parameters:
        src_engine : sqlalchemy.Engine
            Source database; ``select_sql`` is run there with streaming results.
        dst_engine : sqlalchemy.Engine
            Destination database.
        select_sql : str
            SELECT whose columns are named like, and ordered as, the destination columns to fill.
        batch_rows, commit_every : int
            Rows per INSERT statement and rows per transaction (batched strategy only).
        truncate : bool, default True
            Empty the destination table first.
        verify : bool, default True
            Count destination rows afterwards and raise VerificationError on a mismatch.
        strategy : str | None
            Force 'copy' or 'batch'; by default chosen from the destination driver.

    Returns the number of rows loaded.
    """
    target = qualify(schema, table)
    for name, value in (('batch_rows', batch_rows), ('commit_every', commit_every)):
        if not isinstance(value, int) or value <= 0:
            raise ConfigError(f'{name} must be a positive integer, got {value!r}')

    if truncate:
        with dst_engine.begin() as conn:
            clear_table(conn, schema, table)
        logger.info('cleared %s', target)

    start = time.monotonic()
    with src_engine.connect() as src_conn, dst_engine.connect() as dst_conn:
        with scan_sql_query(select_sql, src_conn) as rows:
            with new_insert(
                    dst_conn, rows.columns, schema, table,
                    batch_rows=batch_rows, commit_every=commit_every, strategy=strategy,
            ) as insert:
                logger.info('loading %s with %s', target, type(insert).__name__)
                total = copy_rows(insert, rows, progress_every=commit_every)

    logger.info('%d rows in %s', total, timedelta(seconds=time.monotonic() - start))

    if verify:
        with dst_engine.connect() as conn:
            found = count_rows(conn, schema, table)
        if found < total or (truncate and found != total):
            raise VerificationError(f'{target} holds {found} rows after loading {total}')
        logger.info('%s holds %d rows', target, found)
    return total
