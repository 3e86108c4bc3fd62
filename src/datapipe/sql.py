from __future__ import annotations

import polars as pl
import sqlalchemy as sa

from .cursor import FrameCursor, ResultCursor


def scan_df(df: pl.DataFrame) -> FrameCursor:
    """Expose a polars DataFrame as a row cursor.

    Parameters:
        df : polars.DataFrame
            The rows to load. Column order is the order values are appended in.
    """
    return FrameCursor(df)


def scan_sql_query(query: str, conn: sa.Connection) -> ResultCursor:
    """Run a raw SQL SELECT on the source connection and return a row cursor over its result.

    Parameters:
        query : str
            A raw SQL SELECT statement. Must be a SELECT; DML/DDL is not supported.
        conn : sqlalchemy.Connection
            Source connection. The caller owns it and must keep it open until the cursor is closed.

    Notes:
        - Rows are streamed (``stream_results=True``) so only the driver's fetch window is held in memory.
        - Column names come from the cursor metadata, in select-list order.
    """
    if not isinstance(query, str):
        raise TypeError('query must be a string')
    q_strip = query.lstrip().lower()
    if not (q_strip.startswith('select') or q_strip.startswith('with')):
        raise ValueError('scan_sql_query() expects a SELECT statement')

    res = conn.execution_options(stream_results=True).execute(sa.text(query))
    return ResultCursor(res)
