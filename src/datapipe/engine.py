from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import sqlalchemy as sa


@dataclass(frozen=True)
class _DriverInfo:
    dialect: str
    driver: str
    paramstyle: str

    @classmethod
    def of(cls, conn: sa.Connection) -> '_DriverInfo':
        dialect = conn.dialect
        return cls(
            dialect=dialect.name,
            driver=getattr(dialect, 'driver', '') or '',  # e.g. 'psycopg', 'pysqlite', 'pyodbc'
            paramstyle=getattr(dialect, 'paramstyle', '') or '',
        )

    @property
    def supports_copy(self) -> bool:
        """True when the destination speaks the postgres COPY protocol through psycopg 3."""
        return self.dialect == 'postgresql' and self.driver == 'psycopg'


def _dbapi_connection(conn: sa.Connection) -> Any:
    """Return the driver connection underneath a sqlalchemy connection."""
    return conn.connection.dbapi_connection


def _raw_cursor(conn: sa.Connection) -> Any:
    """Open a driver cursor for hand-built statements.

    psycopg 3 only accepts ``$N`` placeholders through ``RawCursor``; every other driver gets its
    plain DB-API cursor.
    """
    raw = _dbapi_connection(conn)
    if _DriverInfo.of(conn).supports_copy:
        import psycopg

        return psycopg.RawCursor(raw)
    return raw.cursor()


def qualify(schema: str | None, table: str) -> str:
    """Render ``schema.table`` (or just ``table`` when there is no schema)."""
    return f'{schema}.{table}' if schema else table


def split_table_name(name: str, default_schema: str | None = None) -> tuple[str | None, str]:
    """Split ``'schema.table'`` into its parts.

    Only the first dot separates schema from table. A bare name gets ``default_schema``.
    """
    name = name.strip()
    if not name:
        raise ValueError('table name must not be empty')
    schema, sep, table = name.partition('.')
    if not sep:
        return default_schema, schema
    if not schema or not table:
        raise ValueError(f'invalid table name: {name!r}')
    return schema, table


def _mask_url(url: sa.URL | str) -> str:
    """Render a connection url for logging, hiding any password."""
    if isinstance(url, str):
        url = sa.make_url(url)
    return url.render_as_string(hide_password=True)


def quote_ident(ident: str) -> str:
    return '"' + str(ident).replace('"', '""') + '"'
