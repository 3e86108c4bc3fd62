from .config import Config
from .core import clear_table, copy_rows, copy_table, count_rows
from .cursor import FrameCursor, ResultCursor, RowCursor
from .db.insert.base import Insert
from .db.insert.bulk import BatchInsert, PreparedInsert, build_insert_sql
from .db.insert.copyin import StreamCopyInsert, coerce_row, find_column_types
from .db.insert.dispatch import new_insert
from .errors import ConfigError, DatapipeError, DecodeError, LoadError, MetadataError, VerificationError
from .sql import scan_df, scan_sql_query

__all__ = [
    'BatchInsert',
    'Config',
    'ConfigError',
    'DatapipeError',
    'DecodeError',
    'FrameCursor',
    'Insert',
    'LoadError',
    'MetadataError',
    'PreparedInsert',
    'ResultCursor',
    'RowCursor',
    'StreamCopyInsert',
    'VerificationError',
    'build_insert_sql',
    'clear_table',
    'coerce_row',
    'copy_rows',
    'copy_table',
    'count_rows',
    'find_column_types',
    'new_insert',
    'scan_df',
    'scan_sql_query',
]
