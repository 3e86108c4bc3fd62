import polars as pl
import pytest

from datapipe import ConfigError, DecodeError, LoadError, MetadataError, StreamCopyInsert, coerce_row, scan_df
from datapipe.db.insert.copyin import COLUMN_TYPES_SQL, copy_sql

CATALOG = [
    ('id', 'integer'),
    ('price', 'numeric'),
    ('name', 'text'),
    ('unused', 'date'),
]


@pytest.fixture()
def pg_conn(make_conn):
    return make_conn(dialect='postgresql', driver='psycopg', catalog=CATALOG)


@pytest.fixture()
def prices_df():
    return pl.DataFrame({
        'id': [1, 2, 3],
        'price': [b'3.14', None, b'10'],
        'name': [b'abc', b'Kalevala', None],
    })


def _append_all(engine, df):
    rows = scan_df(df)
    while rows.advance():
        engine.append(rows)


def test_construction_resolves_types_and_opens_stream(pg_conn):
    ir = StreamCopyInsert(pg_conn, ['id', 'price', 'name', 'missing'], 'public', 'prices')

    assert ir.column_types == ['integer', 'numeric', 'text', '']
    assert pg_conn.queries == [(COLUMN_TYPES_SQL, {'schema': 'public', 'table': 'prices'})]
    assert 'WHERE table_schema = :schema AND table_name = :table' in COLUMN_TYPES_SQL
    assert len(pg_conn.transactions) == 1
    assert pg_conn.transactions[0].state == 'open'
    assert pg_conn.dbapi.copies[0].sql == 'COPY "public"."prices" ("id", "price", "name", "missing") FROM STDIN'
    assert ir.streaming


def test_copy_sql_quotes_identifiers():
    assert copy_sql('my schema', 'we"ird', ['a']) == 'COPY "my schema"."we""ird" ("a") FROM STDIN'


def test_append_coerces_byte_values(pg_conn, prices_df):
    ir = StreamCopyInsert(pg_conn, ['id', 'price', 'name'], 'public', 'prices')
    _append_all(ir, prices_df)

    assert pg_conn.dbapi.copies[0].rows == [
        (1, 3.14, 'abc'),
        (2, None, 'Kalevala'),
        (3, 10.0, None),
    ]
    assert ir.total_row_count == 3


def test_flush_ends_stream_and_close_commits(pg_conn, prices_df):
    ir = StreamCopyInsert(pg_conn, ['id', 'price', 'name'], 'public', 'prices')
    _append_all(ir, prices_df)

    assert ir.flush() == 3
    assert pg_conn.dbapi.copies[0].outcome == 'ended'
    assert pg_conn.transactions[0].state == 'open'

    ir.close()
    assert pg_conn.transactions[0].state == 'committed'
    assert all(c.closed for c in pg_conn.dbapi.cursors)

    ir.close()
    assert pg_conn.committed == pg_conn.transactions


def test_flush_twice_fails(pg_conn):
    ir = StreamCopyInsert(pg_conn, ['id'], 'public', 'prices')
    assert ir.flush() == 0
    with pytest.raises(LoadError, match='already terminated'):
        ir.flush()


def test_bad_numeric_bytes_abort_the_stream(pg_conn):
    ir = StreamCopyInsert(pg_conn, ['id', 'price'], 'public', 'prices')
    df = pl.DataFrame({'id': [1, 2], 'price': [b'abc', b'1.5']})
    rows = scan_df(df)
    rows.advance()

    with pytest.raises(DecodeError):
        ir.append(rows)
    assert pg_conn.dbapi.copies[0].outcome == 'cancelled'
    assert pg_conn.dbapi.copies[0].rows == []

    rows.advance()
    with pytest.raises(LoadError, match='aborted'):
        ir.append(rows)
    with pytest.raises(LoadError):
        ir.flush()

    ir.close()
    assert pg_conn.transactions[0].state == 'rolled back'


def test_stream_write_failure_raises_load_error(pg_conn):
    pg_conn.dbapi.fail_write = True
    ir = StreamCopyInsert(pg_conn, ['id'], 'public', 'prices')
    rows = scan_df(pl.DataFrame({'id': [1]}))
    rows.advance()

    with pytest.raises(LoadError, match='streaming row 1 failed') as info:
        ir.append(rows)
    assert isinstance(info.value.__cause__, RuntimeError)
    assert pg_conn.dbapi.copies[0].outcome == 'cancelled'
    assert ir.total_row_count == 0


def test_rejected_end_of_data_rolls_back_on_close(pg_conn, prices_df):
    pg_conn.dbapi.fail_end = True
    ir = StreamCopyInsert(pg_conn, ['id', 'price', 'name'], 'public', 'prices')
    _append_all(ir, prices_df)

    with pytest.raises(LoadError, match='could not terminate COPY') as info:
        ir.flush()
    assert isinstance(info.value.__cause__, RuntimeError)
    assert pg_conn.dbapi.copies[0].outcome == 'rejected'
    with pytest.raises(LoadError, match='aborted'):
        ir.flush()

    ir.close()
    assert pg_conn.transactions[0].state == 'rolled back'
    assert pg_conn.committed == []


def test_close_before_flush_rolls_back(pg_conn, prices_df):
    with StreamCopyInsert(pg_conn, ['id', 'price', 'name'], 'public', 'prices') as ir:
        _append_all(ir, prices_df)

    assert pg_conn.dbapi.copies[0].outcome == 'cancelled'
    assert pg_conn.transactions[0].state == 'rolled back'


def test_commit_failure_on_close(pg_conn):
    ir = StreamCopyInsert(pg_conn, ['id'], 'public', 'prices')
    ir.flush()
    pg_conn.fail_commit = True
    with pytest.raises(LoadError, match='commit failed'):
        ir.close()
    # already closed: nothing left to do
    ir.close()


def test_catalog_failure_raises_metadata_error(pg_conn):
    pg_conn.fail_catalog = True
    with pytest.raises(MetadataError):
        StreamCopyInsert(pg_conn, ['id'], 'public', 'prices')
    assert pg_conn.transactions[0].state == 'rolled back'
    assert pg_conn.dbapi.copies == []


def test_schema_required(pg_conn):
    with pytest.raises(ConfigError):
        StreamCopyInsert(pg_conn, ['id'], None, 'prices')


def test_coerce_row_in_place():
    values = [b'3.14', bytearray(b'abc'), None, memoryview(b'2.5'), 7, memoryview(b'ok')]
    coerce_row(values, ['numeric', 'text', 'numeric', 'double precision', 'numeric', ''])
    assert values == [3.14, 'abc', None, 2.5, 7, 'ok']


def test_coerce_row_rejects_invalid_text():
    with pytest.raises(DecodeError):
        coerce_row([b'\xff\xfe'], ['text'])
