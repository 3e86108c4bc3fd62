from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import polars as pl
import pytest
import sqlalchemy as sa


@dataclass
class Executed:
    sql: str
    params: tuple | dict
    kwargs: dict
    tx: Any


class FakeTransaction:
    def __init__(self, conn: 'FakeConnection'):
        self._conn = conn
        self.state = 'open'

    def commit(self):
        if self._conn.fail_commit:
            raise sa.exc.OperationalError('COMMIT', None, Exception('connection reset'))
        self.state = 'committed'
        self._conn.current_tx = None

    def rollback(self):
        self.state = 'rolled back'
        self._conn.current_tx = None


@dataclass
class FakeCopy:
    sql: str
    rows: list = field(default_factory=list)
    outcome: str = 'open'
    error: BaseException | None = None
    fail_write: bool = False

    def write_row(self, row):
        if self.fail_write:
            raise RuntimeError('server closed the connection unexpectedly')
        self.rows.append(tuple(row))


class FakeCursor:
    def __init__(self, raw: 'FakeDBAPIConnection'):
        self._raw = raw
        self.closed = False

    def execute(self, sql, params=None, **kwargs):
        if self._raw.fail_execute:
            raise RuntimeError('server closed the connection unexpectedly')
        params = dict(params) if isinstance(params, dict) else tuple(params or ())
        self._raw.executed.append(Executed(sql, params, kwargs, self._raw.owner.current_tx))

    @contextmanager
    def copy(self, sql):
        cp = FakeCopy(sql, fail_write=self._raw.fail_write)
        self._raw.copies.append(cp)
        try:
            yield cp
        except BaseException as exc:
            cp.outcome = 'cancelled'
            cp.error = exc
            raise
        if self._raw.fail_end:
            cp.outcome = 'rejected'
            raise RuntimeError('duplicate key value violates unique constraint "prices_pkey"')
        cp.outcome = 'ended'

    def close(self):
        self.closed = True


class FakeDBAPIConnection:
    def __init__(self, owner: 'FakeConnection'):
        self.owner = owner
        self.executed: list[Executed] = []
        self.copies: list[FakeCopy] = []
        self.cursors: list[FakeCursor] = []
        self.fail_execute = False
        self.fail_write = False
        self.fail_end = False

    def cursor(self):
        cur = FakeCursor(self)
        self.cursors.append(cur)
        return cur


class FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """Just enough of sqlalchemy.Connection for the insert engines."""

    def __init__(self, dialect='postgresql', driver='fake', paramstyle='pyformat', catalog=None):
        self.dialect = SimpleNamespace(name=dialect, driver=driver, paramstyle=paramstyle)
        self.dbapi = FakeDBAPIConnection(self)
        self.connection = SimpleNamespace(dbapi_connection=self.dbapi)
        self.catalog = list(catalog or [])
        self.queries: list[tuple[str, Any]] = []
        self.transactions: list[FakeTransaction] = []
        self.current_tx: FakeTransaction | None = None
        self.fail_commit = False
        self.fail_catalog = False

    def begin(self):
        tx = FakeTransaction(self)
        self.transactions.append(tx)
        self.current_tx = tx
        return tx

    def execute(self, stmt, params=None):
        if self.fail_catalog:
            raise sa.exc.OperationalError(str(stmt), params, Exception('catalog unavailable'))
        self.queries.append((str(stmt), params))
        return FakeResult(self.catalog)

    @property
    def committed(self) -> list[FakeTransaction]:
        return [tx for tx in self.transactions if tx.state == 'committed']


@pytest.fixture()
def fake_conn():
    return FakeConnection()


@pytest.fixture()
def make_conn():
    return FakeConnection


@pytest.fixture()
def items_df():
    return pl.from_records([
        {'id': 1, 'name': 'Sampo', 'price': 12.5},
        {'id': 2, 'name': 'Kantele', 'price': 7.5},
        {'id': 3, 'name': 'Aino', 'price': 99.0},
        {'id': 4, 'name': 'Pohjola', 'price': 3.25},
        {'id': 5, 'name': 'Tuoni', 'price': 41.0},
        {'id': 6, 'name': 'Louhi', 'price': 28.0},
        {'id': 7, 'name': 'Kullervo', 'price': 30.0},
    ])


def _items_table(meta: sa.MetaData) -> sa.Table:
    return sa.Table(
        'items', meta,
        sa.Column('id', sa.Integer),
        sa.Column('name', sa.String),
        sa.Column('price', sa.Float),
    )


@pytest.fixture()
def src_engine(tmp_path, items_df):
    eng = sa.create_engine(f'sqlite:///{tmp_path / "src.db"}')
    meta = sa.MetaData()
    t_items = _items_table(meta)
    meta.create_all(eng)
    with eng.begin() as conn:
        conn.execute(t_items.insert(), list(items_df.iter_rows(named=True)))
    yield eng
    eng.dispose()


@pytest.fixture()
def dst_engine(tmp_path):
    eng = sa.create_engine(f'sqlite:///{tmp_path / "dst.db"}')
    meta = sa.MetaData()
    _items_table(meta)
    meta.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def dst_rows(dst_engine):
    def _read() -> list[tuple]:
        with dst_engine.connect() as conn:
            return [tuple(r) for r in conn.execute(sa.text('SELECT id, name, price FROM items ORDER BY id'))]
    return _read
