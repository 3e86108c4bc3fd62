from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

import sqlalchemy as sa
from dotenv import load_dotenv

from .engine import _mask_url, qualify, split_table_name
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_ROWS = 100
DEFAULT_COMMIT_EVERY = 500
DEFAULT_SCHEMA = 'public'


def _env_str(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, '')
    if not value:
        raise ConfigError(f'Missing ENV variable: {name}')
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        value = int(env.get(name, ''))
    except ValueError:
        value = default
    logger.info('%s=%d', name, value)
    return value


def _with_driver(uri: str, driver: str | None) -> sa.URL:
    url = sa.make_url(uri)
    if driver:
        url = url.set(drivername=driver)
    return url


@dataclass(frozen=True)
class Config:
    src_uri: str
    select_sql: str
    dst_uri: str
    table: str
    schema: str | None = DEFAULT_SCHEMA
    src_driver: str | None = None
    dst_driver: str | None = None
    batch_rows: int = DEFAULT_BATCH_ROWS
    commit_every: int = DEFAULT_COMMIT_EVERY
    strategy: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, *, dotenv: bool = True) -> 'Config':
        """Read the configuration from environment variables.

        When ``environ`` is omitted, ``os.environ`` is used, after loading a ``.env`` file if
        ``dotenv`` is set. Missing required variables raise ConfigError; unparsable counts fall back
        to their defaults.
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        batch_rows = _env_int(environ, 'MAX_ROW_BUF_SZ', DEFAULT_BATCH_ROWS)
        commit_every = _env_int(environ, 'MAX_ROW_TX_COMMIT', DEFAULT_COMMIT_EVERY)

        src_uri = _env_str(environ, 'SRC_DB_URI')
        select_sql = _env_str(environ, 'SRC_DB_SELECT_SQL')
        dst_uri = _env_str(environ, 'DST_DB_URI')
        table_name = _env_str(environ, 'DST_DB_TABLE_NAME')

        try:
            schema, table = split_table_name(table_name, environ.get('DST_DB_SCHEMA') or DEFAULT_SCHEMA)
        except ValueError as exc:
            raise ConfigError(f'DST_DB_TABLE_NAME: {exc}') from exc

        cfg = cls(
            src_uri=src_uri,
            select_sql=select_sql,
            dst_uri=dst_uri,
            table=table,
            schema=schema,
            src_driver=environ.get('SRC_DB_DRIVER') or None,
            dst_driver=environ.get('DST_DB_DRIVER') or None,
            batch_rows=batch_rows,
            commit_every=commit_every,
            strategy=environ.get('DATAPIPE_STRATEGY') or None,
        )
        cfg.log()
        return cfg

    def src_url(self) -> sa.URL:
        try:
            return _with_driver(self.src_uri, self.src_driver)
        except sa.exc.ArgumentError as exc:
            raise ConfigError(f'invalid SRC_DB_URI: {exc}') from exc

    def dst_url(self) -> sa.URL:
        try:
            return _with_driver(self.dst_uri, self.dst_driver)
        except sa.exc.ArgumentError as exc:
            raise ConfigError(f'invalid DST_DB_URI: {exc}') from exc

    def log(self) -> None:
        logger.info('SRC_DB_URI=%s', _mask_url(self.src_url()))
        logger.info('SRC_DB_SELECT_SQL=%s', self.select_sql)
        logger.info('DST_DB_URI=%s', _mask_url(self.dst_url()))
        logger.info('DST_DB_TABLE_NAME=%s', qualify(self.schema, self.table))
