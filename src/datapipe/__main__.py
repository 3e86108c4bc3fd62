from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Sequence

import sqlalchemy as sa
from dotenv import load_dotenv

from .config import Config
from .core import copy_table
from .db.insert.dispatch import STRATEGIES
from .errors import DatapipeError

logger = logging.getLogger('datapipe')


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog='datapipe',
        description='Copy the rows of a source SELECT into a destination table. '
                    'Connections and the query are read from SRC_DB_* / DST_DB_* environment variables.',
    )
    p.add_argument('--batch-rows', type=int, help='rows per INSERT statement (MAX_ROW_BUF_SZ)')
    p.add_argument('--commit-every', type=int, help='rows per transaction (MAX_ROW_TX_COMMIT)')
    p.add_argument('--strategy', choices=STRATEGIES, help='force COPY streaming or batched INSERTs')
    p.add_argument('--env-file', help='read environment variables from this file')
    p.add_argument('--no-truncate', action='store_true', help='keep existing destination rows')
    p.add_argument('--no-verify', action='store_true', help='skip the destination row count check')
    p.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s - %(message)s',
    )

    try:
        if args.env_file:
            load_dotenv(args.env_file, override=True)
        cfg = Config.from_env()
        overrides = {
            'batch_rows': args.batch_rows,
            'commit_every': args.commit_every,
            'strategy': args.strategy,
        }
        cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})

        src_engine = sa.create_engine(cfg.src_url())
        dst_engine = sa.create_engine(cfg.dst_url())
        try:
            copy_table(
                src_engine, dst_engine, cfg.select_sql, cfg.schema, cfg.table,
                batch_rows=cfg.batch_rows,
                commit_every=cfg.commit_every,
                truncate=not args.no_truncate,
                verify=not args.no_verify,
                strategy=cfg.strategy,
            )
        finally:
            src_engine.dispose()
            dst_engine.dispose()
    except (DatapipeError, sa.exc.SQLAlchemyError) as exc:
        logger.error('%s', exc)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
