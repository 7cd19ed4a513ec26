# stockledger/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from stockledger.core.config import settings
from stockledger.core.logging_setup import setup_logging
from stockledger.db.base import Base
from stockledger.db.session import engine

logger = logging.getLogger(__name__)


def existing_tables() -> set:
    return set(inspect(engine).get_table_names())


def init_db(drop: bool = False) -> None:
    before = existing_tables()
    if drop:
        logger.warning("dropping all stock ledger tables")
        Base.metadata.drop_all(bind=engine)
        before = set()
    Base.metadata.create_all(bind=engine)
    created = sorted(set(Base.metadata.tables) - before)
    logger.info("tables created: %s", created or "none (already up to date)")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the stock ledger tables")
    parser.add_argument("--drop", action="store_true",
                        help="drop existing tables first (destroys data)")
    args = parser.parse_args(argv)

    setup_logging(settings)
    try:
        init_db(drop=args.drop)
    except SQLAlchemyError:
        logger.exception("database initialisation failed")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
