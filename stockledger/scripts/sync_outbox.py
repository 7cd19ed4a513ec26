# stockledger/scripts/sync_outbox.py
"""
Push queued marketplace sync events from cron / a shell:

    python -m stockledger.scripts.sync_outbox            # pending only
    python -m stockledger.scripts.sync_outbox --retry    # + failed/degraded
"""
from __future__ import annotations

import argparse
import logging
from typing import Callable, Dict

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.logging_setup import setup_logging
from stockledger.services.sync import outbox
from stockledger.services.sync.adapter import ExternalSyncAdapter
from stockledger.services.sync.marketplace import MarketplaceSyncAdapter

logger = logging.getLogger(__name__)


def run(session_factory: Callable[[], Session], adapter: ExternalSyncAdapter,
        *, retry: bool = False) -> Dict[str, int]:
    db = session_factory()
    try:
        warnings = outbox.dispatch_events(db, adapter)
        retried = 0
        if retry:
            events, more = outbox.retry_events(db, adapter)
            retried = len(events)
            warnings += more
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    for w in warnings:
        logger.warning(w)
    return {"retried": retried, "warnings": len(warnings)}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Dispatch marketplace sync events")
    parser.add_argument("--retry", action="store_true",
                        help="also re-send failed and degraded events")
    args = parser.parse_args(argv)

    setup_logging(settings)
    if not settings.SYNC_ENABLED:
        logger.info("SYNC_ENABLED is off; nothing to do")
        return 0

    from stockledger.db.session import SessionLocal
    stats = run(SessionLocal, MarketplaceSyncAdapter.from_settings(), retry=args.retry)
    logger.info("sync outbox run finished: %s", stats)
    return 1 if stats["warnings"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
