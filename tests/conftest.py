import itertools
import os

# must be set before stockledger.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SYNC_ENABLED"] = "true"
os.environ["SYNC_DISPATCH"] = "inline"
os.environ["SYNC_MAX_RETRIES"] = "2"
os.environ["SYNC_BACKOFF_SECONDS"] = "0"
os.environ["LOG_FILE"] = ""

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from stockledger.db.base import Base  # noqa: E402
from stockledger.models.product import Product  # noqa: E402
from stockledger.services.errors import SyncAdapterError  # noqa: E402
from stockledger.services.ledger import record_opening_balance  # noqa: E402
from stockledger.services.sync.adapter import SyncResult  # noqa: E402

_codes = itertools.count(1)


class FakeSyncAdapter:
    """Records pushes; can be told to fail N times, reject, or time out."""

    def __init__(self):
        self.calls = []
        self.fail_times = 0
        self.reject_with = None
        self.timeout = False

    def push_receiving_delta(self, sku, delta, new_quantity):
        self.calls.append((sku, delta, new_quantity))
        if self.timeout:
            raise SyncAdapterError("read timed out", timed_out=True)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise SyncAdapterError("connection refused")
        if self.reject_with:
            return SyncResult(False, self.reject_with)
        return SyncResult(True)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture()
def file_engine(tmp_path):
    """
    File-backed SQLite where every transaction starts with BEGIN IMMEDIATE,
    so concurrent writers queue on the database lock like row locks would.
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )

    @event.listens_for(eng, "connect")
    def _no_implicit_begin(dbapi_conn, record):
        dbapi_conn.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def make_product(db):
    def _make(name="Paracetamol 500mg", *, stock=0, cost="2.50", barcode=None,
              sku=None, name_en=None, min_stock=0, reorder=0, unit="tablet"):
        n = next(_codes)
        p = Product(
            sku=sku or f"SKU-{n:04d}",
            barcode=barcode or f"885{n:010d}",
            name=name,
            name_en=name_en,
            unit_of_measure=unit,
            stock_quantity=0,
            min_stock_level=min_stock,
            reorder_point=reorder,
            cost_price=Decimal(cost),
        )
        db.add(p)
        db.flush()
        if stock:
            record_opening_balance(db, product_id=p.id, quantity=stock)
        db.commit()
        return p

    return _make


@pytest.fixture()
def fake_adapter():
    return FakeSyncAdapter()


@pytest.fixture()
def client(session_factory, fake_adapter):
    from fastapi.testclient import TestClient

    from stockledger.api.deps import get_db, get_sync_adapter
    from stockledger.main import app

    def _get_db():
        s = session_factory()
        try:
            yield s
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_sync_adapter] = lambda: fake_adapter
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
