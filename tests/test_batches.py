from datetime import date, timedelta
from decimal import Decimal

import pytest

from stockledger.core.config import settings
from stockledger.models.stock_batch import StockBatch
from stockledger.models.stock_movement import MovementType, StockMovementAllocation
from stockledger.services.batches import (
    add_batch,
    days_until_expiry,
    expiry_status,
    list_batches,
    near_expiry,
    update_expiry,
    write_off_batch,
)
from stockledger.services.errors import InsufficientStockError, InvalidMovementError, NotFoundError
from stockledger.services.ledger import apply_movement
from stockledger.services.reports import verify_ledger
from stockledger.utils.timezone import today_local


def in_days(n):
    return today_local() + timedelta(days=n)


def batch_total(db, product_id):
    return sum(b.quantity for b in db.query(StockBatch).filter_by(product_id=product_id, is_active=True))


def test_add_batch_writes_batch_and_purchase(db, make_product):
    p = make_product(stock=4)
    batch, mv = add_batch(db, product_id=p.id, batch_number="LOT-A1", quantity=30,
                          expiry_date=in_days(200), supplier="Siam Pharma",
                          cost_per_unit=Decimal("1.25"))
    db.commit()

    assert batch.quantity == 30
    assert batch.received_quantity == 30
    assert batch.is_active
    assert mv.movement_type is MovementType.PURCHASE
    assert mv.batch_id == batch.id
    assert mv.quantity == 30
    assert mv.reason == "Batch receipt: LOT-A1"
    assert mv.notes == "Supplier: Siam Pharma"
    assert mv.unit_cost == Decimal("1.25")
    db.refresh(p)
    assert p.stock_quantity == 34
    assert verify_ledger(db, p.id) == []


@pytest.mark.parametrize("number, qty", [("", 5), ("LOT", 0), ("LOT", -2)])
def test_add_batch_validation(db, make_product, number, qty):
    p = make_product()
    with pytest.raises(InvalidMovementError):
        add_batch(db, product_id=p.id, batch_number=number, quantity=qty)


def test_fefo_consumes_earliest_expiry_first(db, make_product):
    p = make_product()
    later, _ = add_batch(db, product_id=p.id, batch_number="LATER", quantity=5, expiry_date=in_days(60))
    sooner, _ = add_batch(db, product_id=p.id, batch_number="SOONER", quantity=5, expiry_date=in_days(10))
    no_exp, _ = add_batch(db, product_id=p.id, batch_number="NOEXP", quantity=5)

    sale = apply_movement(db, product_id=p.id, movement_type="sale", quantity=-7)
    db.commit()

    assert (sooner.quantity, sooner.is_active) == (0, False)
    assert (later.quantity, later.is_active) == (3, True)
    assert no_exp.quantity == 5

    allocs = db.query(StockMovementAllocation).filter_by(movement_id=sale.id).all()
    assert sorted((a.batch_id, a.quantity) for a in allocs) == sorted([(sooner.id, -5), (later.id, -2)])


def test_fifo_policy(db, make_product, monkeypatch):
    monkeypatch.setattr(settings, "BATCH_CONSUMPTION_POLICY", "fifo")
    p = make_product()
    first, _ = add_batch(db, product_id=p.id, batch_number="FIRST", quantity=5, expiry_date=in_days(300))
    second, _ = add_batch(db, product_id=p.id, batch_number="SECOND", quantity=5, expiry_date=in_days(20))

    apply_movement(db, product_id=p.id, movement_type="sale", quantity=-4)
    assert first.quantity == 1
    assert second.quantity == 5


def test_sales_skip_expired_batches(db, make_product):
    p = make_product()
    expired, _ = add_batch(db, product_id=p.id, batch_number="OLD", quantity=5, expiry_date=in_days(-1))
    fresh, _ = add_batch(db, product_id=p.id, batch_number="NEW", quantity=5, expiry_date=in_days(100))

    apply_movement(db, product_id=p.id, movement_type="sale", quantity=-5)
    assert expired.quantity == 5
    assert fresh.quantity == 0


def test_expired_stock_is_not_sellable(db, make_product):
    p = make_product(stock=2)
    expired, _ = add_batch(db, product_id=p.id, batch_number="OLD", quantity=10, expiry_date=in_days(-1))
    db.commit()

    with pytest.raises(InsufficientStockError) as exc:
        apply_movement(db, product_id=p.id, movement_type="sale", quantity=-10)
    assert exc.value.details["available"] == 2
    db.rollback()

    apply_movement(db, product_id=p.id, movement_type="sale", quantity=-2)
    db.commit()
    db.refresh(p)
    assert (p.stock_quantity, expired.quantity) == (10, 10)
    assert batch_total(db, p.id) <= p.stock_quantity

    with pytest.raises(InvalidMovementError):
        apply_movement(db, product_id=p.id, movement_type="sale", quantity=-1, batch_id=expired.id)
    db.rollback()

    write_off_batch(db, expired.id)
    db.commit()
    db.refresh(p)
    assert p.stock_quantity == 0
    assert verify_ledger(db, p.id) == []


def test_batch_shortfall_is_untracked_stock(db, make_product):
    p = make_product(stock=10)
    batch, _ = add_batch(db, product_id=p.id, batch_number="B1", quantity=5, expiry_date=in_days(50))

    apply_movement(db, product_id=p.id, movement_type="sale", quantity=-12)
    db.commit()
    db.refresh(p)
    assert p.stock_quantity == 3
    assert (batch.quantity, batch.is_active) == (0, False)


def test_explicit_batch_checks(db, make_product):
    p = make_product(stock=10)
    other = make_product(name="Ibuprofen 400mg")
    batch, _ = add_batch(db, product_id=p.id, batch_number="B1", quantity=2)
    add_batch(db, product_id=other.id, batch_number="B2", quantity=10)

    with pytest.raises(InvalidMovementError):
        apply_movement(db, product_id=p.id, movement_type="damaged", quantity=-3, batch_id=batch.id)
    with pytest.raises(InvalidMovementError):
        apply_movement(db, product_id=other.id, movement_type="sale", quantity=-1, batch_id=batch.id)
    with pytest.raises(NotFoundError):
        apply_movement(db, product_id=p.id, movement_type="sale", quantity=-1, batch_id=9999)


def test_positive_adjustment_reactivates_batch(db, make_product):
    p = make_product()
    batch, _ = add_batch(db, product_id=p.id, batch_number="B1", quantity=2)
    apply_movement(db, product_id=p.id, movement_type="sale", quantity=-2, batch_id=batch.id)
    assert not batch.is_active

    apply_movement(db, product_id=p.id, movement_type="return", quantity=1, batch_id=batch.id)
    assert (batch.quantity, batch.is_active) == (1, True)


@pytest.mark.parametrize("offset, expected", [
    (-1, "critical"),
    (0, "critical"),
    (10, "critical"),
    (30, "critical"),
    (31, "warning"),
    (90, "warning"),
    (91, "normal"),
    (400, "normal"),
])
def test_expiry_status_buckets(offset, expected):
    today = date(2025, 3, 1)
    expiry = today + timedelta(days=offset)
    assert days_until_expiry(expiry, as_of=today) == offset
    assert expiry_status(expiry, as_of=today) == expected


def test_expiry_status_without_date():
    assert days_until_expiry(None) is None
    assert expiry_status(None) == "normal"


def test_near_expiry_and_listing(db, make_product):
    p = make_product()
    soon, _ = add_batch(db, product_id=p.id, batch_number="SOON", quantity=3, expiry_date=in_days(5))
    gone, _ = add_batch(db, product_id=p.id, batch_number="GONE", quantity=3, expiry_date=in_days(-3))
    add_batch(db, product_id=p.id, batch_number="LATER", quantity=3, expiry_date=in_days(120))
    add_batch(db, product_id=p.id, batch_number="NONE", quantity=3)
    db.commit()

    assert [b.id for b in near_expiry(db, within_days=30)] == [gone.id, soon.id]
    assert len(near_expiry(db, within_days=365)) == 3
    assert len(list_batches(db, p.id)) == 4


def test_update_expiry_bulk(db, make_product):
    p = make_product()
    a, _ = add_batch(db, product_id=p.id, batch_number="A", quantity=1, expiry_date=in_days(5))
    b, _ = add_batch(db, product_id=p.id, batch_number="B", quantity=1, expiry_date=in_days(6))

    new_date = in_days(365)
    rows = update_expiry(db, [a.id, b.id], new_date)
    assert {r.expiry_date for r in rows} == {new_date}
    assert a.quantity == 1

    with pytest.raises(NotFoundError):
        update_expiry(db, [a.id, 4242], new_date)
    with pytest.raises(InvalidMovementError):
        update_expiry(db, [], new_date)


def test_write_off_batch(db, make_product):
    p = make_product(stock=2)
    batch, _ = add_batch(db, product_id=p.id, batch_number="EXP-1", quantity=6, expiry_date=in_days(-10))

    mv = write_off_batch(db, batch.id, movement_type="expired", actor="pharmacist-7")
    db.commit()

    assert mv.movement_type is MovementType.EXPIRED
    assert mv.quantity == -6
    assert mv.batch_id == batch.id
    assert mv.created_by == "pharmacist-7"
    assert (batch.quantity, batch.is_active) == (0, False)
    db.refresh(p)
    assert p.stock_quantity == 2
    assert verify_ledger(db, p.id) == []

    with pytest.raises(InvalidMovementError):
        write_off_batch(db, batch.id)


def test_write_off_rejects_non_write_off_types(db, make_product):
    p = make_product()
    batch, _ = add_batch(db, product_id=p.id, batch_number="B", quantity=1)
    with pytest.raises(InvalidMovementError):
        write_off_batch(db, batch.id, movement_type="sale")


def test_batch_rows_never_deleted(db, make_product):
    p = make_product()
    batch, _ = add_batch(db, product_id=p.id, batch_number="B", quantity=1)
    apply_movement(db, product_id=p.id, movement_type="sale", quantity=-1)
    db.commit()
    assert db.get(StockBatch, batch.id) is not None
    assert list_batches(db, p.id) == []
    assert len(list_batches(db, p.id, active_only=False)) == 1
