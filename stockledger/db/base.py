# stockledger/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All stock ledger tables inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from stockledger.models import (  # noqa: F401,E402
    product,
    stock_batch,
    stock_movement,
    counting,
    sync_event,
)
