# stockledger/api/router.py
from fastapi import APIRouter

from stockledger.api import (
    routes_stock,
    routes_batches,
    routes_counting,
    routes_sync,
)

api_router = APIRouter()

# Ledger + batches
api_router.include_router(routes_stock.router)
api_router.include_router(routes_batches.router)

# Stock counting
api_router.include_router(routes_counting.router)

# Marketplace
api_router.include_router(routes_sync.router)
