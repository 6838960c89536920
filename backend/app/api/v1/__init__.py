"""
API v1 Routes
Progetto: Officina Budget Engine

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import budgets, ledger, service_orders

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(budgets.router)
api_v1_router.include_router(service_orders.router)
api_v1_router.include_router(ledger.router)

# Esportazione
__all__ = ["api_v1_router"]
