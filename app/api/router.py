# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_inventory,
    routes_pharmacy_dispense,
    routes_billing,
    routes_billing_payments,
    routes_ipd_discharge,
)

api_router = APIRouter()

api_router.include_router(routes_inventory.router)
api_router.include_router(routes_pharmacy_dispense.router)
api_router.include_router(routes_billing.router)
api_router.include_router(routes_billing_payments.router)
api_router.include_router(routes_ipd_discharge.router)
