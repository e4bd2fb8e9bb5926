# app/models/__init__.py
from .pharmacy_inventory import InventoryItem, InventoryBatch, StockMovement
from .pharmacy_prescription import Prescription
from .opd import Visit, Procedure
from .ipd import Room, BedAssignment, MaterialUsage
from .lis import LabOrder
from .billing import Service, Billing, BillingItem, Payment, NumberSeries

__all__ = [
    "InventoryItem",
    "InventoryBatch",
    "StockMovement",
    "Prescription",
    "Visit",
    "Procedure",
    "Room",
    "BedAssignment",
    "MaterialUsage",
    "LabOrder",
    "Service",
    "Billing",
    "BillingItem",
    "Payment",
    "NumberSeries",
]
