# Services module
from app.services.audit_service import AuditService
from app.services.settings_service import SettingsService
from app.services.inventory_reservation_service import InventoryReservationService
from app.services.finance_ledger_service import FinanceLedgerService
from app.services.order_lifecycle_service import OrderLifecycleService

__all__ = [
    "AuditService",
    "SettingsService",
    "InventoryReservationService",
    "FinanceLedgerService",
    "OrderLifecycleService",
]
