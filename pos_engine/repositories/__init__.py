# ==============================================================================
# CAPA DE REPOSITORIOS - Colaboradores externos
# ==============================================================================
# interfaces.py define los contratos que consume el motor. El resto son
# adaptadores JSON de referencia (API HTTP de demostración y pruebas):
#
# ├── catalog_repository.py   → Catálogo + inventario (products.json)
# ├── ledger_repository.py    → Libro de ventas (sales.json, refunds.json)
# ├── promotion_repository.py → Promociones y tarjetas de regalo
# ├── customer_repository.py  → Directorio de clientes
# └── audit_repository.py     → Log de auditoría
#
# Para usar servicios remotos: implementar las interfaces y cambiar la
# instanciación en app_container.py. Los servicios NO requieren cambios.
# ==============================================================================

from .interfaces import (
    IAuditRepository,
    ICatalogService,
    ICustomerDirectory,
    IGiftCardService,
    IInventoryService,
    ILedgerService,
    IPaymentProcessor,
    IPromotionCatalog,
    ProcessorResponse,
)
from .audit_repository import AuditRepository
from .catalog_repository import CatalogRepository
from .customer_repository import CustomerRepository
from .ledger_repository import LedgerRepository, RefundRepository
from .promotion_repository import GiftCardRepository, PromotionRepository

__all__ = [
    'IAuditRepository',
    'ICatalogService',
    'ICustomerDirectory',
    'IGiftCardService',
    'IInventoryService',
    'ILedgerService',
    'IPaymentProcessor',
    'IPromotionCatalog',
    'ProcessorResponse',
    'AuditRepository',
    'CatalogRepository',
    'CustomerRepository',
    'LedgerRepository',
    'RefundRepository',
    'GiftCardRepository',
    'PromotionRepository',
]
