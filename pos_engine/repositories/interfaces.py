# ==============================================================================
# INTERFACES DE COLABORADORES EXTERNOS
# ==============================================================================
#
# El motor no define almacenamiento: emite comandos y consultas a servicios
# externos. Este archivo define sus contratos (protocolos). Esto permite:
#
# 1. INDEPENDENCIA DE ALMACENAMIENTO
#    - Los servicios dependen de interfaces, NO de implementaciones concretas
#    - Cambiar JSON -> API remota solo requiere un nuevo adaptador
#
# 2. TESTING
#    - Fácil crear fakes en memoria que implementen estas interfaces
#
# Todas las operaciones son asíncronas: quien llama debe esperar el resultado
# antes de avanzar la máquina de estados. Ante fallos de infraestructura los
# adaptadores lanzan CollaboratorError.
#
# ==============================================================================

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol, runtime_checkable

from pos_engine.models import (
    Customer,
    GiftCard,
    Product,
    Promotion,
    Refund,
    Sale,
    SaleDraft,
    StockMovementType,
    TenderMethod,
)


@runtime_checkable
class ICatalogService(Protocol):
    """
    Catálogo de productos. Fuente de verdad del precio al agregar al carrito.
    """

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Obtiene un producto por ID (None si no existe)."""
        ...


@runtime_checkable
class IInventoryService(Protocol):
    """
    Servicio de inventario.
    delta negativo al finalizar una venta, positivo al devolverla.
    """

    async def adjust_stock(
        self,
        product_id: str,
        delta: int,
        reason: StockMovementType,
        reference: str
    ) -> bool:
        """Ajusta el stock. True si se aplicó, False si fue rechazado."""
        ...


@runtime_checkable
class ILedgerService(Protocol):
    """
    Libro de ventas. Única autoridad sobre la unicidad de receipt_number y la
    durabilidad de ventas y devoluciones.
    """

    async def next_receipt_sequence(self, prefix: str) -> int:
        """Siguiente secuencia disponible para un prefijo de recibo."""
        ...

    async def create_sale(self, draft: SaleDraft) -> Sale:
        """Persiste la venta. Lanza DuplicateReceiptError si el recibo existe."""
        ...

    async def get_by_receipt(self, receipt_number: str) -> Optional[Sale]:
        """Obtiene una venta por número de recibo."""
        ...

    async def mark_refunded(self, sale_id: str) -> bool:
        """COMPLETED -> REFUNDED. False si la venta ya estaba devuelta."""
        ...

    async def record_refund(self, refund: Refund) -> None:
        """Persiste el registro de devolución."""
        ...

    async def refunds_for(self, receipt_number: str) -> List[Refund]:
        """Devoluciones registradas para un recibo."""
        ...


@runtime_checkable
class ICustomerDirectory(Protocol):
    """
    Directorio de clientes. El motor solo guarda el id (referencia débil) y
    nunca administra el ciclo de vida del cliente.
    """

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Obtiene un cliente por ID."""
        ...

    async def add_loyalty_points(self, customer_id: str, points: int) -> None:
        """Acredita puntos de fidelidad."""
        ...


@runtime_checkable
class IPromotionCatalog(Protocol):
    """
    Catálogo de promociones (solo lectura).
    """

    async def find_by_code(self, code: str) -> Optional[Promotion]:
        """Busca una promoción por código sin distinguir mayúsculas."""
        ...


@runtime_checkable
class IGiftCardService(Protocol):
    """
    Servicio de tarjetas de regalo.
    """

    async def get_card(self, number: str) -> Optional[GiftCard]:
        """Obtiene una tarjeta por número."""
        ...

    async def redeem(self, number: str, amount: Decimal, reference: str) -> bool:
        """Descuenta saldo. False si el saldo no alcanza."""
        ...


@dataclass(frozen=True)
class ProcessorResponse:
    """Respuesta del procesador de pagos electrónicos."""
    approved: bool
    reference: Optional[str] = None
    message: str = ''


@runtime_checkable
class IPaymentProcessor(Protocol):
    """
    Procesador de pagos con tarjeta / billetera móvil.
    """

    async def authorize(
        self,
        amount: Decimal,
        method: TenderMethod,
        reference: Optional[str] = None
    ) -> ProcessorResponse:
        """Autoriza el cobro. Aprobado o rechazado."""
        ...


@runtime_checkable
class IAuditRepository(Protocol):
    """
    Interfaz para el repositorio de auditoría.
    """

    def log(
        self,
        log_type: str,
        user: str,
        message: str,
        related_id: str,
        details: dict
    ) -> None:
        """Registra un evento de auditoría."""
        ...
