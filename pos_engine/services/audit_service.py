# ==============================================================================
# SERVICIO DE AUDITORÍA
# ==============================================================================
# Centraliza el registro de auditoría con mensajes humanizados.
# REGLA DE ORO: si entra o sale dinero, siempre queda registrado.
# ==============================================================================

from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from pos_engine.errors import CollaboratorError
from pos_engine.repositories.interfaces import IAuditRepository

logger = structlog.get_logger(__name__)


class AuditService:
    """
    Servicio de registro de auditoría.

    Categorías: VENTA, PAGO, STOCK, DEVOLUCION, SISTEMA.
    Un fallo al escribir la auditoría nunca revierte la operación de negocio;
    queda en el log de la aplicación.
    """

    TYPE_VENTA = 'VENTA'
    TYPE_PAGO = 'PAGO'
    TYPE_STOCK = 'STOCK'
    TYPE_DEVOLUCION = 'DEVOLUCION'
    TYPE_SISTEMA = 'SISTEMA'

    def __init__(self, audit_repo: IAuditRepository, currency: str = 'PKR'):
        self.audit_repo = audit_repo
        self.currency = currency

    def log(
        self,
        log_type: str,
        user: str,
        message: str,
        related_id: str = '',
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Registra un evento genérico."""
        try:
            self.audit_repo.log(log_type, user, message, related_id, details or {})
        except CollaboratorError as exc:
            logger.error("audit_write_failed", type=log_type, related_id=related_id, error=str(exc))

    def _money(self, amount: Decimal) -> str:
        return f"{self.currency} {amount:.2f}"

    def log_sale_created(
        self,
        user: str,
        receipt: str,
        total: Decimal,
        payment_method: str,
        items_count: int
    ) -> None:
        message = (
            f"Venta {receipt} registrada por {user or 'sistema'} - Total: {self._money(total)}"
            f" - {items_count} items - Pago: {payment_method}"
        )
        self.log(
            self.TYPE_VENTA, user, message, receipt,
            {'total': str(total), 'payment_method': payment_method, 'items_count': items_count}
        )

    def log_payment(
        self,
        user: str,
        receipt: str,
        amount: Decimal,
        method: str,
        total: Optional[Decimal] = None
    ) -> None:
        """
        Registra un pago recibido.
        REGLA DE ORO: Si entra dinero, siempre se debe llamar esta función.
        """
        message = f"Pago recibido en {receipt}: {self._money(amount)} ({method})"
        self.log(
            self.TYPE_PAGO, user, message, receipt,
            {'amount': str(amount), 'method': method, 'total': str(total) if total is not None else None}
        )

    def log_stock_movement(
        self,
        user: str,
        product_id: str,
        product_name: str,
        delta: int,
        reason: str,
        reference: str
    ) -> None:
        sign = '+' if delta > 0 else ''
        message = f"Movimiento de stock {reason}: {sign}{delta} {product_name} - Ref: {reference}"
        self.log(
            self.TYPE_STOCK, user, message, product_id,
            {'delta': delta, 'reason': reason, 'reference': reference}
        )

    def log_refund(
        self,
        user: str,
        receipt: str,
        amount: Decimal,
        reason: str,
        failed_restorations: int = 0
    ) -> None:
        message = f"Devolución de {receipt}: {self._money(amount)} - Motivo: {reason}"
        if failed_restorations:
            message += f" - {failed_restorations} item(s) sin reponer al stock"
        self.log(
            self.TYPE_DEVOLUCION, user, message, receipt,
            {'amount': str(amount), 'reason': reason, 'failed_restorations': failed_restorations}
        )
