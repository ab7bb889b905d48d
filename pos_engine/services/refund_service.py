# ==============================================================================
# SERVICIO DE DEVOLUCIONES
# ==============================================================================
# Devolución de la venta completa (no hay devoluciones parciales):
#
#   - motivo obligatorio
#   - una sola devolución por venta (COMPLETED -> REFUNDED una vez)
#   - se repone el stock de cada línea; si una reposición falla queda como
#     advertencia y la devolución igual se registra
#   - si el libro no acepta la transición, el error lista las reposiciones
#     aplicadas (applied_adjustments) para que el llamador las revierta
# ==============================================================================

import uuid
from typing import Any, Awaitable, List, Optional

import structlog

from pos_engine.config import EngineSettings
from pos_engine.errors import CollaboratorError, ErrorKind, Result, call_collaborator
from pos_engine.models import Refund, Sale, StockAdjustment, StockMovementType, money_str
from pos_engine.repositories.interfaces import IInventoryService, ILedgerService
from pos_engine.services.audit_service import AuditService

logger = structlog.get_logger(__name__)


class RefundService:
    """
    Servicio de devoluciones.

    Supone a lo sumo una devolución en curso por venta; el llamador
    serializa las llamadas.
    """

    def __init__(
        self,
        inventory: IInventoryService,
        ledger: ILedgerService,
        audit_service: AuditService = None,
        settings: Optional[EngineSettings] = None
    ):
        self.inventory = inventory
        self.ledger = ledger
        self.audit_service = audit_service
        self.settings = settings or EngineSettings()

    async def lookup(self, receipt_number: str) -> Result[Sale]:
        """Busca una venta por número de recibo."""
        receipt_number = (receipt_number or '').strip()
        try:
            sale = await self._call(self.ledger.get_by_receipt(receipt_number)) if receipt_number else None
        except CollaboratorError as exc:
            logger.error("ledger_lookup_failed", receipt=receipt_number, error=str(exc))
            return Result.failure(
                ErrorKind.COLLABORATOR_FAILURE, "El libro de ventas no está disponible",
                collaborator='ledger',
            )
        if sale is None:
            return Result.failure(
                ErrorKind.SALE_NOT_FOUND, f"Venta {receipt_number} no encontrada",
                receipt=receipt_number,
            )
        return Result.success(sale)

    async def refund(self, sale: Sale, reason: str, refunded_by: str = '') -> Result[Refund]:
        """
        Devuelve una venta completa.

        Args:
            sale: Venta a devolver
            reason: Motivo (obligatorio)
            refunded_by: Usuario que registra la devolución

        Returns:
            Result con el Refund; reposiciones fallidas en warnings
        """
        reason = (reason or '').strip()
        log = logger.bind(receipt=sale.receipt_number, sale_id=sale.id)

        if not reason:
            return Result.failure(ErrorKind.MISSING_REASON, "Debe indicar el motivo de la devolución")
        if sale.is_refunded:
            return Result.failure(
                ErrorKind.ALREADY_REFUNDED, f"La venta {sale.receipt_number} ya fue devuelta"
            )

        # Estado autoritativo del libro
        try:
            current = await self._call(self.ledger.get_by_receipt(sale.receipt_number))
        except CollaboratorError as exc:
            log.error("ledger_lookup_failed", error=str(exc))
            return Result.failure(
                ErrorKind.COLLABORATOR_FAILURE, "El libro de ventas no está disponible",
                collaborator='ledger',
            )
        if current is None:
            return Result.failure(
                ErrorKind.SALE_NOT_FOUND, f"Venta {sale.receipt_number} no encontrada",
                receipt=sale.receipt_number,
            )
        if current.is_refunded:
            return Result.failure(
                ErrorKind.ALREADY_REFUNDED, f"La venta {sale.receipt_number} ya fue devuelta"
            )

        # Reposición de stock por línea
        warnings: List[str] = []
        restored: List[StockAdjustment] = []
        for item in current.items:
            reason_failed = ''
            try:
                ok = await call_collaborator(self.inventory.adjust_stock(
                    item.product_id, item.quantity, StockMovementType.IN, current.receipt_number
                ), self.settings.collaborator_timeout, 'inventory')
            except CollaboratorError as exc:
                ok, reason_failed = False, str(exc)
            if ok:
                restored.append(StockAdjustment(
                    product_id=item.product_id,
                    delta=item.quantity,
                    movement_type=StockMovementType.IN,
                    reference=current.receipt_number,
                ))
                if self.audit_service:
                    self.audit_service.log_stock_movement(
                        refunded_by, item.product_id, item.name, item.quantity,
                        StockMovementType.IN.value, current.receipt_number
                    )
                continue
            log.warning(
                "stock_restore_failed", product_id=item.product_id,
                quantity=item.quantity, error=reason_failed or None
            )
            warnings.append(
                f"No se repuso al stock: {item.name} ({item.product_id}) x{item.quantity}"
            )

        try:
            marked = await self._call(self.ledger.mark_refunded(current.id))
        except CollaboratorError as exc:
            log.error("ledger_mark_refunded_failed", error=str(exc))
            return Result.failure(
                ErrorKind.LEDGER_WRITE_FAILED,
                "No se pudo marcar la venta como devuelta",
                failed_restorations=warnings,
                applied_adjustments=[a.to_dict() for a in restored],
            )
        if not marked:
            return Result.failure(
                ErrorKind.ALREADY_REFUNDED, f"La venta {sale.receipt_number} ya fue devuelta",
                applied_adjustments=[a.to_dict() for a in restored],
            )

        refund = Refund(
            id=uuid.uuid4().hex,
            original_sale_id=current.id,
            receipt_number=current.receipt_number,
            refund_amount=current.total_amount,
            reason=reason,
            items=current.items,
            refunded_by=refunded_by,
        )
        try:
            await self._call(self.ledger.record_refund(refund))
        except CollaboratorError as exc:
            log.error("ledger_record_refund_failed", error=str(exc))
            warnings.append("La devolución no quedó registrada en el libro; reconciliar manualmente")

        if self.audit_service:
            self.audit_service.log_refund(
                refunded_by, current.receipt_number, refund.refund_amount, reason, len(warnings)
            )
        log.info(
            "sale_refunded", amount=money_str(refund.refund_amount),
            failed_restorations=len(warnings)
        )
        return Result.success(refund, warnings)

    async def refunds_for(self, receipt_number: str) -> Result[List[Refund]]:
        try:
            refunds = await self._call(self.ledger.refunds_for(receipt_number))
        except CollaboratorError as exc:
            logger.error("ledger_lookup_failed", receipt=receipt_number, error=str(exc))
            return Result.failure(
                ErrorKind.COLLABORATOR_FAILURE, "El libro de ventas no está disponible",
                collaborator='ledger',
            )
        return Result.success(refunds)

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        return await call_collaborator(awaitable, self.settings.collaborator_timeout, 'ledger')
