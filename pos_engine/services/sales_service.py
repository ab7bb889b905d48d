# ==============================================================================
# SERVICIO DE VENTAS - Finalización
# ==============================================================================
# Convierte un carrito pagado en una venta inmutable:
#
#   1. número de recibo RCP-YYYYMMDD-NNNN (secuencia del libro de ventas)
#   2. descuento de stock por línea (inventario)
#   3. canje de tarjetas de regalo usadas en el pago
#   4. registro de la venta en el libro; recién ahí se vacía el carrito
#
# Si el inventario rechaza una línea, la finalización se aborta con
# StockConflict, el carrito queda intacto y el error lista los descuentos ya
# aplicados para que el llamador los compense (compensate()).
# Cada llamada a un colaborador se acota con collaborator_timeout; un
# timeout cuenta como fallo de ese paso y no pierde la lista de ajustes.
# El motor no reintenta: la política de reintento es del llamador.
# ==============================================================================

from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Union

import structlog

from pos_engine.config import EngineSettings
from pos_engine.errors import (
    CollaboratorError,
    DuplicateReceiptError,
    ErrorKind,
    Result,
    call_collaborator,
)
from pos_engine.models import (
    Sale,
    SaleDraft,
    SaleItem,
    StockAdjustment,
    StockMovementType,
    TenderMethod,
    money_str,
    utcnow,
)
from pos_engine.repositories.interfaces import (
    ICustomerDirectory,
    IGiftCardService,
    IInventoryService,
    ILedgerService,
)
from pos_engine.services.audit_service import AuditService
from pos_engine.services.cart_service import Cart
from pos_engine.services.payment_service import PaymentSession
from pos_engine.services.pricing_service import compute_totals, loyalty_points_for

logger = structlog.get_logger(__name__)


class SalesService:
    """
    Servicio de finalización de ventas.

    Supone a lo sumo una finalización en curso por carrito; el llamador
    serializa las llamadas (ver web.InFlightGuard).
    """

    # Regeneraciones de recibo ante duplicado informado por el libro
    MAX_RECEIPT_ATTEMPTS = 3

    def __init__(
        self,
        inventory: IInventoryService,
        ledger: ILedgerService,
        settings: Optional[EngineSettings] = None,
        customer_directory: Optional[ICustomerDirectory] = None,
        gift_cards: Optional[IGiftCardService] = None,
        audit_service: Optional[AuditService] = None
    ):
        self.inventory = inventory
        self.ledger = ledger
        self.settings = settings or EngineSettings()
        self.customer_directory = customer_directory
        self.gift_cards = gift_cards
        self.audit_service = audit_service

    async def next_receipt_number(self, now: Optional[datetime] = None) -> str:
        """RCP-YYYYMMDD-NNNN con la secuencia que asigna el libro de ventas."""
        now = now or utcnow()
        prefix = f"{self.settings.receipt_prefix}-{now.strftime('%Y%m%d')}"
        sequence = await self._call(self.ledger.next_receipt_sequence(prefix), 'ledger')
        return f"{prefix}-{sequence:04d}"

    async def finalize(
        self,
        cart: Cart,
        session: Optional[PaymentSession] = None,
        cashier: str = ''
    ) -> Result[Sale]:
        """
        Finaliza la venta de un carrito pagado.

        Args:
            cart: Carrito con líneas
            session: Sesión de pago COMPLETED (por defecto cart.payment)
            cashier: Usuario que registra la venta

        Returns:
            Result con la Sale registrada; advertencias no fatales en warnings
        """
        session = session or cart.payment
        log = logger.bind(cart_id=cart.cart_id)

        # Precondiciones
        if cart.is_empty:
            return Result.failure(ErrorKind.EMPTY_CART, "El carrito está vacío")
        if session is None or not session.is_completed:
            return Result.failure(
                ErrorKind.PAYMENT_NOT_COMPLETED, "El pago no está completado",
                state=session.state.value if session else None,
            )
        totals = compute_totals(cart.lines, self.settings.tax_rate, cart.discount_total)
        if session.cart_id != cart.cart_id or totals.total != session.total:
            return Result.failure(
                ErrorKind.PAYMENT_MISMATCH,
                "El carrito cambió después de cobrar; cancele y vuelva a cobrar",
                cart_total=money_str(totals.total),
                paid_total=money_str(session.total),
            )

        # 1. Número de recibo
        try:
            receipt = await self.next_receipt_number()
        except CollaboratorError as exc:
            log.error("receipt_sequence_failed", error=str(exc))
            return Result.failure(
                ErrorKind.LEDGER_WRITE_FAILED, "El libro de ventas no está disponible"
            )
        log = log.bind(receipt=receipt)

        # 2. Stock
        applied: List[StockAdjustment] = []
        for line in cart.lines:
            adjustment = StockAdjustment(
                product_id=line.product_id,
                delta=-line.quantity,
                movement_type=StockMovementType.OUT,
                reference=receipt,
            )
            reason = ''
            try:
                ok = await self._call(self.inventory.adjust_stock(
                    adjustment.product_id, adjustment.delta, adjustment.movement_type, receipt
                ), 'inventory')
            except CollaboratorError as exc:
                ok, reason = False, str(exc)
            if not ok:
                log.warning(
                    "stock_conflict", product_id=line.product_id,
                    quantity=line.quantity, applied=len(applied), error=reason or None
                )
                return Result.failure(
                    ErrorKind.STOCK_CONFLICT,
                    f"Stock insuficiente o no disponible para {line.name}",
                    product_id=line.product_id,
                    applied_adjustments=[a.to_dict() for a in applied],
                )
            applied.append(adjustment)

        # 3. Tarjetas de regalo
        redeemed: List[Dict[str, Any]] = []
        for tender in session.tenders:
            if tender.method != TenderMethod.GIFT_CARD:
                continue
            reason = ''
            try:
                ok = self.gift_cards is not None and await self._call(self.gift_cards.redeem(
                    tender.reference, tender.amount, receipt
                ), 'gift_cards')
            except CollaboratorError as exc:
                ok, reason = False, str(exc)
            if not ok:
                log.warning("gift_card_redemption_failed", number=tender.reference, error=reason or None)
                return Result.failure(
                    ErrorKind.GIFT_CARD_REDEMPTION_FAILED,
                    f"No se pudo canjear la tarjeta de regalo {tender.reference}",
                    number=tender.reference,
                    applied_adjustments=[a.to_dict() for a in applied],
                    redeemed_gift_cards=redeemed,
                )
            redeemed.append({'number': tender.reference, 'amount': money_str(tender.amount)})

        # 4. Libro de ventas
        points = 0
        if cart.customer_id:
            points = loyalty_points_for(totals.total, self.settings.loyalty_spend_per_point)

        sale = None
        for attempt in range(1, self.MAX_RECEIPT_ATTEMPTS + 1):
            draft = SaleDraft(
                receipt_number=receipt,
                items=tuple(SaleItem.from_line(line) for line in cart.lines),
                subtotal=totals.subtotal,
                tax_amount=totals.tax,
                discount_amount=totals.discount,
                total_amount=totals.total,
                payment_method=session.method or '',
                customer_id=cart.customer_id,
                tenders=tuple(session.tenders),
                change_due=session.change_due,
                promotion_codes=tuple(ap.promotion.code for ap in cart.applied_promotions),
                loyalty_points_earned=points,
                cashier=cashier,
            )
            try:
                sale = await self._call(self.ledger.create_sale(draft), 'ledger')
                break
            except DuplicateReceiptError:
                log.warning("receipt_duplicate", attempt=attempt)
                if attempt == self.MAX_RECEIPT_ATTEMPTS:
                    break
                try:
                    receipt = await self.next_receipt_number()
                except CollaboratorError as exc:
                    log.error("receipt_sequence_failed", error=str(exc))
                    break
            except CollaboratorError as exc:
                log.error("ledger_write_failed", error=str(exc))
                break

        if sale is None:
            return Result.failure(
                ErrorKind.LEDGER_WRITE_FAILED,
                "No se pudo registrar la venta en el libro",
                applied_adjustments=[a.to_dict() for a in applied],
                redeemed_gift_cards=redeemed,
            )

        warnings: List[str] = []
        if sale.receipt_number != applied[0].reference:
            warnings.append(
                f"Movimientos de stock registrados con la referencia {applied[0].reference}"
            )

        # Fidelidad: fallo no fatal
        if points > 0 and self.customer_directory is not None:
            try:
                await self._call(
                    self.customer_directory.add_loyalty_points(cart.customer_id, points), 'customers'
                )
            except CollaboratorError as exc:
                log.warning("loyalty_accrual_failed", customer_id=cart.customer_id, error=str(exc))
                warnings.append(
                    f"No se acreditaron {points} puntos al cliente {cart.customer_id}"
                )

        self._audit_sale(sale, cart, cashier)

        cart.lines.clear()
        cart.applied_promotions.clear()
        cart.customer_id = None
        if cart.payment is not None:
            cart.payment.discard()
        cart.payment = None

        log.info(
            "sale_finalized", sale_id=sale.id, total=money_str(sale.total_amount),
            items=len(sale.items), method=sale.payment_method
        )
        return Result.success(sale, warnings)

    async def compensate(
        self,
        adjustments: Iterable[Union[StockAdjustment, Dict[str, Any]]]
    ) -> Result[List[StockAdjustment]]:
        """
        Revierte descuentos de stock de una finalización fallida.

        Args:
            adjustments: error.details['applied_adjustments'] o StockAdjustment

        Returns:
            Result con los movimientos revertidos; los que fallan van a warnings
        """
        reverted: List[StockAdjustment] = []
        warnings: List[str] = []
        for item in adjustments:
            if isinstance(item, dict):
                item = StockAdjustment(
                    product_id=str(item['product_id']),
                    delta=int(item['delta']),
                    movement_type=StockMovementType(item.get('movement_type', 'OUT')),
                    reference=item.get('reference', ''),
                )
            reverse = StockAdjustment(
                product_id=item.product_id,
                delta=-item.delta,
                movement_type=StockMovementType.ADJUSTMENT,
                reference=item.reference,
            )
            try:
                ok = await self._call(self.inventory.adjust_stock(
                    reverse.product_id, reverse.delta, reverse.movement_type, reverse.reference
                ), 'inventory')
            except CollaboratorError as exc:
                logger.error("stock_compensation_failed", product_id=reverse.product_id, error=str(exc))
                ok = False
            if ok:
                reverted.append(reverse)
            else:
                warnings.append(f"No se pudo revertir el stock de {reverse.product_id}")
        return Result.success(reverted, warnings)

    async def _call(self, awaitable: Awaitable[Any], collaborator: str) -> Any:
        return await call_collaborator(awaitable, self.settings.collaborator_timeout, collaborator)

    def _audit_sale(self, sale: Sale, cart: Cart, cashier: str) -> None:
        if not self.audit_service:
            return
        self.audit_service.log_sale_created(
            cashier, sale.receipt_number, sale.total_amount, sale.payment_method, len(sale.items)
        )
        for line in cart.lines:
            self.audit_service.log_stock_movement(
                cashier, line.product_id, line.name, -line.quantity,
                StockMovementType.OUT.value, sale.receipt_number
            )
