# ==============================================================================
# MOTOR DE PROMOCIONES
# ==============================================================================
# Aplica y quita códigos promocionales sobre un carrito.
#
# Orden de validación al aplicar:
#   1. el código existe y está activo
#   2. no fue aplicado ya en este carrito
#   3. el subtotal alcanza el mínimo
#   4. no está vencido
#
# El descuento se calcula una sola vez y queda bloqueado: cambios posteriores
# del carrito no lo recalculan, y quitar la promoción resta exactamente ese
# monto. Se permite acumular varias promociones.
# ==============================================================================

from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from pos_engine.errors import CollaboratorError, ErrorKind, Result
from pos_engine.models import (
    ZERO,
    AppliedPromotion,
    Promotion,
    PromotionKind,
    money_str,
    to_money,
    utcnow,
)
from pos_engine.repositories.interfaces import IPromotionCatalog
from pos_engine.services.cart_service import Cart
from pos_engine.services.pricing_service import raw_subtotal

logger = structlog.get_logger(__name__)

HUNDRED = Decimal('100')


def discount_for(promotion: Promotion, subtotal: Decimal) -> Decimal:
    """
    Descuento bruto de una promoción sobre un subtotal.

    percentage -> subtotal * value / 100, con tope max_discount
    fixed      -> value
    """
    if promotion.kind == PromotionKind.PERCENTAGE:
        amount = subtotal * promotion.value / HUNDRED
        if promotion.max_discount is not None:
            amount = min(amount, promotion.max_discount)
    else:
        amount = promotion.value
    return to_money(max(amount, ZERO))


class PromotionService:
    """Servicio de promociones sobre el carrito."""

    def __init__(self, promotion_catalog: IPromotionCatalog):
        self.promotion_catalog = promotion_catalog

    async def apply(
        self,
        cart: Cart,
        code: str,
        now: Optional[datetime] = None
    ) -> Result[AppliedPromotion]:
        """
        Aplica un código promocional.

        Args:
            cart: Carrito
            code: Código (sin distinguir mayúsculas)
            now: Momento de referencia para la vigencia (por defecto ahora, UTC)

        Returns:
            Result con la AppliedPromotion y su descuento bloqueado
        """
        now = now or utcnow()
        code = (code or '').strip()
        log = logger.bind(cart_id=cart.cart_id, code=code)

        promotion = None
        if code:
            try:
                promotion = await self.promotion_catalog.find_by_code(code)
            except CollaboratorError as exc:
                log.error("promotion_lookup_failed", error=str(exc))
                return Result.failure(
                    ErrorKind.COLLABORATOR_FAILURE,
                    "El catálogo de promociones no está disponible",
                    collaborator='promotions',
                )

        if promotion is None or not promotion.is_active:
            return Result.failure(
                ErrorKind.PROMOTION_NOT_FOUND, f"Código promocional inválido: {code}", code=code
            )

        if any(ap.promotion.id == promotion.id for ap in cart.applied_promotions):
            return Result.failure(
                ErrorKind.PROMOTION_ALREADY_APPLIED,
                f"La promoción {promotion.code} ya fue aplicada",
                code=promotion.code,
            )

        subtotal = to_money(raw_subtotal(cart.lines))
        if promotion.min_amount is not None and subtotal < promotion.min_amount:
            return Result.failure(
                ErrorKind.PROMOTION_MIN_AMOUNT_NOT_MET,
                f"Compra mínima de {money_str(promotion.min_amount)} requerida",
                code=promotion.code,
                min_amount=money_str(promotion.min_amount),
                subtotal=money_str(subtotal),
            )

        if promotion.is_expired(now):
            return Result.failure(
                ErrorKind.PROMOTION_EXPIRED,
                f"La promoción {promotion.code} está vencida",
                code=promotion.code,
            )

        # El descuento acumulado nunca supera el subtotal actual
        room = max(subtotal - cart.discount_total, ZERO)
        discount = min(discount_for(promotion, subtotal), room)

        applied = AppliedPromotion(promotion=promotion, discount=discount, applied_at=now)
        cart.applied_promotions.append(applied)
        log.info("promotion_applied", promotion_id=promotion.id, discount=money_str(discount))
        return Result.success(applied)

    def remove(self, cart: Cart, promotion_id: str) -> Result[AppliedPromotion]:
        """
        Quita una promoción aplicada. Resta exactamente el descuento bloqueado.
        Acepta el id o el código de la promoción.
        """
        for applied in cart.applied_promotions:
            if applied.promotion.id == promotion_id or applied.promotion.matches(promotion_id):
                cart.applied_promotions.remove(applied)
                logger.info(
                    "promotion_removed", cart_id=cart.cart_id,
                    promotion_id=applied.promotion.id, discount=money_str(applied.discount)
                )
                return Result.success(applied)
        return Result.failure(
            ErrorKind.PROMOTION_NOT_APPLIED,
            "La promoción no está aplicada en este carrito",
            promotion_id=promotion_id,
        )
