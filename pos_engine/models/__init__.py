# ==============================================================================
# CAPA DE MODELOS - Estructuras de datos del motor
# ==============================================================================
# Entidades del dominio como dataclasses, independientes del almacenamiento
# (el libro de ventas y el inventario son servicios externos).
# ==============================================================================

from .money import TWOPLACES, ZERO, money_str, to_decimal, to_money
from .entities import (
    # Enumeraciones
    UnitKind,
    PromotionKind,
    TenderMethod,
    PaymentState,
    SaleStatus,
    StockMovementType,

    # Catálogo y clientes
    Product,
    Customer,

    # Carrito y promociones
    LineItem,
    Promotion,
    AppliedPromotion,

    # Pagos
    Tender,
    GiftCard,

    # Ventas y devoluciones
    SaleItem,
    SaleDraft,
    Sale,
    Refund,
    StockAdjustment,
    utcnow,
)

__all__ = [
    'TWOPLACES',
    'ZERO',
    'money_str',
    'to_decimal',
    'to_money',
    'UnitKind',
    'PromotionKind',
    'TenderMethod',
    'PaymentState',
    'SaleStatus',
    'StockMovementType',
    'Product',
    'Customer',
    'LineItem',
    'Promotion',
    'AppliedPromotion',
    'Tender',
    'GiftCard',
    'SaleItem',
    'SaleDraft',
    'Sale',
    'Refund',
    'StockAdjustment',
    'utcnow',
]
