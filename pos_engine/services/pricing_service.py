# ==============================================================================
# NÚCLEO DE PRECIOS
# ==============================================================================
# Totales de una venta con aritmética decimal exacta:
#
#   subtotal = Σ total_price de las líneas
#   tax      = subtotal * tax_rate            (17% GST por defecto)
#   discount = min(descuentos bloqueados, subtotal)
#   total    = subtotal + tax - discount      (nunca menor a 0)
#
# Cada término se redondea a 2 decimales antes de combinarse, de modo que
# total == subtotal + tax - descuento se cumple exacto salvo el piso en 0.
# ==============================================================================

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Iterable

from pos_engine.config import DEFAULT_TAX_RATE
from pos_engine.models import ZERO, LineItem, money_str, to_decimal, to_money


@dataclass(frozen=True)
class Totals:
    """Totales redondeados a 2 decimales."""
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'subtotal': money_str(self.subtotal),
            'tax': money_str(self.tax),
            'discount': money_str(self.discount),
            'total': money_str(self.total),
        }


def raw_subtotal(line_items: Iterable[LineItem]) -> Decimal:
    """Suma sin redondear de los totales de línea."""
    return sum((line.total_price for line in line_items), ZERO)


def compute_totals(
    line_items: Iterable[LineItem],
    tax_rate: Any = DEFAULT_TAX_RATE,
    discount_amount: Any = ZERO
) -> Totals:
    """
    Calcula subtotal, impuesto y total.

    Args:
        line_items: Líneas del carrito
        tax_rate: Tasa de impuesto (0.17 = 17%)
        discount_amount: Descuento acumulado

    Returns:
        Totals con todos los montos a 2 decimales
    """
    subtotal = to_money(raw_subtotal(line_items))
    tax = to_money(subtotal * to_decimal(tax_rate))
    # El descuento aplicado nunca supera el subtotal (el carrito pudo achicarse)
    discount = min(to_money(max(to_decimal(discount_amount), ZERO)), subtotal)
    total = max(subtotal + tax - discount, ZERO)
    return Totals(subtotal=subtotal, tax=tax, discount=discount, total=total)


def loyalty_points_for(total_amount: Any, spend_per_point: Any) -> int:
    """
    Puntos de fidelidad de una venta: 1 punto por cada spend_per_point gastado.
    Función determinista del total; se calcula una sola vez al finalizar.
    """
    spend = to_decimal(spend_per_point)
    total = to_decimal(total_amount)
    if spend <= 0 or total <= 0:
        return 0
    return int((total / spend).to_integral_value(rounding=ROUND_FLOOR))
