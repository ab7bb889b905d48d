# ==============================================================================
# DINERO - Aritmética decimal exacta
# ==============================================================================
# Los montos se manejan con Decimal. Internamente se acumula con precisión
# completa y se redondea a 2 decimales (ROUND_HALF_UP) en todo borde visible:
# recibo, monto persistido, respuesta JSON.
# ==============================================================================

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

TWOPLACES = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value: Any) -> Decimal:
    """
    Convierte un valor a Decimal sin pasar por binario flotante.

    Args:
        value: int, float, str o Decimal

    Returns:
        Decimal exacto del valor textual

    Raises:
        ValueError: Si el valor no es numérico
    """
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValueError(f"Monto inválido: {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Monto inválido: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Monto inválido: {value!r}")
    return result


def to_money(value: Any) -> Decimal:
    """Redondea a 2 decimales (moneda)."""
    return to_decimal(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def money_str(value: Any) -> str:
    """Monto como texto con 2 decimales, para JSON."""
    return str(to_money(value))
