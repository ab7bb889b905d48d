# ==============================================================================
# ERRORES Y RESULTADOS
# ==============================================================================
# Ninguna operación del motor lanza excepciones para control de flujo.
# Todas devuelven un Result explícito:
#
#   Result(ok=True,  value=..., warnings=[...])
#   Result(ok=False, error=EngineError(kind=ErrorKind.X, message='...'))
#
# Taxonomía:
#   - validation     -> entrada inválida, sin mutación parcial
#   - business_rule  -> regla de negocio, estado intacto, reintentable
#   - collaborator   -> fallo de servicio externo, fatal para este intento
# ==============================================================================

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, Generic, List, Optional, TypeVar

T = TypeVar('T')

VALIDATION = 'validation'
BUSINESS_RULE = 'business_rule'
COLLABORATOR = 'collaborator'


class ErrorKind(str, Enum):
    """Tipos de error nombrados del motor."""

    # Validación
    INVALID_QUANTITY = "InvalidQuantity"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_UNIT_KIND = "InvalidUnitKind"
    MISSING_REASON = "MissingReason"
    EMPTY_CART = "EmptyCart"
    LINE_NOT_FOUND = "LineNotFound"

    # Catálogo / directorio
    PRODUCT_NOT_FOUND = "ProductNotFound"
    CUSTOMER_NOT_FOUND = "CustomerNotFound"
    SALE_NOT_FOUND = "NotFound"

    # Promociones (familia PromotionError)
    PROMOTION_NOT_FOUND = "PromotionNotFound"
    PROMOTION_ALREADY_APPLIED = "AlreadyApplied"
    PROMOTION_MIN_AMOUNT_NOT_MET = "MinAmountNotMet"
    PROMOTION_EXPIRED = "Expired"
    PROMOTION_NOT_APPLIED = "PromotionNotApplied"

    # Pagos
    INSUFFICIENT_CASH = "InsufficientCash"
    OVERTENDER_NOT_ALLOWED = "OvertenderNotAllowed"
    PAYMENT_INCOMPLETE = "PaymentIncomplete"
    PAYMENT_IN_PROGRESS = "PaymentInProgress"
    PAYMENT_ALREADY_COMPLETED = "PaymentAlreadyCompleted"
    PAYMENT_NOT_COMPLETED = "PaymentNotCompleted"
    PAYMENT_MISMATCH = "PaymentMismatch"
    TENDER_NOT_FOUND = "TenderNotFound"
    UNSUPPORTED_METHOD = "UnsupportedMethod"

    # Tarjetas de regalo (familia GiftCardError)
    CARD_NOT_FOUND = "CardNotFound"
    CARD_INACTIVE = "CardInactive"
    CARD_EXPIRED = "CardExpired"
    GIFT_CARD_NOT_VALIDATED = "GiftCardNotValidated"
    INSUFFICIENT_GIFT_CARD_BALANCE = "InsufficientGiftCardBalance"

    # Devoluciones
    ALREADY_REFUNDED = "AlreadyRefunded"

    # Colaboradores externos
    STOCK_CONFLICT = "StockConflict"
    LEDGER_WRITE_FAILED = "LedgerWriteFailed"
    PROCESSOR_DECLINED = "ProcessorDeclined"
    PROCESSOR_UNAVAILABLE = "ProcessorUnavailable"
    GIFT_CARD_REDEMPTION_FAILED = "GiftCardRedemptionFailed"
    COLLABORATOR_FAILURE = "CollaboratorFailure"
    TIMEOUT = "Timeout"

    @property
    def category(self) -> str:
        """Categoría de la taxonomía: validation, business_rule o collaborator."""
        return _CATEGORIES.get(self, BUSINESS_RULE)

    @property
    def family(self) -> Optional[str]:
        """Familia agrupadora (PromotionError, GiftCardError) o None."""
        return _FAMILIES.get(self)


_CATEGORIES = {
    ErrorKind.INVALID_QUANTITY: VALIDATION,
    ErrorKind.INVALID_AMOUNT: VALIDATION,
    ErrorKind.INVALID_UNIT_KIND: VALIDATION,
    ErrorKind.MISSING_REASON: VALIDATION,
    ErrorKind.EMPTY_CART: VALIDATION,
    ErrorKind.LINE_NOT_FOUND: VALIDATION,
    ErrorKind.PRODUCT_NOT_FOUND: VALIDATION,
    ErrorKind.CUSTOMER_NOT_FOUND: VALIDATION,
    ErrorKind.SALE_NOT_FOUND: VALIDATION,
    ErrorKind.UNSUPPORTED_METHOD: VALIDATION,
    ErrorKind.TENDER_NOT_FOUND: VALIDATION,
    ErrorKind.STOCK_CONFLICT: COLLABORATOR,
    ErrorKind.LEDGER_WRITE_FAILED: COLLABORATOR,
    ErrorKind.PROCESSOR_DECLINED: COLLABORATOR,
    ErrorKind.PROCESSOR_UNAVAILABLE: COLLABORATOR,
    ErrorKind.GIFT_CARD_REDEMPTION_FAILED: COLLABORATOR,
    ErrorKind.COLLABORATOR_FAILURE: COLLABORATOR,
    ErrorKind.TIMEOUT: COLLABORATOR,
}

PROMOTION_ERROR = 'PromotionError'
GIFT_CARD_ERROR = 'GiftCardError'

_FAMILIES = {
    ErrorKind.PROMOTION_NOT_FOUND: PROMOTION_ERROR,
    ErrorKind.PROMOTION_ALREADY_APPLIED: PROMOTION_ERROR,
    ErrorKind.PROMOTION_MIN_AMOUNT_NOT_MET: PROMOTION_ERROR,
    ErrorKind.PROMOTION_EXPIRED: PROMOTION_ERROR,
    ErrorKind.PROMOTION_NOT_APPLIED: PROMOTION_ERROR,
    ErrorKind.CARD_NOT_FOUND: GIFT_CARD_ERROR,
    ErrorKind.CARD_INACTIVE: GIFT_CARD_ERROR,
    ErrorKind.CARD_EXPIRED: GIFT_CARD_ERROR,
    ErrorKind.GIFT_CARD_NOT_VALIDATED: GIFT_CARD_ERROR,
    ErrorKind.INSUFFICIENT_GIFT_CARD_BALANCE: GIFT_CARD_ERROR,
}


class CollaboratorError(Exception):
    """
    Fallo de un servicio externo (catálogo, inventario, libro de ventas...).

    Los adaptadores la lanzan; los servicios del motor la capturan en el
    borde y la convierten en un Result fallido.
    """

    def __init__(self, message: str, collaborator: str = '', retryable: bool = False):
        super().__init__(message)
        self.collaborator = collaborator
        self.retryable = retryable


class DuplicateReceiptError(CollaboratorError):
    """El libro de ventas rechazó el número de recibo por duplicado."""


async def call_collaborator(awaitable: Awaitable[T], timeout: Optional[float], collaborator: str = '') -> T:
    """
    Espera una llamada a un colaborador externo, acotada por timeout.

    Un timeout se informa como CollaboratorError reintentable.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise CollaboratorError(
            f"{collaborator or 'colaborador'} no respondió en {timeout}s", collaborator, retryable=True
        ) from exc


@dataclass(frozen=True)
class EngineError:
    """
    Error devuelto por una operación.

    Attributes:
        kind: Tipo de error nombrado
        message: Mensaje legible para el usuario final
        details: Datos adicionales (montos, ids, ajustes aplicados...)
    """
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> str:
        return self.kind.category

    def to_dict(self) -> Dict[str, Any]:
        d = {
            'kind': self.kind.value,
            'category': self.category,
            'message': self.message,
        }
        if self.kind.family:
            d['family'] = self.kind.family
        if self.details:
            d['details'] = self.details
        return d


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Resultado explícito de una operación del motor.

    Usar Result.success(valor) o Result.failure(ErrorKind.X, 'mensaje').
    """
    ok: bool
    value: Optional[T] = None
    error: Optional[EngineError] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def success(cls, value: T = None, warnings: Optional[List[str]] = None) -> 'Result[T]':
        return cls(ok=True, value=value, warnings=list(warnings or []))

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> 'Result[T]':
        return cls(ok=False, error=EngineError(kind=kind, message=message, details=details))

    @property
    def kind(self) -> Optional[ErrorKind]:
        """Tipo de error, o None si la operación fue exitosa."""
        return self.error.kind if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convierte a diccionario para respuestas JSON.

        Returns:
            {'ok': True, 'value': ..., 'warnings': [...]} o
            {'ok': False, 'error': {...}}
        """
        if not self.ok:
            return {'ok': False, 'error': self.error.to_dict()}
        value = self.value
        if hasattr(value, 'to_dict'):
            value = value.to_dict()
        d = {'ok': True, 'value': value}
        if self.warnings:
            d['warnings'] = list(self.warnings)
        return d
