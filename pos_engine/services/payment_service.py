# ==============================================================================
# SERVICIO DE PAGOS
# ==============================================================================
# Máquina de estados por intento de cobro:
#
#   PENDING ──efectivo suficiente / split cuadrado──────────────► COMPLETED
#      │
#      └──tarjeta/móvil──► PROCESSING ──procesador aprueba──────► COMPLETED
#                              │
#                              └──rechazo / caída / timeout─────► FAILED
#
# Cancelar antes de COMPLETED descarta todos los aportes y vuelve a PENDING,
# sin efectos sobre stock ni libro de ventas.
# REGLA DE ORO: todo aporte aceptado queda registrado en auditoría.
# ==============================================================================

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog

from pos_engine.config import PAYMENT_EPSILON, EngineSettings
from pos_engine.errors import CollaboratorError, EngineError, ErrorKind, Result
from pos_engine.models import (
    ZERO,
    GiftCard,
    PaymentState,
    Tender,
    TenderMethod,
    money_str,
    to_money,
    utcnow,
)
from pos_engine.repositories.interfaces import (
    IGiftCardService,
    IPaymentProcessor,
    ProcessorResponse,
)
from pos_engine.services.audit_service import AuditService
from pos_engine.services.cart_service import Cart
from pos_engine.services.pricing_service import compute_totals

logger = structlog.get_logger(__name__)

SPLIT = 'split'


@dataclass
class PaymentSession:
    """
    Intento de cobro de un carrito.

    Attributes:
        cart_id: Carrito cobrado
        total: Monto a cobrar, fijado al abrir la sesión
        state: Estado de la máquina de pagos
        tenders: Aportes aceptados
        amount_tendered: Efectivo entregado (pago simple en efectivo)
        change_due: Vuelto
        method: Medio de pago resultante (cash, card, mobile, gift_card, split)
        reference: Referencia del procesador externo
        error: Último error del procesador
        validated_cards: Tarjetas de regalo validadas en esta sesión
    """
    cart_id: str
    total: Decimal
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: PaymentState = PaymentState.PENDING
    tenders: List[Tender] = field(default_factory=list)
    amount_tendered: Decimal = ZERO
    change_due: Decimal = ZERO
    method: Optional[str] = None
    reference: Optional[str] = None
    error: Optional[EngineError] = None
    validated_cards: Dict[str, GiftCard] = field(default_factory=dict)
    opened_at: datetime = field(default_factory=utcnow)
    _task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    @property
    def paid_amount(self) -> Decimal:
        return sum((t.amount for t in self.tenders), ZERO)

    @property
    def remaining(self) -> Decimal:
        return self.total - self.paid_amount

    @property
    def is_completed(self) -> bool:
        return self.state == PaymentState.COMPLETED

    @property
    def confirmation(self) -> Optional[asyncio.Task]:
        """Confirmación pendiente del procesador (se resuelve en un Result)."""
        return self._task

    def cancel(self) -> bool:
        """
        Cancela la confirmación en curso, si la hay.
        Una sesión en PROCESSING vuelve a PENDING y admite otro cobro.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()
            self._task = None
            if self.state == PaymentState.PROCESSING:
                self.state = PaymentState.PENDING
                self.method = None
            return True
        return False

    def reset(self) -> None:
        self.cancel()
        self._task = None
        self.state = PaymentState.PENDING
        self.tenders.clear()
        self.validated_cards.clear()
        self.amount_tendered = ZERO
        self.change_due = ZERO
        self.method = None
        self.reference = None
        self.error = None

    def discard(self) -> None:
        """Libera la sesión al vaciar el carrito."""
        self.cancel()
        self._task = None
        self.validated_cards.clear()

    def tendered_on_card(self, number: str) -> Decimal:
        return sum(
            (t.amount for t in self.tenders
             if t.method == TenderMethod.GIFT_CARD and t.reference == number),
            ZERO,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'cart_id': self.cart_id,
            'state': self.state.value,
            'total': money_str(self.total),
            'paid': money_str(self.paid_amount),
            'remaining': money_str(self.remaining),
            'amount_tendered': money_str(self.amount_tendered),
            'change_due': money_str(self.change_due),
            'method': self.method,
            'reference': self.reference,
            'tenders': [t.to_dict() for t in self.tenders],
            'error': self.error.to_dict() if self.error else None,
        }


class SimulatedProcessor:
    """
    Procesador de tarjetas/billeteras de referencia.
    Aprueba tras una espera acotada; puede configurarse para rechazar o caer.
    """

    MAX_DELAY = 30.0

    def __init__(self, delay: float = 2.0, decline: bool = False, unavailable: bool = False):
        self.delay = min(max(delay, 0.0), self.MAX_DELAY)
        self.decline = decline
        self.unavailable = unavailable

    async def authorize(
        self,
        amount: Decimal,
        method: TenderMethod,
        reference: Optional[str] = None
    ) -> ProcessorResponse:
        await asyncio.sleep(self.delay)
        if self.unavailable:
            raise CollaboratorError("Procesador de pagos no disponible", 'processor', retryable=True)
        if self.decline:
            return ProcessorResponse(approved=False, message="Transacción rechazada")
        return ProcessorResponse(
            approved=True,
            reference=reference or f"{method.value.upper()}-{uuid.uuid4().hex[:10].upper()}",
            message="Aprobado",
        )


class PaymentService:
    """
    Servicio para gestión de pagos.

    Responsabilidades:
    - Abrir la sesión de cobro de un carrito
    - Efectivo, tarjeta/móvil y pagos divididos
    - Validar tarjetas de regalo
    - Registrar pagos en auditoría (REGLA DE ORO)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        gift_cards: Optional[IGiftCardService] = None,
        processor: Optional[IPaymentProcessor] = None,
        audit_service: Optional[AuditService] = None
    ):
        """
        Inicializa el servicio de pagos.

        Args:
            settings: Parámetros del motor
            gift_cards: Servicio de tarjetas de regalo
            processor: Procesador por defecto para tarjeta/móvil
            audit_service: Servicio de auditoría
        """
        self.settings = settings or EngineSettings()
        self.gift_cards = gift_cards
        self.processor = processor
        self.audit_service = audit_service

    # ==========================================================================
    # SESIÓN
    # ==========================================================================

    def start(self, cart: Cart) -> Result[PaymentSession]:
        """
        Abre (o reabre) la sesión de cobro con el total actual del carrito.
        Una sesión con aportes o en proceso debe cancelarse antes.
        """
        if cart.is_empty:
            return Result.failure(ErrorKind.EMPTY_CART, "El carrito está vacío")

        current = cart.payment
        if current is not None:
            if current.state == PaymentState.COMPLETED:
                return Result.failure(
                    ErrorKind.PAYMENT_ALREADY_COMPLETED, "El pago de este carrito ya fue completado"
                )
            if current.state == PaymentState.PROCESSING or current.tenders:
                return Result.failure(
                    ErrorKind.PAYMENT_IN_PROGRESS, "Hay un pago en curso; cancélelo antes"
                )
            current.discard()

        totals = compute_totals(cart.lines, self.settings.tax_rate, cart.discount_total)
        session = PaymentSession(cart_id=cart.cart_id, total=totals.total)
        cart.payment = session
        logger.info(
            "payment_session_opened", cart_id=cart.cart_id,
            session_id=session.session_id, total=money_str(session.total)
        )
        return Result.success(session)

    # ==========================================================================
    # EFECTIVO
    # ==========================================================================

    def pay_cash(self, session: PaymentSession, amount_tendered: Any, user: str = '') -> Result[PaymentSession]:
        """
        Pago simple en efectivo. Completa si el efectivo cubre el total.

        Returns:
            Result con la sesión COMPLETED y el vuelto calculado
        """
        state_error = self._check_open(session)
        if state_error:
            return state_error
        if session.tenders:
            return Result.failure(
                ErrorKind.PAYMENT_IN_PROGRESS, "Hay un pago dividido en curso; complételo o cancélelo"
            )
        amount = self._parse_amount(amount_tendered)
        if amount is None:
            return Result.failure(ErrorKind.INVALID_AMOUNT, "Monto inválido", amount=str(amount_tendered))

        if amount < session.total:
            return Result.failure(
                ErrorKind.INSUFFICIENT_CASH,
                f"Efectivo insuficiente: faltan {money_str(session.total - amount)}",
                total=money_str(session.total),
                amount_tendered=money_str(amount),
            )

        session.tenders = [Tender(id=uuid.uuid4().hex, method=TenderMethod.CASH, amount=session.total)]
        session.amount_tendered = amount
        session.change_due = to_money(amount - session.total)
        session.method = TenderMethod.CASH.value
        session.state = PaymentState.COMPLETED
        session.error = None

        self._audit_payment(user, session, session.total, TenderMethod.CASH.value)
        logger.info(
            "payment_completed", cart_id=session.cart_id, method='cash',
            total=money_str(session.total), change=money_str(session.change_due)
        )
        return Result.success(session)

    # ==========================================================================
    # TARJETA / MÓVIL
    # ==========================================================================

    async def pay_electronic(
        self,
        session: PaymentSession,
        method: Any,
        processor: Optional[IPaymentProcessor] = None,
        reference: Optional[str] = None,
        user: str = ''
    ) -> Result[PaymentSession]:
        """
        Inicia un cobro con tarjeta o billetera móvil.

        La sesión pasa a PROCESSING y la autorización corre como tarea
        (session.confirmation). Usar confirm() para esperar su resolución.
        """
        state_error = self._check_open(session)
        if state_error:
            return state_error
        if session.tenders:
            return Result.failure(
                ErrorKind.PAYMENT_IN_PROGRESS, "Hay un pago dividido en curso; complételo o cancélelo"
            )
        tender_method = self._parse_method(method)
        if tender_method is None or not tender_method.is_electronic:
            return Result.failure(
                ErrorKind.UNSUPPORTED_METHOD,
                f"Medio de pago no soportado para cobro electrónico: {method}",
                method=str(method),
            )
        processor = processor or self.processor
        if processor is None:
            return Result.failure(
                ErrorKind.PROCESSOR_UNAVAILABLE, "No hay procesador de pagos configurado"
            )

        session.state = PaymentState.PROCESSING
        session.method = tender_method.value
        session.error = None
        session._task = asyncio.ensure_future(
            self._authorize(session, processor, tender_method, reference, user)
        )
        logger.info(
            "payment_processing", cart_id=session.cart_id,
            method=tender_method.value, total=money_str(session.total)
        )
        return Result.success(session)

    async def confirm(self, session: PaymentSession, timeout: Optional[float] = None) -> Result[PaymentSession]:
        """
        Espera la confirmación del procesador, acotada por timeout.
        Un timeout cuenta como fallo, nunca como éxito.
        """
        task = session.confirmation
        if task is None:
            if session.is_completed:
                return Result.success(session)
            return Result.failure(ErrorKind.PAYMENT_NOT_COMPLETED, "No hay cobro electrónico en curso")

        timeout = self.settings.collaborator_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            session.state = PaymentState.FAILED
            session.error = EngineError(
                ErrorKind.TIMEOUT, "El procesador no respondió a tiempo", {'timeout': timeout}
            )
            logger.warning("payment_timeout", cart_id=session.cart_id, timeout=timeout)
            return Result(ok=False, error=session.error)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return Result.failure(ErrorKind.PAYMENT_NOT_COMPLETED, "El cobro fue cancelado")

    async def _authorize(
        self,
        session: PaymentSession,
        processor: IPaymentProcessor,
        method: TenderMethod,
        reference: Optional[str],
        user: str
    ) -> Result[PaymentSession]:
        try:
            response = await processor.authorize(session.total, method, reference)
        except CollaboratorError as exc:
            session.state = PaymentState.FAILED
            session.error = EngineError(
                ErrorKind.PROCESSOR_UNAVAILABLE,
                "El procesador de pagos no está disponible",
                {'retryable': exc.retryable},
            )
            logger.error("payment_processor_failed", cart_id=session.cart_id, error=str(exc))
            return Result(ok=False, error=session.error)

        if not response.approved:
            session.state = PaymentState.FAILED
            session.error = EngineError(
                ErrorKind.PROCESSOR_DECLINED,
                response.message or "Pago rechazado por el procesador",
            )
            logger.warning("payment_declined", cart_id=session.cart_id, method=method.value)
            return Result(ok=False, error=session.error)

        session.tenders = [Tender(
            id=uuid.uuid4().hex, method=method, amount=session.total, reference=response.reference
        )]
        session.reference = response.reference
        session.state = PaymentState.COMPLETED
        self._audit_payment(user, session, session.total, method.value)
        logger.info(
            "payment_completed", cart_id=session.cart_id, method=method.value,
            total=money_str(session.total), reference=response.reference
        )
        return Result.success(session)

    # ==========================================================================
    # PAGO DIVIDIDO
    # ==========================================================================

    async def validate_gift_card(self, session: PaymentSession, number: str) -> Result[GiftCard]:
        """Valida una tarjeta de regalo y la habilita para esta sesión."""
        number = (number or '').strip()
        if self.gift_cards is None:
            return Result.failure(
                ErrorKind.COLLABORATOR_FAILURE, "Servicio de tarjetas de regalo no configurado",
                collaborator='gift_cards',
            )
        try:
            card = await self.gift_cards.get_card(number) if number else None
        except CollaboratorError as exc:
            logger.error("gift_card_lookup_failed", error=str(exc))
            return Result.failure(
                ErrorKind.COLLABORATOR_FAILURE, "Servicio de tarjetas de regalo no disponible",
                collaborator='gift_cards',
            )

        if card is None:
            return Result.failure(ErrorKind.CARD_NOT_FOUND, "Tarjeta de regalo no encontrada", number=number)
        if not card.is_active:
            return Result.failure(ErrorKind.CARD_INACTIVE, "La tarjeta de regalo está inactiva", number=number)
        if card.is_expired(utcnow()):
            return Result.failure(ErrorKind.CARD_EXPIRED, "La tarjeta de regalo está vencida", number=number)

        session.validated_cards[card.number] = card
        return Result.success(card)

    def add_tender(
        self,
        session: PaymentSession,
        method: Any,
        amount: Any,
        reference: Optional[str] = None,
        user: str = ''
    ) -> Result[Tender]:
        """
        Agrega un aporte a un pago dividido.

        Args:
            session: Sesión de cobro
            method: cash, card, mobile o gift_card
            amount: Monto (> 0)
            reference: Número de tarjeta de regalo o referencia externa

        Returns:
            Result con el Tender agregado
        """
        state_error = self._check_open(session)
        if state_error:
            return state_error
        tender_method = self._parse_method(method)
        if tender_method is None:
            return Result.failure(
                ErrorKind.UNSUPPORTED_METHOD, f"Medio de pago no soportado: {method}", method=str(method)
            )
        value = self._parse_amount(amount)
        if value is None:
            return Result.failure(ErrorKind.INVALID_AMOUNT, "El monto debe ser mayor a 0", amount=str(amount))

        if tender_method == TenderMethod.GIFT_CARD:
            card = session.validated_cards.get((reference or '').strip())
            if card is None:
                return Result.failure(
                    ErrorKind.GIFT_CARD_NOT_VALIDATED,
                    "La tarjeta de regalo debe validarse antes de usarla",
                    number=reference,
                )
            available = card.balance - session.tendered_on_card(card.number)
            if value > available:
                return Result.failure(
                    ErrorKind.INSUFFICIENT_GIFT_CARD_BALANCE,
                    f"Saldo insuficiente en la tarjeta: disponible {money_str(available)}",
                    number=card.number,
                    available=money_str(available),
                )
            reference = card.number

        if session.paid_amount + value > session.total + PAYMENT_EPSILON:
            return Result.failure(
                ErrorKind.OVERTENDER_NOT_ALLOWED,
                f"El monto excede lo pendiente ({money_str(session.remaining)})",
                remaining=money_str(session.remaining),
                amount=money_str(value),
            )

        tender = Tender(id=uuid.uuid4().hex, method=tender_method, amount=value, reference=reference)
        session.tenders.append(tender)
        if session.state == PaymentState.FAILED:
            session.state = PaymentState.PENDING
            session.error = None

        self._audit_payment(user, session, value, tender_method.value)
        logger.info(
            "tender_added", cart_id=session.cart_id, method=tender_method.value,
            amount=money_str(value), remaining=money_str(session.remaining)
        )
        return Result.success(tender)

    def remove_tender(self, session: PaymentSession, tender_id: str) -> Result[Tender]:
        state_error = self._check_open(session)
        if state_error:
            return state_error
        for tender in session.tenders:
            if tender.id == tender_id:
                session.tenders.remove(tender)
                return Result.success(tender)
        return Result.failure(ErrorKind.TENDER_NOT_FOUND, "Aporte no encontrado", tender_id=tender_id)

    def complete_split(self, session: PaymentSession) -> Result[PaymentSession]:
        """Completa el pago dividido si lo pendiente es menor a 0.01."""
        state_error = self._check_open(session)
        if state_error:
            return state_error
        if not session.tenders or abs(session.remaining) >= PAYMENT_EPSILON:
            return Result.failure(
                ErrorKind.PAYMENT_INCOMPLETE,
                f"Pago incompleto: faltan {money_str(session.remaining)}",
                remaining=money_str(session.remaining),
            )

        methods = {t.method.value for t in session.tenders}
        session.method = methods.pop() if len(methods) == 1 else SPLIT
        session.amount_tendered = session.paid_amount
        session.change_due = ZERO
        session.state = PaymentState.COMPLETED
        logger.info(
            "payment_completed", cart_id=session.cart_id, method=session.method,
            total=money_str(session.total), tenders=len(session.tenders)
        )
        return Result.success(session)

    # ==========================================================================
    # CANCELACIÓN
    # ==========================================================================

    def cancel(self, session: PaymentSession) -> Result[PaymentSession]:
        """Descarta todos los aportes antes de completar. Vuelve a PENDING."""
        if session.is_completed:
            return Result.failure(
                ErrorKind.PAYMENT_ALREADY_COMPLETED, "No se puede cancelar un pago completado"
            )
        discarded = len(session.tenders)
        session.reset()
        logger.info("payment_cancelled", cart_id=session.cart_id, discarded_tenders=discarded)
        return Result.success(session)

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    @staticmethod
    def _check_open(session: PaymentSession) -> Optional[Result]:
        if session.state == PaymentState.COMPLETED:
            return Result.failure(ErrorKind.PAYMENT_ALREADY_COMPLETED, "El pago ya fue completado")
        if session.state == PaymentState.PROCESSING:
            return Result.failure(ErrorKind.PAYMENT_IN_PROGRESS, "Hay un cobro electrónico en proceso")
        return None

    @staticmethod
    def _parse_amount(amount: Any) -> Optional[Decimal]:
        try:
            value = to_money(amount)
        except ValueError:
            return None
        return value if value > 0 else None

    @staticmethod
    def _parse_method(method: Any) -> Optional[TenderMethod]:
        if isinstance(method, TenderMethod):
            return method
        try:
            return TenderMethod(str(method or '').strip().lower())
        except ValueError:
            return None

    def _audit_payment(self, user: str, session: PaymentSession, amount: Decimal, method: str) -> None:
        if self.audit_service:
            self.audit_service.log_payment(user, session.cart_id, amount, method, session.total)
