# ==============================================================================
# API HTTP - Capa llamadora del motor
# ==============================================================================
# Rutas JSON delgadas sobre los servicios. Esta capa es la dueña de:
#   - los carritos en curso (memoria del proceso)
#   - la exclusión mutua: una finalización por carrito, una devolución por venta
#   - el timeout de las operaciones de consulta (finalizar y devolver acotan
#     cada colaborador por dentro y no se cancelan a mitad de camino)
#   - la compensación de stock cuando un fallo lista applied_adjustments
#
# Toda respuesta es {"ok": true, ...} o {"ok": false, "error": {...}}.
# ==============================================================================

import asyncio
import threading
from contextlib import contextmanager
from typing import Any, Awaitable, Dict, Optional, Set

import structlog
from flask import Flask, current_app, request
from werkzeug.exceptions import BadRequest, Conflict, HTTPException, NotFound

from pos_engine.app_container import AppContainer
from pos_engine.errors import BUSINESS_RULE, COLLABORATOR, VALIDATION, ErrorKind, Result
from pos_engine.logging_config import configure_logging
from pos_engine.models import PaymentState
from pos_engine.services import Cart

logger = structlog.get_logger(__name__)


# ==============================================================================
# ESTADO DEL PROCESO
# ==============================================================================

class CartStore:
    """Carritos abiertos, por id."""

    def __init__(self):
        self._carts: Dict[str, Cart] = {}
        self._lock = threading.Lock()

    def add(self, cart: Cart) -> Cart:
        with self._lock:
            self._carts[cart.cart_id] = cart
        return cart

    def get(self, cart_id: str) -> Optional[Cart]:
        with self._lock:
            return self._carts.get(cart_id)


class InFlightGuard:
    """
    Single-flight por clave: rechaza una segunda operación sobre la misma
    entidad mientras la primera no termina.
    """

    def __init__(self):
        self._busy: Set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._busy:
                return False
            self._busy.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._busy.discard(key)

    @contextmanager
    def hold(self, key: str):
        if not self.acquire(key):
            raise Conflict(f"Ya hay una operación en curso para {key}")
        try:
            yield
        finally:
            self.release(key)


# ==============================================================================
# CÓDIGOS HTTP
# ==============================================================================

_NOT_FOUND = {
    ErrorKind.PRODUCT_NOT_FOUND,
    ErrorKind.CUSTOMER_NOT_FOUND,
    ErrorKind.SALE_NOT_FOUND,
    ErrorKind.LINE_NOT_FOUND,
    ErrorKind.TENDER_NOT_FOUND,
}

_STATE_CONFLICTS = {
    ErrorKind.ALREADY_REFUNDED,
    ErrorKind.PROMOTION_ALREADY_APPLIED,
    ErrorKind.PAYMENT_IN_PROGRESS,
    ErrorKind.PAYMENT_ALREADY_COMPLETED,
    ErrorKind.PAYMENT_NOT_COMPLETED,
    ErrorKind.PAYMENT_MISMATCH,
}


def status_for(result: Result, success: int = 200) -> int:
    """Código HTTP de un Result."""
    if result.ok:
        return success
    kind = result.kind
    if kind in _NOT_FOUND:
        return 404
    if kind == ErrorKind.TIMEOUT:
        return 504
    category = kind.category
    if category == VALIDATION:
        return 400
    if category == COLLABORATOR:
        return 502
    if category == BUSINESS_RULE and kind in _STATE_CONFLICTS:
        return 409
    return 422


def respond(result: Result, success: int = 200, **extra: Any):
    body = result.to_dict()
    if result.ok:
        body.update(extra)
    return body, status_for(result, success)


# ==============================================================================
# APP FACTORY
# ==============================================================================

def create_app(container: Optional[AppContainer] = None) -> Flask:
    """
    Crea la app Flask.

    Args:
        container: Contenedor de dependencias (por defecto desde el entorno)
    """
    container = container or AppContainer()
    settings = container.settings
    configure_logging(settings.log_level, settings.log_json)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.extensions['pos_container'] = container
    app.extensions['pos_carts'] = CartStore()
    app.extensions['pos_guard'] = InFlightGuard()

    def _container() -> AppContainer:
        return current_app.extensions['pos_container']

    def _guard() -> InFlightGuard:
        return current_app.extensions['pos_guard']

    def _cart(cart_id: str) -> Cart:
        cart = current_app.extensions['pos_carts'].get(cart_id)
        if cart is None:
            raise NotFound(f"Carrito {cart_id} no encontrado")
        return cart

    def _json() -> Dict[str, Any]:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise BadRequest("Se esperaba un objeto JSON")
        return data

    async def _bounded(awaitable: Awaitable[Result]) -> Result:
        """Acota una operación del motor con el timeout de colaboradores."""
        timeout = settings.collaborator_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            logger.warning("operation_timeout", path=request.path, timeout=timeout)
            return Result.failure(
                ErrorKind.TIMEOUT, "Un servicio externo no respondió a tiempo", timeout=timeout
            )

    async def _compensated(result: Result, success: int):
        """
        Responde un Result; si el fallo lista ajustes de stock ya aplicados,
        los revierte antes de responder.
        """
        body, status = respond(result, success)
        adjustments = result.error.details.get('applied_adjustments') if not result.ok else None
        if adjustments:
            reverted = await _container().sales_service.compensate(adjustments)
            body['compensation'] = {
                'reverted': [a.to_dict() for a in reverted.value],
                'warnings': list(reverted.warnings),
            }
            logger.info(
                "stock_compensated", path=request.path,
                reverted=len(reverted.value), failed=len(reverted.warnings)
            )
        return body, status

    def _open_session(cart: Cart) -> Result:
        # Sin aportes ni tarjetas validadas se reabre con el total actual
        session = cart.payment
        if session is not None and (
            session.tenders
            or session.validated_cards
            or session.state in (PaymentState.PROCESSING, PaymentState.COMPLETED)
        ):
            return Result.success(session)
        return _container().payment_service.start(cart)

    def _cart_body(cart: Cart) -> Dict[str, Any]:
        return _container().cart_service.summary(cart)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return {
            'ok': False,
            'error': {'kind': exc.name, 'category': 'http', 'message': exc.description},
        }, exc.code

    # ==========================================================================
    # CARRITO
    # ==========================================================================

    @app.route('/api/carts', methods=['POST'])
    async def api_cart_create():
        """Crea un carrito. Acepta customer_id opcional."""
        data = _json()
        cart_service = _container().cart_service
        cart = cart_service.new_cart()
        customer_id = data.get('customer_id')
        if customer_id:
            result = await _bounded(cart_service.bind_customer(cart, str(customer_id)))
            if not result.ok:
                return respond(result)
        current_app.extensions['pos_carts'].add(cart)
        return {'ok': True, 'cart': _cart_body(cart)}, 201

    @app.route('/api/carts/<cart_id>', methods=['GET'])
    def api_cart_get(cart_id):
        return {'ok': True, 'cart': _cart_body(_cart(cart_id))}

    @app.route('/api/carts/<cart_id>/items', methods=['POST'])
    async def api_cart_add_item(cart_id):
        """Espera JSON con: product_id, quantity, unit_kind (opcional)."""
        cart = _cart(cart_id)
        data = _json()
        if not data.get('product_id'):
            raise BadRequest("product_id es obligatorio")
        result = await _bounded(_container().cart_service.add_item(
            cart, str(data['product_id']), data.get('quantity', 1), data.get('unit_kind', 'pack')
        ))
        return respond(result, 201, cart=_cart_body(cart))

    @app.route('/api/carts/<cart_id>/items/<line_id>', methods=['PATCH'])
    def api_cart_set_quantity(cart_id, line_id):
        cart = _cart(cart_id)
        data = _json()
        result = _container().cart_service.set_quantity(cart, line_id, data.get('quantity'))
        return respond(result, cart=_cart_body(cart))

    @app.route('/api/carts/<cart_id>/clear', methods=['POST'])
    def api_cart_clear(cart_id):
        cart = _cart(cart_id)
        with _guard().hold(f"cart:{cart_id}"):
            _container().cart_service.clear(cart)
        return {'ok': True, 'cart': _cart_body(cart)}

    # ==========================================================================
    # PROMOCIONES
    # ==========================================================================

    @app.route('/api/carts/<cart_id>/promotions', methods=['POST'])
    async def api_promotion_apply(cart_id):
        cart = _cart(cart_id)
        code = _json().get('code', '')
        result = await _bounded(_container().promotion_service.apply(cart, str(code)))
        return respond(result, cart=_cart_body(cart))

    @app.route('/api/carts/<cart_id>/promotions', methods=['DELETE'])
    def api_promotion_remove(cart_id):
        cart = _cart(cart_id)
        data = _json()
        promotion_id = data.get('promotion_id') or data.get('code') or request.args.get('code', '')
        result = _container().promotion_service.remove(cart, str(promotion_id))
        return respond(result, cart=_cart_body(cart))

    # ==========================================================================
    # PAGOS
    # ==========================================================================

    @app.route('/api/carts/<cart_id>/payment/cash', methods=['POST'])
    def api_payment_cash(cart_id):
        """Espera JSON con: amount (efectivo entregado)."""
        cart = _cart(cart_id)
        data = _json()
        opened = _open_session(cart)
        if not opened.ok:
            return respond(opened)
        result = _container().payment_service.pay_cash(
            opened.value, data.get('amount'), data.get('cashier', '')
        )
        return respond(result)

    @app.route('/api/carts/<cart_id>/payment/electronic', methods=['POST'])
    async def api_payment_electronic(cart_id):
        """Espera JSON con: method (card/mobile), reference (opcional)."""
        cart = _cart(cart_id)
        data = _json()
        payments = _container().payment_service
        with _guard().hold(f"cart:{cart_id}"):
            opened = _open_session(cart)
            if not opened.ok:
                return respond(opened)
            session = opened.value
            started = await payments.pay_electronic(
                session, data.get('method', ''), reference=data.get('reference'),
                user=data.get('cashier', '')
            )
            if not started.ok:
                return respond(started)
            # La confirmación se espera dentro del mismo request
            result = await payments.confirm(session, settings.collaborator_timeout)
        return respond(result)

    @app.route('/api/carts/<cart_id>/payment/gift-cards', methods=['POST'])
    async def api_payment_gift_card(cart_id):
        cart = _cart(cart_id)
        opened = _open_session(cart)
        if not opened.ok:
            return respond(opened)
        number = str(_json().get('number', ''))
        result = await _bounded(_container().payment_service.validate_gift_card(opened.value, number))
        return respond(result)

    @app.route('/api/carts/<cart_id>/payment/tenders', methods=['POST'])
    def api_payment_add_tender(cart_id):
        """Espera JSON con: method, amount, reference (número de tarjeta de regalo)."""
        cart = _cart(cart_id)
        data = _json()
        opened = _open_session(cart)
        if not opened.ok:
            return respond(opened)
        session = opened.value
        result = _container().payment_service.add_tender(
            session, data.get('method', ''), data.get('amount'), data.get('reference'),
            data.get('cashier', '')
        )
        return respond(result, 201, payment=session.to_dict())

    @app.route('/api/carts/<cart_id>/payment/tenders/<tender_id>', methods=['DELETE'])
    def api_payment_remove_tender(cart_id, tender_id):
        cart = _cart(cart_id)
        if cart.payment is None:
            raise NotFound("No hay sesión de pago abierta")
        result = _container().payment_service.remove_tender(cart.payment, tender_id)
        return respond(result, payment=cart.payment.to_dict())

    @app.route('/api/carts/<cart_id>/payment/complete', methods=['POST'])
    def api_payment_complete(cart_id):
        cart = _cart(cart_id)
        if cart.payment is None:
            return respond(Result.failure(ErrorKind.PAYMENT_INCOMPLETE, "No hay aportes registrados"))
        return respond(_container().payment_service.complete_split(cart.payment))

    @app.route('/api/carts/<cart_id>/payment/cancel', methods=['POST'])
    def api_payment_cancel(cart_id):
        cart = _cart(cart_id)
        if cart.payment is None:
            return {'ok': True, 'value': None}
        return respond(_container().payment_service.cancel(cart.payment))

    # ==========================================================================
    # VENTAS Y DEVOLUCIONES
    # ==========================================================================

    @app.route('/api/carts/<cart_id>/finalize', methods=['POST'])
    async def api_finalize(cart_id):
        cart = _cart(cart_id)
        cashier = str(_json().get('cashier', ''))
        with _guard().hold(f"cart:{cart_id}"):
            result = await _container().sales_service.finalize(cart, cashier=cashier)
            return await _compensated(result, 201)

    @app.route('/api/sales/<receipt>', methods=['GET'])
    async def api_sale_get(receipt):
        return respond(await _bounded(_container().refund_service.lookup(receipt)))

    @app.route('/api/sales/<receipt>/refunds', methods=['GET'])
    async def api_sale_refunds(receipt):
        result = await _bounded(_container().refund_service.refunds_for(receipt))
        if not result.ok:
            return respond(result)
        return {'ok': True, 'value': [r.to_dict() for r in result.value]}

    @app.route('/api/sales/<receipt>/refund', methods=['POST'])
    async def api_sale_refund(receipt):
        """Espera JSON con: reason (obligatorio), refunded_by."""
        data = _json()
        refunds = _container().refund_service
        with _guard().hold(f"sale:{receipt}"):
            found = await _bounded(refunds.lookup(receipt))
            if not found.ok:
                return respond(found)
            result = await refunds.refund(
                found.value, str(data.get('reason', '')), str(data.get('refunded_by', ''))
            )
            return await _compensated(result, 201)

    return app
