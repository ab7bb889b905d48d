# ==============================================================================
# SERVICIO DE CARRITO
# ==============================================================================
# Centraliza toda la lógica de negocio relacionada con el carrito de compras.
# El carrito vive en memoria del llamador; agregar productos no toca el stock
# (el descuento de inventario ocurre solo al finalizar la venta).
# ==============================================================================

import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog

from pos_engine.config import EngineSettings
from pos_engine.errors import CollaboratorError, ErrorKind, Result
from pos_engine.models import (
    ZERO,
    AppliedPromotion,
    LineItem,
    Product,
    UnitKind,
)
from pos_engine.repositories.interfaces import ICatalogService, ICustomerDirectory
from pos_engine.services.pricing_service import Totals, compute_totals

logger = structlog.get_logger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Cart:
    """
    Carrito de compras.

    Attributes:
        cart_id: Identificador del carrito
        lines: Líneas en orden de inserción
        customer_id: Cliente asociado (referencia débil)
        applied_promotions: Promociones aplicadas con su descuento bloqueado
        payment: Sesión de pago abierta (PaymentSession) o None
    """
    cart_id: str = field(default_factory=_new_id)
    lines: List[LineItem] = field(default_factory=list)
    customer_id: Optional[str] = None
    applied_promotions: List[AppliedPromotion] = field(default_factory=list)
    payment: Optional[Any] = None

    @property
    def discount_total(self) -> Decimal:
        """Suma exacta de los descuentos bloqueados."""
        return sum((ap.discount for ap in self.applied_promotions), ZERO)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def find_line(self, line_id: str) -> Optional[LineItem]:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        return None


class CartService:
    """
    Servicio para gestión del carrito de compras.

    Responsabilidades:
    - Agregar/modificar/eliminar líneas
    - Fijar el precio unitario según la unidad de venta
    - Asociar cliente
    - Calcular totales

    Todas las operaciones devuelven Result; ninguna deja mutaciones parciales.
    """

    def __init__(
        self,
        catalog: ICatalogService,
        settings: Optional[EngineSettings] = None,
        customer_directory: Optional[ICustomerDirectory] = None
    ):
        """
        Inicializa el servicio de carrito.

        Args:
            catalog: Catálogo de productos (fuente del precio)
            settings: Parámetros del motor (tasa de impuesto)
            customer_directory: Directorio de clientes (opcional)
        """
        self.catalog = catalog
        self.settings = settings or EngineSettings()
        self.customer_directory = customer_directory

    def new_cart(self) -> Cart:
        return Cart()

    # ==========================================================================
    # LÍNEAS
    # ==========================================================================

    async def add_item(
        self,
        cart: Cart,
        product_id: str,
        quantity: Any,
        unit_kind: Any = UnitKind.PACK
    ) -> Result[LineItem]:
        """
        Agrega un producto del catálogo al carrito.

        Args:
            cart: Carrito destino
            product_id: ID del producto
            quantity: Cantidad (> 0)
            unit_kind: Unidad de venta (pack, tablets, ...)

        Returns:
            Result con la línea creada o actualizada
        """
        # Validar antes de consultar al catálogo
        qty_error = self._check_quantity(quantity)
        if qty_error:
            return qty_error
        kind = self._parse_unit_kind(unit_kind)
        if kind is None:
            return Result.failure(
                ErrorKind.INVALID_UNIT_KIND,
                f"Unidad de venta inválida: {unit_kind}",
                unit_kind=str(unit_kind),
            )

        try:
            product = await self.catalog.get_product(str(product_id))
        except CollaboratorError as exc:
            logger.error("catalog_lookup_failed", product_id=product_id, error=str(exc))
            return Result.failure(
                ErrorKind.COLLABORATOR_FAILURE,
                "El catálogo de productos no está disponible",
                collaborator='catalog',
            )
        if product is None:
            return Result.failure(
                ErrorKind.PRODUCT_NOT_FOUND,
                f"Producto {product_id} no encontrado",
                product_id=str(product_id),
            )

        return self.add_product(cart, product, quantity, kind)

    def add_product(
        self,
        cart: Cart,
        product: Product,
        quantity: Any,
        unit_kind: Any = UnitKind.PACK
    ) -> Result[LineItem]:
        """Igual que add_item, para llamadores que ya tienen el Product."""
        qty_error = self._check_quantity(quantity)
        if qty_error:
            return qty_error
        kind = self._parse_unit_kind(unit_kind)
        if kind is None:
            return Result.failure(
                ErrorKind.INVALID_UNIT_KIND,
                f"Unidad de venta inválida: {unit_kind}",
                unit_kind=str(unit_kind),
            )

        quantity = int(quantity)
        unit_price = self.unit_price_for(product, kind)

        # Misma (producto, unidad) -> se suma a la línea existente
        for line in cart.lines:
            if line.product_id == product.id and line.unit_kind == kind:
                line.quantity += quantity
                logger.debug(
                    "cart_line_merged", cart_id=cart.cart_id,
                    line_id=line.line_id, quantity=line.quantity
                )
                return Result.success(line)

        line = LineItem(
            line_id=_new_id(),
            product_id=product.id,
            name=product.name,
            quantity=quantity,
            unit_price=unit_price,
            unit_kind=kind,
        )
        cart.lines.append(line)
        logger.debug(
            "cart_line_added", cart_id=cart.cart_id, line_id=line.line_id,
            product_id=product.id, quantity=quantity, unit_kind=kind.value
        )
        return Result.success(line)

    def set_quantity(self, cart: Cart, line_id: str, quantity: Any) -> Result[Optional[LineItem]]:
        """
        Cambia la cantidad de una línea. Cantidad <= 0 elimina la línea.

        Returns:
            Result con la línea actualizada (None si fue eliminada)
        """
        line = cart.find_line(line_id)
        if line is None:
            return Result.failure(
                ErrorKind.LINE_NOT_FOUND, "Línea no encontrada en el carrito", line_id=line_id
            )
        try:
            value = Decimal(str(quantity))
        except (InvalidOperation, ValueError):
            return Result.failure(ErrorKind.INVALID_QUANTITY, "Cantidad inválida")
        if isinstance(quantity, bool) or not value.is_finite() or value != value.to_integral_value():
            return Result.failure(ErrorKind.INVALID_QUANTITY, "Cantidad inválida")
        quantity = int(value)

        if quantity <= 0:
            cart.lines.remove(line)
            logger.debug("cart_line_removed", cart_id=cart.cart_id, line_id=line_id)
            return Result.success(None)

        line.quantity = quantity
        return Result.success(line)

    def clear(self, cart: Cart) -> Result[Cart]:
        """Vacía líneas, promociones y la sesión de pago."""
        cart.lines.clear()
        cart.applied_promotions.clear()
        if cart.payment is not None:
            cart.payment.discard()
        cart.payment = None
        logger.debug("cart_cleared", cart_id=cart.cart_id)
        return Result.success(cart)

    # ==========================================================================
    # CLIENTE
    # ==========================================================================

    async def bind_customer(self, cart: Cart, customer_id: str) -> Result[Cart]:
        """
        Asocia un cliente al carrito (solo guarda el id).
        Si hay directorio, el id se valida contra él.
        """
        customer_id = (customer_id or '').strip()
        if not customer_id:
            return Result.failure(ErrorKind.CUSTOMER_NOT_FOUND, "Cliente no especificado")

        if self.customer_directory is not None:
            try:
                customer = await self.customer_directory.get_customer(customer_id)
            except CollaboratorError as exc:
                logger.error("customer_lookup_failed", customer_id=customer_id, error=str(exc))
                return Result.failure(
                    ErrorKind.COLLABORATOR_FAILURE,
                    "El directorio de clientes no está disponible",
                    collaborator='customers',
                )
            if customer is None:
                return Result.failure(
                    ErrorKind.CUSTOMER_NOT_FOUND,
                    f"Cliente {customer_id} no encontrado",
                    customer_id=customer_id,
                )

        cart.customer_id = customer_id
        return Result.success(cart)

    def unbind_customer(self, cart: Cart) -> Result[Cart]:
        cart.customer_id = None
        return Result.success(cart)

    # ==========================================================================
    # TOTALES
    # ==========================================================================

    def totals(self, cart: Cart) -> Totals:
        return compute_totals(cart.lines, self.settings.tax_rate, cart.discount_total)

    def summary(self, cart: Cart) -> Dict[str, Any]:
        """Vista del carrito para respuestas JSON."""
        payment = cart.payment.to_dict() if cart.payment is not None else None
        return {
            'cart_id': cart.cart_id,
            'customer_id': cart.customer_id,
            'items': [line.to_dict() for line in cart.lines],
            'items_count': len(cart.lines),
            'total_items': sum(line.quantity for line in cart.lines),
            'promotions': [ap.to_dict() for ap in cart.applied_promotions],
            'totals': self.totals(cart).to_dict(),
            'payment': payment,
        }

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    @staticmethod
    def unit_price_for(product: Product, unit_kind: UnitKind) -> Decimal:
        """Precio por empaque, o precio/unidades_por_empaque para unidades sueltas."""
        if unit_kind.is_pack or product.units_per_pack <= 1:
            return product.price
        return product.price / Decimal(product.units_per_pack)

    @staticmethod
    def _check_quantity(quantity: Any) -> Optional[Result]:
        if isinstance(quantity, bool):
            return Result.failure(ErrorKind.INVALID_QUANTITY, "Cantidad inválida")
        try:
            value = Decimal(str(quantity))
        except (InvalidOperation, ValueError):
            return Result.failure(ErrorKind.INVALID_QUANTITY, "Cantidad inválida")
        if not value.is_finite() or value <= 0 or value != value.to_integral_value():
            return Result.failure(
                ErrorKind.INVALID_QUANTITY,
                "La cantidad debe ser un entero mayor a 0",
                quantity=str(quantity),
            )
        return None

    @staticmethod
    def _parse_unit_kind(unit_kind: Any) -> Optional[UnitKind]:
        if isinstance(unit_kind, UnitKind):
            return unit_kind
        try:
            return UnitKind(str(unit_kind or UnitKind.PACK.value).strip().lower())
        except ValueError:
            return None
