# ==============================================================================
# ENTIDADES DEL DOMINIO - Definiciones de dataclasses
# ==============================================================================
# Cada entidad representa un concepto del motor de transacciones.
# Diseñadas para ser independientes del mecanismo de persistencia: los
# colaboradores externos (libro de ventas, inventario) deciden cómo guardarlas.
# Los montos viajan como Decimal y se serializan como texto con 2 decimales.
# ==============================================================================

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .money import ZERO, money_str, to_decimal, to_money


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    """Parsea timestamp ISO (acepta sufijo Z). Sin zona se asume UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ==============================================================================
# ENUMERACIONES - Estados y tipos válidos
# ==============================================================================

class UnitKind(str, Enum):
    """Unidad de venta de una línea. PACK es el empaque completo."""
    PACK = "pack"
    TABLETS = "tablets"
    CAPSULES = "capsules"
    BOTTLES = "bottles"
    VIALS = "vials"
    UNITS = "units"

    @property
    def is_pack(self) -> bool:
        return self is UnitKind.PACK


class PromotionKind(str, Enum):
    """Tipo de descuento de una promoción."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class TenderMethod(str, Enum):
    """Medios de pago aceptados."""
    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"
    GIFT_CARD = "gift_card"

    @property
    def is_electronic(self) -> bool:
        """Requiere confirmación de un procesador externo."""
        return self in (TenderMethod.CARD, TenderMethod.MOBILE)


class PaymentState(str, Enum):
    """Estados de un intento de cobro."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SaleStatus(str, Enum):
    """Estados de una venta finalizada. Única transición: COMPLETED -> REFUNDED."""
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"


class StockMovementType(str, Enum):
    """Tipos de movimiento de stock del servicio de inventario."""
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


# ==============================================================================
# CATÁLOGO Y CLIENTES (colaboradores externos)
# ==============================================================================

@dataclass(frozen=True)
class Product:
    """
    Producto tal como lo entrega el catálogo.

    Attributes:
        id: Identificador del producto
        name: Nombre comercial
        price: Precio del empaque completo
        units_per_pack: Unidades por empaque (tabletas por caja, etc.)
        stock: Stock informado por el catálogo
        unit_type: Unidad fraccionada natural del producto
        category: Categoría
        requires_prescription: Requiere receta médica
    """
    id: str
    name: str
    price: Decimal
    units_per_pack: int = 1
    stock: int = 0
    unit_type: str = UnitKind.UNITS.value
    category: str = ''
    requires_prescription: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'price': money_str(self.price),
            'units_per_pack': self.units_per_pack,
            'stock': self.stock,
            'unit_type': self.unit_type,
            'category': self.category,
            'requires_prescription': self.requires_prescription,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Product':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', ''),
            price=to_decimal(data.get('price', 0)),
            units_per_pack=int(data.get('units_per_pack', 1) or 1),
            stock=int(data.get('stock', 0) or 0),
            unit_type=data.get('unit_type', UnitKind.UNITS.value),
            category=data.get('category', ''),
            requires_prescription=bool(data.get('requires_prescription', False)),
        )


@dataclass(frozen=True)
class Customer:
    """Cliente referenciado por una venta (referencia débil, solo por id)."""
    id: str
    name: str = ''
    phone: str = ''
    email: str = ''
    loyalty_points: int = 0
    total_purchases: int = 0
    is_vip: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'loyalty_points': self.loyalty_points,
            'total_purchases': self.total_purchases,
            'is_vip': self.is_vip,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Customer':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name', ''),
            phone=data.get('phone', ''),
            email=data.get('email', ''),
            loyalty_points=int(data.get('loyalty_points', 0) or 0),
            total_purchases=int(data.get('total_purchases', 0) or 0),
            is_vip=bool(data.get('is_vip', False)),
        )


# ==============================================================================
# CARRITO
# ==============================================================================

@dataclass
class LineItem:
    """
    Línea del carrito. Pertenece exclusivamente al carrito que la creó.

    unit_price conserva precisión completa (p. ej. precio/unidades_por_empaque);
    el redondeo a 2 decimales ocurre en los bordes visibles.

    Attributes:
        line_id: Identificador de la línea dentro del carrito
        product_id: ID del producto
        name: Nombre del producto
        quantity: Cantidad (> 0)
        unit_price: Precio por unidad de venta (>= 0)
        unit_kind: Unidad de venta (empaque completo o fraccionada)
        batch_number: Lote (opcional)
        expiry_date: Vencimiento del lote (opcional)
    """
    line_id: str
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    unit_kind: UnitKind = UnitKind.PACK
    batch_number: Optional[str] = None
    expiry_date: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        """unit_price * quantity, sin redondear."""
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line_id': self.line_id,
            'product_id': self.product_id,
            'name': self.name,
            'quantity': self.quantity,
            'unit_price': money_str(self.unit_price),
            'unit_kind': self.unit_kind.value,
            'total_price': money_str(self.total_price),
            'batch_number': self.batch_number,
            'expiry_date': self.expiry_date,
        }


# ==============================================================================
# PROMOCIONES
# ==============================================================================

@dataclass(frozen=True)
class Promotion:
    """
    Promoción emitida por el catálogo de promociones. Inmutable.

    Attributes:
        id: Identificador
        code: Código (único, sin distinguir mayúsculas)
        kind: percentage o fixed
        value: Porcentaje (0-100) o monto fijo
        min_amount: Subtotal mínimo requerido (opcional)
        max_discount: Tope del descuento (opcional)
        valid_until: Fin de vigencia (opcional)
        is_active: Activa en el catálogo
    """
    id: str
    code: str
    kind: PromotionKind
    value: Decimal
    min_amount: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    description: str = ''

    def matches(self, code: str) -> bool:
        return self.code.casefold() == (code or '').strip().casefold()

    def is_expired(self, now: datetime) -> bool:
        return self.valid_until is not None and self.valid_until < now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'code': self.code,
            'kind': self.kind.value,
            'value': str(self.value),
            'min_amount': money_str(self.min_amount) if self.min_amount is not None else None,
            'max_discount': money_str(self.max_discount) if self.max_discount is not None else None,
            'valid_until': _ts(self.valid_until),
            'is_active': self.is_active,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Promotion':
        min_amount = data.get('min_amount')
        max_discount = data.get('max_discount')
        return cls(
            id=str(data.get('id', '')),
            code=data.get('code', ''),
            kind=PromotionKind(data.get('kind', PromotionKind.PERCENTAGE.value)),
            value=to_decimal(data.get('value', 0)),
            min_amount=to_decimal(min_amount) if min_amount is not None else None,
            max_discount=to_decimal(max_discount) if max_discount is not None else None,
            valid_until=_parse_ts(data.get('valid_until')),
            is_active=bool(data.get('is_active', True)),
            description=data.get('description', ''),
        )


@dataclass(frozen=True)
class AppliedPromotion:
    """Promoción aplicada con el descuento bloqueado al momento de aplicarla."""
    promotion: Promotion
    discount: Decimal
    applied_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'promotion_id': self.promotion.id,
            'code': self.promotion.code,
            'discount': money_str(self.discount),
            'applied_at': _ts(self.applied_at),
        }


# ==============================================================================
# PAGOS
# ==============================================================================

@dataclass(frozen=True)
class Tender:
    """Aporte individual de un pago dividido."""
    id: str
    method: TenderMethod
    amount: Decimal
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'method': self.method.value,
            'amount': money_str(self.amount),
            'reference': self.reference,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tender':
        return cls(
            id=str(data.get('id', '')),
            method=TenderMethod(data.get('method', TenderMethod.CASH.value)),
            amount=to_decimal(data.get('amount', 0)),
            reference=data.get('reference'),
        )


@dataclass(frozen=True)
class GiftCard:
    """Tarjeta de regalo del servicio de tarjetas."""
    number: str
    balance: Decimal
    is_active: bool = True
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'balance': money_str(self.balance),
            'is_active': self.is_active,
            'expires_at': _ts(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GiftCard':
        return cls(
            number=str(data.get('number', '')),
            balance=to_decimal(data.get('balance', 0)),
            is_active=bool(data.get('is_active', True)),
            expires_at=_parse_ts(data.get('expires_at')),
        )


# ==============================================================================
# VENTAS Y DEVOLUCIONES
# ==============================================================================

@dataclass(frozen=True)
class SaleItem:
    """Copia inmutable de una línea al momento de la venta."""
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    unit_kind: UnitKind = UnitKind.PACK
    batch_number: Optional[str] = None
    expiry_date: Optional[str] = None

    @classmethod
    def from_line(cls, line: LineItem) -> 'SaleItem':
        return cls(
            product_id=line.product_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=to_money(line.unit_price),
            total_price=to_money(line.total_price),
            unit_kind=line.unit_kind,
            batch_number=line.batch_number,
            expiry_date=line.expiry_date,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'quantity': self.quantity,
            'unit_price': money_str(self.unit_price),
            'total_price': money_str(self.total_price),
            'unit_kind': self.unit_kind.value,
            'batch_number': self.batch_number,
            'expiry_date': self.expiry_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SaleItem':
        return cls(
            product_id=str(data.get('product_id', '')),
            name=data.get('name', ''),
            quantity=int(data.get('quantity', 0)),
            unit_price=to_decimal(data.get('unit_price', 0)),
            total_price=to_decimal(data.get('total_price', 0)),
            unit_kind=UnitKind(data.get('unit_kind', UnitKind.PACK.value)),
            batch_number=data.get('batch_number'),
            expiry_date=data.get('expiry_date'),
        )


@dataclass(frozen=True)
class SaleDraft:
    """
    Venta lista para persistir. El libro de ventas le asigna el id y es la
    autoridad sobre la unicidad de receipt_number.
    """
    receipt_number: str
    items: Tuple[SaleItem, ...]
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_method: str
    payment_status: str = 'PAID'
    customer_id: Optional[str] = None
    tenders: Tuple[Tender, ...] = ()
    change_due: Decimal = ZERO
    promotion_codes: Tuple[str, ...] = ()
    loyalty_points_earned: int = 0
    cashier: str = ''
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Sale:
    """
    Venta finalizada. Inmutable salvo la transición COMPLETED -> REFUNDED,
    que realiza el libro de ventas a pedido del motor de devoluciones.
    """
    id: str
    receipt_number: str
    items: Tuple[SaleItem, ...]
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_method: str
    payment_status: str = 'PAID'
    status: SaleStatus = SaleStatus.COMPLETED
    customer_id: Optional[str] = None
    tenders: Tuple[Tender, ...] = ()
    change_due: Decimal = ZERO
    promotion_codes: Tuple[str, ...] = ()
    loyalty_points_earned: int = 0
    cashier: str = ''
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_refunded(self) -> bool:
        return self.status == SaleStatus.REFUNDED

    @classmethod
    def from_draft(cls, sale_id: str, draft: SaleDraft) -> 'Sale':
        return cls(
            id=sale_id,
            receipt_number=draft.receipt_number,
            items=draft.items,
            subtotal=draft.subtotal,
            tax_amount=draft.tax_amount,
            discount_amount=draft.discount_amount,
            total_amount=draft.total_amount,
            payment_method=draft.payment_method,
            payment_status=draft.payment_status,
            status=SaleStatus.COMPLETED,
            customer_id=draft.customer_id,
            tenders=draft.tenders,
            change_due=draft.change_due,
            promotion_codes=draft.promotion_codes,
            loyalty_points_earned=draft.loyalty_points_earned,
            cashier=draft.cashier,
            created_at=draft.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convierte a diccionario para persistencia JSON."""
        return {
            'id': self.id,
            'receipt_number': self.receipt_number,
            'customer_id': self.customer_id,
            'items': [item.to_dict() for item in self.items],
            'subtotal': money_str(self.subtotal),
            'tax_amount': money_str(self.tax_amount),
            'discount_amount': money_str(self.discount_amount),
            'total_amount': money_str(self.total_amount),
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'status': self.status.value,
            'tenders': [t.to_dict() for t in self.tenders],
            'change_due': money_str(self.change_due),
            'promotion_codes': list(self.promotion_codes),
            'loyalty_points_earned': self.loyalty_points_earned,
            'cashier': self.cashier,
            'created_at': _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Sale':
        """Crea instancia desde diccionario (formato JSON del libro)."""
        return cls(
            id=str(data.get('id', '')),
            receipt_number=data.get('receipt_number', ''),
            customer_id=data.get('customer_id'),
            items=tuple(SaleItem.from_dict(i) for i in data.get('items', [])),
            subtotal=to_decimal(data.get('subtotal', 0)),
            tax_amount=to_decimal(data.get('tax_amount', 0)),
            discount_amount=to_decimal(data.get('discount_amount', 0)),
            total_amount=to_decimal(data.get('total_amount', 0)),
            payment_method=data.get('payment_method', ''),
            payment_status=data.get('payment_status', 'PAID'),
            status=SaleStatus(data.get('status', SaleStatus.COMPLETED.value)),
            tenders=tuple(Tender.from_dict(t) for t in data.get('tenders', [])),
            change_due=to_decimal(data.get('change_due', 0)),
            promotion_codes=tuple(data.get('promotion_codes', [])),
            loyalty_points_earned=int(data.get('loyalty_points_earned', 0) or 0),
            cashier=data.get('cashier', ''),
            created_at=_parse_ts(data.get('created_at')) or utcnow(),
        )


@dataclass(frozen=True)
class Refund:
    """
    Devolución de una venta completa. Una sola por venta.

    Attributes:
        id: Identificador de la devolución
        original_sale_id: ID de la venta devuelta
        receipt_number: Recibo de la venta devuelta
        refund_amount: Monto devuelto (total de la venta)
        reason: Motivo (obligatorio)
        items: Líneas devueltas
        refunded_by: Usuario que registró la devolución
    """
    id: str
    original_sale_id: str
    receipt_number: str
    refund_amount: Decimal
    reason: str
    items: Tuple[SaleItem, ...] = ()
    refunded_by: str = ''
    refunded_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'original_sale_id': self.original_sale_id,
            'receipt_number': self.receipt_number,
            'refund_amount': money_str(self.refund_amount),
            'reason': self.reason,
            'items': [item.to_dict() for item in self.items],
            'refunded_by': self.refunded_by,
            'refunded_at': _ts(self.refunded_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Refund':
        return cls(
            id=str(data.get('id', '')),
            original_sale_id=str(data.get('original_sale_id', '')),
            receipt_number=data.get('receipt_number', ''),
            refund_amount=to_decimal(data.get('refund_amount', 0)),
            reason=data.get('reason', ''),
            items=tuple(SaleItem.from_dict(i) for i in data.get('items', [])),
            refunded_by=data.get('refunded_by', ''),
            refunded_at=_parse_ts(data.get('refunded_at')) or utcnow(),
        )


@dataclass(frozen=True)
class StockAdjustment:
    """Movimiento de stock solicitado al inventario (para compensaciones)."""
    product_id: str
    delta: int
    movement_type: StockMovementType
    reference: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'delta': self.delta,
            'movement_type': self.movement_type.value,
            'reference': self.reference,
        }
