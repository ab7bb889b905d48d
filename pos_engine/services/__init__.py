# ==============================================================================
# CAPA DE SERVICIOS - Motor de transacciones
# ==============================================================================
# Esta capa contiene TODA la lógica de negocio del punto de venta.
#
# PRINCIPIOS:
# 1. Los servicios orquestan llamadas a colaboradores externos
# 2. Aplican reglas de negocio y validaciones
# 3. Devuelven Result explícitos; no lanzan excepciones para control de flujo
# 4. Los servicios NO conocen el almacenamiento (JSON, API remota, ...)
#
# ESTRUCTURA:
# ├── pricing_service.py   → Subtotal, impuesto, total, puntos de fidelidad
# ├── cart_service.py      → Carrito de compras
# ├── promotion_service.py → Códigos promocionales
# ├── payment_service.py   → Efectivo, tarjeta/móvil, pago dividido
# ├── sales_service.py     → Finalización de la venta
# ├── refund_service.py    → Devoluciones
# └── audit_service.py     → Logs de actividad
# ==============================================================================

from pos_engine.services.pricing_service import Totals, compute_totals, loyalty_points_for
from pos_engine.services.audit_service import AuditService
from pos_engine.services.cart_service import Cart, CartService
from pos_engine.services.promotion_service import PromotionService
from pos_engine.services.payment_service import PaymentService, PaymentSession, SimulatedProcessor
from pos_engine.services.sales_service import SalesService
from pos_engine.services.refund_service import RefundService

__all__ = [
    'Totals',
    'compute_totals',
    'loyalty_points_for',
    'AuditService',
    'Cart',
    'CartService',
    'PromotionService',
    'PaymentService',
    'PaymentSession',
    'SimulatedProcessor',
    'SalesService',
    'RefundService',
]
