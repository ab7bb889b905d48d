# ==============================================================================
# REPOSITORIO DE CATÁLOGO E INVENTARIO
# ==============================================================================
# Encapsula el acceso a products.json
# Los productos se almacenan como diccionario: {"<id>": {...}, ...}
# Implementa ICatalogService e IInventoryService.
# ==============================================================================

import os
from typing import Any, Dict, Optional

import structlog

from pos_engine.models import Product, StockMovementType
from pos_engine.repositories.base import DictRepository

logger = structlog.get_logger(__name__)


class CatalogRepository(DictRepository):
    """
    Catálogo de productos con control de stock.

    Formato de datos en products.json:
    {
        "p-001": {
            "id": "p-001",
            "name": "Panadol 500mg",
            "price": "500.00",
            "units_per_pack": 10,
            "stock": 120,
            "movements": [{"delta": -2, "type": "OUT", "reference": "RCP-..."}]
        }
    }
    """

    collaborator = 'inventory'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'products.json'))

    async def get_product(self, product_id: str) -> Optional[Product]:
        data = await self.run_io(self.get_by_id, product_id)
        if not data:
            return None
        return Product.from_dict({**data, 'id': str(product_id)})

    async def adjust_stock(
        self,
        product_id: str,
        delta: int,
        reason: StockMovementType,
        reference: str
    ) -> bool:
        """
        Aplica un movimiento de stock.

        Returns:
            False si el producto no existe o el stock quedaría negativo
        """
        def _apply(data: Dict[str, Any]) -> bool:
            product = data.get(str(product_id))
            if product is None:
                return False
            current = int(product.get('stock', 0) or 0)
            if current + delta < 0:
                return False
            product['stock'] = current + delta
            product.setdefault('movements', []).append({
                'delta': delta,
                'type': StockMovementType(reason).value,
                'reference': reference,
            })
            return True

        applied = await self.run_io(self.mutate, _apply)
        logger.debug(
            "stock_adjusted" if applied else "stock_adjust_rejected",
            product_id=product_id, delta=delta, reference=reference,
        )
        return applied

    def save_product(self, product: Product) -> None:
        """Crea o reemplaza un producto (conserva el historial de movimientos)."""
        def _set(data):
            movements = (data.get(product.id) or {}).get('movements', [])
            data[product.id] = {**product.to_dict(), 'movements': movements}
        self.mutate(_set)

    def get_stock(self, product_id: str) -> int:
        data = self.get_by_id(product_id) or {}
        return int(data.get('stock', 0) or 0)
