# ==============================================================================
# REPOSITORIO DEL LIBRO DE VENTAS
# ==============================================================================
# Encapsula el acceso a sales.json y refunds.json
# Las ventas se almacenan como lista: [{venta1}, {venta2}, ...]
# Implementa ILedgerService: es la autoridad sobre la unicidad del recibo.
# ==============================================================================

import os
import uuid
from typing import Any, Dict, List, Optional

import structlog

from pos_engine.errors import DuplicateReceiptError
from pos_engine.models import Refund, Sale, SaleDraft, SaleStatus
from pos_engine.repositories.base import ListRepository

logger = structlog.get_logger(__name__)


class RefundRepository(ListRepository):
    """Registros de devolución (refunds.json)."""

    collaborator = 'ledger'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'refunds.json'))


class LedgerRepository(ListRepository):
    """
    Libro de ventas.

    Formato de datos en sales.json:
    [
        {
            "id": "9f1c...",
            "receipt_number": "RCP-20240101-0001",
            "status": "COMPLETED",
            "items": [...],
            "total_amount": "1170.00",
            ...
        }
    ]
    """

    collaborator = 'ledger'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'sales.json'))
        self.refunds = RefundRepository(base_path)

    async def next_receipt_sequence(self, prefix: str) -> int:
        """
        Siguiente secuencia para un prefijo.
        Formato: <prefix>-NNNN, NNNN secuencial por prefijo.
        """
        max_num = 0
        for sale in await self.run_io(self.get_all):
            receipt = sale.get('receipt_number', '')
            if not receipt.startswith(prefix + '-'):
                continue
            try:
                max_num = max(max_num, int(receipt[len(prefix) + 1:]))
            except ValueError:
                continue
        return max_num + 1

    async def create_sale(self, draft: SaleDraft) -> Sale:
        sale = Sale.from_draft(uuid.uuid4().hex, draft)

        def _append(data: List[Dict[str, Any]]) -> None:
            if any(s.get('receipt_number') == draft.receipt_number for s in data):
                raise DuplicateReceiptError(
                    f"Recibo duplicado: {draft.receipt_number}", self.collaborator
                )
            data.append(sale.to_dict())

        await self.run_io(self.mutate, _append)
        logger.info("ledger_sale_created", receipt=sale.receipt_number, sale_id=sale.id)
        return sale

    async def get_by_receipt(self, receipt_number: str) -> Optional[Sale]:
        data = await self.run_io(self.find_by, 'receipt_number', receipt_number)
        return Sale.from_dict(data) if data else None

    async def mark_refunded(self, sale_id: str) -> bool:
        def _mark(data: List[Dict[str, Any]]) -> bool:
            for sale in data:
                if sale.get('id') != sale_id:
                    continue
                if sale.get('status') == SaleStatus.REFUNDED.value:
                    return False
                sale['status'] = SaleStatus.REFUNDED.value
                return True
            return False

        return await self.run_io(self.mutate, _mark)

    async def record_refund(self, refund: Refund) -> None:
        await self.run_io(self.refunds.append, refund.to_dict())

    async def refunds_for(self, receipt_number: str) -> List[Refund]:
        return [
            Refund.from_dict(r)
            for r in await self.run_io(self.refunds.find_all_by, 'receipt_number', receipt_number)
        ]
