# ==============================================================================
# REPOSITORIO DE CLIENTES
# ==============================================================================
# Encapsula el acceso a customers.json -> {"<id>": {...}}
# Implementa ICustomerDirectory.
# ==============================================================================

import os
from typing import Any, Dict, Optional

from pos_engine.errors import CollaboratorError
from pos_engine.models import Customer
from pos_engine.repositories.base import DictRepository


class CustomerRepository(DictRepository):
    """Directorio de clientes con puntos de fidelidad."""

    collaborator = 'customers'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'customers.json'))

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        data = await self.run_io(self.get_by_id, customer_id)
        return Customer.from_dict({**data, 'id': customer_id}) if data else None

    async def add_loyalty_points(self, customer_id: str, points: int) -> None:
        def _add(data: Dict[str, Any]) -> None:
            customer = data.get(str(customer_id))
            if customer is None:
                raise CollaboratorError(
                    f"Cliente {customer_id} no encontrado", self.collaborator
                )
            customer['loyalty_points'] = int(customer.get('loyalty_points', 0) or 0) + points
            customer['total_purchases'] = int(customer.get('total_purchases', 0) or 0) + 1

        await self.run_io(self.mutate, _add)

    def save_customer(self, customer: Customer) -> None:
        self.update(customer.id, customer.to_dict())
