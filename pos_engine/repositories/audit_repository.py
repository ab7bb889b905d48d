# ==============================================================================
# REPOSITORIO DE AUDITORÍA
# ==============================================================================
# Encapsula todo el acceso a audit.json
# La auditoría se almacena como lista: [{log1}, {log2}, ...] (más reciente primero)
# ==============================================================================

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pos_engine.repositories.base import ListRepository


class AuditRepository(ListRepository):
    """
    Repositorio del log de auditoría.

    Formato de datos en audit.json:
    [
        {
            "type": "VENTA",
            "user": "cajero1",
            "message": "Venta RCP-20240101-0001 registrada ...",
            "timestamp": "2024-01-01T10:00:00+00:00",
            "related_id": "RCP-20240101-0001",
            "details": {...}
        }
    ]
    """

    # Límite de registros para evitar archivos muy grandes
    MAX_LOGS = 10000

    collaborator = 'audit'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'audit.json'))

    def log(
        self,
        log_type: str,
        user: str,
        message: str,
        related_id: str = '',
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Registra un nuevo evento de auditoría.

        Args:
            log_type: Tipo de evento (VENTA, PAGO, STOCK, DEVOLUCION, SISTEMA)
            user: Usuario que realizó la acción
            message: Mensaje descriptivo humanizado
            related_id: ID relacionado (recibo, producto, etc.)
            details: Detalles adicionales
        """
        entry = {
            'type': log_type,
            'user': user or 'sistema',
            'message': message,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'related_id': related_id,
            'details': details or {},
        }

        def _insert(logs: List[Dict[str, Any]]) -> None:
            logs.insert(0, entry)
            del logs[self.MAX_LOGS:]

        self.mutate(_insert)

    def get_logs_by_type(self, log_type: str) -> List[Dict[str, Any]]:
        return self.find_all_by('type', log_type)

    def get_logs_for(self, related_id: str) -> List[Dict[str, Any]]:
        return self.find_all_by('related_id', related_id)
