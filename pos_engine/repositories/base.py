# ==============================================================================
# REPOSITORIO BASE - Adaptadores JSON de referencia
# ==============================================================================
# Los colaboradores reales (libro de ventas, inventario) son servicios
# externos. Estos adaptadores guardan en archivos JSON para la API HTTP de
# referencia y para pruebas de integración.
#
# La E/S de archivos es bloqueante: los métodos async de los adaptadores la
# ejecutan en un hilo (run_io) para no frenar el event loop.
# ==============================================================================

import asyncio
import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from pos_engine.errors import CollaboratorError


class BaseRepository(ABC):
    """
    Clase base para los adaptadores JSON.

    Lectura/escritura atómica (archivo temporal + os.replace) protegida por un
    lock de proceso. Los errores de E/S se convierten en CollaboratorError.
    """

    # Lock global para evitar escrituras concurrentes a archivos
    _file_lock = threading.RLock()

    collaborator = 'json'

    def __init__(self, file_path: str):
        """
        Args:
            file_path: Ruta absoluta al archivo JSON de datos
        """
        self.file_path = file_path
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.file_path):
            self._write_raw(self._empty_data())

    @abstractmethod
    def _empty_data(self) -> Any:
        """Estructura vacía (dict o list) del repositorio."""

    def _read_raw(self) -> Any:
        with self._file_lock:
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except FileNotFoundError:
                return self._empty_data()
            except json.JSONDecodeError as exc:
                raise CollaboratorError(
                    f"Archivo corrupto: {self.file_path}", self.collaborator
                ) from exc
            except OSError as exc:
                raise CollaboratorError(
                    f"No se pudo leer {self.file_path}: {exc}", self.collaborator, retryable=True
                ) from exc

    def _write_raw(self, data: Any) -> None:
        with self._file_lock:
            temp_path = self.file_path + '.tmp'
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, self.file_path)
            except OSError as exc:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise CollaboratorError(
                    f"No se pudo escribir {self.file_path}: {exc}", self.collaborator, retryable=True
                ) from exc

    def mutate(self, fn: Callable[[Any], Any]) -> Any:
        """
        Lee, modifica y escribe bajo un mismo lock.

        Args:
            fn: Recibe los datos (mutables) y devuelve el resultado a retornar

        Returns:
            Lo que devuelva fn
        """
        with self._file_lock:
            data = self._read_raw()
            result = fn(data)
            self._write_raw(data)
            return result

    async def run_io(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Ejecuta una operación de archivo fuera del event loop."""
        return await asyncio.to_thread(fn, *args)


class DictRepository(BaseRepository):
    """
    Repositorio de datos almacenados como diccionario {id: registro}.
    """

    def _empty_data(self) -> Dict:
        return {}

    def get_all(self) -> Dict[str, Any]:
        data = self._read_raw()
        return data if isinstance(data, dict) else {}

    def get_by_id(self, record_id: Any) -> Optional[Dict[str, Any]]:
        return self.get_all().get(str(record_id))

    def save_all(self, data: Dict[str, Any]) -> None:
        self._write_raw(data)

    def update(self, record_id: Any, record_data: Dict[str, Any]) -> None:
        def _set(data):
            data[str(record_id)] = record_data
        self.mutate(_set)


class ListRepository(BaseRepository):
    """
    Repositorio de datos almacenados como lista [{...}, {...}].
    """

    def _empty_data(self) -> List:
        return []

    def get_all(self) -> List[Dict[str, Any]]:
        data = self._read_raw()
        return data if isinstance(data, list) else []

    def save_all(self, data: List[Dict[str, Any]]) -> None:
        self._write_raw(data)

    def append(self, record: Dict[str, Any]) -> None:
        self.mutate(lambda data: data.append(record))

    def find_by(self, field: str, value: Any) -> Optional[Dict[str, Any]]:
        """Primer registro cuyo campo coincide, o None."""
        for record in self.get_all():
            if record.get(field) == value:
                return record
        return None

    def find_all_by(self, field: str, value: Any) -> List[Dict[str, Any]]:
        return [r for r in self.get_all() if r.get(field) == value]
