# ==============================================================================
# CONFIGURACIÓN DEL MOTOR DE TRANSACCIONES
# ==============================================================================
# Todos los parámetros se leen de variables de entorno con valores por defecto
# seguros para desarrollo.
#
# Variables disponibles:
#   POS_TAX_RATE                 Tasa de impuesto (GST)          -> 0.17
#   POS_CURRENCY                 Moneda de los montos            -> PKR
#   POS_RECEIPT_PREFIX           Prefijo del número de recibo    -> RCP
#   POS_LOYALTY_SPEND_PER_POINT  Monto gastado por punto         -> 100
#   POS_COLLABORATOR_TIMEOUT     Timeout de servicios externos   -> 10 (s)
#   POS_PROCESSOR_DELAY          Demora del procesador simulado  -> 2 (s)
#   POS_DATA_DIR                 Carpeta de los JSON de referencia
#   POS_SECRET_KEY               Clave de sesión de Flask
#   POS_LOG_LEVEL / POS_LOG_JSON Configuración de logs
# ==============================================================================

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

BASE = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DEFAULT_TAX_RATE = Decimal('0.17')  # 17% GST
DEFAULT_CURRENCY = 'PKR'
DEFAULT_RECEIPT_PREFIX = 'RCP'
DEFAULT_LOYALTY_SPEND_PER_POINT = Decimal('100')
DEFAULT_COLLABORATOR_TIMEOUT = 10.0
DEFAULT_PROCESSOR_DELAY = 2.0

# Tolerancia de redondeo para pagos divididos (no es holgura comercial)
PAYMENT_EPSILON = Decimal('0.01')

_DEFAULT_SECRET = "pos_engine_dev_secret_key_change_in_production"


def _read_decimal(env: Mapping[str, str], name: str, default: Decimal) -> Decimal:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        logger.warning("config_invalid_value", variable=name, value=raw, default=str(default))
        return default
    if value < 0:
        logger.warning("config_negative_value", variable=name, value=raw, default=str(default))
        return default
    return value


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("config_invalid_value", variable=name, value=raw, default=default)
        return default
    if value <= 0:
        logger.warning("config_negative_value", variable=name, value=raw, default=default)
        return default
    return value


@dataclass(frozen=True)
class EngineSettings:
    """
    Parámetros del motor.

    Attributes:
        tax_rate: Tasa de impuesto aplicada sobre el subtotal
        currency: Código de moneda (solo informativo en recibos/logs)
        receipt_prefix: Prefijo del número de recibo (RCP-YYYYMMDD-NNNN)
        loyalty_spend_per_point: Monto gastado que otorga un punto
        collaborator_timeout: Segundos máximos por llamada a un colaborador externo
        processor_delay: Demora del procesador de tarjetas simulado
        data_dir: Carpeta de los repositorios JSON de referencia
        secret_key: Clave de sesión de Flask
        log_level: Nivel de logs
        log_json: True para logs en formato JSON
    """
    tax_rate: Decimal = DEFAULT_TAX_RATE
    currency: str = DEFAULT_CURRENCY
    receipt_prefix: str = DEFAULT_RECEIPT_PREFIX
    loyalty_spend_per_point: Decimal = DEFAULT_LOYALTY_SPEND_PER_POINT
    collaborator_timeout: float = DEFAULT_COLLABORATOR_TIMEOUT
    processor_delay: float = DEFAULT_PROCESSOR_DELAY
    data_dir: str = field(default_factory=lambda: os.path.join(BASE, 'data'))
    secret_key: str = _DEFAULT_SECRET
    log_level: str = 'INFO'
    log_json: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'EngineSettings':
        """
        Construye la configuración desde variables de entorno.

        Args:
            env: Mapeo de variables (por defecto os.environ)

        Returns:
            EngineSettings con valores validados
        """
        env = os.environ if env is None else env

        secret = env.get('POS_SECRET_KEY')
        if not secret:
            logger.warning("config_missing_secret_key", variable='POS_SECRET_KEY')

        return cls(
            tax_rate=_read_decimal(env, 'POS_TAX_RATE', DEFAULT_TAX_RATE),
            currency=env.get('POS_CURRENCY') or DEFAULT_CURRENCY,
            receipt_prefix=env.get('POS_RECEIPT_PREFIX') or DEFAULT_RECEIPT_PREFIX,
            loyalty_spend_per_point=_read_decimal(
                env, 'POS_LOYALTY_SPEND_PER_POINT', DEFAULT_LOYALTY_SPEND_PER_POINT
            ),
            collaborator_timeout=_read_float(
                env, 'POS_COLLABORATOR_TIMEOUT', DEFAULT_COLLABORATOR_TIMEOUT
            ),
            processor_delay=_read_float(env, 'POS_PROCESSOR_DELAY', DEFAULT_PROCESSOR_DELAY),
            data_dir=env.get('POS_DATA_DIR') or os.path.join(BASE, 'data'),
            secret_key=secret or _DEFAULT_SECRET,
            log_level=(env.get('POS_LOG_LEVEL') or 'INFO').upper(),
            log_json=(env.get('POS_LOG_JSON') or '').lower() in ('1', 'true', 'yes'),
        )
