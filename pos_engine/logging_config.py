# ==============================================================================
# CONFIGURACIÓN DE LOGS
# ==============================================================================
# Logs estructurados con structlog. Cada módulo obtiene su logger con
# structlog.get_logger(__name__) y enlaza contexto (cart_id, receipt, etc.).
# ==============================================================================

import logging

import structlog

_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}


def configure_logging(level: str = 'INFO', json_output: bool = False) -> None:
    """
    Configura structlog para todo el proceso.

    Args:
        level: Nivel mínimo (DEBUG, INFO, WARNING, ERROR)
        json_output: True para una línea JSON por evento (producción)
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
