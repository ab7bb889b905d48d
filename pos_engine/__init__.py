# ==============================================================================
# POS ENGINE - Motor de transacciones de punto de venta
# ==============================================================================
# Carrito, promociones, pagos, finalización de ventas y devoluciones sobre
# colaboradores externos (catálogo, inventario, libro de ventas, clientes).
# ==============================================================================

__version__ = '1.0.0'
