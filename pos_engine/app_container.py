# ==============================================================================
# CONTENEDOR DE DEPENDENCIAS - Inyección de servicios
# ==============================================================================
# Este módulo proporciona una forma centralizada de obtener instancias
# de colaboradores y servicios. Facilita:
#   - Inyección de dependencias
#   - Testing (se pueden pasar fakes en memoria de cada colaborador)
#   - Cambiar adaptadores JSON por servicios remotos sin tocar los servicios
#
# Para usar un colaborador remoto basta con pasarlo al constructor:
#
#   container = AppContainer(settings, ledger=RemoteLedgerClient(...))
#
# Los que no se pasan se construyen como adaptadores JSON en settings.data_dir.
# ==============================================================================

from typing import Optional

from pos_engine.config import EngineSettings

# ═══════════════════════════════════════════════════════════════════════════════
# COLABORADORES - Adaptadores JSON de referencia
# ═══════════════════════════════════════════════════════════════════════════════
from pos_engine.repositories import (
    AuditRepository,
    CatalogRepository,
    CustomerRepository,
    GiftCardRepository,
    IAuditRepository,
    ICatalogService,
    ICustomerDirectory,
    IGiftCardService,
    IInventoryService,
    ILedgerService,
    IPaymentProcessor,
    IPromotionCatalog,
    LedgerRepository,
    PromotionRepository,
)

# ═══════════════════════════════════════════════════════════════════════════════
# SERVICIOS - Lógica de negocio (no cambia con el almacenamiento)
# ═══════════════════════════════════════════════════════════════════════════════
from pos_engine.services import (
    AuditService,
    CartService,
    PaymentService,
    PromotionService,
    RefundService,
    SalesService,
    SimulatedProcessor,
)


class AppContainer:
    """
    Contenedor de dependencias del motor.

    Uso:
        container = AppContainer(EngineSettings.from_env())
        cart_service = container.cart_service
        sales_service = container.sales_service
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        catalog: Optional[ICatalogService] = None,
        inventory: Optional[IInventoryService] = None,
        ledger: Optional[ILedgerService] = None,
        customers: Optional[ICustomerDirectory] = None,
        promotions: Optional[IPromotionCatalog] = None,
        gift_cards: Optional[IGiftCardService] = None,
        processor: Optional[IPaymentProcessor] = None,
        audit_repo: Optional[IAuditRepository] = None
    ):
        """
        Inicializa el contenedor.

        Args:
            settings: Parámetros del motor (por defecto desde el entorno)
            catalog..audit_repo: Colaboradores inyectados (opcionales)
        """
        self.settings = settings or EngineSettings.from_env()

        # Colaboradores (lazy loading de los no inyectados)
        self._catalog = catalog
        self._inventory = inventory
        self._ledger = ledger
        self._customers = customers
        self._promotions = promotions
        self._gift_cards = gift_cards
        self._processor = processor
        self._audit_repo = audit_repo
        self._catalog_repo: Optional[CatalogRepository] = None

        # Servicios (lazy loading)
        self._audit_service: Optional[AuditService] = None
        self._cart_service: Optional[CartService] = None
        self._promotion_service: Optional[PromotionService] = None
        self._payment_service: Optional[PaymentService] = None
        self._sales_service: Optional[SalesService] = None
        self._refund_service: Optional[RefundService] = None

    # =========================================================================
    # COLABORADORES
    # =========================================================================

    def _products(self) -> CatalogRepository:
        # products.json cubre catálogo e inventario
        if self._catalog_repo is None:
            self._catalog_repo = CatalogRepository(self.settings.data_dir)
        return self._catalog_repo

    @property
    def catalog(self) -> ICatalogService:
        """Catálogo de productos (singleton)."""
        if self._catalog is None:
            self._catalog = self._products()
        return self._catalog

    @property
    def inventory(self) -> IInventoryService:
        """Servicio de inventario (singleton)."""
        if self._inventory is None:
            self._inventory = self._products()
        return self._inventory

    @property
    def ledger(self) -> ILedgerService:
        """Libro de ventas (singleton)."""
        if self._ledger is None:
            self._ledger = LedgerRepository(self.settings.data_dir)
        return self._ledger

    @property
    def customers(self) -> ICustomerDirectory:
        """Directorio de clientes (singleton)."""
        if self._customers is None:
            self._customers = CustomerRepository(self.settings.data_dir)
        return self._customers

    @property
    def promotions(self) -> IPromotionCatalog:
        """Catálogo de promociones (singleton)."""
        if self._promotions is None:
            self._promotions = PromotionRepository(self.settings.data_dir)
        return self._promotions

    @property
    def gift_cards(self) -> IGiftCardService:
        """Tarjetas de regalo (singleton)."""
        if self._gift_cards is None:
            self._gift_cards = GiftCardRepository(self.settings.data_dir)
        return self._gift_cards

    @property
    def processor(self) -> IPaymentProcessor:
        """Procesador de tarjetas/billeteras (simulado por defecto)."""
        if self._processor is None:
            self._processor = SimulatedProcessor(delay=self.settings.processor_delay)
        return self._processor

    @property
    def audit_repo(self) -> IAuditRepository:
        """Repositorio de auditoría (singleton)."""
        if self._audit_repo is None:
            self._audit_repo = AuditRepository(self.settings.data_dir)
        return self._audit_repo

    # =========================================================================
    # SERVICIOS
    # =========================================================================

    @property
    def audit_service(self) -> AuditService:
        """Servicio de auditoría (singleton)."""
        if self._audit_service is None:
            self._audit_service = AuditService(self.audit_repo, self.settings.currency)
        return self._audit_service

    @property
    def cart_service(self) -> CartService:
        """Servicio de carrito (singleton)."""
        if self._cart_service is None:
            self._cart_service = CartService(self.catalog, self.settings, self.customers)
        return self._cart_service

    @property
    def promotion_service(self) -> PromotionService:
        """Servicio de promociones (singleton)."""
        if self._promotion_service is None:
            self._promotion_service = PromotionService(self.promotions)
        return self._promotion_service

    @property
    def payment_service(self) -> PaymentService:
        """Servicio de pagos (singleton)."""
        if self._payment_service is None:
            self._payment_service = PaymentService(
                self.settings,
                self.gift_cards,
                self.processor,
                self.audit_service
            )
        return self._payment_service

    @property
    def sales_service(self) -> SalesService:
        """Servicio de ventas (singleton)."""
        if self._sales_service is None:
            self._sales_service = SalesService(
                self.inventory,
                self.ledger,
                self.settings,
                self.customers,
                self.gift_cards,
                self.audit_service
            )
        return self._sales_service

    @property
    def refund_service(self) -> RefundService:
        """Servicio de devoluciones (singleton)."""
        if self._refund_service is None:
            self._refund_service = RefundService(
                self.inventory,
                self.ledger,
                self.audit_service,
                self.settings
            )
        return self._refund_service

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def reset(self) -> None:
        """
        Reinicia los servicios.
        Útil para testing; los colaboradores inyectados se conservan.
        """
        self._audit_service = None
        self._cart_service = None
        self._promotion_service = None
        self._payment_service = None
        self._sales_service = None
        self._refund_service = None
