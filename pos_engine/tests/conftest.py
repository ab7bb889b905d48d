import asyncio
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from pos_engine.app_container import AppContainer
from pos_engine.config import EngineSettings
from pos_engine.errors import CollaboratorError, DuplicateReceiptError
from pos_engine.models import Customer, GiftCard, Product, Promotion, PromotionKind, Sale, SaleStatus
from pos_engine.repositories import ProcessorResponse


# ---------------------------------------------------------------------------
# in-memory collaborators
# ---------------------------------------------------------------------------

class FakeCatalog:
    """Catalog + inventory kept in dicts."""

    def __init__(self, products):
        self.products = {p.id: p for p in products}
        self.stock = {p.id: p.stock for p in products}
        self.movements = []
        self.reject = set()
        self.broken = set()
        self.slow = set()
        self.unavailable = False

    async def get_product(self, product_id):
        if self.unavailable:
            raise CollaboratorError("catalog down", 'catalog')
        return self.products.get(product_id)

    async def adjust_stock(self, product_id, delta, reason, reference):
        if product_id in self.slow:
            await asyncio.sleep(5)
        if product_id in self.broken:
            raise CollaboratorError("inventory down", 'inventory')
        if product_id in self.reject or product_id not in self.stock:
            return False
        if self.stock[product_id] + delta < 0:
            return False
        self.stock[product_id] += delta
        self.movements.append((product_id, delta, reason.value, reference))
        return True


class FakeLedger:
    def __init__(self):
        self.sales: List[Sale] = []
        self.refunds = []
        self.sequence = 0
        self.duplicates = 0
        self.fail_writes = False
        self.refuse_mark = False
        self.fail_mark = False

    async def next_receipt_sequence(self, prefix):
        self.sequence += 1
        return self.sequence

    async def create_sale(self, draft):
        if self.fail_writes:
            raise CollaboratorError("ledger down", 'ledger')
        if self.duplicates > 0:
            self.duplicates -= 1
            raise DuplicateReceiptError("duplicate receipt", 'ledger')
        sale = Sale.from_draft(f"sale-{len(self.sales) + 1}", draft)
        self.sales.append(sale)
        return sale

    async def get_by_receipt(self, receipt_number):
        for sale in self.sales:
            if sale.receipt_number == receipt_number:
                return sale
        return None

    async def mark_refunded(self, sale_id):
        if self.fail_mark:
            raise CollaboratorError("ledger down", 'ledger')
        if self.refuse_mark:
            return False
        for i, sale in enumerate(self.sales):
            if sale.id == sale_id:
                if sale.status == SaleStatus.REFUNDED:
                    return False
                self.sales[i] = replace(sale, status=SaleStatus.REFUNDED)
                return True
        return False

    async def record_refund(self, refund):
        self.refunds.append(refund)

    async def refunds_for(self, receipt_number):
        return [r for r in self.refunds if r.receipt_number == receipt_number]


class FakeCustomers:
    def __init__(self, customers):
        self.customers: Dict[str, Customer] = {c.id: c for c in customers}
        self.points: Dict[str, int] = {}
        self.unavailable = False

    async def get_customer(self, customer_id):
        return self.customers.get(customer_id)

    async def add_loyalty_points(self, customer_id, points):
        if self.unavailable:
            raise CollaboratorError("directory down", 'customers')
        self.points[customer_id] = self.points.get(customer_id, 0) + points


class FakePromotions:
    def __init__(self, promotions):
        self.promotions = list(promotions)

    async def find_by_code(self, code):
        for promotion in self.promotions:
            if promotion.matches(code):
                return promotion
        return None


class FakeGiftCards:
    def __init__(self, cards):
        self.cards: Dict[str, GiftCard] = {c.number: c for c in cards}
        self.redemptions = []
        self.refuse = False

    async def get_card(self, number):
        return self.cards.get(number)

    async def redeem(self, number, amount, reference):
        card = self.cards.get(number)
        if self.refuse or card is None or amount > card.balance:
            return False
        self.cards[number] = GiftCard(number, card.balance - amount, card.is_active, card.expires_at)
        self.redemptions.append((number, amount, reference))
        return True


class FakeProcessor:
    def __init__(self, approved=True, delay=0.0, unavailable=False):
        self.approved = approved
        self.delay = delay
        self.unavailable = unavailable
        self.calls = []

    async def authorize(self, amount, method, reference=None):
        self.calls.append((amount, method, reference))
        await asyncio.sleep(self.delay)
        if self.unavailable:
            raise CollaboratorError("processor down", 'processor')
        if not self.approved:
            return ProcessorResponse(approved=False, message="Declined")
        return ProcessorResponse(approved=True, reference="AUTH-1")


class FakeAuditRepo:
    def __init__(self):
        self.entries = []

    def log(self, log_type, user, message, related_id, details):
        self.entries.append({'type': log_type, 'message': message, 'related_id': related_id})

    def types(self):
        return [e['type'] for e in self.entries]


# ---------------------------------------------------------------------------
# fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def products():
    return [
        Product(id='p1', name='Panadol 500mg', price=Decimal('500'), units_per_pack=10, stock=50),
        Product(id='p2', name='Brufen Syrup', price=Decimal('250'), units_per_pack=1, stock=20),
        Product(id='p3', name='Vitamin C', price=Decimal('2000'), units_per_pack=30, stock=5),
    ]


@pytest.fixture
def catalog(products):
    return FakeCatalog(products)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def customers():
    return FakeCustomers([Customer(id='c1', name='Ayesha Khan', loyalty_points=10)])


@pytest.fixture
def promotions():
    return FakePromotions([
        Promotion(id='promo-1', code='WELCOME10', kind=PromotionKind.PERCENTAGE,
                  value=Decimal('10'), min_amount=Decimal('1000'), max_discount=Decimal('500')),
        Promotion(id='promo-2', code='VIP20', kind=PromotionKind.PERCENTAGE,
                  value=Decimal('20'), max_discount=Decimal('1000')),
        Promotion(id='promo-3', code='FLAT50', kind=PromotionKind.FIXED, value=Decimal('50')),
        Promotion(id='promo-4', code='OLD', kind=PromotionKind.FIXED, value=Decimal('10'),
                  valid_until=_past()),
        Promotion(id='promo-5', code='OFF', kind=PromotionKind.FIXED, value=Decimal('10'),
                  is_active=False),
        Promotion(id='promo-6', code='BIG', kind=PromotionKind.FIXED, value=Decimal('5000')),
    ])


@pytest.fixture
def gift_cards():
    return FakeGiftCards([
        GiftCard(number='GC-100', balance=Decimal('500')),
        GiftCard(number='GC-OFF', balance=Decimal('500'), is_active=False),
        GiftCard(number='GC-OLD', balance=Decimal('500'), expires_at=_past()),
    ])


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def audit_repo():
    return FakeAuditRepo()


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(data_dir=str(tmp_path / 'data'))


@pytest.fixture
def engine(settings, catalog, ledger, customers, promotions, gift_cards, processor, audit_repo):
    return AppContainer(
        settings,
        catalog=catalog,
        inventory=catalog,
        ledger=ledger,
        customers=customers,
        promotions=promotions,
        gift_cards=gift_cards,
        processor=processor,
        audit_repo=audit_repo,
    )


def _past():
    from datetime import datetime, timezone
    return datetime(2020, 1, 1, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


def paid_cart(engine, items, cash: Optional[str] = None):
    """Cart with items, paid in cash (exact total unless cash given)."""
    cart = engine.cart_service.new_cart()
    for product_id, qty in items:
        assert run(engine.cart_service.add_item(cart, product_id, qty)).ok
    session = engine.payment_service.start(cart).value
    assert engine.payment_service.pay_cash(session, cash or session.total).ok
    return cart
