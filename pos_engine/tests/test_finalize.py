import re
from decimal import Decimal

from conftest import paid_cart, run
from pos_engine.config import EngineSettings
from pos_engine.errors import ErrorKind
from pos_engine.models import SaleStatus
from pos_engine.services import SalesService

RECEIPT_RE = re.compile(r'^RCP-\d{8}-\d{4}$')


def test_finalize_cash_sale(engine, catalog, ledger, audit_repo):
    cart = paid_cart(engine, [('p1', 2), ('p2', 1)], cash='2000')
    result = run(engine.sales_service.finalize(cart, cashier='cajero1'))

    assert result.ok, result.error
    sale = result.value
    assert RECEIPT_RE.match(sale.receipt_number)
    assert sale.status == SaleStatus.COMPLETED
    assert sale.subtotal == Decimal('1250.00')
    assert sale.tax_amount == Decimal('212.50')
    assert sale.total_amount == Decimal('1462.50')
    assert sale.change_due == Decimal('537.50')
    assert sale.payment_method == 'cash'
    assert sale.cashier == 'cajero1'
    assert [i.quantity for i in sale.items] == [2, 1]

    assert catalog.stock['p1'] == 48
    assert catalog.stock['p2'] == 19
    assert all(m[2] == 'OUT' and m[3] == sale.receipt_number for m in catalog.movements)

    assert ledger.sales == [sale]
    assert cart.is_empty and cart.payment is None
    assert 'VENTA' in audit_repo.types()
    assert 'STOCK' in audit_repo.types()


def test_empty_cart(engine):
    cart = engine.cart_service.new_cart()
    assert run(engine.sales_service.finalize(cart)).kind == ErrorKind.EMPTY_CART


def test_payment_not_completed(engine):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 1))
    assert run(engine.sales_service.finalize(cart)).kind == ErrorKind.PAYMENT_NOT_COMPLETED

    session = engine.payment_service.start(cart).value
    engine.payment_service.add_tender(session, 'cash', '100')
    assert run(engine.sales_service.finalize(cart)).kind == ErrorKind.PAYMENT_NOT_COMPLETED


def test_cart_changed_after_payment(engine, catalog):
    cart = paid_cart(engine, [('p1', 1)])
    run(engine.cart_service.add_item(cart, 'p2', 1))
    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.PAYMENT_MISMATCH
    assert catalog.movements == []


def test_stock_conflict_leaves_cart_untouched(engine, catalog, ledger):
    cart = paid_cart(engine, [('p1', 2), ('p3', 1)])
    catalog.reject.add('p3')
    lines_before = [(li.product_id, li.quantity) for li in cart.lines]

    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.STOCK_CONFLICT
    assert result.error.category == 'collaborator'
    applied = result.error.details['applied_adjustments']
    assert [(a['product_id'], a['delta']) for a in applied] == [('p1', -2)]

    assert [(li.product_id, li.quantity) for li in cart.lines] == lines_before
    assert cart.payment is not None and cart.payment.is_completed
    assert ledger.sales == []

    # caller compensates the partial decrement
    compensated = run(engine.sales_service.compensate(applied))
    assert compensated.ok and not compensated.warnings
    assert catalog.stock['p1'] == 50


def test_stock_collaborator_error_is_conflict(engine, catalog):
    cart = paid_cart(engine, [('p1', 1)])
    catalog.broken.add('p1')
    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.STOCK_CONFLICT
    assert result.error.details['applied_adjustments'] == []


def test_insufficient_stock_discovered_at_finalize(engine, catalog):
    cart = paid_cart(engine, [('p3', 6)])
    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.STOCK_CONFLICT
    assert catalog.stock['p3'] == 5


def test_ledger_failure(engine, ledger):
    cart = paid_cart(engine, [('p1', 1)])
    ledger.fail_writes = True
    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.LEDGER_WRITE_FAILED
    assert result.error.details['applied_adjustments'][0]['product_id'] == 'p1'
    assert not cart.is_empty


def test_duplicate_receipt_is_regenerated(engine, ledger):
    cart = paid_cart(engine, [('p1', 1)])
    ledger.duplicates = 1
    result = run(engine.sales_service.finalize(cart))
    assert result.ok
    assert result.value.receipt_number.endswith('-0002')
    assert result.warnings


def test_duplicate_receipt_regeneration_is_bounded(engine, ledger):
    cart = paid_cart(engine, [('p1', 1)])
    ledger.duplicates = 10
    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.LEDGER_WRITE_FAILED
    assert ledger.duplicates == 10 - engine.sales_service.MAX_RECEIPT_ATTEMPTS


def test_loyalty_points_for_bound_customer(engine, customers):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.bind_customer(cart, 'c1'))
    run(engine.cart_service.add_item(cart, 'p1', 2))
    session = engine.payment_service.start(cart).value
    engine.payment_service.pay_cash(session, '1170')

    result = run(engine.sales_service.finalize(cart))
    assert result.ok
    assert result.value.customer_id == 'c1'
    assert result.value.loyalty_points_earned == 11
    assert customers.points == {'c1': 11}
    assert cart.customer_id is None


def test_loyalty_failure_is_a_warning(engine, customers):
    customers.unavailable = True
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.bind_customer(cart, 'c1'))
    run(engine.cart_service.add_item(cart, 'p1', 2))
    session = engine.payment_service.start(cart).value
    engine.payment_service.pay_cash(session, '1170')

    result = run(engine.sales_service.finalize(cart))
    assert result.ok
    assert any('puntos' in w for w in result.warnings)


def test_gift_card_redeemed_on_finalize(engine, gift_cards):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 2))
    payments = engine.payment_service
    session = payments.start(cart).value
    run(payments.validate_gift_card(session, 'GC-100'))
    payments.add_tender(session, 'gift_card', '500', 'GC-100')
    payments.add_tender(session, 'cash', '670')
    payments.complete_split(session)

    result = run(engine.sales_service.finalize(cart))
    assert result.ok
    assert result.value.payment_method == 'split'
    assert gift_cards.cards['GC-100'].balance == Decimal('0')
    assert gift_cards.redemptions[0][2] == result.value.receipt_number


def test_gift_card_redemption_failure(engine, gift_cards, ledger):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 2))
    payments = engine.payment_service
    session = payments.start(cart).value
    run(payments.validate_gift_card(session, 'GC-100'))
    payments.add_tender(session, 'gift_card', '500', 'GC-100')
    payments.add_tender(session, 'card', '670')
    payments.complete_split(session)
    gift_cards.refuse = True

    result = run(engine.sales_service.finalize(cart))
    assert result.kind == ErrorKind.GIFT_CARD_REDEMPTION_FAILED
    assert len(result.error.details['applied_adjustments']) == 1
    assert ledger.sales == []
    assert not cart.is_empty


def test_promotion_codes_recorded(engine):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 2))
    run(engine.promotion_service.apply(cart, 'WELCOME10'))
    session = engine.payment_service.start(cart).value
    assert session.total == Decimal('1070.00')
    engine.payment_service.pay_cash(session, '1070')

    sale = run(engine.sales_service.finalize(cart)).value
    assert sale.discount_amount == Decimal('100.00')
    assert sale.promotion_codes == ('WELCOME10',)
    assert cart.applied_promotions == []


def test_sale_discount_capped_after_cart_shrinks(engine, ledger):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 2))
    run(engine.promotion_service.apply(cart, 'BIG'))
    engine.cart_service.set_quantity(cart, cart.lines[0].line_id, 1)
    session = engine.payment_service.start(cart).value
    engine.payment_service.pay_cash(session, session.total)

    sale = run(engine.sales_service.finalize(cart)).value
    assert sale.subtotal == Decimal('500.00')
    assert sale.discount_amount == Decimal('500.00')
    assert sale.total_amount == Decimal('85.00')
    assert sale.total_amount == sale.subtotal + sale.tax_amount - sale.discount_amount
    assert ledger.sales[0].discount_amount == Decimal('500.00')


def test_stock_timeout_keeps_applied_adjustments(engine, catalog, ledger):
    cart = paid_cart(engine, [('p1', 2), ('p3', 1)])
    catalog.slow.add('p3')
    sales = SalesService(catalog, ledger, EngineSettings(collaborator_timeout=0.05))

    result = run(sales.finalize(cart))
    assert result.kind == ErrorKind.STOCK_CONFLICT
    applied = result.error.details['applied_adjustments']
    assert [(a['product_id'], a['delta']) for a in applied] == [('p1', -2)]
    assert catalog.stock == {'p1': 48, 'p2': 20, 'p3': 5}
    assert ledger.sales == []

    assert run(sales.compensate(applied)).ok
    assert catalog.stock['p1'] == 50
    assert [m[2] for m in catalog.movements] == ['OUT', 'ADJUSTMENT']
