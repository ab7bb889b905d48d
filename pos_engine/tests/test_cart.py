from decimal import Decimal

from conftest import run
from pos_engine.errors import ErrorKind
from pos_engine.models import UnitKind
from pos_engine.services.pricing_service import raw_subtotal


def test_add_pack_uses_full_price(engine):
    cart = engine.cart_service.new_cart()
    result = run(engine.cart_service.add_item(cart, 'p1', 2))
    assert result.ok
    assert result.value.unit_price == Decimal('500')
    assert result.value.unit_kind == UnitKind.PACK
    assert engine.cart_service.totals(cart).total == Decimal('1170.00')


def test_add_loose_units_divides_by_pack_size(engine):
    cart = engine.cart_service.new_cart()
    result = run(engine.cart_service.add_item(cart, 'p1', 3, 'tablets'))
    assert result.ok
    assert result.value.unit_price == Decimal('50')
    assert result.value.total_price == Decimal('150')


def test_loose_unit_price_keeps_precision(engine):
    cart = engine.cart_service.new_cart()
    # 2000 / 30 is not exact: rounding only happens on totals
    result = run(engine.cart_service.add_item(cart, 'p3', 30, 'capsules'))
    assert result.ok
    assert engine.cart_service.totals(cart).subtotal == Decimal('2000.00')


def test_same_product_and_unit_merges(engine):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 1))
    run(engine.cart_service.add_item(cart, 'p1', 2))
    run(engine.cart_service.add_item(cart, 'p1', 5, 'tablets'))
    assert len(cart.lines) == 2
    assert cart.lines[0].quantity == 3
    assert cart.lines[1].quantity == 5


def test_invalid_quantity_leaves_cart_untouched(engine):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 1))
    for bad in (0, -1, 'x', 1.5, None, True):
        result = run(engine.cart_service.add_item(cart, 'p1', bad))
        assert not result.ok
        assert result.kind == ErrorKind.INVALID_QUANTITY
        assert result.error.category == 'validation'
    assert len(cart.lines) == 1
    assert cart.lines[0].quantity == 1


def test_unknown_product(engine):
    cart = engine.cart_service.new_cart()
    result = run(engine.cart_service.add_item(cart, 'nope', 1))
    assert result.kind == ErrorKind.PRODUCT_NOT_FOUND
    assert cart.is_empty


def test_invalid_unit_kind(engine):
    cart = engine.cart_service.new_cart()
    result = run(engine.cart_service.add_item(cart, 'p1', 1, 'crates'))
    assert result.kind == ErrorKind.INVALID_UNIT_KIND
    assert cart.is_empty


def test_catalog_failure_is_reported(engine, catalog):
    catalog.unavailable = True
    cart = engine.cart_service.new_cart()
    result = run(engine.cart_service.add_item(cart, 'p1', 1))
    assert result.kind == ErrorKind.COLLABORATOR_FAILURE
    assert result.error.category == 'collaborator'


def test_set_quantity_updates_and_removes(engine):
    cart = engine.cart_service.new_cart()
    line = run(engine.cart_service.add_item(cart, 'p1', 1)).value
    other = run(engine.cart_service.add_item(cart, 'p2', 1)).value

    assert engine.cart_service.set_quantity(cart, line.line_id, 4).ok
    assert line.quantity == 4

    removed = engine.cart_service.set_quantity(cart, other.line_id, 0)
    assert removed.ok and removed.value is None
    assert [li.line_id for li in cart.lines] == [line.line_id]


def test_set_quantity_unknown_line(engine):
    cart = engine.cart_service.new_cart()
    result = engine.cart_service.set_quantity(cart, 'missing', 2)
    assert result.kind == ErrorKind.LINE_NOT_FOUND


def test_subtotal_tracks_line_totals(engine):
    cart = engine.cart_service.new_cart()
    cs = engine.cart_service
    a = run(cs.add_item(cart, 'p1', 2)).value
    run(cs.add_item(cart, 'p2', 3))
    run(cs.add_item(cart, 'p1', 7, 'tablets'))
    cs.set_quantity(cart, a.line_id, 1)
    run(cs.add_item(cart, 'p3', 1))
    assert cs.totals(cart).subtotal == Decimal('500') + Decimal('750') + Decimal('350') + Decimal('2000')
    assert cs.totals(cart).subtotal == raw_subtotal(cart.lines)


def test_clear_empties_everything(engine):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p3', 1))
    run(engine.promotion_service.apply(cart, 'FLAT50'))
    session = engine.payment_service.start(cart).value
    engine.payment_service.add_tender(session, 'cash', '100')

    engine.cart_service.clear(cart)
    assert cart.is_empty
    assert cart.applied_promotions == []
    assert cart.payment is None
    assert cart.discount_total == Decimal('0')


def test_bind_customer(engine):
    cart = engine.cart_service.new_cart()
    assert run(engine.cart_service.bind_customer(cart, 'c1')).ok
    assert cart.customer_id == 'c1'

    missing = run(engine.cart_service.bind_customer(cart, 'c404'))
    assert missing.kind == ErrorKind.CUSTOMER_NOT_FOUND
    assert cart.customer_id == 'c1'

    engine.cart_service.unbind_customer(cart)
    assert cart.customer_id is None


def test_summary_shape(engine):
    cart = engine.cart_service.new_cart()
    run(engine.cart_service.add_item(cart, 'p1', 2))
    summary = engine.cart_service.summary(cart)
    assert summary['items_count'] == 1
    assert summary['total_items'] == 2
    assert summary['totals']['total'] == '1170.00'
    assert summary['payment'] is None
