from datetime import datetime, timezone
from decimal import Decimal

from conftest import run
from pos_engine.errors import ErrorKind, PROMOTION_ERROR


def cart_with(engine, *items):
    cart = engine.cart_service.new_cart()
    for product_id, qty in items:
        assert run(engine.cart_service.add_item(cart, product_id, qty)).ok
    return cart


def test_welcome10_not_capped(engine):
    cart = cart_with(engine, ('p1', 2))
    result = run(engine.promotion_service.apply(cart, 'WELCOME10'))
    assert result.ok
    assert result.value.discount == Decimal('100.00')
    assert engine.cart_service.totals(cart).total == Decimal('1070.00')


def test_vip20_capped_at_max_discount(engine):
    cart = cart_with(engine, ('p3', 3))
    assert engine.cart_service.totals(cart).subtotal == Decimal('6000.00')
    result = run(engine.promotion_service.apply(cart, 'VIP20'))
    assert result.value.discount == Decimal('1000.00')


def test_fixed_discount(engine):
    cart = cart_with(engine, ('p2', 1))
    result = run(engine.promotion_service.apply(cart, 'FLAT50'))
    assert result.value.discount == Decimal('50.00')
    assert engine.cart_service.totals(cart).total == Decimal('242.50')


def test_code_is_case_insensitive(engine):
    cart = cart_with(engine, ('p1', 2))
    assert run(engine.promotion_service.apply(cart, '  welcome10 ')).ok


def test_unknown_and_inactive_codes_are_not_found(engine):
    cart = cart_with(engine, ('p1', 2))
    for code in ('NOPE', 'OFF', ''):
        result = run(engine.promotion_service.apply(cart, code))
        assert result.kind == ErrorKind.PROMOTION_NOT_FOUND
        assert result.error.to_dict()['family'] == PROMOTION_ERROR
    assert cart.applied_promotions == []


def test_already_applied(engine):
    cart = cart_with(engine, ('p1', 2))
    run(engine.promotion_service.apply(cart, 'FLAT50'))
    result = run(engine.promotion_service.apply(cart, 'flat50'))
    assert result.kind == ErrorKind.PROMOTION_ALREADY_APPLIED
    assert len(cart.applied_promotions) == 1


def test_min_amount_not_met(engine):
    cart = cart_with(engine, ('p2', 1))
    result = run(engine.promotion_service.apply(cart, 'WELCOME10'))
    assert result.kind == ErrorKind.PROMOTION_MIN_AMOUNT_NOT_MET
    assert result.error.details['min_amount'] == '1000.00'


def test_expired(engine):
    cart = cart_with(engine, ('p2', 1))
    result = run(engine.promotion_service.apply(cart, 'OLD'))
    assert result.kind == ErrorKind.PROMOTION_EXPIRED


def test_expiry_uses_given_clock(engine):
    cart = cart_with(engine, ('p2', 1))
    before_expiry = datetime(2019, 12, 31, tzinfo=timezone.utc)
    assert run(engine.promotion_service.apply(cart, 'OLD', now=before_expiry)).ok


def test_min_amount_checked_before_expiry(engine, promotions):
    from pos_engine.models import Promotion, PromotionKind
    promotions.promotions.append(Promotion(
        id='promo-7', code='OLDMIN', kind=PromotionKind.FIXED, value=Decimal('10'),
        min_amount=Decimal('100000'), valid_until=datetime(2020, 1, 1, tzinfo=timezone.utc),
    ))
    cart = cart_with(engine, ('p2', 1))
    result = run(engine.promotion_service.apply(cart, 'OLDMIN'))
    assert result.kind == ErrorKind.PROMOTION_MIN_AMOUNT_NOT_MET


def test_discount_locked_after_cart_changes(engine):
    cart = cart_with(engine, ('p1', 2))
    run(engine.promotion_service.apply(cart, 'WELCOME10'))
    run(engine.cart_service.add_item(cart, 'p1', 3))
    assert cart.discount_total == Decimal('100.00')


def test_apply_then_remove_restores_discount_total(engine):
    cart = cart_with(engine, ('p3', 3))
    run(engine.promotion_service.apply(cart, 'FLAT50'))
    before = cart.discount_total

    applied = run(engine.promotion_service.apply(cart, 'VIP20')).value
    run(engine.cart_service.add_item(cart, 'p2', 4))
    engine.cart_service.set_quantity(cart, cart.lines[0].line_id, 1)

    removed = engine.promotion_service.remove(cart, applied.promotion.id)
    assert removed.ok
    assert cart.discount_total == before


def test_remove_by_code(engine):
    cart = cart_with(engine, ('p1', 2))
    run(engine.promotion_service.apply(cart, 'FLAT50'))
    assert engine.promotion_service.remove(cart, 'flat50').ok
    assert cart.discount_total == Decimal('0')


def test_remove_not_applied(engine):
    cart = cart_with(engine, ('p1', 2))
    result = engine.promotion_service.remove(cart, 'promo-1')
    assert result.kind == ErrorKind.PROMOTION_NOT_APPLIED


def test_promotions_stack(engine):
    cart = cart_with(engine, ('p1', 2))
    run(engine.promotion_service.apply(cart, 'WELCOME10'))
    run(engine.promotion_service.apply(cart, 'FLAT50'))
    assert cart.discount_total == Decimal('150.00')
    assert engine.cart_service.totals(cart).total == Decimal('1020.00')


def test_discount_never_exceeds_subtotal(engine):
    cart = cart_with(engine, ('p2', 1))
    result = run(engine.promotion_service.apply(cart, 'BIG'))
    assert result.value.discount == Decimal('250.00')
    totals = engine.cart_service.totals(cart)
    assert totals.total >= 0
    assert totals.total == totals.subtotal + totals.tax - totals.discount


def test_cart_shrinking_after_promotion_caps_discount(engine):
    cart = cart_with(engine, ('p1', 2))
    applied = run(engine.promotion_service.apply(cart, 'BIG')).value
    assert applied.discount == Decimal('1000.00')

    engine.cart_service.set_quantity(cart, cart.lines[0].line_id, 1)
    # el monto bloqueado no cambia; el total usa el tope
    assert cart.discount_total == Decimal('1000.00')
    totals = engine.cart_service.totals(cart)
    assert totals.subtotal == Decimal('500.00')
    assert totals.discount == Decimal('500.00')
    assert totals.total == Decimal('85.00')
    assert totals.total == totals.subtotal + totals.tax - totals.discount

    engine.promotion_service.remove(cart, 'BIG')
    assert engine.cart_service.totals(cart).total == Decimal('585.00')
