from decimal import Decimal

import pytest

from pos_engine.models import LineItem, UnitKind, to_money
from pos_engine.services.pricing_service import compute_totals, loyalty_points_for


def line(unit_price, quantity, line_id='l1'):
    return LineItem(
        line_id=line_id, product_id='p', name='item', quantity=quantity,
        unit_price=Decimal(unit_price), unit_kind=UnitKind.PACK,
    )


def test_single_line_with_default_tax():
    totals = compute_totals([line('500', 2)])
    assert totals.subtotal == Decimal('1000.00')
    assert totals.tax == Decimal('170.00')
    assert totals.discount == Decimal('0.00')
    assert totals.total == Decimal('1170.00')


def test_total_identity_holds_for_rounded_terms():
    lines = [line('33.335', 3, 'a'), line('0.125', 7, 'b'), line('12.5', 1, 'c')]
    totals = compute_totals(lines, Decimal('0.17'), Decimal('10.005'))
    assert totals.total == totals.subtotal + totals.tax - totals.discount
    assert totals.subtotal == to_money(sum(li.total_price for li in lines))


def test_half_up_rounding():
    totals = compute_totals([line('0.125', 1)], Decimal('0'))
    assert totals.subtotal == Decimal('0.13')


def test_discount_is_capped_at_subtotal():
    totals = compute_totals([line('10', 1)], Decimal('0.17'), Decimal('500'))
    assert totals.discount == Decimal('10.00')
    assert totals.total == Decimal('1.70')
    assert totals.total == totals.subtotal + totals.tax - totals.discount


def test_total_never_negative():
    totals = compute_totals([line('10', 1)], Decimal('0'), Decimal('500'))
    assert totals.total == Decimal('0.00')


def test_negative_discount_is_ignored():
    totals = compute_totals([line('100', 1)], Decimal('0'), Decimal('-5'))
    assert totals.discount == Decimal('0.00')
    assert totals.total == Decimal('100.00')


def test_empty_cart_totals_are_zero():
    totals = compute_totals([])
    assert totals.to_dict() == {'subtotal': '0.00', 'tax': '0.00', 'discount': '0.00', 'total': '0.00'}


@pytest.mark.parametrize('total,expected', [
    ('1170', 11),
    ('99.99', 0),
    ('100', 1),
    ('0', 0),
])
def test_loyalty_points(total, expected):
    assert loyalty_points_for(Decimal(total), Decimal('100')) == expected


def test_loyalty_points_with_zero_rate():
    assert loyalty_points_for(Decimal('5000'), Decimal('0')) == 0


def test_to_money_rejects_garbage():
    with pytest.raises(ValueError):
        to_money('abc')
    with pytest.raises(ValueError):
        to_money(None)
