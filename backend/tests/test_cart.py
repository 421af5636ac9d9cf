"""
Cart tests: quantity ceilings, line merging, removal, totals.
"""

import pytest

from pharmapos.services.cart import Cart, CartError


def add_paracetamol(cart, quantity=1, max_quantity=5):
    return cart.add(
        product_id=1,
        name="Paracetamol",
        unit_price_cents=10000,
        max_quantity=max_quantity,
        quantity=quantity,
    )


def test_adding_same_product_merges_lines():
    cart = Cart()
    add_paracetamol(cart)
    add_paracetamol(cart, quantity=2)

    assert len(cart) == 1
    assert cart.get(1).quantity == 3
    assert cart.get(1).line_total_cents == 30000


def test_add_beyond_stock_is_rejected():
    cart = Cart()
    add_paracetamol(cart, quantity=4)

    with pytest.raises(CartError, match="Only 5"):
        add_paracetamol(cart, quantity=2)
    assert cart.get(1).quantity == 4


def test_out_of_stock_product_cannot_be_added():
    cart = Cart()
    with pytest.raises(CartError, match="out of stock"):
        add_paracetamol(cart, max_quantity=0)
    assert cart.is_empty


def test_zero_quantity_add_rejected():
    with pytest.raises(CartError):
        add_paracetamol(Cart(), quantity=0)


def test_update_quantity_to_zero_removes_line():
    cart = Cart()
    add_paracetamol(cart, quantity=2)

    assert cart.update_quantity(1, 0) is None
    assert cart.is_empty


def test_update_quantity_respects_ceiling():
    cart = Cart()
    add_paracetamol(cart)

    with pytest.raises(CartError):
        cart.update_quantity(1, 6)
    assert cart.update_quantity(1, 5).quantity == 5


def test_update_unknown_product():
    with pytest.raises(CartError):
        Cart().update_quantity(99, 1)


def test_remove_and_clear():
    cart = Cart()
    add_paracetamol(cart)
    cart.add(product_id=2, name="Insulin", unit_price_cents=85050, max_quantity=2, is_vat_exempt=True)
    cart.set_senior_pwd(True)

    assert cart.remove(1) is True
    assert cart.remove(1) is False
    assert [line.product_id for line in cart] == [2]

    cart.clear()
    assert cart.is_empty
    assert cart.is_senior_pwd is False


def test_totals_follow_senior_flag():
    cart = Cart()
    add_paracetamol(cart, quantity=2)

    assert cart.totals().total_cents == 22400
    cart.set_senior_pwd(True)
    assert cart.totals().total_cents == 17920


def test_to_dict_shape():
    cart = Cart()
    add_paracetamol(cart, quantity=2)
    data = cart.to_dict()

    assert data["is_senior_pwd"] is False
    assert data["items"][0]["line_total_cents"] == 20000
    assert data["totals"]["subtotal_cents"] == 20000
