from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

import store
from cart import Cart
from conftest import make_product
from errors import InsufficientStock, Unauthenticated
from models import Order, OrderItem, Product, db


def session_cart(client):
    with client.session_transaction() as sess:
        return sess.get('cart', [])


def test_shopping_lists_products(user_client):
    make_product('Apples')
    make_product('Cheddar', category='Dairy')
    page = user_client.get('/shopping').get_data(as_text=True)
    assert 'Apples' in page
    assert 'Cheddar' in page

    page = user_client.get('/shopping?category=Dairy').get_data(as_text=True)
    assert 'Cheddar' in page
    assert '>Apples<' not in page


def test_product_detail(user_client):
    product = make_product('Apples', price='1.50')
    response = user_client.get(f'/product/{product.id}')
    assert response.status_code == 200
    assert b'$1.50' in response.data


def test_product_detail_unknown_id_is_404(user_client):
    response = user_client.get('/product/999')
    assert response.status_code == 404
    assert b'Product not found' in response.data


def test_add_to_cart_sets_quantity(user_client):
    product = make_product()
    response = user_client.post(f'/add-to-cart/{product.id}', data={'quantity': '2'})
    assert response.headers['Location'].endswith('/cart')
    user_client.post(f'/add-to-cart/{product.id}', data={'quantity': '5'})

    cart = session_cart(user_client)
    assert len(cart) == 1
    assert cart[0]['quantity'] == 5
    assert cart[0]['price'] == '10.00'


def test_add_to_cart_unknown_product(user_client):
    response = user_client.post('/add-to-cart/999', data={'quantity': '1'})
    assert response.headers['Location'].endswith('/shopping')
    assert session_cart(user_client) == []


def test_update_remove_and_clear(user_client):
    apples = make_product('Apples')
    milk = make_product('Milk', price='5.00')
    user_client.post(f'/add-to-cart/{apples.id}', data={'quantity': '1'})
    user_client.post(f'/add-to-cart/{milk.id}', data={'quantity': '1'})

    user_client.post(f'/update-cart/{apples.id}', data={'quantity': '4'})
    user_client.post(f'/update-cart/{milk.id}', data={'quantity': '0'})
    assert [line['quantity'] for line in session_cart(user_client)] == [4, 1]

    user_client.post(f'/remove-from-cart/{apples.id}')
    assert [line['id'] for line in session_cart(user_client)] == [milk.id]

    user_client.post('/cart/clear')
    assert session_cart(user_client) == []


def test_cart_requires_login(client):
    response = client.post('/add-to-cart/1', data={'quantity': '1'})
    assert response.headers['Location'].endswith('/login')


def test_checkout_page_shows_totals(user_client):
    apples = make_product('Apples', price='10.00')
    milk = make_product('Milk', price='5.00')
    user_client.post(f'/add-to-cart/{apples.id}', data={'quantity': '2'})
    user_client.post(f'/add-to-cart/{milk.id}', data={'quantity': '3'})

    page = user_client.get('/checkout').get_data(as_text=True)
    assert '$35.00' in page
    assert '$2.80' in page
    assert '$37.80' in page


def test_checkout_persists_order_then_clears_cart(user_client, customer):
    apples = make_product('Apples', price='10.00', stock=10)
    milk = make_product('Milk', price='5.00', stock=10)
    user_client.post(f'/add-to-cart/{apples.id}', data={'quantity': '2'})
    user_client.post(f'/add-to-cart/{milk.id}', data={'quantity': '3'})

    response = user_client.post('/checkout')
    assert response.headers['Location'].endswith('/shopping')
    assert session_cart(user_client) == []

    order = Order.query.one()
    assert order.user_id == customer.id
    assert order.status == 'pending'
    assert order.subtotal == Decimal('35.00')
    assert order.tax == Decimal('2.80')
    assert order.total_amount == Decimal('37.80')
    assert sorted((item.product_name, item.quantity) for item in order.items) == [('Apples', 2), ('Milk', 3)]
    assert db.session.get(Product, apples.id).stock == 8
    assert db.session.get(Product, milk.id).stock == 7

    page = user_client.get('/orders').get_data(as_text=True)
    assert f'Order #{order.id}' in page


def test_checkout_insufficient_stock_keeps_cart(user_client):
    bread = make_product('Bread', price='2.00', stock=1)
    user_client.post(f'/add-to-cart/{bread.id}', data={'quantity': '3'})

    response = user_client.post('/checkout', follow_redirects=True)
    assert b'Insufficient stock for Bread' in response.data
    assert session_cart(user_client)[0]['quantity'] == 3
    assert Order.query.count() == 0
    assert db.session.get(Product, bread.id).stock == 1


def test_checkout_database_failure_keeps_cart(user_client, monkeypatch):
    apples = make_product('Apples')
    user_client.post(f'/add-to-cart/{apples.id}', data={'quantity': '2'})

    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db.session, 'commit', failing_commit)
    response = user_client.post('/checkout')
    monkeypatch.undo()

    assert response.headers['Location'].endswith('/cart')
    assert session_cart(user_client)[0]['quantity'] == 2
    assert Order.query.count() == 0
    assert OrderItem.query.count() == 0


def test_checkout_empty_cart(user_client):
    response = user_client.post('/checkout', follow_redirects=True)
    assert b'Your cart is empty' in response.data
    assert Order.query.count() == 0


def test_place_order_uses_cart_prices(app, customer):
    apples = make_product('Apples', price='10.00', stock=5)
    lines = [dict(apples.snapshot(), price='9.00', quantity=2)]
    totals = Cart(lines).compute_totals()

    order = store.place_order(customer.id, lines, totals)
    assert order.items[0].price == Decimal('9.00')
    assert order.total_amount == Decimal('19.44')


def test_deleted_customer_cannot_check_out(user_client, customer):
    apples = make_product('Apples', stock=10)
    user_client.post(f'/add-to-cart/{apples.id}', data={'quantity': '2'})
    customer_id = customer.id
    store.delete_customer(customer_id)

    response = user_client.post('/checkout')
    assert response.headers['Location'].endswith('/login')
    assert Order.query.filter_by(user_id=customer_id).count() == 0
    assert db.session.get(Product, apples.id).stock == 10
    with user_client.session_transaction() as sess:
        assert 'user' not in sess


def test_place_order_for_missing_user(app):
    apples = make_product('Apples', stock=10)
    lines = [dict(apples.snapshot(), quantity=1)]
    with pytest.raises(Unauthenticated):
        store.place_order(12345, lines, Cart(lines).compute_totals())
    assert Order.query.count() == 0


def test_place_order_checks_stock_in_the_database(app, customer):
    bread = make_product('Bread', price='2.00', stock=5)
    lines = [dict(bread.snapshot(), quantity=3)]
    # another checkout took most of the stock after this session loaded the product
    db.session.execute(text('UPDATE products SET stock = 1 WHERE id = :id'), {'id': bread.id})
    assert bread.stock == 5

    with pytest.raises(InsufficientStock):
        store.place_order(customer.id, lines, Cart(lines).compute_totals())
    assert Order.query.count() == 0
    assert OrderItem.query.count() == 0
