import os
from decimal import Decimal

os.environ['DATABASE_URL'] = 'sqlite://'

import pytest

from app import app as flask_app
from auth import hash_password
from models import Product, User, db


@pytest.fixture
def app(tmp_path):
    flask_app.config.update(TESTING=True, UPLOAD_FOLDER=str(tmp_path / 'uploads'))
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email, password='secret123', role='user', username=None):
    user = User(
        username=username or email.split('@')[0],
        email=email,
        password_hash=hash_password(password),
        address='1 Main Street',
        contact='555-0100',
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_product(name='Apples', price='10.00', stock=10, category='Fruit'):
    product = Product(name=name, price=Decimal(price), stock=stock, category=category)
    db.session.add(product)
    db.session.commit()
    return product


def login(client, email, password='secret123'):
    return client.post('/login', data={'email': email, 'password': password})


@pytest.fixture
def customer(app):
    return make_user('alice@example.com')


@pytest.fixture
def admin(app):
    return make_user('boss@example.com', role='admin', username='boss')


@pytest.fixture
def user_client(client, customer):
    login(client, customer.email)
    return client


@pytest.fixture
def admin_client(client, admin):
    login(client, admin.email)
    return client
