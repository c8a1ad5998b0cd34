"""
Queries and writes behind the request handlers.

Every write runs inside ``transaction()``: either all of its statements are
committed or the session is rolled back and a DatabaseError is raised. Reads
run inside ``reading()``, which turns query failures into DatabaseError.
"""

import os
import uuid
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from auth import hash_password
from cart import to_decimal
from errors import (AccountExists, CustomerNotFound, DatabaseError, InsufficientStock,
                    MissingFields, ProductNotFound, ShopError, Unauthenticated, ValidationError)
from logger import get_logger
from models import Order, OrderItem, Product, Review, User, db

_logger = get_logger(__name__)

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}


@contextmanager
def transaction(action):
    """Commit on success; roll back on any failure"""
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        _logger.error(f'Error {action}: {e}')
        raise DatabaseError(f'Error {action}') from e
    except ShopError:
        db.session.rollback()
        raise


@contextmanager
def reading(action):
    try:
        yield db.session
    except SQLAlchemyError as e:
        _logger.error(f'Error {action}: {e}')
        raise DatabaseError(f'Error {action}') from e


# ==================== Products ====================

def find_product(product_id):
    with reading('loading product'):
        product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound()
    return product


def product_snapshot(product_id):
    """Cart lookup: the product's current fields, or None"""
    with reading('loading product'):
        product = db.session.get(Product, product_id)
    return product.snapshot() if product else None


def list_products(category=None):
    with reading('loading products'):
        query = Product.query
        if category:
            query = query.filter_by(category=category)
        return query.order_by(Product.name).all()


def list_categories():
    with reading('loading categories'):
        return [row[0] for row in db.session.execute(
            select(Product.category).distinct().order_by(Product.category))]


def parse_product_form(form):
    """Validate the add/update product form into column values"""
    name = (form.get('name') or '').strip()
    category = (form.get('category') or '').strip()
    price = (form.get('price') or '').strip()
    stock = (form.get('stock') or '').strip()
    if not (name and category and price and stock):
        raise MissingFields('Name, price, stock and category are required')

    try:
        price = Decimal(price)
        stock = int(stock)
    except (InvalidOperation, ValueError):
        raise ValidationError('Price and stock must be numbers')
    if not price.is_finite() or price < 0 or stock < 0:
        raise ValidationError('Price and stock cannot be negative')

    return {
        'name': name,
        'category': category,
        'price': price.quantize(Decimal('0.01')),
        'stock': stock,
    }

def save_upload(file, folder):
    """
    Store an uploaded image under a generated name and return that name.

    Returns None when no file was sent.
    """
    if file is None or not file.filename:
        return None
    filename = secure_filename(file.filename)
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError('Images must be one of: ' + ', '.join(sorted(ALLOWED_EXTENSIONS)))

    stored_name = f'{uuid.uuid4().hex}.{ext}'
    os.makedirs(folder, exist_ok=True)
    file.save(os.path.join(folder, stored_name))
    _logger.debug(f'Saved upload {file.filename!r} as {stored_name}')
    return stored_name


def remove_upload(folder, name):
    """Delete a stored image; missing files are ignored"""
    if not folder or not name:
        return
    try:
        os.remove(os.path.join(folder, secure_filename(name)))
    except FileNotFoundError:
        return
    _logger.debug(f'Removed upload {name}')


def add_product(values, image=None, folder=None):
    try:
        with transaction('adding product'):
            product = Product(image=image, **values)
            db.session.add(product)
    except DatabaseError:
        remove_upload(folder, image)
        raise
    _logger.info(f'Added product {product.id} ({product.name})')
    return product


def update_product(product_id, values, image=None, folder=None):
    """Apply form values; a new image replaces the stored file"""
    product = find_product(product_id)
    old_image = product.image
    try:
        with transaction('updating product'):
            for key, value in values.items():
                setattr(product, key, value)
            if image:
                product.image = image
    except DatabaseError:
        remove_upload(folder, image)
        raise
    if image and old_image != image:
        remove_upload(folder, old_image)
    return product


def delete_product(product_id, folder=None):
    """Remove a product with its reviews; past order lines keep their snapshot"""
    image = find_product(product_id).image
    with transaction('deleting product'):
        db.session.execute(
            update(OrderItem).where(OrderItem.product_id == product_id).values(product_id=None))
        db.session.execute(delete(Review).where(Review.product_id == product_id))
        db.session.execute(delete(Product).where(Product.id == product_id))
    remove_upload(folder, image)
    _logger.info(f'Deleted product {product_id}')


# ==================== Users ====================

def register_user(data):
    if User.query.filter_by(email=data['email']).first():
        raise AccountExists()
    with transaction('registering user'):
        user = User(
            username=data['username'],
            email=data['email'],
            password_hash=hash_password(data['password']),
            address=data['address'],
            contact=data['contact'],
            role=data['role'],
        )
        db.session.add(user)
    _logger.info(f'Registered {user.role} {user.email}')
    return user


def update_profile(user_id, form):
    user = db.session.get(User, user_id)
    if user is None:
        raise CustomerNotFound('Error fetching profile')

    username = (form.get('username') or '').strip()
    email = (form.get('email') or '').strip()
    if not username or not email:
        raise MissingFields('Username and email are required')
    if User.query.filter(User.email == email, User.id != user_id).first():
        raise AccountExists()

    with transaction('updating profile'):
        user.username = username
        user.email = email
        user.address = (form.get('address') or '').strip()
        user.contact = (form.get('contact') or '').strip()
    return user


def list_customers():
    """Customer accounts with their order count and total spent"""
    stmt = (
        select(
            User.id, User.username, User.email, User.role,
            func.count(Order.id).label('total_orders'),
            func.coalesce(func.sum(Order.total_amount), 0).label('total_spent'),
        )
        .outerjoin(Order, Order.user_id == User.id)
        .where(func.lower(User.role) == 'user')
        .group_by(User.id)
        .order_by(User.username)
    )
    with reading('loading customers'):
        return db.session.execute(stmt).all()


def delete_customer(user_id):
    """Delete a customer with their order items, orders and reviews, all or nothing"""
    user = db.session.get(User, user_id)
    if user is None or user.role != 'user':
        raise CustomerNotFound()

    order_ids = select(Order.id).where(Order.user_id == user_id)
    with transaction('deleting customer'):
        db.session.execute(delete(OrderItem).where(OrderItem.order_id.in_(order_ids)))
        db.session.execute(delete(Order).where(Order.user_id == user_id))
        db.session.execute(delete(Review).where(Review.user_id == user_id))
        db.session.execute(delete(User).where(User.id == user_id))
    _logger.info(f'Deleted customer {user_id}')


# ==================== Orders ====================

def place_order(user_id, lines, totals):
    """
    Persist cart lines as an order and take the quantities out of stock.

    Used as the persist step of Cart.checkout, so raising here keeps the cart.
    """
    with transaction('placing order'):
        if db.session.get(User, user_id) is None:
            raise Unauthenticated('Your account no longer exists')
        order = Order(
            user_id=user_id,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total_amount=totals.total,
            status='pending',
        )
        db.session.add(order)
        for line in lines:
            product = db.session.get(Product, line['id'])
            if product is None:
                raise ProductNotFound(f"{line['name']} is no longer available")
            # decrement only while enough is left, so concurrent checkouts cannot oversell
            taken = db.session.execute(
                update(Product)
                .where(Product.id == product.id, Product.stock >= line['quantity'])
                .values(stock=Product.stock - line['quantity'])
                .execution_options(synchronize_session=False)
            ).rowcount
            if not taken:
                raise InsufficientStock(f'Insufficient stock for {product.name}')
            order.items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=line['quantity'],
                price=to_decimal(line['price']),
            ))
    _logger.info(f'Order {order.id} placed by user {user_id}: {totals.total}')
    return order


def orders_for_user(user_id):
    with reading('loading orders'):
        return Order.query.filter_by(user_id=user_id).order_by(Order.created_at.desc()).all()


def dashboard_stats():
    """Sales figures shown on the inventory page"""
    with reading('loading dashboard'):
        total_sales = db.session.scalar(
            select(func.coalesce(func.sum(Order.total_amount), 0)))
        total_orders = db.session.scalar(select(func.count(Order.id)))
        pending_orders = db.session.scalar(
            select(func.count(Order.id)).where(Order.status == 'pending'))
        top_product = db.session.execute(
            select(Product.name, func.sum(OrderItem.quantity).label('total_sold'))
            .join(Product, OrderItem.product_id == Product.id)
            .group_by(Product.id, Product.name)
            .order_by(desc('total_sold'))
            .limit(1)
        ).first()

    return {
        'total_sales': to_decimal(total_sales),
        'total_orders': total_orders,
        'pending_orders': pending_orders,
        'top_product': top_product,
    }


# ==================== Reviews ====================

def list_reviews():
    with reading('loading reviews'):
        return Review.query.order_by(Review.created_at.desc(), Review.id.desc()).all()


def add_review(user_id, form):
    try:
        product_id = int(form.get('product_id'))
        rating = int(form.get('rating'))
    except (TypeError, ValueError):
        raise MissingFields('Choose a product and a rating')
    if not 1 <= rating <= 5:
        raise ValidationError('Rating must be between 1 and 5')
    find_product(product_id)

    with transaction('adding review'):
        review = Review(user_id=user_id, product_id=product_id, rating=rating,
                        comment=(form.get('comment') or '').strip())
        db.session.add(review)
    return review


def delete_review(review_id):
    with transaction('deleting review'):
        db.session.execute(delete(Review).where(Review.id == review_id))
