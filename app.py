"""
Flask-based Supermarket Shop
Features: Catalog, Session Cart, Checkout, Admin Inventory & Customers, Reviews
"""

from flask import (Flask, render_template, request, session, redirect, url_for, flash,
                   get_flashed_messages, send_from_directory)
from functools import partial
from datetime import timedelta
from decimal import Decimal
import os

import store
from auth import admin_required, current_user, hash_password, login_required, validate_registration, authenticate
from cart import Cart
from errors import (AccountExists, DatabaseError, Forbidden, InvalidCredentials, MissingFields,
                    ShopError, Unauthenticated, ValidationError, WeakPassword)
from logger import get_logger
from models import Product, User, db

_logger = get_logger('app')

# Initialize Flask app
app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///supermarket.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['UPLOAD_FOLDER'] = os.environ.get(
    'UPLOAD_FOLDER', os.path.join(app.root_path, 'static', 'images'))
app.config['MAX_CONTENT_LENGTH'] = 4 * 1024 * 1024
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=7)

# Initialize database
db.init_app(app)


# ==================== Helper Functions ====================

def get_cart():
    """Build the cart from the session"""
    return Cart(session.get('cart', []), lookup=store.product_snapshot)


def save_cart(cart):
    """Save cart to session"""
    session['cart'] = cart.lines
    session.modified = True


@app.context_processor
def inject_user():
    cart = session.get('cart', [])
    return {
        'user': current_user(),
        'cart_count': sum(line['quantity'] for line in cart),
    }


@app.template_filter('money')
def money(value):
    return f'${Decimal(str(value or 0)):,.2f}'


@app.route('/uploads/<path:filename>')
def uploaded_image(filename):
    return send_from_directory(app.config['UPLOAD_FOLDER'], filename)


# ==================== Routes - Authentication ====================

@app.route('/register', methods=['GET', 'POST'])
def register():
    """User registration"""
    if request.method == 'POST':
        try:
            data = validate_registration(request.form)
            store.register_user(data)
        except MissingFields as e:
            return e.message, 400
        except (WeakPassword, AccountExists, DatabaseError) as e:
            flash(e.message, 'error')
            flash({k: v for k, v in request.form.items() if k != 'password'}, 'formData')
            return redirect(url_for('register'))

        flash('Registration successful! Please log in.', 'success')
        return redirect(url_for('login'))

    form_data = get_flashed_messages(category_filter=['formData'])
    return render_template('register.html', form_data=form_data[0] if form_data else {})


@app.route('/login', methods=['GET', 'POST'])
def login():
    """User login"""
    if request.method == 'POST':
        try:
            user = authenticate(request.form.get('email'), request.form.get('password'))
        except InvalidCredentials as e:
            flash(e.message, 'error')
            return redirect(url_for('login'))

        # a cart never outlives the account that filled it
        session.clear()
        session['user'] = user.to_session()
        session.permanent = True
        _logger.debug(f'{user.email} logged in')

        if user.is_admin:
            return redirect(url_for('inventory'))
        return redirect(url_for('shopping'))

    return render_template('login.html')


@app.route('/logout')
def logout():
    """User logout"""
    session.clear()
    return redirect(url_for('home'))


@app.route('/profile', methods=['GET', 'POST'])
@login_required
def profile():
    user_id = current_user()['id']
    if request.method == 'POST':
        try:
            user = store.update_profile(user_id, request.form)
        except ShopError as e:
            flash(e.message, 'error')
            return redirect(url_for('profile'))

        # keep the session copy in step with the stored record
        session['user'] = user.to_session()
        flash('Profile updated successfully', 'success')
        return redirect(url_for('profile'))

    account = db.session.get(User, user_id)
    if account is None:
        flash('Error fetching profile', 'error')
        return redirect(url_for('shopping'))
    return render_template('profile.html', account=account)


# ==================== Routes - Products ====================

@app.route('/inventory')
@admin_required
def inventory():
    """Product list and sales dashboard"""
    products = store.list_products()
    stats = store.dashboard_stats()
    return render_template('inventory.html', products=products, **stats)


@app.route('/shopping')
@login_required
def shopping():
    category = request.args.get('category')
    return render_template('shopping.html',
                           products=store.list_products(category),
                           categories=store.list_categories(),
                           category=category)


@app.route('/product/<int:product_id>')
@login_required
def product_detail(product_id):
    product = store.find_product(product_id)
    return render_template('product.html', product=product)


@app.route('/addProduct', methods=['GET', 'POST'])
@admin_required
def add_product():
    if request.method == 'POST':
        try:
            values = store.parse_product_form(request.form)
            image = store.save_upload(request.files.get('image'), app.config['UPLOAD_FOLDER'])
        except ValidationError as e:
            flash(e.message, 'error')
            return render_template('addProduct.html', form=request.form), 400

        store.add_product(values, image, folder=app.config['UPLOAD_FOLDER'])
        flash('Product added', 'success')
        return redirect(url_for('inventory'))

    return render_template('addProduct.html', form={})


@app.route('/updateProduct/<int:product_id>', methods=['GET', 'POST'])
@admin_required
def update_product(product_id):
    product = store.find_product(product_id)
    if request.method == 'POST':
        try:
            values = store.parse_product_form(request.form)
            image = store.save_upload(request.files.get('image'), app.config['UPLOAD_FOLDER'])
        except ValidationError as e:
            flash(e.message, 'error')
            return render_template('editProduct.html', product=product), 400

        store.update_product(product_id, values, image, folder=app.config['UPLOAD_FOLDER'])
        flash('Product updated', 'success')
        return redirect(url_for('inventory'))

    return render_template('editProduct.html', product=product)


@app.route('/deleteProduct/<int:product_id>', methods=['POST'])
@admin_required
def delete_product(product_id):
    try:
        store.delete_product(product_id, folder=app.config['UPLOAD_FOLDER'])
    except ShopError as e:
        flash(e.message, 'error')
    return redirect(url_for('inventory'))


# ==================== Routes - Shopping Cart ====================

@app.route('/cart')
@login_required
def view_cart():
    cart = get_cart()
    return render_template('cart.html', cart=cart, totals=cart.compute_totals())


@app.route('/add-to-cart/<int:product_id>', methods=['POST'])
@login_required
def add_to_cart(product_id):
    cart = get_cart()
    try:
        cart.add_or_set_item(product_id, request.form.get('quantity'))
    except ShopError as e:
        flash(e.message, 'error')
        return redirect(url_for('shopping'))

    save_cart(cart)
    return redirect(url_for('view_cart'))


@app.route('/update-cart/<int:product_id>', methods=['POST'])
@login_required
def update_cart(product_id):
    """Update product quantity in cart"""
    cart = get_cart()
    cart.set_quantity(product_id, request.form.get('quantity'))
    save_cart(cart)
    return redirect(url_for('view_cart'))


@app.route('/remove-from-cart/<int:product_id>', methods=['POST'])
@login_required
def remove_from_cart(product_id):
    cart = get_cart()
    cart.remove_item(product_id)
    save_cart(cart)
    return redirect(url_for('view_cart'))


@app.route('/cart/clear', methods=['POST'])
@login_required
def clear_cart():
    """Clear entire cart"""
    cart = get_cart()
    cart.clear()
    save_cart(cart)
    return redirect(url_for('view_cart'))


# ==================== Routes - Checkout ====================

@app.route('/checkout', methods=['GET', 'POST'])
@login_required
def checkout():
    """Show totals, or persist the cart as an order"""
    cart = get_cart()
    if request.method == 'POST':
        try:
            order = cart.checkout(partial(store.place_order, current_user()['id']))
        except ShopError as e:
            flash(e.message, 'error')
            return redirect(url_for('view_cart'))

        save_cart(cart)
        flash(f'Order #{order.id} placed successfully!', 'success')
        return redirect(url_for('shopping'))

    return render_template('checkout.html', cart=cart, totals=cart.compute_totals())


@app.route('/orders')
@login_required
def orders():
    """Past orders of the logged in user"""
    return render_template('orders.html', orders=store.orders_for_user(current_user()['id']))


# ==================== Routes - Reviews ====================

@app.route('/reviews')
@login_required
def reviews():
    return render_template('reviews.html',
                           reviews=store.list_reviews(),
                           products=store.list_products())


@app.route('/reviews/add', methods=['POST'])
@login_required
def add_review():
    try:
        store.add_review(current_user()['id'], request.form)
    except ShopError as e:
        flash(e.message, 'error')
    return redirect(url_for('reviews'))


@app.route('/reviews/delete/<int:review_id>', methods=['POST'])
@admin_required
def delete_review(review_id):
    try:
        store.delete_review(review_id)
    except DatabaseError as e:
        flash(e.message, 'error')
    return redirect(url_for('reviews'))


# ==================== Routes - Admin Customers ====================

@app.route('/admin/customers')
@admin_required
def admin_customers():
    return render_template('adminCustomers.html', customers=store.list_customers())


@app.route('/admin/customers/delete/<int:user_id>', methods=['POST'])
@admin_required
def delete_customer(user_id):
    try:
        store.delete_customer(user_id)
    except ShopError as e:
        flash(e.message, 'error')
    else:
        flash('Customer account deleted successfully', 'success')
    return redirect(url_for('admin_customers'))


# ==================== Routes - Home ====================

@app.route('/')
def home():
    """Home page"""
    return render_template('index.html')


# ==================== Error Handlers ====================

@app.errorhandler(Unauthenticated)
def unauthenticated(error):
    flash(error.message, 'error')
    return redirect(url_for('login'))


@app.errorhandler(Forbidden)
def forbidden(error):
    flash(error.message, 'error')
    return redirect(url_for('shopping'))


@app.errorhandler(ShopError)
def shop_error(error):
    return render_template('error.html', message=error.message), error.status_code


@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors"""
    return render_template('error.html', message='Page not found'), 404


@app.errorhandler(500)
def server_error(error):
    """Handle 500 errors"""
    return render_template('error.html', message='Internal server error'), 500


# ==================== Initialize Database ====================

def init_db():
    """Create tables, sample products and the admin account"""
    with app.app_context():
        db.create_all()

        if Product.query.first() is None:
            sample_products = [
                Product(name='Apples', price=Decimal('1.50'), stock=120, category='Fruit'),
                Product(name='Bananas', price=Decimal('0.80'), stock=150, category='Fruit'),
                Product(name='Whole Milk', price=Decimal('3.20'), stock=40, category='Dairy'),
                Product(name='Cheddar', price=Decimal('6.90'), stock=25, category='Dairy'),
                Product(name='Sourdough Bread', price=Decimal('4.50'), stock=30, category='Bakery'),
                Product(name='Broccoli', price=Decimal('2.10'), stock=60, category='Vegetables'),
            ]
            db.session.add_all(sample_products)
            db.session.commit()
            _logger.info('Sample products created')

        admin_email = os.environ.get('ADMIN_EMAIL', 'admin@supermarket.local')
        if User.query.filter_by(email=admin_email).first() is None:
            db.session.add(User(
                username='admin',
                email=admin_email,
                password_hash=hash_password(os.environ.get('ADMIN_PASSWORD', 'admin123')),
                address='Head office',
                contact='-',
                role='admin',
            ))
            db.session.commit()
            _logger.info(f'Admin account {admin_email} created')


# ==================== Main ====================

if __name__ == '__main__':
    init_db()
    app.run(debug=bool(os.environ.get('DEBUG')), host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
