"""
Session guards, registration checks and password handling
"""

from functools import wraps

from flask import session
from werkzeug.security import check_password_hash, generate_password_hash

from errors import Forbidden, InvalidCredentials, MissingFields, Unauthenticated, WeakPassword
from models import ROLES, User, db

REGISTRATION_FIELDS = ('username', 'email', 'password', 'address', 'contact', 'role')
MIN_PASSWORD_LENGTH = 6


def current_user():
    """The user dict stored in the session at login, or None"""
    return session.get('user')


def login_required(f):
    """Decorator to check if user is logged in with an account that still exists"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if user is None:
            raise Unauthenticated()
        if db.session.get(User, user['id']) is None:
            session.clear()
            raise Unauthenticated()
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to check if the logged in user is an admin"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user().get('role') != 'admin':
            raise Forbidden()
        return f(*args, **kwargs)
    return decorated_function


def hash_password(password):
    return generate_password_hash(password)


def verify_password(password_hash, password):
    return check_password_hash(password_hash, password)


def validate_registration(form):
    """
    Return the cleaned registration fields.

    Raises MissingFields when a field is blank or the role is unknown, and
    WeakPassword when the password is too short.
    """
    data = {field: (form.get(field) or '').strip() for field in REGISTRATION_FIELDS}
    # whitespace is significant in passwords
    data['password'] = form.get('password') or ''

    if not all(data.values()) or data['role'] not in ROLES:
        raise MissingFields()
    if len(data['password']) < MIN_PASSWORD_LENGTH:
        raise WeakPassword()
    return data


def authenticate(email, password):
    """Return the User with this email and password, or raise InvalidCredentials"""
    user = User.query.filter_by(email=(email or '').strip()).first()
    if user is None or not verify_password(user.password_hash, password or ''):
        raise InvalidCredentials()
    return user
