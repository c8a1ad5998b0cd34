"""
Exceptions raised by the shop.

Each carries the user-facing message and the HTTP status the app answers
with when the error is not handled by a more specific route.
"""


class ShopError(Exception):
    """Base class for expected, request-local failures"""
    status_code = 400
    message = 'Request failed'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ShopError):
    message = 'Invalid input'


class MissingFields(ValidationError):
    message = 'All fields are required.'


class WeakPassword(ValidationError):
    message = 'Password should be at least 6 characters long'


class InvalidCredentials(ShopError):
    status_code = 401
    message = 'Invalid credentials'


class Unauthenticated(ShopError):
    status_code = 401
    message = 'Please log in to view this resource'


class Forbidden(ShopError):
    status_code = 403
    message = 'Access denied'


class ProductNotFound(ShopError):
    status_code = 404
    message = 'Product not found'


class CustomerNotFound(ShopError):
    status_code = 404
    message = 'Customer not found'


class EmptyCart(ShopError):
    message = 'Your cart is empty'


class InsufficientStock(ShopError):
    status_code = 409
    message = 'Insufficient stock'


class AccountExists(ShopError):
    status_code = 409
    message = 'An account with this email already exists'


class DatabaseError(ShopError):
    status_code = 500
    message = 'Database error'
