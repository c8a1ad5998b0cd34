"""
Session shopping cart.

The cart is an ordered list of line dicts (a product snapshot plus a
quantity) that lives in the Flask session. Cart wraps that list; handlers
build one from the session, call an operation, and store ``cart.lines`` back.
"""

from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from errors import EmptyCart, ProductNotFound

TAX_RATE = Decimal('0.08')
CENTS = Decimal('0.01')

Totals = namedtuple('Totals', ['subtotal', 'tax', 'total'])


def parse_quantity(value, default=None):
    """Return value truncated to a positive int, or default when it is not one"""
    try:
        quantity = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return quantity if quantity > 0 else default


def to_decimal(value):
    return Decimal(str(value)) if value is not None else Decimal('0')


class Cart:
    """Ordered collection of cart lines, at most one per product id"""

    def __init__(self, lines=None, lookup=None):
        self.lines = [dict(line) for line in lines or []]
        self._lookup = lookup

    def __len__(self):
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)

    def __bool__(self):
        return bool(self.lines)

    @property
    def item_count(self):
        return sum(line['quantity'] for line in self.lines)

    def get(self, product_id):
        for line in self.lines:
            if line['id'] == product_id:
                return line
        return None

    def add_or_set_item(self, product_id, quantity=None):
        """
        Put a product in the cart.

        A product already in the cart gets its quantity replaced, not
        increased. Otherwise a snapshot of the product is appended.
        """
        quantity = parse_quantity(quantity, default=1)
        product = self._lookup(product_id) if self._lookup else None
        if product is None:
            raise ProductNotFound()

        existing = self.get(product['id'])
        if existing is not None:
            existing['quantity'] = quantity
            return existing

        line = dict(product)
        line['price'] = str(to_decimal(product['price']))
        line['quantity'] = quantity
        self.lines.append(line)
        return line

    def set_quantity(self, product_id, quantity):
        """Change a line's quantity; ignored for unknown ids or quantities below 1"""
        quantity = parse_quantity(quantity)
        line = self.get(product_id)
        if line is not None and quantity is not None:
            line['quantity'] = quantity
        return line

    def remove_item(self, product_id):
        self.lines = [line for line in self.lines if line['id'] != product_id]

    def clear(self):
        self.lines = []

    def compute_totals(self):
        subtotal = sum(
            (to_decimal(line['price']) * line['quantity'] for line in self.lines),
            Decimal('0'),
        )
        subtotal = subtotal.quantize(CENTS, rounding=ROUND_HALF_UP)
        tax = (subtotal * TAX_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
        return Totals(subtotal, tax, subtotal + tax)

    def checkout(self, persist):
        """
        Hand the lines and totals to ``persist`` and empty the cart.

        The cart is cleared only after ``persist`` returns; if it raises, the
        exception propagates and the lines are kept.
        """
        if not self.lines:
            raise EmptyCart()
        totals = self.compute_totals()
        result = persist([dict(line) for line in self.lines], totals)
        self.clear()
        return result
