import math
import re

ORDER_STATUS_NEW = 'Waiting confirmation'

# SQLite INTEGER is a signed 64-bit value
SQLITE_INT_MIN = -2 ** 63
SQLITE_INT_MAX = 2 ** 63 - 1

ORDER_ID_PATTERN = re.compile(r'-?[0-9]+')

ORDER_COLUMNS = (
    'id', 'userId', 'phoneNumber', 'name', 'addressName', 'addressLong',
    'addressLat', 'discount', 'deliveryFee', 'totalAmount', 'status',
    'paymentType', 'promoCode', 'orderRating', 'storeId', 'nearby', 'notes',
    'createdAt',
)


def is_number(value):
    """True for finite ints/floats; bools and NaN/inf do not count."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


# ==================== ORDER LOOKUP ====================


def find_order(conn, order_id):
    """Return the order row for order_id, or None."""
    if not SQLITE_INT_MIN <= order_id <= SQLITE_INT_MAX:
        return None
    return conn.execute(
        'SELECT * FROM orders WHERE id = ?', (order_id,)).fetchone()


def is_order_owner(order, identity):
    """An identity owns an order through either of the two owner fields."""
    if order is None or not identity:
        return False
    return order['userId'] == identity or order['phoneNumber'] == identity


def parse_order_id(raw):
    """Parse a decimal order id; returns None when it is not one."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str) or not ORDER_ID_PATTERN.fullmatch(raw.strip()):
        return None
    return int(raw.strip())


# ==================== CHECKOUT ====================


def validate_checkout(data):
    """Validate a checkout payload.

    Returns (True, None) or (False, error message), mirroring the field
    checks done before an order is written.
    """
    items = data.get('items')
    if not items or not isinstance(items, list):
        return False, 'Items array is required and must not be empty'

    for item in items:
        if (not isinstance(item, dict) or not item.get('id') or not item.get('name')
                or item.get('price') is None or not item.get('quantity')):
            return False, 'Each item must have id, name, price, and quantity'

    if not data.get('phoneNumber'):
        return False, 'phoneNumber is required'

    if data.get('totalAmount') is None:
        return False, 'totalAmount is required'

    if not data.get('paymentType'):
        return False, 'paymentType is required'

    for field in ('addressLong', 'addressLat'):
        if field in data and not is_number(data[field]):
            return False, f'{field} must be a valid number'

    if not data.get('promoCode'):
        discount = data.get('discount')
        if discount is not None and not is_number(discount):
            return False, 'discount must be a valid number'

    if not is_number(data.get('deliveryFee', 0)):
        return False, 'deliveryFee is required and must be a valid number'

    if not is_number(data['totalAmount']):
        return False, 'totalAmount must be a valid number'

    return True, None


def find_promo_code(conn, code):
    if not code or not str(code).strip():
        return None
    return conn.execute(
        'SELECT * FROM promo_codes WHERE name = ?', (str(code).strip(),)).fetchone()


def resolve_discount(conn, data):
    """Return (discount, promo code name) or raise LookupError for a bad code.

    A valid promo code's value replaces any discount sent by the client.
    """
    code = data.get('promoCode')
    if code:
        promo = find_promo_code(conn, code)
        if promo is None:
            raise LookupError('invalid promoCode')
        return promo['value'], promo['name']
    return data.get('discount') or 0, None


def create_order(conn, identity, data, discount, promo_code, store_id=None):
    """Insert an order and its items atomically; returns the new order id."""
    with conn:
        cursor = conn.execute('''
            INSERT INTO orders (
                userId, phoneNumber, name, addressName, addressLong, addressLat,
                discount, deliveryFee, totalAmount, status, paymentType,
                promoCode, orderRating, storeId, nearby, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
        ''', (
            identity,
            data['phoneNumber'],
            data.get('name') or None,
            data.get('addressName') or None,
            data.get('addressLong'),
            data.get('addressLat'),
            discount,
            data.get('deliveryFee') or 0,
            data['totalAmount'],
            ORDER_STATUS_NEW,
            data['paymentType'],
            promo_code,
            store_id,
            data.get('nearby') or None,
            data.get('notes') or None,
        ))
        order_id = cursor.lastrowid

        conn.executemany('''
            INSERT INTO order_items (orderId, productId, productName, price, quantity)
            VALUES (?, ?, ?, ?, ?)
        ''', [
            (order_id, str(item['id']), item['name'], item['price'], item['quantity'])
            for item in data['items']
        ])

    return order_id


def find_orders_for_user(conn, identity):
    return conn.execute(
        'SELECT * FROM orders WHERE userId = ? OR phoneNumber = ? '
        'ORDER BY createdAt DESC, id DESC',
        (identity, identity)).fetchall()


def rate_order(conn, order_id, rating):
    conn.execute('UPDATE orders SET orderRating = ? WHERE id = ?',
                 (rating, order_id))


def serialize_order(conn, order):
    """Format an order row and its items for API responses."""
    order_dict = dict(order)
    result = {column: order_dict.get(column) for column in ORDER_COLUMNS}
    result['promoCode'] = result['promoCode'] or None
    result['orderRating'] = result['orderRating'] or 0

    items = conn.execute(
        'SELECT * FROM order_items WHERE orderId = ? ORDER BY id',
        (order['id'],)).fetchall()
    result['items'] = [
        {
            'id': item['productId'],
            'name': item['productName'],
            'price': item['price'],
            'quantity': item['quantity'],
        }
        for item in items
    ]
    return result
