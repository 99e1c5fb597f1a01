import re

# Stores shown in the home feed's "most popular" strip
HOME_POPULAR_STORES = 6

DEFAULT_CONTACT_EMAIL = 'contact@arheb.com'
DEFAULT_CONTACT_PHONE = '+201234567890'

EMAIL_PATTERN = re.compile(r'[^\s@]+@[^\s@]+\.[^\s@]+')


# ==================== CATEGORIES ====================


def _category(row):
    return {
        'id': row['id'],
        'name': row['name'],
        'nameAr': row['nameAr'],
        'nameEn': row['nameEn'],
        'image': row['image'],
        'isComingSoon': bool(row['isComingSoon']),
        'order': row['displayOrder'],
    }


def list_categories(conn):
    """Categories in display order, each with its subcategories nested."""
    categories = conn.execute(
        'SELECT * FROM categories ORDER BY displayOrder, id').fetchall()
    subcategories = conn.execute(
        'SELECT * FROM subcategories ORDER BY displayOrder, id').fetchall()

    by_category = {}
    for row in subcategories:
        by_category.setdefault(row['categoryId'], []).append(_category(row))

    result = []
    for row in categories:
        category = _category(row)
        category['subCategories'] = by_category.get(row['id'], [])
        result.append(category)
    return result


# ==================== STORES ====================


def serialize_store(row):
    return {
        'id': row['id'],
        'name': row['name'],
        'nameAr': row['nameAr'],
        'nameEn': row['nameEn'],
        'cover': row['cover'],
        'logo': row['logo'],
        'rate': row['rate'],
        'numberOfReviews': row['numberOfReviews'] or 0,
        'isFavorite': bool(row['isFavorite']),
        'deliveryTime': row['deliveryTime'],
        'deliveryFee': row['deliveryFee'],
        'minimumOrder': row['minimumOrder'],
        'isOpen': bool(row['isOpen']),
        'openingHours': {
            'open': row['openingHoursOpen'],
            'close': row['openingHoursClose'],
        },
        'address': row['address'],
        'addressAr': row['addressAr'],
        'addressEn': row['addressEn'],
        'phone': row['phone'],
        'category': row['category'],
        'categoryAr': row['categoryAr'],
        'categoryEn': row['categoryEn'],
    }


def list_stores(conn):
    rows = conn.execute('SELECT * FROM store_listings ORDER BY name, id').fetchall()
    return [serialize_store(row) for row in rows]


def find_store(conn, store_id):
    return conn.execute(
        'SELECT * FROM store_listings WHERE id = ?', (store_id,)).fetchone()


def top_rated_stores(conn, limit=None):
    """Rated stores, best first; ties go to the store with more reviews."""
    query = ('SELECT * FROM store_listings WHERE rate IS NOT NULL '
             'ORDER BY rate DESC, COALESCE(numberOfReviews, 0) DESC, id')
    params = ()
    if limit is not None:
        query += ' LIMIT ?'
        params = (limit,)
    return [serialize_store(row) for row in conn.execute(query, params).fetchall()]


def record_store_rating(conn, store_id, rating, previous_rating=0):
    """Fold an order rating into the store's running average.

    A re-rated order replaces its earlier contribution instead of counting
    as another review. Returns False when the store is unknown.
    """
    store = find_store(conn, store_id)
    if store is None:
        return False

    rate = store['rate'] or 0
    reviews = store['numberOfReviews'] or 0
    total = rate * reviews

    if previous_rating and reviews:
        total += rating - previous_rating
    else:
        total += rating
        reviews += 1

    conn.execute(
        'UPDATE store_listings SET rate = ?, numberOfReviews = ? WHERE id = ?',
        (total / reviews, reviews, store_id))
    return True


# ==================== PRODUCTS ====================


PRODUCT_QUERY = '''
    SELECT p.*, s.name AS storeName, s.logo AS storeLogo
    FROM products p
    LEFT JOIN store_listings s ON s.id = p.storeId
'''


def serialize_product(row):
    return {
        'id': row['id'],
        'name': row['name'],
        'nameAr': row['nameAr'],
        'nameEn': row['nameEn'],
        'description': row['description'],
        'image': row['image'],
        'price': row['price'],
        'oldPrice': row['oldPrice'],
        'categoryId': row['categoryId'],
        'isAvailable': bool(row['isAvailable']),
        'store': {
            'id': row['storeId'],
            'name': row['storeName'],
            'logo': row['storeLogo'],
        },
    }


def list_products(conn, store_id=None):
    if store_id is None:
        rows = conn.execute(
            PRODUCT_QUERY + ' ORDER BY p.displayOrder, p.id').fetchall()
    else:
        rows = conn.execute(
            PRODUCT_QUERY + ' WHERE p.storeId = ? ORDER BY p.displayOrder, p.id',
            (store_id,)).fetchall()
    return [serialize_product(row) for row in rows]


def find_product(conn, product_id):
    row = conn.execute(PRODUCT_QUERY + ' WHERE p.id = ?', (product_id,)).fetchone()
    return serialize_product(row) if row else None


def store_id_for_product(conn, product_id):
    """The store selling product_id, or None for an unknown product."""
    row = conn.execute(
        'SELECT storeId FROM products WHERE id = ?', (str(product_id),)).fetchone()
    return row['storeId'] if row else None


# ==================== HOME ====================


def home_feed(conn):
    banners = conn.execute(
        'SELECT id, image, title, link, displayOrder AS "order" '
        'FROM home_banners ORDER BY displayOrder, id').fetchall()
    offers = conn.execute(
        'SELECT id, image, title, titleAr, titleEn, description, descriptionAr, '
        'descriptionEn, link, validUntil, displayOrder AS "order" '
        'FROM home_offers ORDER BY displayOrder, id').fetchall()

    categories = list_categories(conn)
    for category in categories:
        del category['subCategories']

    return {
        'banners': [dict(row) for row in banners],
        'categories': categories,
        'mostPopularStores': top_rated_stores(conn, HOME_POPULAR_STORES),
        'offers': [dict(row) for row in offers],
    }


# ==================== CONTACT ====================


def get_contact(conn):
    return conn.execute(
        'SELECT * FROM contact_us ORDER BY id DESC LIMIT 1').fetchone()


def validate_contact_update(data):
    """Returns (True, None) or (False, error message)."""
    email = data.get('email')
    phone = data.get('phone')

    if 'email' not in data and 'phone' not in data:
        return False, 'At least one field (email or phone) must be provided'

    if 'email' in data:
        if not isinstance(email, str) or not email.strip():
            return False, 'Email must be a valid string'
        if not EMAIL_PATTERN.fullmatch(email.strip()):
            return False, 'Invalid email format'

    if 'phone' in data:
        if not isinstance(phone, str) or not phone.strip():
            return False, 'Phone must be a valid string'

    return True, None


def update_contact(conn, email=None, phone=None):
    """Update the current contact row, creating it from defaults if missing."""
    current = get_contact(conn)
    email = email.strip() if email is not None else None
    phone = phone.strip() if phone is not None else None

    if current is None:
        conn.execute(
            'INSERT INTO contact_us (email, phone) VALUES (?, ?)',
            (email or DEFAULT_CONTACT_EMAIL, phone or DEFAULT_CONTACT_PHONE))
    else:
        conn.execute('''
            UPDATE contact_us
            SET email = COALESCE(?, email),
                phone = COALESCE(?, phone),
                updatedAt = CURRENT_TIMESTAMP
            WHERE id = ?
        ''', (email, phone, current['id']))
    conn.commit()
    return get_contact(conn)


def is_admin(conn, phone_number):
    user = conn.execute(
        'SELECT type FROM users WHERE phoneNumber = ?', (phone_number,)).fetchone()
    return user is not None and user['type'] == 'admin'
