#!/usr/bin/env python3
"""
Load the JSON fixtures (promo codes and the catalog) into the SQLite database.
"""

import argparse
import json
import logging
import os
import sqlite3

import catalog_service
import db

logger = logging.getLogger(__name__)

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'data')
DEFAULT_FIXTURE = os.path.join(DATA_DIR, 'promo_codes.json')
FIXTURE_FILES = ('promo_codes.json', 'categories.json', 'stores.json',
                 'products.json', 'home.json')


def _read_fixture(path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _number(value):
    """Numeric fixture values pass through; anything else is stored as NULL."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def load_promo_codes(path=DEFAULT_FIXTURE):
    """Insert promo codes from a JSON list of {name, value}; returns the count."""
    promo_codes = _read_fixture(path)

    conn = db.get_db_connection()
    count = 0

    for row in promo_codes:
        try:
            conn.execute(
                'INSERT INTO promo_codes (name, value) VALUES (?, ?)',
                (row['name'].strip(), float(row['value']))
            )
            count += 1
        except sqlite3.IntegrityError:
            logger.info('Skipping duplicate promo code: %s', row['name'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning('Skipping malformed promo code %r: %s', row, e)

    conn.commit()
    conn.close()
    logger.info('Loaded %d promo codes', count)
    return count


def load_categories(path=os.path.join(DATA_DIR, 'categories.json')):
    """Upsert categories and their nested subcategories; returns the category count."""
    categories = _read_fixture(path)

    conn = db.get_db_connection()
    count = 0

    for position, category in enumerate(categories, start=1):
        try:
            conn.execute('''
                INSERT INTO categories (id, name, nameAr, nameEn, image, isComingSoon, displayOrder)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    nameAr = excluded.nameAr,
                    nameEn = excluded.nameEn,
                    image = excluded.image,
                    isComingSoon = excluded.isComingSoon,
                    displayOrder = excluded.displayOrder
            ''', (category['id'], category['name'], category.get('nameAr'),
                  category.get('nameEn'), category.get('image'),
                  int(bool(category.get('isComingSoon'))),
                  category.get('order', position)))

            for sub_position, sub in enumerate(category.get('subCategories') or [], start=1):
                conn.execute('''
                    INSERT INTO subcategories (
                        id, categoryId, name, nameAr, nameEn, image, isComingSoon, displayOrder
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        categoryId = excluded.categoryId,
                        name = excluded.name,
                        nameAr = excluded.nameAr,
                        nameEn = excluded.nameEn,
                        image = excluded.image,
                        isComingSoon = excluded.isComingSoon,
                        displayOrder = excluded.displayOrder
                ''', (sub['id'], category['id'], sub['name'], sub.get('nameAr'),
                      sub.get('nameEn'), sub.get('image'),
                      int(bool(sub.get('isComingSoon'))),
                      sub.get('order', sub_position)))
            count += 1
        except (KeyError, TypeError, sqlite3.IntegrityError) as e:
            logger.warning('Skipping malformed category %r: %s', category.get('id'), e)

    conn.commit()
    conn.close()
    logger.info('Loaded %d categories', count)
    return count


def load_stores(path=os.path.join(DATA_DIR, 'stores.json')):
    """Upsert store listings; returns the count."""
    stores = _read_fixture(path)

    conn = db.get_db_connection()
    count = 0

    for store in stores:
        try:
            hours = store.get('openingHours') or {}
            conn.execute('''
                INSERT INTO store_listings (
                    id, name, nameAr, nameEn, cover, logo, rate, numberOfReviews,
                    isFavorite, deliveryTime, deliveryFee, minimumOrder, isOpen,
                    openingHoursOpen, openingHoursClose, address, addressAr,
                    addressEn, phone, category, categoryAr, categoryEn
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    nameAr = excluded.nameAr,
                    nameEn = excluded.nameEn,
                    cover = excluded.cover,
                    logo = excluded.logo,
                    rate = excluded.rate,
                    numberOfReviews = excluded.numberOfReviews,
                    isFavorite = excluded.isFavorite,
                    deliveryTime = excluded.deliveryTime,
                    deliveryFee = excluded.deliveryFee,
                    minimumOrder = excluded.minimumOrder,
                    isOpen = excluded.isOpen,
                    openingHoursOpen = excluded.openingHoursOpen,
                    openingHoursClose = excluded.openingHoursClose,
                    address = excluded.address,
                    addressAr = excluded.addressAr,
                    addressEn = excluded.addressEn,
                    phone = excluded.phone,
                    category = excluded.category,
                    categoryAr = excluded.categoryAr,
                    categoryEn = excluded.categoryEn
            ''', (
                store['id'], store.get('name'), store.get('nameAr'), store.get('nameEn'),
                store.get('cover'), store.get('logo'), _number(store.get('rate')),
                store.get('numberOfReviews') or 0, int(bool(store.get('isFavorite'))),
                store.get('deliveryTime'), _number(store.get('deliveryFee')),
                _number(store.get('minimumOrder')), int(bool(store.get('isOpen'))),
                hours.get('open'), hours.get('close'), store.get('address'),
                store.get('addressAr'), store.get('addressEn'), store.get('phone'),
                store.get('category'), store.get('categoryAr'), store.get('categoryEn'),
            ))
            count += 1
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning('Skipping malformed store %r: %s', store, e)

    conn.commit()
    conn.close()
    logger.info('Loaded %d stores', count)
    return count


def load_products(path=os.path.join(DATA_DIR, 'products.json')):
    """Upsert products; each names its store as ``store.id``. Returns the count."""
    products = _read_fixture(path)

    conn = db.get_db_connection()
    count = 0

    for position, product in enumerate(products, start=1):
        try:
            conn.execute('''
                INSERT INTO products (
                    id, storeId, categoryId, name, nameAr, nameEn, description,
                    image, price, oldPrice, isAvailable, displayOrder
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    storeId = excluded.storeId,
                    categoryId = excluded.categoryId,
                    name = excluded.name,
                    nameAr = excluded.nameAr,
                    nameEn = excluded.nameEn,
                    description = excluded.description,
                    image = excluded.image,
                    price = excluded.price,
                    oldPrice = excluded.oldPrice,
                    isAvailable = excluded.isAvailable,
                    displayOrder = excluded.displayOrder
            ''', (
                product['id'], (product.get('store') or {}).get('id'),
                product.get('categoryId'), product['name'], product.get('nameAr'),
                product.get('nameEn'), product.get('description'), product.get('image'),
                float(product['price']), _number(product.get('oldPrice')),
                int(product.get('isAvailable', True) is not False),
                product.get('order', position),
            ))
            count += 1
        except (KeyError, TypeError, ValueError, AttributeError, sqlite3.IntegrityError) as e:
            logger.warning('Skipping malformed product %r: %s', product.get('id'), e)

    conn.commit()
    conn.close()
    logger.info('Loaded %d products', count)
    return count


def load_home(path=os.path.join(DATA_DIR, 'home.json')):
    """Upsert home banners and offers; returns how many rows were written."""
    home = _read_fixture(path)

    conn = db.get_db_connection()
    count = 0

    for position, banner in enumerate(home.get('banners') or [], start=1):
        try:
            conn.execute('''
                INSERT INTO home_banners (id, image, title, link, displayOrder)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    image = excluded.image,
                    title = excluded.title,
                    link = excluded.link,
                    displayOrder = excluded.displayOrder
            ''', (banner['id'], banner.get('image'), banner.get('title'),
                  banner.get('link'), banner.get('order', position)))
            count += 1
        except (KeyError, TypeError) as e:
            logger.warning('Skipping malformed banner %r: %s', banner, e)

    for position, offer in enumerate(home.get('offers') or [], start=1):
        try:
            conn.execute('''
                INSERT INTO home_offers (
                    id, image, title, titleAr, titleEn, description, descriptionAr,
                    descriptionEn, link, validUntil, displayOrder
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    image = excluded.image,
                    title = excluded.title,
                    titleAr = excluded.titleAr,
                    titleEn = excluded.titleEn,
                    description = excluded.description,
                    descriptionAr = excluded.descriptionAr,
                    descriptionEn = excluded.descriptionEn,
                    link = excluded.link,
                    validUntil = excluded.validUntil,
                    displayOrder = excluded.displayOrder
            ''', (offer['id'], offer.get('image'), offer.get('title'),
                  offer.get('titleAr'), offer.get('titleEn'), offer.get('description'),
                  offer.get('descriptionAr'), offer.get('descriptionEn'),
                  offer.get('link'), offer.get('validUntil'),
                  offer.get('order', position)))
            count += 1
        except (KeyError, TypeError) as e:
            logger.warning('Skipping malformed offer %r: %s', offer, e)

    conn.commit()
    conn.close()
    logger.info('Loaded %d home banners and offers', count)
    return count


def load_contact():
    """Seed the default contact details when none exist; returns True if seeded."""
    conn = db.get_db_connection()
    if catalog_service.get_contact(conn) is not None:
        conn.close()
        return False

    conn.execute('INSERT INTO contact_us (email, phone) VALUES (?, ?)',
                 (catalog_service.DEFAULT_CONTACT_EMAIL,
                  catalog_service.DEFAULT_CONTACT_PHONE))
    conn.commit()
    conn.close()
    logger.info('Contact details seeded')
    return True


def load_all(data_dir=DATA_DIR):
    """Load every bundled fixture from data_dir."""
    return {
        'promo_codes': load_promo_codes(os.path.join(data_dir, 'promo_codes.json')),
        'categories': load_categories(os.path.join(data_dir, 'categories.json')),
        'stores': load_stores(os.path.join(data_dir, 'stores.json')),
        'products': load_products(os.path.join(data_dir, 'products.json')),
        'home': load_home(os.path.join(data_dir, 'home.json')),
        'contact': load_contact(),
    }


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('data_dir', nargs='?', default=DATA_DIR,
                        help='directory holding the JSON fixtures')
    args = parser.parse_args()

    missing = [name for name in FIXTURE_FILES
               if not os.path.exists(os.path.join(args.data_dir, name))]
    if missing:
        parser.error(f"Missing fixture files: {', '.join(missing)}")

    db.init_db()
    logger.info('Database schema initialized at %s', db.DATABASE_PATH)
    load_all(args.data_dir)
