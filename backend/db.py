import os
import sqlite3

import config

# Tests point this at a temporary file before calling init_db()
DATABASE_PATH = config.DATABASE_PATH


def get_db_connection():
    """Create a database connection."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def _add_column(conn, table, definition):
    try:
        conn.execute(f'ALTER TABLE {table} ADD COLUMN {definition}')
    except sqlite3.OperationalError:
        pass  # Column already exists


def init_db():
    """Initialize the database with all required tables."""
    directory = os.path.dirname(os.path.abspath(DATABASE_PATH))
    os.makedirs(directory, exist_ok=True)

    conn = get_db_connection()

    # Users table (one row per verified phone number)
    conn.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT UNIQUE NOT NULL,
            firebaseUid TEXT,
            token TEXT,
            createdAt TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Promo codes table
    conn.execute('''
        CREATE TABLE IF NOT EXISTS promo_codes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            value REAL NOT NULL,
            createdAt TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Orders table
    conn.execute('''
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            userId TEXT NOT NULL,
            phoneNumber TEXT NOT NULL,
            name TEXT,
            addressName TEXT,
            addressLong REAL,
            addressLat REAL,
            discount REAL DEFAULT 0,
            totalAmount REAL NOT NULL,
            status TEXT DEFAULT 'Waiting confirmation',
            paymentType TEXT NOT NULL,
            nearby TEXT,
            notes TEXT,
            createdAt TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Order items table
    conn.execute('''
        CREATE TABLE IF NOT EXISTS order_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            orderId INTEGER NOT NULL,
            productId TEXT NOT NULL,
            productName TEXT NOT NULL,
            price REAL NOT NULL,
            quantity INTEGER NOT NULL,
            createdAt TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (orderId) REFERENCES orders(id) ON DELETE CASCADE
        )
    ''')

    # Catalog tables, filled from the JSON fixtures by load_data.py
    conn.execute('''
        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            nameAr TEXT,
            nameEn TEXT,
            image TEXT,
            isComingSoon INTEGER DEFAULT 0,
            displayOrder INTEGER
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS subcategories (
            id TEXT PRIMARY KEY,
            categoryId TEXT NOT NULL,
            name TEXT NOT NULL,
            nameAr TEXT,
            nameEn TEXT,
            image TEXT,
            isComingSoon INTEGER DEFAULT 0,
            displayOrder INTEGER,
            FOREIGN KEY (categoryId) REFERENCES categories(id) ON DELETE CASCADE
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS store_listings (
            id TEXT PRIMARY KEY,
            name TEXT,
            nameAr TEXT,
            nameEn TEXT,
            cover TEXT,
            logo TEXT,
            rate REAL,
            numberOfReviews INTEGER DEFAULT 0,
            isFavorite INTEGER DEFAULT 0,
            deliveryTime TEXT,
            deliveryFee REAL,
            minimumOrder REAL,
            isOpen INTEGER DEFAULT 0,
            openingHoursOpen TEXT,
            openingHoursClose TEXT,
            address TEXT,
            addressAr TEXT,
            addressEn TEXT,
            phone TEXT,
            category TEXT,
            categoryAr TEXT,
            categoryEn TEXT
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS products (
            id TEXT PRIMARY KEY,
            storeId TEXT,
            categoryId TEXT,
            name TEXT NOT NULL,
            nameAr TEXT,
            nameEn TEXT,
            description TEXT,
            image TEXT,
            price REAL NOT NULL,
            oldPrice REAL,
            isAvailable INTEGER DEFAULT 1,
            displayOrder INTEGER,
            FOREIGN KEY (storeId) REFERENCES store_listings(id)
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS home_banners (
            id TEXT PRIMARY KEY,
            image TEXT,
            title TEXT,
            link TEXT,
            displayOrder INTEGER
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS home_offers (
            id TEXT PRIMARY KEY,
            image TEXT,
            title TEXT,
            titleAr TEXT,
            titleEn TEXT,
            description TEXT,
            descriptionAr TEXT,
            descriptionEn TEXT,
            link TEXT,
            validUntil TEXT,
            displayOrder INTEGER
        )
    ''')

    # Contact details shown in the app; the latest row wins
    conn.execute('''
        CREATE TABLE IF NOT EXISTS contact_us (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL,
            phone TEXT NOT NULL,
            updatedAt TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Columns added after the first release (for existing databases)
    _add_column(conn, 'users', 'name TEXT')
    _add_column(conn, 'users', 'addressName TEXT')
    _add_column(conn, 'users', 'addressLong REAL')
    _add_column(conn, 'users', 'addressLat REAL')
    _add_column(conn, 'users', "type TEXT DEFAULT 'customer'")
    _add_column(conn, 'orders', 'deliveryFee REAL DEFAULT 0')
    _add_column(conn, 'orders', 'promoCode TEXT')
    _add_column(conn, 'orders', 'orderRating INTEGER DEFAULT 0')
    _add_column(conn, 'orders', 'storeId TEXT')

    conn.commit()
    conn.close()
