import logging
from datetime import datetime, timezone

from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

import auth
import catalog_service
import config
import db
import load_data
import orders_service
from auth import require_auth
from errors import AppError, OtpServiceError
from tracking import ConnectionGate, SessionBridge, TrackingQuery, TrackingRegistry
from websocket_service import SocketIOTransport, register_socketio_handlers

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

PROFILE_FIELDS = ('name', 'addressName', 'addressLong', 'addressLat')


def get_db_connection():
    return db.get_db_connection()


def lookup_order(order_id):
    """Order lookup used by the tracking gate and snapshot query."""
    conn = get_db_connection()
    order = orders_service.find_order(conn, order_id)
    conn.close()
    return order


def timestamp():
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def success_response(message, data, status=200):
    return jsonify({
        'success': True,
        'message': message,
        'data': data,
        'timestamp': timestamp(),
    }), status


def error_response(message, status):
    return jsonify({'success': False, 'message': message}), status


def json_body():
    """The request's JSON object, or {} for a missing or non-object body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ==================== AUTH ====================


@api.route('/auth/register', methods=['POST'])
def register():
    """Start phone sign-up by sending an OTP, unless the number is known."""
    data = json_body()
    phone_number = data.get('phoneNumber')

    if not phone_number or not isinstance(phone_number, str):
        return jsonify({'message': 'phoneNumber is required', 'case': 2}), 400

    normalized_phone = phone_number.strip()
    conn = get_db_connection()
    existing_user = conn.execute(
        'SELECT * FROM users WHERE phoneNumber = ?', (normalized_phone,)).fetchone()
    conn.close()

    if existing_user:
        return jsonify({'message': 'Phone number already exist try Login', 'case': 0}), 200

    try:
        session_info = auth.send_phone_otp(normalized_phone, data.get('recaptchaToken'))
    except OtpServiceError as e:
        return jsonify({'message': e.message, 'case': 2}), e.status_code

    return jsonify({
        'message': 'OTP SENT SUCCESSFUL',
        'case': 1,
        'sessionInfo': session_info,
    }), 200


@api.route('/auth/verify-otp', methods=['POST'])
def verify_otp():
    """Verify the OTP, upsert the user and hand back a bearer token."""
    data = json_body()
    phone_number = data.get('phoneNumber')
    session_info = data.get('sessionInfo')
    otp = data.get('otp')

    if not phone_number or not session_info or not otp:
        return error_response('phoneNumber, sessionInfo, and otp are required', 400)

    try:
        verification = auth.verify_phone_otp(session_info, otp)
    except OtpServiceError as e:
        return error_response(e.message, 401)

    verified_phone = verification.get('phoneNumber') or phone_number
    firebase_uid = verification.get('localId') or verification.get('userId')
    token = auth.create_access_token(verified_phone)

    conn = get_db_connection()
    conn.execute('''
        INSERT INTO users (phoneNumber, firebaseUid, token)
        VALUES (?, ?, ?)
        ON CONFLICT(phoneNumber) DO UPDATE SET
            firebaseUid = excluded.firebaseUid,
            token = excluded.token
    ''', (verified_phone, firebase_uid, token))
    conn.commit()
    conn.close()

    logger.info('User %s signed in', verified_phone)
    return jsonify({
        'success': True,
        'token': f'Bearer {token}',
        'phoneNumber': verified_phone,
    }), 200


# ==================== PROFILE ====================


def _profile(user):
    return {
        'phoneNumber': user['phoneNumber'],
        'name': user['name'] or None,
        'addressName': user['addressName'] or None,
        'addressLong': user['addressLong'],
        'addressLat': user['addressLat'],
    }


@api.route('/profile', methods=['GET'])
@require_auth
def get_profile():
    conn = get_db_connection()
    user = conn.execute(
        'SELECT * FROM users WHERE phoneNumber = ?', (g.phone_number,)).fetchone()
    conn.close()

    if not user:
        return error_response('User not found', 404)

    return success_response('Profile retrieved successfully', {'profile': _profile(user)})


@api.route('/profile', methods=['PUT'])
@require_auth
def update_profile():
    """Update whichever profile fields are present in the body."""
    data = json_body()

    for field in ('addressLong', 'addressLat'):
        if field in data and data[field] is not None and not orders_service.is_number(data[field]):
            return error_response(f'{field} must be a valid number', 400)

    updates = {field: data[field] for field in PROFILE_FIELDS if field in data}
    if not updates:
        return error_response('No fields to update', 400)

    conn = get_db_connection()
    user = conn.execute(
        'SELECT * FROM users WHERE phoneNumber = ?', (g.phone_number,)).fetchone()
    if not user:
        conn.close()
        return error_response('User not found', 404)

    assignments = ', '.join(f'{field} = ?' for field in updates)
    conn.execute(
        f'UPDATE users SET {assignments} WHERE phoneNumber = ?',
        tuple(updates.values()) + (g.phone_number,))
    conn.commit()
    user = conn.execute(
        'SELECT * FROM users WHERE phoneNumber = ?', (g.phone_number,)).fetchone()
    conn.close()

    return success_response('Profile updated successfully', {'profile': _profile(user)})


# ==================== CHECKOUT ====================


@api.route('/checkout', methods=['POST'])
@require_auth
def checkout():
    """Create an order (and its items) for the authenticated user."""
    data = json_body()

    valid, error_msg = orders_service.validate_checkout(data)
    if not valid:
        return error_response(error_msg, 400)

    conn = get_db_connection()
    try:
        discount, promo_code = orders_service.resolve_discount(conn, data)
    except LookupError as e:
        conn.close()
        return error_response(str(e), 400)

    store_id = data.get('storeId') or catalog_service.store_id_for_product(
        conn, data['items'][0]['id'])
    order_id = orders_service.create_order(
        conn, g.phone_number, data, discount, promo_code, store_id)
    order = orders_service.find_order(conn, order_id)
    result = orders_service.serialize_order(conn, order)
    conn.close()

    logger.info('Order %s created by %s', order_id, g.phone_number)
    return success_response('Order created successfully',
                            {'orderId': order_id, 'order': result}, 201)


@api.route('/checkout', methods=['GET'])
@require_auth
def list_orders():
    conn = get_db_connection()
    orders = orders_service.find_orders_for_user(conn, g.phone_number)
    result = [orders_service.serialize_order(conn, order) for order in orders]
    conn.close()

    return success_response('Orders retrieved successfully',
                            {'orders': result, 'count': len(result)})


def _owned_order(conn, raw_order_id, forbidden_message='Access denied'):
    """Return (order, None) or (None, error response) for the caller."""
    order_id = orders_service.parse_order_id(raw_order_id)
    if order_id is None:
        return None, error_response('Invalid order ID', 400)

    order = orders_service.find_order(conn, order_id)
    if not order:
        return None, error_response('Order not found', 404)

    if not orders_service.is_order_owner(order, g.phone_number):
        return None, error_response(forbidden_message, 403)

    return order, None


@api.route('/checkout/<order_id>', methods=['GET'])
@require_auth
def get_order(order_id):
    conn = get_db_connection()
    order, error = _owned_order(conn, order_id)
    if error:
        conn.close()
        return error

    result = orders_service.serialize_order(conn, order)
    conn.close()
    return success_response('Order retrieved successfully', {'order': result})


@api.route('/checkout/<order_id>/rate', methods=['PUT'])
@require_auth
def rate_order(order_id):
    """Rate a delivered order from 1 to 5."""
    data = json_body()
    rating = data.get('rating')

    if orders_service.parse_order_id(order_id) is None:
        return error_response('Invalid order ID', 400)

    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        return error_response('Rating must be an integer between 1 and 5', 400)

    conn = get_db_connection()
    order, error = _owned_order(conn, order_id, "Can't rate this order")
    if error:
        conn.close()
        return error

    with conn:
        orders_service.rate_order(conn, order['id'], rating)
        if order['storeId']:
            catalog_service.record_store_rating(
                conn, order['storeId'], rating, order['orderRating'])
    order = orders_service.find_order(conn, order['id'])
    result = orders_service.serialize_order(conn, order)
    conn.close()

    return success_response('Order rated successfully', {'order': result})


@api.route('/promo-codes/<code>', methods=['GET'])
def check_promo_code(code):
    if not code.strip():
        return error_response('Promo code is required', 400)

    conn = get_db_connection()
    promo = orders_service.find_promo_code(conn, code)
    conn.close()

    if not promo:
        return error_response('promCode not available', 404)

    return success_response(f"promocode Value is {promo['value']}",
                            {'value': promo['value'], 'name': promo['name']})


# ==================== CATALOG ====================


@api.route('/categories', methods=['GET'])
def get_categories():
    conn = get_db_connection()
    categories = catalog_service.list_categories(conn)
    conn.close()

    return success_response('Categories retrieved successfully',
                            {'categories': categories})


@api.route('/products', methods=['GET'])
def get_products():
    conn = get_db_connection()
    products = catalog_service.list_products(conn)
    conn.close()

    return success_response('Products retrieved successfully',
                            {'products': products, 'count': len(products)})


@api.route('/products/<product_id>', methods=['GET'])
def get_product(product_id):
    conn = get_db_connection()
    product = catalog_service.find_product(conn, product_id)
    conn.close()

    if not product:
        return error_response('Product not found', 404)

    return success_response('Product details retrieved successfully', {'product': product})


@api.route('/stores', methods=['GET'])
def get_stores():
    conn = get_db_connection()
    stores = catalog_service.list_stores(conn)
    conn.close()

    return success_response('Stores retrieved successfully',
                            {'stores': stores, 'count': len(stores)})


@api.route('/stores/top-rated', methods=['GET'])
def get_top_rated_stores():
    """Rated stores, best first; ``?limit=N`` caps the list."""
    limit = request.args.get('limit', type=int)
    if limit is not None and limit <= 0:
        limit = None

    conn = get_db_connection()
    stores = catalog_service.top_rated_stores(conn, limit)
    conn.close()

    return success_response('Top rated stores retrieved successfully', {
        'stores': stores,
        'count': len(stores),
        'limit': limit or 'all',
    })


@api.route('/stores/<store_id>/products', methods=['GET'])
def get_store_products(store_id):
    conn = get_db_connection()
    store = catalog_service.find_store(conn, store_id)
    if not store:
        conn.close()
        return error_response('Store not found', 404)

    products = catalog_service.list_products(conn, store_id)
    conn.close()

    return success_response('Store products retrieved successfully', {
        'store': {field: store[field]
                  for field in ('id', 'name', 'nameAr', 'nameEn', 'logo', 'cover')},
        'products': products,
        'count': len(products),
    })


@api.route('/home', methods=['GET'])
def get_home():
    conn = get_db_connection()
    feed = catalog_service.home_feed(conn)
    conn.close()

    return success_response('Home data retrieved successfully', feed)


# ==================== CONTACT ====================


def _contact(row):
    return {'email': row['email'], 'phone': row['phone']}


@api.route('/contact', methods=['GET'])
def get_contact():
    conn = get_db_connection()
    contact = catalog_service.get_contact(conn)
    conn.close()

    if not contact:
        return error_response('Contact information not found', 404)

    return success_response('Contact information retrieved successfully',
                            {'contact': _contact(contact)})


@api.route('/contact', methods=['PUT'])
@require_auth
def update_contact():
    """Admin-only update of the contact email and/or phone."""
    data = json_body()

    conn = get_db_connection()
    if not catalog_service.is_admin(conn, g.phone_number):
        conn.close()
        return error_response('Error not authorized', 403)

    valid, error_msg = catalog_service.validate_contact_update(data)
    if not valid:
        conn.close()
        return error_response(error_msg, 400)

    contact = catalog_service.update_contact(conn, data.get('email'), data.get('phone'))
    conn.close()

    updated = [field for field in ('email', 'phone') if field in data]
    logger.info('Contact details updated by %s: %s', g.phone_number, ', '.join(updated))
    return success_response(f"Fields updated successfully: {', '.join(updated)}",
                            {'contact': _contact(contact)})


# ==================== TRACKING ====================


@api.route('/orders/<order_id>/tracking', methods=['GET'])
@require_auth
def get_tracking(order_id):
    """Current tracking snapshot for clients that cannot hold a socket open."""
    parsed_id = orders_service.parse_order_id(order_id)
    if parsed_id is None:
        return error_response('Invalid order ID', 400)

    query = current_app.extensions['tracking_query']
    data = query.snapshot(g.phone_number, parsed_id)

    if data['isTracking']:
        message = 'Tracking data retrieved successfully'
    else:
        message = 'No tracking data available yet'
    return success_response(message, data)


@api.route('/')
def home():
    """Health check endpoint."""
    return jsonify({'message': 'Order tracking backend is running!', 'status': 'healthy'})


# ==================== ERRORS ====================


@api.app_errorhandler(AppError)
def handle_app_error(e):
    return error_response(e.message, e.status_code)


@api.app_errorhandler(404)
def handle_not_found(e):
    return jsonify({'message': 'Route not found'}), 404


@api.app_errorhandler(500)
def handle_server_error(e):
    logger.error('Unhandled error on %s %s', request.method, request.path,
                 exc_info=getattr(e, 'original_exception', None))
    return error_response('Internal server error', 500)


# ==================== APP FACTORY ====================


def create_app(registry=None):
    """Build the Flask app, its SocketIO server and the tracking components.

    Each call gets its own TrackingRegistry unless one is passed in.
    """
    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS)
    socketio = SocketIO(
        app,
        cors_allowed_origins=config.CORS_ORIGINS,
        ping_interval=config.SOCKETIO_PING_INTERVAL,
        ping_timeout=config.SOCKETIO_PING_TIMEOUT,
        # One connection's events are handled in arrival order
        async_handlers=False,
    )

    registry = registry if registry is not None else TrackingRegistry()
    gate = ConnectionGate(auth.verify_token, lookup_order)
    bridge = SessionBridge(registry, SocketIOTransport(socketio))

    app.extensions['tracking_registry'] = registry
    app.extensions['tracking_bridge'] = bridge
    app.extensions['tracking_query'] = TrackingQuery(registry, lookup_order)

    app.register_blueprint(api)
    register_socketio_handlers(socketio, gate, bridge)
    return app, socketio


if __name__ == '__main__':
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Initialize database on startup
    db.init_db()
    logger.info('Database initialized at: %s', db.DATABASE_PATH)
    load_data.load_all()

    app, socketio = create_app()

    # Run the Flask app with SocketIO
    socketio.run(app, host='0.0.0.0', port=config.PORT, allow_unsafe_werkzeug=True)
