#!/usr/bin/env python3
"""
Tests for the REST API: auth, profile, checkout, promo codes and tracking.
"""

import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import requests

import auth
import config
from conftest import CUSTOMER_PHONE, DRIVER_PHONE, STRANGER_PHONE, bearer
from db import get_db_connection
from errors import AuthenticationError, OtpServiceError
from tracking import ROLE_CUSTOMER, ROLE_DRIVER, Location


def auth_headers(phone_number=CUSTOMER_PHONE):
    return {'Authorization': bearer(phone_number)}


@pytest.fixture
def promo_code(database):
    conn = get_db_connection()
    conn.execute('INSERT INTO promo_codes (name, value) VALUES (?, ?)', ('WELCOME10', 10))
    conn.commit()
    conn.close()
    return 'WELCOME10'


@pytest.fixture
def checkout_payload():
    return {
        'items': [
            {'id': 'p-1', 'name': 'Dates box', 'price': 20.0, 'quantity': 2},
            {'id': 'p-2', 'name': 'Arabic coffee', 'price': 5.5, 'quantity': 1},
        ],
        'name': 'Sara',
        'phoneNumber': CUSTOMER_PHONE,
        'addressName': 'Home',
        'addressLong': 46.67,
        'addressLat': 24.71,
        'deliveryFee': 7.0,
        'totalAmount': 52.5,
        'paymentType': 'cash',
        'notes': 'Ring twice',
    }


@pytest.fixture
def created_order(client, checkout_payload):
    response = client.post('/checkout', json=checkout_payload, headers=auth_headers())
    return json.loads(response.data)['data']['orderId']


class TestTokens:
    """Token issuing and verification."""

    def test_round_trip_identity(self):
        token = auth.create_access_token(CUSTOMER_PHONE)
        assert auth.verify_token(f'Bearer {token}') == CUSTOMER_PHONE
        assert auth.verify_token(f'  {token}  ') == CUSTOMER_PHONE

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(days=1)
        token = jwt.encode({'phoneNumber': CUSTOMER_PHONE, 'exp': past},
                           config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
        with pytest.raises(AuthenticationError):
            auth.verify_token(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode({'phoneNumber': CUSTOMER_PHONE}, 'other-secret',
                           algorithm=config.JWT_ALGORITHM)
        with pytest.raises(AuthenticationError):
            auth.verify_token(token)

    def test_token_without_identity_rejected(self):
        token = jwt.encode({'sub': 1}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
        with pytest.raises(AuthenticationError):
            auth.verify_token(token)

    @pytest.mark.parametrize('credential', [None, '', 'Bearer ', 42])
    def test_malformed_credentials(self, credential):
        with pytest.raises(AuthenticationError):
            auth.verify_token(credential)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error', response=self)


class TestFirebaseClient:
    """Identity Toolkit calls."""

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(config, 'FIREBASE_API_KEY', '')
        with pytest.raises(OtpServiceError):
            auth.send_phone_otp(CUSTOMER_PHONE)

    def test_send_phone_otp(self, monkeypatch):
        calls = []

        def fake_post(url, params, json, timeout):
            calls.append((url, params, json))
            return FakeResponse({'sessionInfo': 'session-123'})

        monkeypatch.setattr(config, 'FIREBASE_API_KEY', 'key')
        monkeypatch.setattr(auth.requests, 'post', fake_post)

        assert auth.send_phone_otp(CUSTOMER_PHONE, 'captcha') == 'session-123'
        url, params, payload = calls[0]
        assert url.endswith('accounts:sendVerificationCode')
        assert params == {'key': 'key'}
        assert payload == {'phoneNumber': CUSTOMER_PHONE, 'recaptchaToken': 'captcha'}

    def test_firebase_error_message(self, monkeypatch):
        def fake_post(url, params, json, timeout):
            return FakeResponse({'error': {'message': 'INVALID_CODE'}}, 400)

        monkeypatch.setattr(config, 'FIREBASE_API_KEY', 'key')
        monkeypatch.setattr(auth.requests, 'post', fake_post)

        with pytest.raises(OtpServiceError) as exc:
            auth.verify_phone_otp('session-123', '000000')
        assert exc.value.message == 'INVALID_CODE'


class TestAuthRoutes:
    """Phone OTP sign-up and sign-in."""

    @pytest.mark.parametrize('path', ['/auth/register', '/auth/verify-otp'])
    def test_non_object_body_rejected(self, client, path):
        response = client.post(path, json=['+966500000001'])
        assert response.status_code == 400

    def test_register_requires_phone(self, client):
        response = client.post('/auth/register', json={})
        assert response.status_code == 400
        assert json.loads(response.data)['case'] == 2

    def test_register_existing_user(self, client, make_user):
        make_user(CUSTOMER_PHONE)
        response = client.post('/auth/register', json={'phoneNumber': f' {CUSTOMER_PHONE} '})

        assert response.status_code == 200
        assert json.loads(response.data)['case'] == 0

    def test_register_sends_otp(self, client, monkeypatch):
        monkeypatch.setattr(auth, 'send_phone_otp', lambda phone, captcha: 'session-123')

        response = client.post('/auth/register', json={'phoneNumber': CUSTOMER_PHONE})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data == {'message': 'OTP SENT SUCCESSFUL', 'case': 1,
                        'sessionInfo': 'session-123'}

    def test_register_otp_failure(self, client, monkeypatch):
        def failing(phone, captcha):
            raise OtpServiceError('TOO_MANY_ATTEMPTS_TRY_LATER')

        monkeypatch.setattr(auth, 'send_phone_otp', failing)

        response = client.post('/auth/register', json={'phoneNumber': CUSTOMER_PHONE})

        assert response.status_code == 502
        assert json.loads(response.data)['message'] == 'TOO_MANY_ATTEMPTS_TRY_LATER'

    def test_verify_otp_missing_fields(self, client):
        response = client.post('/auth/verify-otp', json={'phoneNumber': CUSTOMER_PHONE})
        assert response.status_code == 400

    def test_verify_otp_issues_token_and_upserts_user(self, client, monkeypatch):
        monkeypatch.setattr(auth, 'verify_phone_otp', lambda session, code: {
            'phoneNumber': CUSTOMER_PHONE, 'localId': 'firebase-uid'})

        for _ in range(2):
            response = client.post('/auth/verify-otp', json={
                'phoneNumber': CUSTOMER_PHONE, 'sessionInfo': 's', 'otp': '123456'})
            assert response.status_code == 200

        data = json.loads(response.data)
        assert data['success'] is True
        assert data['token'].startswith('Bearer ')
        assert auth.verify_token(data['token']) == CUSTOMER_PHONE

        conn = get_db_connection()
        users = conn.execute('SELECT * FROM users').fetchall()
        conn.close()
        assert len(users) == 1
        assert users[0]['firebaseUid'] == 'firebase-uid'

    def test_verify_otp_failure(self, client, monkeypatch):
        def failing(session, code):
            raise OtpServiceError('INVALID_CODE')

        monkeypatch.setattr(auth, 'verify_phone_otp', failing)

        response = client.post('/auth/verify-otp', json={
            'phoneNumber': CUSTOMER_PHONE, 'sessionInfo': 's', 'otp': '1'})

        assert response.status_code == 401
        assert json.loads(response.data) == {'success': False, 'message': 'INVALID_CODE'}


class TestProfile:
    """Profile read and partial update."""

    def test_requires_auth(self, client):
        assert client.get('/profile').status_code == 401
        assert client.get('/profile', headers={'Authorization': 'Bearer x'}).status_code == 401

    def test_unknown_user(self, client):
        response = client.get('/profile', headers=auth_headers())
        assert response.status_code == 404

    def test_update_and_read(self, client, make_user):
        make_user(CUSTOMER_PHONE)

        response = client.put('/profile', headers=auth_headers(), json={
            'name': 'Sara', 'addressLong': 46.67})
        assert response.status_code == 200

        response = client.get('/profile', headers=auth_headers())
        profile = json.loads(response.data)['data']['profile']
        assert profile == {
            'phoneNumber': CUSTOMER_PHONE,
            'name': 'Sara',
            'addressName': None,
            'addressLong': 46.67,
            'addressLat': None,
        }

    def test_update_validation(self, client, make_user):
        make_user(CUSTOMER_PHONE)

        response = client.put('/profile', headers=auth_headers(), json={'addressLat': 'north'})
        assert response.status_code == 400

        response = client.put('/profile', headers=auth_headers(), json={'unknown': 1})
        assert response.status_code == 400
        assert json.loads(response.data)['message'] == 'No fields to update'


class TestCheckout:
    """Order creation and retrieval."""

    def test_create_order(self, client, checkout_payload):
        response = client.post('/checkout', json=checkout_payload, headers=auth_headers())

        assert response.status_code == 201
        data = json.loads(response.data)['data']
        order = data['order']
        assert order['id'] == data['orderId']
        assert order['userId'] == CUSTOMER_PHONE
        assert order['status'] == 'Waiting confirmation'
        assert order['deliveryFee'] == 7.0
        assert order['orderRating'] == 0
        assert [item['id'] for item in order['items']] == ['p-1', 'p-2']

    @pytest.mark.parametrize('change,message', [
        ({'items': []}, 'Items array is required and must not be empty'),
        ({'items': [{'id': 'p-1', 'name': 'x', 'price': 1}]},
         'Each item must have id, name, price, and quantity'),
        ({'phoneNumber': None}, 'phoneNumber is required'),
        ({'totalAmount': None}, 'totalAmount is required'),
        ({'totalAmount': '52'}, 'totalAmount must be a valid number'),
        ({'paymentType': ''}, 'paymentType is required'),
        ({'addressLat': 'x'}, 'addressLat must be a valid number'),
        ({'discount': 'ten'}, 'discount must be a valid number'),
        ({'deliveryFee': None}, 'deliveryFee is required and must be a valid number'),
    ])
    def test_create_order_validation(self, client, checkout_payload, change, message):
        checkout_payload.update(change)
        response = client.post('/checkout', json=checkout_payload, headers=auth_headers())

        assert response.status_code == 400
        assert json.loads(response.data)['message'] == message

    @pytest.mark.parametrize('method,path', [
        ('post', '/checkout'), ('put', '/profile'), ('put', '/checkout/1/rate'),
    ])
    def test_non_object_body_rejected(self, client, make_user, created_order, method, path):
        make_user()
        response = getattr(client, method)(path, json=[{'rating': 5}], headers=auth_headers())
        assert response.status_code == 400

    def test_promo_code_replaces_discount(self, client, checkout_payload, promo_code):
        checkout_payload.update({'promoCode': f' {promo_code} ', 'discount': 99})
        response = client.post('/checkout', json=checkout_payload, headers=auth_headers())

        order = json.loads(response.data)['data']['order']
        assert order['discount'] == 10
        assert order['promoCode'] == promo_code

    def test_invalid_promo_code(self, client, checkout_payload):
        checkout_payload['promoCode'] = 'NOPE'
        response = client.post('/checkout', json=checkout_payload, headers=auth_headers())

        assert response.status_code == 400
        assert json.loads(response.data)['message'] == 'invalid promoCode'

    def test_list_orders_only_returns_own(self, client, checkout_payload, created_order):
        checkout_payload['phoneNumber'] = STRANGER_PHONE
        client.post('/checkout', json=checkout_payload, headers=auth_headers(STRANGER_PHONE))

        response = client.get('/checkout', headers=auth_headers())
        data = json.loads(response.data)['data']
        assert data['count'] == 1
        assert data['orders'][0]['id'] == created_order

    def test_get_order(self, client, created_order):
        response = client.get(f'/checkout/{created_order}', headers=auth_headers())
        assert response.status_code == 200
        assert json.loads(response.data)['data']['order']['id'] == created_order

        assert client.get('/checkout/abc', headers=auth_headers()).status_code == 400
        assert client.get('/checkout/999', headers=auth_headers()).status_code == 404
        assert client.get('/checkout/99999999999999999999999',
                          headers=auth_headers()).status_code == 404
        response = client.get(f'/checkout/{created_order}',
                              headers=auth_headers(STRANGER_PHONE))
        assert response.status_code == 403

    def test_rate_order(self, client, created_order):
        response = client.put(f'/checkout/{created_order}/rate',
                              json={'rating': 4}, headers=auth_headers())

        assert response.status_code == 200
        assert json.loads(response.data)['data']['order']['orderRating'] == 4

    @pytest.mark.parametrize('rating', [0, 6, 4.5, '5', True, None])
    def test_rate_order_invalid_rating(self, client, created_order, rating):
        response = client.put(f'/checkout/{created_order}/rate',
                              json={'rating': rating}, headers=auth_headers())
        assert response.status_code == 400

    def test_rate_order_not_owner(self, client, created_order):
        response = client.put(f'/checkout/{created_order}/rate',
                              json={'rating': 5}, headers=auth_headers(STRANGER_PHONE))

        assert response.status_code == 403
        assert json.loads(response.data)['message'] == "Can't rate this order"


class TestPromoCodes:
    def test_existing_code(self, client, promo_code):
        response = client.get(f'/promo-codes/{promo_code}')

        assert response.status_code == 200
        assert json.loads(response.data)['data'] == {'value': 10, 'name': promo_code}

    def test_unknown_code(self, client, database):
        response = client.get('/promo-codes/NOPE')

        assert response.status_code == 404
        assert json.loads(response.data)['message'] == 'promCode not available'


class TestTrackingEndpoint:
    """REST fallback for live tracking."""

    def test_requires_auth(self, client, make_order):
        order_id = make_order(CUSTOMER_PHONE)
        assert client.get(f'/orders/{order_id}/tracking').status_code == 401

    @pytest.mark.parametrize('raw_id', ['abc', '1_0', '7.5', '٧'])
    def test_invalid_order_id(self, client, raw_id):
        response = client.get(f'/orders/{raw_id}/tracking', headers=auth_headers())

        assert response.status_code == 400
        assert json.loads(response.data)['message'] == 'Invalid order ID'

    def test_order_id_beyond_integer_range_forbidden(self, client, database):
        response = client.get('/orders/99999999999999999999999/tracking',
                              headers=auth_headers())

        assert response.status_code == 403
        assert json.loads(response.data)['message'] == 'Access denied'

    def test_non_owner_forbidden(self, client, make_order):
        order_id = make_order(CUSTOMER_PHONE)
        response = client.get(f'/orders/{order_id}/tracking',
                              headers=auth_headers(DRIVER_PHONE))

        assert response.status_code == 403
        assert json.loads(response.data) == {'success': False, 'message': 'Access denied'}

    def test_unknown_order_forbidden(self, client, database):
        response = client.get('/orders/999/tracking', headers=auth_headers())
        assert response.status_code == 403

    def test_owner_without_location(self, client, make_order):
        order_id = make_order(CUSTOMER_PHONE)
        response = client.get(f'/orders/{order_id}/tracking', headers=auth_headers())

        assert response.status_code == 200
        body = json.loads(response.data)
        assert body['success'] is True
        assert body['data'] == {'orderId': order_id, 'isTracking': False, 'location': None}

    def test_owner_via_phone_field(self, client, make_order):
        order_id = make_order('legacy-user-id', CUSTOMER_PHONE)
        response = client.get(f'/orders/{order_id}/tracking', headers=auth_headers())
        assert response.status_code == 200

    def test_owner_with_location(self, client, registry, make_order):
        order_id = make_order(CUSTOMER_PHONE)
        registry.occupy(order_id, ROLE_DRIVER, 'driver-sid')
        registry.record_location(order_id, Location(46.7, 24.7, '2026-01-01T00:00:00.000Z'))

        response = client.get(f'/orders/{order_id}/tracking', headers=auth_headers())

        data = json.loads(response.data)['data']
        assert data == {
            'orderId': order_id,
            'isTracking': True,
            'location': {'longitude': 46.7, 'latitude': 24.7,
                         'observedAt': '2026-01-01T00:00:00.000Z'},
            'driverConnected': True,
            'customerConnected': False,
        }
        assert registry.get(order_id).customer is None
        registry.occupy(order_id, ROLE_CUSTOMER, 'customer-sid')
        response = client.get(f'/orders/{order_id}/tracking', headers=auth_headers())
        assert json.loads(response.data)['data']['customerConnected'] is True


class TestMisc:
    def test_health_check(self, client):
        response = client.get('/')
        assert response.status_code == 200
        assert json.loads(response.data)['status'] == 'healthy'

    def test_unknown_route(self, client):
        response = client.get('/nowhere')
        assert response.status_code == 404
        assert json.loads(response.data) == {'message': 'Route not found'}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
