import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
import requests
from flask import g, jsonify, request

import config
from errors import AuthenticationError, OtpServiceError

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = 'https://identitytoolkit.googleapis.com/v1'


# ==================== TOKENS ====================


def create_access_token(phone_number):
    """Create a signed JWT whose identity is the verified phone number."""
    now = datetime.now(timezone.utc)
    payload = {
        'phoneNumber': phone_number,
        'iat': now,
        'exp': now + timedelta(days=config.JWT_EXPIRATION_DAYS),
    }
    token = jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    # PyJWT can return bytes in some versions; normalize to str
    if isinstance(token, bytes):
        token = token.decode('utf-8')
    return token


def verify_token(credential):
    """Return the phone number carried by a bearer credential.

    Accepts the raw token or an ``Authorization`` header value; raises
    AuthenticationError for anything that does not verify.
    """
    if not credential or not isinstance(credential, str):
        raise AuthenticationError('Authentication failed: Invalid token')

    token = credential.replace('Bearer ', '', 1).strip()
    try:
        claims = jwt.decode(token, config.JWT_SECRET,
                            algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info('Rejected credential: %s', e)
        raise AuthenticationError('Authentication failed: Invalid token') from e

    phone_number = claims.get('phoneNumber')
    if not phone_number:
        raise AuthenticationError('Authentication failed: Invalid token')
    return phone_number


def require_auth(view):
    """Reject the request with 401 unless it carries a valid bearer token."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        header = request.headers.get('Authorization')
        if not header:
            return jsonify({
                'success': False,
                'message': 'Authorization header is required',
            }), 401
        try:
            g.phone_number = verify_token(header)
        except AuthenticationError as e:
            return jsonify({'success': False, 'message': e.message}), 401
        return view(*args, **kwargs)

    return wrapper


# ==================== FIREBASE OTP ====================


def _firebase_error_message(error):
    response = getattr(error, 'response', None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        detail = body.get('error') if isinstance(body, dict) else None
        if isinstance(detail, dict) and detail.get('message'):
            return detail['message']
        if detail:
            return str(detail)
    return str(error) or 'Unexpected Firebase error'


def _call_identity_toolkit(method, payload):
    if not config.FIREBASE_API_KEY:
        raise OtpServiceError('FIREBASE_API_KEY is not configured')

    url = f'{IDENTITY_TOOLKIT_URL}/accounts:{method}'
    try:
        response = requests.post(
            url,
            params={'key': config.FIREBASE_API_KEY},
            json=payload,
            timeout=config.FIREBASE_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        message = _firebase_error_message(e)
        logger.warning('Firebase %s failed: %s', method, message)
        raise OtpServiceError(message) from e
    return response.json()


def send_phone_otp(phone_number, recaptcha_token=None):
    """Ask Firebase to text a verification code; returns the sessionInfo."""
    payload = {'phoneNumber': phone_number}
    if recaptcha_token:
        payload['recaptchaToken'] = recaptcha_token
    return _call_identity_toolkit('sendVerificationCode', payload).get('sessionInfo')


def verify_phone_otp(session_info, code):
    """Exchange a sessionInfo + code for the Firebase sign-in result."""
    return _call_identity_toolkit('signInWithPhoneNumber', {
        'sessionInfo': session_info,
        'code': code,
    })
