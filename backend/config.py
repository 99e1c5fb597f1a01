import os

from dotenv import load_dotenv

# .env is optional; real environment variables take precedence
load_dotenv()

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))

# Database configuration
# Default to ../data/app.db relative to backend folder
DATABASE_PATH = os.getenv('DATABASE_PATH', os.path.join(
    SCRIPT_DIR, '..', 'data', 'app.db'))

# JWT configuration (simple symmetric HS256 token)
JWT_SECRET = os.getenv('JWT_SECRET', 'dev-secret-key-change-me')
JWT_ALGORITHM = 'HS256'
JWT_EXPIRATION_DAYS = int(os.getenv('JWT_EXPIRATION_DAYS', '7'))

# Firebase Identity Toolkit is used to send and verify phone OTPs
FIREBASE_API_KEY = os.getenv('FIREBASE_API_KEY', '')
FIREBASE_TIMEOUT_SECONDS = int(os.getenv('FIREBASE_TIMEOUT_SECONDS', '15'))

PORT = int(os.getenv('PORT', '4000'))
CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

# Socket.IO heartbeat; dead tracking connections are only released once
# the transport notices the missing pongs
SOCKETIO_PING_INTERVAL = int(os.getenv('SOCKETIO_PING_INTERVAL', '25'))
SOCKETIO_PING_TIMEOUT = int(os.getenv('SOCKETIO_PING_TIMEOUT', '20'))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
