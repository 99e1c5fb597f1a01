import logging

from flask import request
from flask_socketio import ConnectionRefusedError, SocketIO, disconnect, join_room

from errors import AppError
from tracking import DriverLocation, SessionBridge

logger = logging.getLogger(__name__)

NAMESPACE = '/'


class SocketIOTransport:
    """Delivers SessionBridge output through Flask-SocketIO."""

    def __init__(self, socketio: SocketIO):
        self.socketio = socketio

    def emit(self, event, payload, to):
        self.socketio.emit(event, payload, to=to, namespace=NAMESPACE)

    def join_room(self, sid, room):
        join_room(room, sid=sid, namespace=NAMESPACE)

    def disconnect(self, sid):
        disconnect(sid=sid, namespace=NAMESPACE)


def handshake_credentials(auth):
    """Pull (credential, orderId) out of the Socket.IO handshake."""
    auth = auth if isinstance(auth, dict) else {}
    credential = auth.get('token') or request.headers.get('Authorization')
    return credential, auth.get('orderId')


def register_socketio_handlers(socketio: SocketIO, gate, bridge: SessionBridge):
    """Register tracking connect/event/disconnect handlers on the given instance."""

    @socketio.on('connect')
    def handle_connect(auth=None):
        credential, raw_order_id = handshake_credentials(auth)
        try:
            admission = gate.admit(credential, raw_order_id)
        except AppError as e:
            logger.info('Refused tracking connection %s: %s', request.sid, e.message)
            raise ConnectionRefusedError(e.message)
        except Exception:
            logger.exception('Tracking admission failed for %s', request.sid)
            raise ConnectionRefusedError('Internal server error')

        bridge.join(request.sid, admission)

    @socketio.on(DriverLocation.event)
    def handle_driver_location(data=None):
        bridge.handle_driver_location(request.sid, data)

    @socketio.on('disconnect')
    def handle_disconnect(reason=None):
        bridge.leave(request.sid)

    @socketio.on_error_default
    def handle_error(e):
        logger.exception('Tracking socket error on %s', request.sid)
        socketio.emit('error', {'message': 'An error occurred'},
                      to=request.sid, namespace=NAMESPACE)
