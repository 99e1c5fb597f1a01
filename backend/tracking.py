"""Live order tracking.

One customer and one driver connection per order share a TrackingSession.
The driver reports positions over the socket; the customer receives them as
they arrive and the last point stays readable over REST until both sides
have gone away.

The pieces are transport-agnostic: SessionBridge talks to a transport
object exposing ``emit(event, payload, to)``, ``join_room(sid, room)`` and
``disconnect(sid)``. websocket_service.py supplies the Socket.IO one.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    RolePermissionError,
    ValidationError,
)
from orders_service import is_number, is_order_owner, parse_order_id

logger = logging.getLogger(__name__)

ROLE_CUSTOMER = 'customer'
ROLE_DRIVER = 'driver'
ROLES = (ROLE_CUSTOMER, ROLE_DRIVER)


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def room_for(order_id):
    """Broadcast room shared by every connection tracking order_id."""
    return f'order:{order_id}'


# ==================== STATE ====================


@dataclass(frozen=True)
class Location:
    longitude: float
    latitude: float
    observed_at: str

    def to_dict(self):
        return {
            'longitude': self.longitude,
            'latitude': self.latitude,
            'observedAt': self.observed_at,
        }


@dataclass
class TrackingSession:
    order_id: int
    customer: Optional[str] = None
    driver: Optional[str] = None
    last_location: Optional[Location] = None

    def channel(self, role):
        return self.customer if role == ROLE_CUSTOMER else self.driver

    def set_channel(self, role, sid):
        if role == ROLE_CUSTOMER:
            self.customer = sid
        else:
            self.driver = sid

    def is_empty(self):
        return self.customer is None and self.driver is None


class TrackingRegistry:
    """Live tracking sessions keyed by order id.

    A session exists only while at least one of its two channel slots is
    occupied; emptying both drops it together with its last location.

    Socket.IO handlers for different connections run on different threads.
    ``lock`` is reentrant because a takeover disconnects the displaced
    connection, and its disconnect handler runs on the same thread.
    """

    def __init__(self):
        self._sessions: Dict[int, TrackingSession] = {}
        self.lock = threading.RLock()

    def __contains__(self, order_id):
        return order_id in self._sessions

    def __len__(self):
        return len(self._sessions)

    def get(self, order_id) -> Optional[TrackingSession]:
        return self._sessions.get(order_id)

    def occupy(self, order_id, role, sid) -> Optional[str]:
        """Put sid in the role's slot and return the connection it displaced."""
        if role not in ROLES:
            raise ValueError(f'Unknown role: {role}')

        with self.lock:
            session = self._sessions.get(order_id)
            if session is None:
                session = TrackingSession(order_id=order_id)
                self._sessions[order_id] = session

            previous = session.channel(role)
            session.set_channel(role, sid)
        if previous is not None and previous != sid:
            return previous
        return None

    def release(self, order_id, role, sid) -> bool:
        """Clear the role's slot if sid still holds it.

        Returns False for a stale release (the slot was already taken over
        by a newer connection, or the session is gone).
        """
        with self.lock:
            session = self._sessions.get(order_id)
            if session is None or session.channel(role) != sid:
                return False

            session.set_channel(role, None)
            if session.is_empty():
                del self._sessions[order_id]
        return True

    def record_location(self, order_id, location: Location) -> Optional[TrackingSession]:
        with self.lock:
            session = self._sessions.get(order_id)
            if session is not None:
                session.last_location = location
        return session


# ==================== MESSAGES ====================


@dataclass(frozen=True)
class Connected:
    role: str
    order_id: int

    event = 'connected'

    @property
    def message(self):
        if self.role == ROLE_CUSTOMER:
            return 'Connected to order tracking'
        return 'Connected as driver'


@dataclass(frozen=True)
class LocationUpdate:
    order_id: int
    location: Location

    event = 'location_update'


@dataclass(frozen=True)
class LocationSent:
    message: str = 'Location updated successfully'

    event = 'location_sent'


@dataclass(frozen=True)
class ErrorMessage:
    message: str

    event = 'error'


@dataclass(frozen=True)
class DriverLocation:
    """Inbound ``driver_location`` report."""

    longitude: float
    latitude: float

    event = 'driver_location'

    @classmethod
    def parse(cls, data):
        if not isinstance(data, dict):
            raise ValidationError('Invalid coordinates')
        longitude = data.get('longitude')
        latitude = data.get('latitude')
        if not is_number(longitude) or not is_number(latitude):
            raise ValidationError('Invalid coordinates')
        return cls(longitude=float(longitude), latitude=float(latitude))


def encode(message):
    """Return the (event name, payload) pair sent on the wire."""
    if isinstance(message, Connected):
        payload = {
            'role': message.role,
            'orderId': message.order_id,
            'message': message.message,
        }
    elif isinstance(message, LocationUpdate):
        payload = {'orderId': message.order_id}
        payload.update(message.location.to_dict())
    elif isinstance(message, LocationSent):
        payload = {'success': True, 'message': message.message}
    elif isinstance(message, ErrorMessage):
        payload = {'message': message.message}
    else:
        raise TypeError(f'Not an outbound tracking message: {message!r}')
    return message.event, payload


# ==================== ADMISSION ====================


@dataclass(frozen=True)
class Admission:
    identity: str
    order_id: int
    order: Any


class ConnectionGate:
    """Authenticates a new connection against its order.

    verify_token(credential) returns the caller identity or raises
    AuthenticationError; find_order(order_id) returns the order or None.
    """

    def __init__(self, verify_token, find_order):
        self._verify_token = verify_token
        self._find_order = find_order

    def admit(self, credential, raw_order_id) -> Admission:
        if not credential or raw_order_id is None or raw_order_id == '':
            raise AuthenticationError(
                'Authentication failed: Token and orderId are required')

        identity = self._verify_token(credential)

        order_id = parse_order_id(raw_order_id)
        order = self._find_order(order_id) if order_id is not None else None
        if order is None:
            raise NotFoundError('Order not found')

        return Admission(identity=identity, order_id=order_id, order=order)


def role_for(admission: Admission):
    # Anyone authenticated who does not own the order is taken to be its
    # driver; there is no driver assignment record to check against yet.
    if is_order_owner(admission.order, admission.identity):
        return ROLE_CUSTOMER
    return ROLE_DRIVER


# ==================== SESSION BRIDGE ====================


@dataclass(frozen=True)
class Participant:
    order_id: int
    identity: str
    role: str


class SessionBridge:
    """Per-connection behaviour once a connection has been admitted."""

    def __init__(self, registry: TrackingRegistry, transport, clock=utc_now_iso):
        self.registry = registry
        self.transport = transport
        self._clock = clock
        self._participants: Dict[str, Participant] = {}

    def participant(self, sid) -> Optional[Participant]:
        return self._participants.get(sid)

    def send(self, to, message):
        event, payload = encode(message)
        self.transport.emit(event, payload, to=to)

    def join(self, sid, admission: Admission):
        """Install sid in its order's session and greet it; returns the role."""
        role = role_for(admission)
        order_id = admission.order_id

        with self.registry.lock:
            self._participants[sid] = Participant(order_id, admission.identity, role)

            # The slot names sid before the old connection goes away, so the
            # old connection's own disconnect arrives as a stale release.
            previous = self.registry.occupy(order_id, role, sid)
            if previous is not None:
                logger.info('Order %s: %s connection %s replaced by %s',
                            order_id, role, previous, sid)
                self.transport.disconnect(previous)

            self.transport.join_room(sid, room_for(order_id))
            self.send(sid, Connected(role=role, order_id=order_id))

            session = self.registry.get(order_id)
            if role == ROLE_CUSTOMER and session is not None and session.last_location:
                self.send(sid, LocationUpdate(order_id, session.last_location))

        logger.info('Order %s: %s %s connected as %s',
                    order_id, admission.identity, sid, role)
        return role

    def handle_driver_location(self, sid, data):
        """Apply a driver report; returns True when the location was accepted."""
        with self.registry.lock:
            participant = self._participants.get(sid)
            if participant is None:
                self.send(sid, ErrorMessage('Connection is not tracking an order'))
                return False

            order_id = participant.order_id
            try:
                if participant.role != ROLE_DRIVER:
                    raise RolePermissionError('Only drivers can send location updates')
                session = self.registry.get(order_id)
                if session is None or session.driver != sid:
                    raise RolePermissionError(
                        'Connection was replaced by a newer driver connection')
                report = DriverLocation.parse(data)
            except (RolePermissionError, ValidationError) as e:
                logger.warning('Order %s: rejected location from %s: %s',
                               order_id, sid, e.message)
                self.send(sid, ErrorMessage(e.message))
                return False

            location = Location(report.longitude, report.latitude, self._clock())
            self.registry.record_location(order_id, location)

            update = LocationUpdate(order_id, location)
            if session.customer is not None:
                self.send(session.customer, update)
            self.send(room_for(order_id), update)
            self.send(sid, LocationSent())
        return True

    def leave(self, sid):
        with self.registry.lock:
            participant = self._participants.pop(sid, None)
            if participant is None:
                return False

            released = self.registry.release(participant.order_id, participant.role, sid)

        logger.info('Order %s: %s %s disconnected%s',
                    participant.order_id, participant.role, sid,
                    '' if released else ' (already replaced)')
        return released


# ==================== REST SNAPSHOT ====================


class TrackingQuery:
    """Read-only view of a session for the polling fallback."""

    def __init__(self, registry: TrackingRegistry, find_order):
        self.registry = registry
        self._find_order = find_order

    def snapshot(self, identity, order_id):
        order = self._find_order(order_id)
        if not is_order_owner(order, identity):
            raise ForbiddenError('Access denied')

        with self.registry.lock:
            session = self.registry.get(order_id)
            if session is None or session.last_location is None:
                return {'orderId': order_id, 'isTracking': False, 'location': None}

            return {
                'orderId': order_id,
                'isTracking': True,
                'location': session.last_location.to_dict(),
                'driverConnected': session.driver is not None,
                'customerConnected': session.customer is not None,
            }
