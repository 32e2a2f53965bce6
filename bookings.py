"""Booking lifecycle: reservation of a vehicle, status changes, release.

A vehicle holds at most one open booking, tracked through its status flag
rather than a calendar of reserved intervals.  Overlapping bookings for
future dates are therefore not detected; only the current occupancy is.
The flag flip on creation is a compare-and-set on the vehicle entry, so
two requests racing for the same vehicle cannot both win.
"""

import enum
import logging
from collections import Counter
from datetime import datetime

from errors import BookingNotFound, InvalidTransition, ValidationError, VehicleInUse
from periods import parse_instant
from store import new_id


logger = logging.getLogger(__name__)


class BookingStatus(str, enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    OVERDUE = 'overdue'


class VehicleStatus(str, enum.Enum):
    AVAILABLE = 'available'
    BOOKED = 'booked'
    RESERVED = 'reserved'
    RENTED = 'rented'
    MAINTENANCE = 'maintenance'
    RETIRED = 'retired'


TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.ACTIVE, BookingStatus.COMPLETED,
                            BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.ACTIVE, BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.ACTIVE: {BookingStatus.COMPLETED, BookingStatus.OVERDUE, BookingStatus.CANCELLED},
    BookingStatus.OVERDUE: {BookingStatus.ACTIVE, BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

RELEASING_STATUSES = {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
OPEN_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE, BookingStatus.OVERDUE}


def check_transition(current: str, requested: str) -> None:
    """Raise InvalidTransition unless ``current -> requested`` is allowed."""
    if current == requested:
        return
    try:
        allowed = TRANSITIONS[BookingStatus(current)]
    except ValueError:
        # Legacy records with a status outside the enumeration can be moved anywhere.
        return
    if BookingStatus(requested) not in allowed:
        raise InvalidTransition(current, requested)


class BookingManager:

    def __init__(self, repos, reminders, notifier=None):
        self.repos = repos
        self.reminders = reminders
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Vehicle flag

    def _set_vehicle_status(self, vehicle_id: str, status: VehicleStatus, now: datetime):
        vehicle = self.repos.vehicles.get(vehicle_id)
        if vehicle is None:
            logger.warning('Vehicle %s no longer exists; status %s not applied', vehicle_id, status.value)
            return None
        vehicle['status'] = status.value
        vehicle['updatedAt'] = now.isoformat()
        return self.repos.vehicles.save(vehicle)

    # ------------------------------------------------------------------
    # Operations

    def get_booking(self, booking_id: str) -> dict:
        booking = self.repos.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound()
        return booking

    def list_bookings(self) -> list:
        bookings = self.repos.bookings.list()
        bookings.sort(key=lambda b: b.get('createdAt') or '', reverse=True)
        return bookings

    def open_booking_for(self, vehicle_id: str):
        """The booking currently holding ``vehicle_id``, or None."""
        for booking in self.repos.bookings.list():
            if booking.get('vehicleId') == vehicle_id and booking.get('status') in OPEN_STATUSES:
                return booking
        return None

    def check_vehicle_status_change(self, vehicle: dict, status: str) -> None:
        """Only the booking lifecycle may move a vehicle held by an open booking."""
        if status == vehicle.get('status'):
            return
        holder = self.open_booking_for(vehicle['id'])
        if holder is not None:
            logger.info('Refused status %s for vehicle %s held by booking %s',
                        status, vehicle['id'], holder['id'])
            raise VehicleInUse()

    def create_booking(self, payload: dict, now: datetime) -> dict:
        """Reserve the vehicle and persist a new booking.

        ``payload`` is the validated camelCase output of ``BookingCreate``.
        """
        booking_id = new_id()
        vehicle = self.repos.vehicles.reserve(payload['vehicleId'], booking_id, now.isoformat())
        booking = dict(payload)
        booking.update({
            'id': booking_id,
            'vehicleName': vehicle.get('name') or payload['vehicleId'],
            'status': payload.get('status') or BookingStatus.PENDING.value,
            'createdAt': now.isoformat(),
            'updatedAt': now.isoformat(),
        })
        self.repos.bookings.save(booking)
        if booking['status'] == BookingStatus.ACTIVE.value:
            self._set_vehicle_status(booking['vehicleId'], VehicleStatus.RENTED, now)
        self.reminders.generate_creation_reminders(booking, now)
        if self.notifier is not None:
            self.notifier.booking_created(booking, now)
        logger.info('Booking %s created for vehicle %s', booking_id, booking['vehicleId'])
        return booking

    def update_booking(self, booking_id: str, fields: dict, now: datetime) -> dict:
        """Merge ``fields`` (validated ``BookingUpdate`` output) into the booking."""
        booking = self.get_booking(booking_id)
        fields = dict(fields)
        requested = fields.pop('status', None)
        previous = booking.get('status')
        if requested is not None:
            check_transition(previous, requested)
            fields['status'] = requested

        booking.update(fields)
        start = parse_instant(booking.get('startDate'))
        end = parse_instant(booking.get('endDate'))
        if start is not None and end is not None and end < start:
            raise ValidationError('endDate must not be before startDate')
        booking['updatedAt'] = now.isoformat()
        self.repos.bookings.save(booking)

        if requested is not None and requested != previous:
            if BookingStatus(requested) in RELEASING_STATUSES:
                self._set_vehicle_status(booking['vehicleId'], VehicleStatus.AVAILABLE, now)
            elif requested == BookingStatus.ACTIVE.value:
                self._set_vehicle_status(booking['vehicleId'], VehicleStatus.RENTED, now)
            if self.notifier is not None:
                self.notifier.booking_status_changed(booking, requested, now)
            logger.info('Booking %s moved from %s to %s', booking_id, previous, requested)
        return booking

    def delete_booking(self, booking_id: str, now: datetime) -> None:
        booking = self.get_booking(booking_id)
        self._set_vehicle_status(booking['vehicleId'], VehicleStatus.AVAILABLE, now)
        removed = self.reminders.delete_for_booking(booking_id)
        self.repos.bookings.delete(booking_id)
        logger.info('Booking %s deleted with %d reminder(s)', booking_id, removed)

    def booking_stats(self) -> dict:
        bookings = self.repos.bookings.list()
        by_status = Counter(b.get('status') for b in bookings)
        monthly = Counter((b.get('createdAt') or '')[:7] for b in bookings if b.get('createdAt'))
        return {
            'total': len(bookings),
            'pending': by_status[BookingStatus.PENDING.value],
            'confirmed': by_status[BookingStatus.CONFIRMED.value],
            'active': by_status[BookingStatus.ACTIVE.value],
            'completed': by_status[BookingStatus.COMPLETED.value],
            'cancelled': by_status[BookingStatus.CANCELLED.value],
            'overdue': by_status[BookingStatus.OVERDUE.value],
            'revenue': sum(b.get('totalPrice') or 0 for b in bookings
                           if b.get('status') == BookingStatus.COMPLETED.value),
            'monthlyBookings': dict(sorted(monthly.items())),
        }
