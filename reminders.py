"""Booking reminders.

Reminder ids are derived from the booking id and the reminder kind
(``due_soon_<bookingId>``, ``overdue_<bookingId>`` ...), so re-running the
overdue sweep can never store the same reminder twice.
"""

import enum
import logging
from datetime import datetime, timedelta

from errors import ReminderNotFound
from periods import parse_instant


logger = logging.getLogger(__name__)

DEFAULT_LEAD_DAYS = 3


class ReminderKind(str, enum.Enum):
    DUE_SOON = 'due_soon'
    OVERDUE = 'overdue'
    DELIVERY = 'delivery'
    PICKUP = 'pickup'


def make_reminder_id(kind: ReminderKind, booking_id: str) -> str:
    return f"{kind.value}_{booking_id}"


def _vehicle_label(booking: dict) -> str:
    return booking.get('vehicleName') or booking.get('vehicleId', '')


def build_reminder(kind: ReminderKind, booking: dict, message: str, due_date: str) -> dict:
    return {
        'id': make_reminder_id(kind, booking['id']),
        'bookingId': booking['id'],
        'type': kind.value,
        'message': message,
        'dueDate': due_date,
        'acknowledged': False,
    }


class ReminderEvaluator:

    def __init__(self, repos, lead_days: int = DEFAULT_LEAD_DAYS):
        self.repos = repos
        self.lead_days = lead_days

    def generate_creation_reminders(self, booking: dict, now: datetime) -> list:
        """Create the reminders known at booking time.

        ``due_soon`` only if the reminder moment (end date minus the lead
        time) is still ahead of ``now``; ``delivery`` and ``pickup`` only when
        the booking is flagged and carries a time for them.
        """
        created = []
        end = parse_instant(booking.get('endDate'))
        if end is not None and end - timedelta(days=self.lead_days) > now:
            created.append(build_reminder(
                ReminderKind.DUE_SOON, booking,
                f"Rental of {_vehicle_label(booking)} for {booking.get('customerName', '')} "
                f"ends on {booking['endDate']}",
                booking['endDate'],
            ))
        if booking.get('deliveryScheduled') and booking.get('deliveryTime'):
            created.append(build_reminder(
                ReminderKind.DELIVERY, booking,
                f"Deliver {_vehicle_label(booking)} to {booking.get('pickupLocation', '')} "
                f"at {booking['deliveryTime']}",
                booking.get('startDate'),
            ))
        if booking.get('pickupScheduled') and booking.get('pickupTime'):
            created.append(build_reminder(
                ReminderKind.PICKUP, booking,
                f"Collect {_vehicle_label(booking)} from {booking.get('dropoffLocation', '')} "
                f"at {booking['pickupTime']}",
                booking.get('endDate'),
            ))
        for reminder in created:
            self.repos.reminders.save(reminder)
        return created

    def sweep_overdue(self, now: datetime) -> list:
        """Store an overdue reminder for every active booking past its end date."""
        created = []
        today = now.date()
        for booking in self.repos.bookings.list():
            if booking.get('status') != 'active':
                continue
            end = parse_instant(booking.get('endDate'))
            if end is None or end.date() >= today:
                continue
            if self.repos.reminders.exists(make_reminder_id(ReminderKind.OVERDUE, booking['id'])):
                continue
            reminder = build_reminder(
                ReminderKind.OVERDUE, booking,
                f"Rental of {_vehicle_label(booking)} for {booking.get('customerName', '')} "
                f"is past its end date",
                booking['endDate'],
            )
            self.repos.reminders.save(reminder)
            logger.info('Booking %s is overdue since %s', booking['id'], booking['endDate'])
            created.append(reminder)
        return created

    def list_reminders(self, now: datetime) -> list:
        reminders = self.repos.reminders.list()
        reminders.extend(self.sweep_overdue(now))
        return reminders

    def acknowledge_reminder(self, reminder_id: str, fields: dict, now: datetime) -> dict:
        reminder = self.repos.reminders.get(reminder_id)
        if reminder is None:
            raise ReminderNotFound()
        reminder.update({k: v for k, v in fields.items() if v is not None})
        if fields.get('acknowledged'):
            reminder['acknowledgedAt'] = now.isoformat()
        return self.repos.reminders.save(reminder)

    def delete_for_booking(self, booking_id: str) -> int:
        removed = 0
        for reminder in self.repos.reminders.list():
            if reminder.get('bookingId') == booking_id:
                self.repos.reminders.delete(reminder['id'])
                removed += 1
        return removed
