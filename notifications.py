"""Customer notifications for booking events.

Nothing is actually delivered.  Each notification is rendered, turned into
a ``wa.me`` share link an operator can open, stored under
``notification:<id>`` and logged.
"""

import logging
from datetime import datetime
from urllib.parse import quote

from errors import StoreFailure
from store import new_id


logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    'confirmed': 'Your booking has been confirmed. We will contact you to arrange the vehicle handover.',
    'active': 'Your rental has started. Have a safe trip!',
    'completed': 'Your rental is complete. Thank you for choosing us.',
    'cancelled': 'Your booking has been cancelled. Contact us if you have any questions.',
    'overdue': 'Your rental period has ended. Please return the vehicle or contact us to extend.',
}


def normalise_phone(phone: str, country_code: str = '62') -> str:
    phone = (phone or '').strip().replace(' ', '').replace('-', '').replace('+', '')
    if phone.startswith('0'):
        phone = country_code + phone[1:]
    return phone


def whatsapp_link(phone: str, message: str, country_code: str = '62') -> str:
    return f"https://wa.me/{normalise_phone(phone, country_code)}?text={quote(message)}"


def booking_confirmation_message(booking: dict) -> str:
    return (
        "*BOOKING CONFIRMATION*\n\n"
        f"Booking ID: {booking['id']}\n"
        f"Name: {booking.get('customerName', '')}\n"
        f"Vehicle: {booking.get('vehicleName') or booking.get('vehicleId', '')}\n"
        f"From: {booking.get('startDate', '')}\n"
        f"Until: {booking.get('endDate', '')}\n"
        f"Pickup: {booking.get('pickupLocation') or '-'}\n"
        f"Return: {booking.get('dropoffLocation') or '-'}\n"
        f"Total: {booking.get('totalPrice', 0):,.0f}\n\n"
        "Thank you for booking with us."
    )


def status_update_message(booking: dict, status: str) -> str:
    body = STATUS_MESSAGES.get(status, f"Your booking status is now {status}.")
    return f"Update for booking {booking['id']}:\n\n{body}"


class NotificationSink:

    def __init__(self, repos, enabled: bool = True, country_code: str = '62'):
        self.repos = repos
        self.enabled = enabled
        self.country_code = country_code

    def _record(self, booking: dict, kind: str, message: str, now: datetime):
        if not self.enabled:
            return None
        phone = booking.get('customerPhone') or ''
        notification = {
            'id': new_id(),
            'bookingId': booking['id'],
            'type': kind,
            'recipient': phone,
            'message': message,
            'link': whatsapp_link(phone, message, self.country_code) if phone else None,
            'status': 'recorded',
            'createdAt': now.isoformat(),
        }
        try:
            self.repos.notifications.save(notification)
        except StoreFailure:
            logger.warning('Could not record %s notification for booking %s', kind, booking['id'])
            return None
        logger.info('Recorded %s notification for booking %s to %s', kind, booking['id'], phone or '-')
        return notification

    def booking_created(self, booking: dict, now: datetime):
        return self._record(booking, 'booking_confirmation', booking_confirmation_message(booking), now)

    def booking_status_changed(self, booking: dict, status: str, now: datetime):
        return self._record(booking, f"status_{status}", status_update_message(booking, status), now)
