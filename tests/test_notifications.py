"""
Tests for the notification sink
"""

from urllib.parse import unquote

import pytest

from conftest import NOW
from errors import StoreFailure
from notifications import NotificationSink, normalise_phone, whatsapp_link


BOOKING = {
    'id': 'b1',
    'customerName': 'Sari Indah',
    'customerPhone': '0812 3333 4444',
    'vehicleName': 'Honda City',
    'startDate': '2025-03-16T09:00:00',
    'endDate': '2025-03-20T09:00:00',
    'totalPrice': 1800000,
}


@pytest.mark.parametrize('raw, expected', [
    ('0812-3333-4444', '6281233334444'),
    ('+62 812 3333 4444', '6281233334444'),
    ('6281233334444', '6281233334444'),
])
def test_normalise_phone(raw, expected):
    assert normalise_phone(raw) == expected


def test_whatsapp_link_quotes_message():
    link = whatsapp_link('0811', 'Hello there & welcome', country_code='65')
    assert link.startswith('https://wa.me/65811?text=')
    assert unquote(link.split('text=')[1]) == 'Hello there & welcome'


class TestNotificationSink:

    def test_confirmation_is_recorded(self, repos):
        notification = NotificationSink(repos).booking_created(BOOKING, NOW)

        assert notification['status'] == 'recorded'
        assert 'Honda City' in notification['message']
        assert '1,800,000' in notification['message']
        assert repos.notifications.get(notification['id']) == notification

    def test_disabled_sink_records_nothing(self, repos):
        assert NotificationSink(repos, enabled=False).booking_status_changed(BOOKING, 'active', NOW) is None
        assert repos.notifications.list() == []

    def test_store_failure_does_not_propagate(self, repos, monkeypatch):
        def broken(record):
            raise StoreFailure()

        monkeypatch.setattr(repos.notifications, 'save', broken)
        assert NotificationSink(repos).booking_status_changed(BOOKING, 'cancelled', NOW) is None
