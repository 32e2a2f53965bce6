"""
Tests for reminder generation and the overdue sweep
"""

from datetime import timedelta

import pytest

from conftest import NOW
from errors import ReminderNotFound
from reminders import ReminderEvaluator


def booking(booking_id='b1', **fields):
    record = {
        'id': booking_id,
        'vehicleId': 'v1',
        'vehicleName': 'Toyota Avanza',
        'customerName': 'Ahmad Rifai',
        'startDate': '2025-03-10T09:00:00',
        'endDate': '2025-03-20T09:00:00',
        'status': 'active',
        'pickupLocation': 'Airport',
        'dropoffLocation': 'Office',
    }
    record.update(fields)
    return record


@pytest.fixture
def evaluator(repos):
    return ReminderEvaluator(repos)


class TestCreationReminders:

    def test_due_soon_when_lead_time_ahead(self, evaluator):
        [reminder] = evaluator.generate_creation_reminders(booking(), NOW)
        assert reminder['id'] == 'due_soon_b1'
        assert reminder['dueDate'] == '2025-03-20T09:00:00'
        assert reminder['acknowledged'] is False

    def test_no_due_soon_inside_lead_time(self, evaluator):
        assert evaluator.generate_creation_reminders(booking(endDate='2025-03-17T09:00:00'), NOW) == []

    def test_lead_days_is_configurable(self, repos):
        evaluator = ReminderEvaluator(repos, lead_days=1)
        created = evaluator.generate_creation_reminders(booking(endDate='2025-03-17T09:00:00'), NOW)
        assert [r['type'] for r in created] == ['due_soon']

    def test_delivery_and_pickup(self, evaluator, repos):
        created = evaluator.generate_creation_reminders(
            booking(deliveryScheduled=True, deliveryTime='08:00',
                    pickupScheduled=True, pickupTime='17:00'), NOW)

        by_type = {r['type']: r for r in created}
        assert by_type['delivery']['dueDate'] == '2025-03-10T09:00:00'
        assert by_type['pickup']['dueDate'] == '2025-03-20T09:00:00'
        assert len(repos.reminders.list()) == 3

    def test_flag_without_time_creates_nothing(self, evaluator):
        created = evaluator.generate_creation_reminders(
            booking(endDate='2025-03-16T09:00:00', deliveryScheduled=True), NOW)
        assert created == []


class TestOverdueSweep:

    def test_sweep_is_idempotent(self, repos, evaluator):
        repos.bookings.save(booking(endDate='2025-03-14T18:00:00'))

        first = evaluator.list_reminders(NOW)
        second = evaluator.list_reminders(NOW)

        assert [r['id'] for r in first] == ['overdue_b1']
        assert [r['id'] for r in second] == ['overdue_b1']
        assert len(repos.reminders.list()) == 1

    def test_ending_today_is_not_overdue(self, repos, evaluator):
        repos.bookings.save(booking(endDate='2025-03-15T08:00:00'))
        assert evaluator.sweep_overdue(NOW) == []

    def test_only_active_bookings(self, repos, evaluator):
        repos.bookings.save(booking(status='completed', endDate='2025-03-01T09:00:00'))
        assert evaluator.sweep_overdue(NOW + timedelta(days=30)) == []


class TestAcknowledge:

    def test_acknowledge_stamps_time(self, repos, evaluator):
        evaluator.generate_creation_reminders(booking(), NOW)

        reminder = evaluator.acknowledge_reminder('due_soon_b1', {'acknowledged': True}, NOW)

        assert reminder['acknowledged'] is True
        assert reminder['acknowledgedAt'] == NOW.isoformat()
        assert repos.reminders.get('due_soon_b1')['acknowledged'] is True

    def test_unknown_reminder(self, evaluator):
        with pytest.raises(ReminderNotFound):
            evaluator.acknowledge_reminder('due_soon_nope', {'acknowledged': True}, NOW)

    def test_delete_for_booking(self, repos, evaluator):
        evaluator.generate_creation_reminders(booking('b1'), NOW)
        evaluator.generate_creation_reminders(booking('b2'), NOW)

        assert evaluator.delete_for_booking('b1') == 1
        assert [r['id'] for r in repos.reminders.list()] == ['due_soon_b2']
