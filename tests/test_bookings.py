"""
Tests for the booking lifecycle
"""

import pytest

from bookings import BookingManager, check_transition
from conftest import NOW
from errors import (BookingNotFound, InvalidTransition, ValidationError, VehicleInUse, VehicleNotFound,
                    VehicleUnavailable)
from notifications import NotificationSink
from reminders import ReminderEvaluator
from schemas import BookingCreate, parse_payload


@pytest.fixture
def manager(repos):
    return BookingManager(repos, ReminderEvaluator(repos), NotificationSink(repos))


@pytest.fixture
def create(manager, booking_payload):
    def _create(vehicle_id, **overrides):
        payload = parse_payload(BookingCreate, booking_payload(vehicle_id, **overrides))
        return manager.create_booking(payload, NOW)
    return _create


class TestCreateBooking:

    def test_reserves_vehicle(self, repos, add_vehicle, create):
        vehicle = add_vehicle()

        booking = create(vehicle['id'])

        assert booking['status'] == 'pending'
        assert booking['vehicleName'] == 'Toyota Avanza'
        stored = repos.vehicles.get(vehicle['id'])
        assert stored['status'] == 'booked'
        assert stored['lastBooking'] == booking['id']

    def test_second_booking_for_same_vehicle_conflicts(self, add_vehicle, create):
        vehicle = add_vehicle()
        create(vehicle['id'])

        with pytest.raises(VehicleUnavailable):
            create(vehicle['id'])

    def test_unknown_vehicle(self, create):
        with pytest.raises(VehicleNotFound):
            create('no-such-vehicle')

    def test_vehicle_in_maintenance(self, add_vehicle, create):
        vehicle = add_vehicle(status='maintenance')
        with pytest.raises(VehicleUnavailable):
            create(vehicle['id'])

    def test_active_initial_status_rents_vehicle(self, repos, add_vehicle, create):
        vehicle = add_vehicle()
        create(vehicle['id'], status='active')
        assert repos.vehicles.get(vehicle['id'])['status'] == 'rented'

    def test_records_confirmation_notification(self, repos, add_vehicle, create):
        booking = create(add_vehicle()['id'])

        [notification] = repos.notifications.list()
        assert notification['bookingId'] == booking['id']
        assert notification['type'] == 'booking_confirmation'
        assert notification['link'].startswith('https://wa.me/6281233334444?text=')

    def test_creates_reminders(self, repos, add_vehicle, create):
        booking = create(add_vehicle()['id'], deliveryScheduled=True, deliveryTime='09:00')

        ids = {r['id'] for r in repos.reminders.list()}
        assert ids == {f"due_soon_{booking['id']}", f"delivery_{booking['id']}"}


class TestUpdateBooking:

    def test_completion_releases_vehicle(self, repos, add_vehicle, create, manager):
        vehicle = add_vehicle()
        booking = create(vehicle['id'])

        manager.update_booking(booking['id'], {'status': 'active'}, NOW)
        assert repos.vehicles.get(vehicle['id'])['status'] == 'rented'

        updated = manager.update_booking(booking['id'], {'status': 'completed'}, NOW)
        assert updated['status'] == 'completed'
        assert repos.vehicles.get(vehicle['id'])['status'] == 'available'

    @pytest.mark.parametrize('initial', ['pending', 'confirmed'])
    def test_completion_before_pickup_releases_vehicle(self, repos, add_vehicle, create, manager, initial):
        vehicle = add_vehicle()
        booking = create(vehicle['id'], status=initial)

        updated = manager.update_booking(booking['id'], {'status': 'completed'}, NOW)

        assert updated['status'] == 'completed'
        assert repos.vehicles.get(vehicle['id'])['status'] == 'available'
        assert create(vehicle['id'])['status'] == 'pending'

    def test_released_vehicle_can_be_booked_again(self, add_vehicle, create, manager):
        vehicle = add_vehicle()
        booking = create(vehicle['id'])
        manager.update_booking(booking['id'], {'status': 'cancelled'}, NOW)

        assert create(vehicle['id'])['status'] == 'pending'

    def test_terminal_status_cannot_be_left(self, add_vehicle, create, manager):
        booking = create(add_vehicle()['id'])
        manager.update_booking(booking['id'], {'status': 'cancelled'}, NOW)

        with pytest.raises(InvalidTransition):
            manager.update_booking(booking['id'], {'status': 'active'}, NOW)

    def test_end_before_start_is_rejected(self, add_vehicle, create, manager):
        booking = create(add_vehicle()['id'])
        with pytest.raises(ValidationError):
            manager.update_booking(booking['id'], {'endDate': '2025-03-01'}, NOW)

    def test_missing_booking(self, manager):
        with pytest.raises(BookingNotFound):
            manager.update_booking('nope', {'notes': 'x'}, NOW)

    def test_status_change_is_notified(self, repos, add_vehicle, create, manager):
        booking = create(add_vehicle()['id'])
        manager.update_booking(booking['id'], {'status': 'confirmed'}, NOW)

        types = sorted(n['type'] for n in repos.notifications.list())
        assert types == ['booking_confirmation', 'status_confirmed']


class TestDeleteBooking:

    def test_cascades_only_own_reminders(self, repos, add_vehicle, create, manager):
        first = create(add_vehicle()['id'])
        second = create(add_vehicle(name='Honda City')['id'])

        manager.delete_booking(first['id'], NOW)

        assert not repos.bookings.exists(first['id'])
        assert {r['bookingId'] for r in repos.reminders.list()} == {second['id']}

    def test_releases_vehicle(self, repos, add_vehicle, create, manager):
        vehicle = add_vehicle()
        booking = create(vehicle['id'])

        manager.delete_booking(booking['id'], NOW)

        assert repos.vehicles.get(vehicle['id'])['status'] == 'available'


class TestVehicleStatusGuard:

    def test_open_booking_blocks_manual_release(self, repos, add_vehicle, create, manager):
        vehicle = add_vehicle()
        booking = create(vehicle['id'])

        assert manager.open_booking_for(vehicle['id'])['id'] == booking['id']
        with pytest.raises(VehicleInUse):
            manager.check_vehicle_status_change(repos.vehicles.get(vehicle['id']), 'available')

    def test_unchanged_status_is_allowed(self, repos, add_vehicle, create, manager):
        vehicle = add_vehicle()
        create(vehicle['id'])

        manager.check_vehicle_status_change(repos.vehicles.get(vehicle['id']), 'booked')

    def test_closed_booking_does_not_hold_vehicle(self, repos, add_vehicle, create, manager):
        vehicle = add_vehicle()
        booking = create(vehicle['id'])
        manager.update_booking(booking['id'], {'status': 'cancelled'}, NOW)

        assert manager.open_booking_for(vehicle['id']) is None
        manager.check_vehicle_status_change(repos.vehicles.get(vehicle['id']), 'maintenance')


class TestTransitions:

    @pytest.mark.parametrize('current, requested', [
        ('pending', 'confirmed'),
        ('pending', 'active'),
        ('confirmed', 'active'),
        ('active', 'overdue'),
        ('overdue', 'completed'),
        ('completed', 'completed'),
        ('pending', 'completed'),
        ('confirmed', 'completed'),
    ])
    def test_allowed(self, current, requested):
        check_transition(current, requested)

    @pytest.mark.parametrize('current, requested', [
        ('confirmed', 'overdue'),
        ('confirmed', 'pending'),
        ('completed', 'active'),
        ('cancelled', 'pending'),
    ])
    def test_rejected(self, current, requested):
        with pytest.raises(InvalidTransition):
            check_transition(current, requested)


class TestStats:

    def test_counts_and_revenue(self, add_vehicle, create, manager):
        done = create(add_vehicle()['id'], totalPrice=1000000)
        create(add_vehicle(name='Honda City')['id'], totalPrice=500000)
        manager.update_booking(done['id'], {'status': 'active'}, NOW)
        manager.update_booking(done['id'], {'status': 'completed'}, NOW)

        stats = manager.booking_stats()

        assert stats['total'] == 2
        assert stats['completed'] == 1
        assert stats['pending'] == 1
        assert stats['revenue'] == 1000000
        assert stats['monthlyBookings'] == {'2025-03': 2}
