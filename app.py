"""FleetDesk: back office for a vehicle rental business.

This Flask application serves a JSON API over a small key/value store:
fleet inventory, bookings and their reminders, transactions, drivers,
customers, and the dashboard and financial reports computed from them.

To run the app locally:

    # Install the package and its dependencies
    pip install -e .

    # Initialise the database (optionally with a few demo records)
    python app.py --init-db
    python app.py --init-db --seed-demo

    # Start the development server
    python app.py

Every response is an envelope: ``{"success": true, "data": ...}`` or
``{"success": false, "error": "..."}``.
"""

import argparse
import os
from datetime import datetime, timedelta

from flask import Blueprint, Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

import analytics
import reports
from bookings import BookingManager, VehicleStatus
from errors import FleetDeskError, RecordNotFound, ValidationError
from notifications import NotificationSink
from periods import resolve_period
from reminders import ReminderEvaluator
from schemas import BookingCreate, BookingUpdate, PaymentCreate, ReminderUpdate, parse_payload
from store import EntityStore, Repositories, db, new_id


api = Blueprint('api', __name__, url_prefix='/api')

# URL segment -> attribute on Repositories
COLLECTIONS = {
    'vehicles': 'vehicles',
    'customers': 'customers',
    'drivers': 'drivers',
    'transactions': 'transactions',
    'expenses': 'expenses',
    'driver-expenses': 'driver_expenses',
    'driver-assignments': 'assignments',
}


def env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(test_config: dict = None) -> Flask:
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('FLEETDESK_DATABASE_URI',
                                                           'sqlite:///fleetdesk.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['DEFAULT_PERIOD'] = os.environ.get('FLEETDESK_DEFAULT_PERIOD', 'month')
    app.config['REMINDER_LEAD_DAYS'] = int(os.environ.get('FLEETDESK_REMINDER_LEAD_DAYS', 3))
    app.config['NOTIFICATIONS_ENABLED'] = env_flag('FLEETDESK_NOTIFICATIONS_ENABLED', True)
    app.config['DEFAULT_COUNTRY_CODE'] = os.environ.get('FLEETDESK_COUNTRY_CODE', '62')
    app.config['CLOCK'] = datetime.now
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    app.register_blueprint(api)
    register_error_handlers(app)

    @app.route('/health')
    def health():
        return ok({'status': 'ok', 'time': now().isoformat()})

    return app


# ---------------------------------------------------------------------------
# Error envelope

def fail(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def register_error_handlers(app: Flask) -> None:

    @app.errorhandler(FleetDeskError)
    def handle_domain_error(exc):
        if exc.status_code >= 500:
            app.logger.error('%s %s failed: %s', request.method, request.path, exc.message)
        else:
            app.logger.info('%s %s rejected: %s', request.method, request.path, exc.message)
        return fail(exc.message, exc.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return fail(exc.description or exc.name, exc.code)

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        app.logger.exception('Unhandled error on %s %s', request.method, request.path)
        return fail('Internal server error', 500)


# ---------------------------------------------------------------------------
# Helpers

def ok(data, message: str = None, status: int = 200, **extra):
    body = {'success': True, 'data': data}
    if message:
        body['message'] = message
    body.update(extra)
    return jsonify(body), status


def now() -> datetime:
    return current_app.config['CLOCK']()


def get_repos() -> Repositories:
    if 'repos' not in g:
        g.repos = Repositories(EntityStore(db.session))
    return g.repos


def get_reminders() -> ReminderEvaluator:
    return ReminderEvaluator(get_repos(), lead_days=current_app.config['REMINDER_LEAD_DAYS'])


def get_booking_manager() -> BookingManager:
    repos = get_repos()
    notifier = NotificationSink(repos,
                                enabled=current_app.config['NOTIFICATIONS_ENABLED'],
                                country_code=current_app.config['DEFAULT_COUNTRY_CODE'])
    return BookingManager(repos, get_reminders(), notifier)


def json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body


def requested_period():
    return resolve_period(request.args.get('period') or current_app.config['DEFAULT_PERIOD'],
                          request.args.get('start'), request.args.get('end'), now())


# ---------------------------------------------------------------------------
# Bookings and reminders

@api.route('/schedules/bookings')
def list_bookings():
    return ok(get_booking_manager().list_bookings())


@api.route('/schedules/bookings', methods=['POST'])
def create_booking():
    """Reserve a vehicle for a customer.  409 if the vehicle is not available."""
    payload = parse_payload(BookingCreate, json_body())
    booking = get_booking_manager().create_booking(payload, now())
    return ok(booking, 'Booking created successfully', 201)


@api.route('/schedules/bookings/<booking_id>')
def get_booking(booking_id: str):
    return ok(get_booking_manager().get_booking(booking_id))


@api.route('/schedules/bookings/<booking_id>', methods=['PUT'])
def update_booking(booking_id: str):
    fields = parse_payload(BookingUpdate, json_body(), partial=True)
    booking = get_booking_manager().update_booking(booking_id, fields, now())
    return ok(booking, 'Booking updated successfully')


@api.route('/schedules/bookings/<booking_id>', methods=['DELETE'])
def delete_booking(booking_id: str):
    get_booking_manager().delete_booking(booking_id, now())
    return ok(None, 'Booking deleted successfully')


@api.route('/schedules/reminders')
def list_reminders():
    return ok(get_reminders().list_reminders(now()))


@api.route('/schedules/reminders/<reminder_id>', methods=['PUT'])
def update_reminder(reminder_id: str):
    fields = parse_payload(ReminderUpdate, json_body(), partial=True)
    reminder = get_reminders().acknowledge_reminder(reminder_id, fields, now())
    return ok(reminder, 'Reminder updated successfully')


@api.route('/schedules/stats')
def booking_stats():
    return ok(get_booking_manager().booking_stats())


# ---------------------------------------------------------------------------
# Dashboard

@api.route('/dashboard/kpi')
def dashboard_kpi():
    repos = get_repos()
    period = requested_period()
    data = analytics.kpi_summary(period, repos.vehicles.list(), repos.transactions.list(),
                                 repos.drivers.list(), repos.customers.list(),
                                 repos.assignments.list())
    return ok(data, period=period.to_dict())


@api.route('/dashboard/profit-loss')
def dashboard_profit_loss():
    repos = get_repos()
    data = analytics.profit_loss_series(now(), repos.transactions.list(), repos.expenses.list(),
                                        repos.driver_expenses.list())
    return ok(data)


@api.route('/dashboard/vehicle-performance')
def dashboard_vehicle_performance():
    repos = get_repos()
    period = requested_period()
    data = analytics.vehicle_performance(period, repos.vehicles.list(), repos.transactions.list())
    return ok(data, period=period.to_dict())


@api.route('/dashboard/driver-performance')
def dashboard_driver_performance():
    repos = get_repos()
    period = requested_period()
    data = analytics.driver_performance(period, repos.drivers.list(), repos.assignments.list())
    return ok(data, period=period.to_dict())


@api.route('/dashboard/realtime')
def dashboard_realtime():
    repos = get_repos()
    data = analytics.realtime_snapshot(now(), repos.vehicles.list(), repos.transactions.list(),
                                       repos.drivers.list(), repos.customers.list(),
                                       repos.assignments.list())
    return ok(data)


# ---------------------------------------------------------------------------
# Financial reports

@api.route('/financial/financial-summary')
def financial_summary():
    repos = get_repos()
    period = requested_period()
    data = reports.financial_summary(period, repos.transactions.list(), repos.expenses.list(),
                                     repos.driver_expenses.list())
    return ok(data, period=period.to_dict())


@api.route('/financial/rental-sales')
def rental_sales():
    repos = get_repos()
    period = requested_period()
    data = reports.rental_sales(period, repos.transactions.list(), repos.expenses.list())
    return ok(data, period=period.to_dict())


@api.route('/financial/expenses')
def expense_report():
    repos = get_repos()
    period = requested_period()
    data = reports.expense_report(period, repos.expenses.list(), repos.driver_expenses.list())
    return ok(data, period=period.to_dict())


@api.route('/financial/outstanding-rentals')
def outstanding_rentals():
    repos = get_repos()
    return ok(reports.outstanding_rentals(now(), repos.transactions.list(), repos.customers.list()))


@api.route('/financial/driver-performance')
def driver_report():
    repos = get_repos()
    period = requested_period()
    data = reports.driver_report(period, repos.drivers.list(), repos.assignments.list(),
                                 repos.driver_expenses.list())
    return ok(data, period=period.to_dict())


@api.route('/financial/customer-analysis')
def customer_analysis():
    repos = get_repos()
    period = requested_period()
    data = reports.customer_analysis(period, repos.customers.list(), repos.transactions.list())
    return ok(data, period=period.to_dict())


@api.route('/financial/order-sources')
def order_sources():
    repos = get_repos()
    period = requested_period()
    return ok(reports.order_sources(period, repos.transactions.list()), period=period.to_dict())


# ---------------------------------------------------------------------------
# Vehicles, customers, drivers, transactions and expenses

def collection_repo(collection: str):
    name = COLLECTIONS.get(collection)
    repo = get_repos().collection(name) if name else None
    if repo is None:
        raise RecordNotFound(f"Unknown collection: {collection}")
    return repo


def check_vehicle_status(record: dict) -> None:
    status = record.get('status')
    if status is not None and status not in {s.value for s in VehicleStatus}:
        raise ValidationError(f"Unknown vehicle status: {status}")


@api.route('/<collection>')
def list_records(collection: str):
    return ok(collection_repo(collection).list())


@api.route('/<collection>', methods=['POST'])
def create_record(collection: str):
    repo = collection_repo(collection)
    record = json_body()
    stamp = now().isoformat()
    record.update({'id': new_id(), 'createdAt': stamp, 'updatedAt': stamp})
    if collection == 'vehicles':
        record.setdefault('status', VehicleStatus.AVAILABLE.value)
        check_vehicle_status(record)
    elif collection == 'transactions':
        record.setdefault('paymentStatus', 'pending')
        record.setdefault('paidAmount', 0)
    repo.save(record)
    current_app.logger.info('Created %s %s', collection, record['id'])
    return ok(record, 'Record created successfully', 201)


@api.route('/<collection>/<record_id>')
def get_record(collection: str, record_id: str):
    record = collection_repo(collection).get(record_id)
    if record is None:
        raise RecordNotFound()
    return ok(record)


@api.route('/<collection>/<record_id>', methods=['PUT'])
def update_record(collection: str, record_id: str):
    repo = collection_repo(collection)
    record = repo.get(record_id)
    if record is None:
        raise RecordNotFound()
    fields = json_body()
    for immutable in ('id', 'createdAt'):
        fields.pop(immutable, None)
    if collection == 'vehicles' and 'status' in fields:
        get_booking_manager().check_vehicle_status_change(record, fields['status'])
    record.update(fields)
    if collection == 'vehicles':
        check_vehicle_status(record)
    record['updatedAt'] = now().isoformat()
    return ok(repo.save(record), 'Record updated successfully')


@api.route('/transactions/<transaction_id>/payments', methods=['POST'])
def add_payment(transaction_id: str):
    """Record a payment and recompute how much of the transaction is paid."""
    repos = get_repos()
    transaction = repos.transactions.get(transaction_id)
    if transaction is None:
        raise RecordNotFound('Transaction not found')
    payment = parse_payload(PaymentCreate, json_body())
    payment.update({'id': new_id(), 'createdAt': now().isoformat()})

    payments = transaction.get('payments') or []
    payments.append(payment)
    paid = sum(p.get('amount') or 0 for p in payments)
    amount = transaction.get('amount') or 0
    if paid >= amount:
        status = 'paid'
    elif paid > 0:
        status = 'partial'
    else:
        status = 'pending'
    transaction.update({
        'payments': payments,
        'paidAmount': paid,
        'paymentStatus': status,
        'updatedAt': now().isoformat(),
    })
    repos.transactions.save(transaction)
    current_app.logger.info('Payment of %s recorded on transaction %s (%s)',
                            payment['amount'], transaction_id, status)
    return ok(transaction, 'Payment recorded successfully', 201)


# ---------------------------------------------------------------------------
# Database setup

def init_db():
    """Initialise the database tables."""
    db.create_all()
    print("Database initialised.")


def seed_demo(clock=datetime.now):
    """Add a small demo fleet with a few drivers, customers and transactions."""
    repos = Repositories()
    today = clock().replace(microsecond=0)

    vehicles = [
        {'name': 'Toyota Avanza', 'model': 'MPV', 'plateNumber': 'B 1234 ABC', 'dailyRate': 350000},
        {'name': 'Honda City', 'model': 'Sedan', 'plateNumber': 'B 5678 DEF', 'dailyRate': 450000},
        {'name': 'Mitsubishi Xpander', 'model': 'MPV', 'plateNumber': 'B 9012 GHI', 'dailyRate': 400000},
    ]
    drivers = [
        {'name': 'Ahmad Supri', 'phone': '081234567890', 'rating': 4.8, 'status': 'available'},
        {'name': 'Budi Santoso', 'phone': '081298765432', 'rating': 4.5, 'status': 'off_duty'},
    ]
    customers = [
        {'name': 'Ahmad Rifai', 'phone': '081211112222', 'email': 'rifai@example.com'},
        {'name': 'Sari Indah', 'phone': '081233334444', 'email': 'sari@example.com'},
    ]

    for record in vehicles:
        record.update({'id': new_id(), 'status': VehicleStatus.AVAILABLE.value,
                       'createdAt': today.isoformat()})
        repos.vehicles.save(record)
    for record in drivers:
        record.update({'id': new_id(), 'createdAt': today.isoformat()})
        repos.drivers.save(record)
    for record in customers:
        record.update({'id': new_id(), 'createdAt': today.isoformat()})
        repos.customers.save(record)

    for days_ago, vehicle, customer, amount, status, source in (
            (2, vehicles[0], customers[0], 750000, 'paid', 'Website'),
            (5, vehicles[1], customers[1], 650000, 'partial', 'WhatsApp'),
            (12, vehicles[2], customers[0], 1200000, 'pending', 'Direct')):
        start = today - timedelta(days=days_ago)
        repos.transactions.save({
            'id': new_id(),
            'vehicleId': vehicle['id'],
            'vehicleName': vehicle['name'],
            'customerName': customer['name'],
            'customerPhone': customer['phone'],
            'amount': amount,
            'paidAmount': amount if status == 'paid' else amount // 2 if status == 'partial' else 0,
            'paymentStatus': status,
            'orderSource': source,
            'startDate': start.isoformat(),
            'endDate': (start + timedelta(days=2)).isoformat(),
            'createdAt': start.isoformat(),
        })
    print(f"Seeded {len(vehicles)} vehicles, {len(drivers)} drivers, "
          f"{len(customers)} customers and 3 transactions.")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="FleetDesk rental back office")
    parser.add_argument('--init-db', action='store_true', help='Initialise the database')
    parser.add_argument('--seed-demo', action='store_true', help='Add demo records after initialising')
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind the dev server to')
    parser.add_argument('--port', type=int, default=5000, help='Port for the dev server')
    args = parser.parse_args()
    app = create_app()
    if args.init_db or args.seed_demo:
        with app.app_context():
            init_db()
            if args.seed_demo:
                seed_demo(app.config['CLOCK'])
    else:
        app.run(host=args.host, port=args.port, debug=True)
