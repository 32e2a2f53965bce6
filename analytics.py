"""Aggregation engine behind the dashboard and financial reports.

Every function here is pure: it takes lists of records (plain dicts as
stored), a resolved Period and ``now``, and returns plain dicts ready to be
serialised.  Any ratio with a zero denominator is reported as 0.
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta

from periods import Period, parse_instant


DAY_SECONDS = 86400


# ---------------------------------------------------------------------------
# Helpers

def safe_ratio(numerator, denominator) -> float:
    return numerator / denominator if denominator else 0


def percentage(numerator, denominator) -> float:
    return safe_ratio(numerator, denominator) * 100


def amount_of(record: dict) -> float:
    return record.get('amount') or 0


def date_of(record: dict, *fields):
    """First parseable instant among ``fields``, or None."""
    for field in fields:
        parsed = parse_instant(record.get(field))
        if parsed is not None:
            return parsed
    return None


def filter_by_period(records: list, period: Period, *fields) -> list:
    """Records whose date (first of ``fields`` present) lies in ``period``.

    Records without a usable date are left out.
    """
    fields = fields or ('createdAt',)
    selected = []
    for record in records:
        instant = date_of(record, *fields)
        if instant is not None and period.contains(instant):
            selected.append(record)
    return selected


def paid_amount(transaction: dict) -> float:
    """What has been paid against a transaction.

    An explicit ``paidAmount`` wins; otherwise recorded payments are summed;
    a transaction marked paid without either counts as fully paid.
    """
    if transaction.get('paidAmount') is not None:
        return transaction['paidAmount']
    payments = transaction.get('payments')
    if payments:
        return sum(p.get('amount') or 0 for p in payments)
    if transaction.get('paymentStatus') == 'paid':
        return amount_of(transaction)
    return 0


def outstanding_amount(transactions: list) -> float:
    return sum(amount_of(t) - paid_amount(t) for t in transactions
               if t.get('paymentStatus') != 'paid')


def collection_rate(transactions: list) -> float:
    total_due = sum(amount_of(t) for t in transactions)
    total_paid = sum(paid_amount(t) for t in transactions)
    return percentage(total_paid, total_due)


def expense_pool(expenses: list, driver_expenses: list) -> list:
    """General expenses plus the driver expenses that were approved."""
    return list(expenses) + [e for e in driver_expenses if e.get('status') == 'approved']


def rental_days(record: dict) -> int:
    start = parse_instant(record.get('startDate'))
    end = parse_instant(record.get('endDate'))
    if start is None or end is None:
        return 1
    return max(math.ceil((end - start).total_seconds() / DAY_SECONDS), 1)


def month_start(now: datetime, months_back: int) -> datetime:
    index = now.year * 12 + (now.month - 1) - months_back
    return datetime(index // 12, index % 12 + 1, 1)


def vehicle_bucket(utilization: float) -> str:
    if utilization >= 80:
        return 'excellent'
    if utilization >= 60:
        return 'good'
    if utilization >= 30:
        return 'average'
    return 'poor'


def driver_bucket(score: float) -> str:
    if score >= 90:
        return 'top'
    if score >= 75:
        return 'good'
    if score >= 60:
        return 'average'
    return 'needs_improvement'


def is_active_driver(driver: dict) -> bool:
    return driver.get('status') in ('available', 'on_duty')


# ---------------------------------------------------------------------------
# KPI summary

def kpi_summary(period: Period, vehicles: list, transactions: list, drivers: list,
                customers: list, assignments: list) -> dict:
    current = filter_by_period(transactions, period)
    previous = filter_by_period(transactions, period.previous())

    total_revenue = sum(amount_of(t) for t in current)
    previous_revenue = sum(amount_of(t) for t in previous)
    growth = percentage(total_revenue - previous_revenue, previous_revenue)

    total_vehicles = len(vehicles)
    rented = sum(1 for v in vehicles if v.get('status') == 'rented')

    return {
        'totalRevenue': total_revenue,
        'totalTransactions': len(current),
        'averageTransaction': safe_ratio(total_revenue, len(current)),
        'monthlyGrowth': growth,
        'totalVehicles': total_vehicles,
        'availableVehicles': sum(1 for v in vehicles if v.get('status') == 'available'),
        'bookedVehicles': sum(1 for v in vehicles if v.get('status') in ('booked', 'reserved')),
        'rentedVehicles': rented,
        'maintenanceVehicles': sum(1 for v in vehicles
                                   if v.get('status') == 'maintenance'),
        'totalDrivers': len(drivers),
        'activeDrivers': sum(1 for d in drivers if is_active_driver(d)),
        'totalCustomers': len(customers),
        'activeRentals': sum(1 for a in assignments if a.get('status') == 'active'),
        'outstandingAmount': outstanding_amount(transactions),
        'collectionRate': collection_rate(transactions),
        'utilizationRate': percentage(rented, total_vehicles),
    }


# ---------------------------------------------------------------------------
# Profit / loss

def profit_loss_series(now: datetime, transactions: list, expenses: list,
                       driver_expenses: list, months: int = 12) -> list:
    """Revenue, expenses, profit and margin for each trailing calendar month."""
    pool = expense_pool(expenses, driver_expenses)
    series = []
    for back in range(months - 1, -1, -1):
        start = month_start(now, back)
        end = month_start(now, back - 1)

        def in_month(instant):
            return instant is not None and start <= instant < end

        revenue = sum(amount_of(t) for t in transactions if in_month(date_of(t, 'createdAt')))
        spent = sum(amount_of(e) for e in pool if in_month(date_of(e, 'date', 'submittedAt')))
        profit = revenue - spent
        series.append({
            'month': start.strftime('%b %Y'),
            'monthStart': start.date().isoformat(),
            'revenue': revenue,
            'expenses': spent,
            'profit': profit,
            'margin': percentage(profit, revenue),
        })
    return series


# ---------------------------------------------------------------------------
# Vehicle / driver performance

def vehicle_performance(period: Period, vehicles: list, transactions: list) -> list:
    in_period = filter_by_period(transactions, period)
    by_vehicle = defaultdict(list)
    for t in in_period:
        by_vehicle[t.get('vehicleId')].append(t)

    rows = []
    for vehicle in vehicles:
        rentals = by_vehicle.get(vehicle.get('id'), [])
        revenue = sum(amount_of(t) for t in rentals)
        utilization = min(percentage(sum(rental_days(t) for t in rentals), period.days), 100)
        latest = max(rentals, key=lambda t: date_of(t, 'createdAt') or datetime.min, default=None)
        rows.append({
            'vehicleId': vehicle.get('id'),
            'vehicleName': vehicle.get('name'),
            'model': vehicle.get('model') or 'Unknown',
            'totalRentals': len(rentals),
            'totalRevenue': revenue,
            'utilizationRate': utilization,
            'averageRentalValue': safe_ratio(revenue, len(rentals)),
            'lastRentalDate': latest.get('createdAt') if latest else vehicle.get('createdAt'),
            'status': vehicle_bucket(utilization),
        })
    rows.sort(key=lambda r: r['totalRevenue'], reverse=True)
    return rows


def driver_performance(period: Period, drivers: list, assignments: list) -> list:
    """Trips, revenue and a composite score per driver.

    The score averages the completion rate, a satisfaction figure derived
    from the driver's 5-star rating, and efficiency, the share of trips
    that were not cancelled.
    """
    in_period = filter_by_period(assignments, period, 'startTime', 'createdAt')
    rows = []
    for driver in drivers:
        trips = [a for a in in_period if a.get('driverId') == driver.get('id')]
        completed = sum(1 for a in trips if a.get('status') == 'completed')
        not_cancelled = sum(1 for a in trips if a.get('status') != 'cancelled')
        rating = driver.get('rating') or 0
        completion_rate = percentage(completed, len(trips))
        satisfaction = min(rating * 20, 100)
        efficiency = percentage(not_cancelled, len(trips))
        score = (completion_rate + satisfaction + efficiency) / 3
        rows.append({
            'driverId': driver.get('id'),
            'driverName': driver.get('name'),
            'totalTrips': len(trips),
            'totalRevenue': sum(a.get('earnings') or 0 for a in trips),
            'averageRating': rating,
            'completionRate': completion_rate,
            'customerSatisfaction': satisfaction,
            'efficiency': efficiency,
            'overallScore': score,
            'status': driver_bucket(score),
        })
    rows.sort(key=lambda r: r['totalRevenue'], reverse=True)
    return rows


# ---------------------------------------------------------------------------
# Real-time snapshot

def realtime_snapshot(now: datetime, vehicles: list, transactions: list, drivers: list,
                      customers: list, assignments: list) -> dict:
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_tomorrow = start_of_day + timedelta(days=1)
    week_ago = now - timedelta(days=7)

    today = [t for t in transactions
             if start_of_day <= (date_of(t, 'createdAt') or datetime.min) < start_of_tomorrow]
    rented = sum(1 for v in vehicles if v.get('status') == 'rented')
    on_duty = sum(1 for d in drivers if is_active_driver(d))

    overdue_payments = 0
    for t in transactions:
        if t.get('paymentStatus') == 'paid':
            continue
        due = date_of(t, 'endDate', 'dueDate', 'createdAt')
        if due is not None and due < now:
            overdue_payments += 1

    return {
        'activeRentals': sum(1 for a in assignments if a.get('status') == 'active'),
        'todayRevenue': sum(amount_of(t) for t in today),
        'todayTransactions': len(today),
        'vehicleUtilization': round(percentage(rented, len(vehicles))),
        'driverUtilization': round(percentage(on_duty, len(drivers))),
        'pendingMaintenance': sum(1 for v in vehicles if v.get('status') == 'maintenance'),
        'overduePayments': overdue_payments,
        'newCustomers': sum(1 for c in customers
                            if (date_of(c, 'createdAt') or datetime.min) >= week_ago),
    }
