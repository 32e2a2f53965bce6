"""Financial reports.

Each report slices the records to a period and relabels what the
aggregation helpers in ``analytics`` compute.  The arithmetic itself lives
there.
"""

import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta

from analytics import (amount_of, date_of, expense_pool, filter_by_period, outstanding_amount,
                       paid_amount, percentage, safe_ratio)
from periods import Period


EXPENSE_DATE_FIELDS = ('date', 'submittedAt')
DUE_SOON_DAYS = 7
CUSTOMER_ACQUISITION_SHARE = 0.15
ORDER_MARGIN = 0.3


def financial_summary(period: Period, transactions: list, expenses: list,
                      driver_expenses: list) -> dict:
    in_period = filter_by_period(transactions, period)
    spent_in_period = filter_by_period(expense_pool(expenses, driver_expenses), period,
                                       *EXPENSE_DATE_FIELDS)

    total_revenue = sum(amount_of(t) for t in in_period)
    total_expenses = sum(amount_of(e) for e in spent_in_period)
    net_profit = total_revenue - total_expenses
    return {
        'totalRevenue': total_revenue,
        'totalExpenses': total_expenses,
        'netProfit': net_profit,
        'profitMargin': percentage(net_profit, total_revenue),
        'totalRentals': len(in_period),
        'averageRentalValue': safe_ratio(total_revenue, len(in_period)),
        'outstandingAmount': outstanding_amount(transactions),
        'cashFlow': net_profit,
        'period': period.label,
    }


def rental_sales(period: Period, transactions: list, expenses: list) -> list:
    """One row per in-period transaction with the expenses tied to it.

    An expense is tied to a transaction when it names the transaction or
    the vehicle rented in it.
    """
    rows = []
    for t in filter_by_period(transactions, period):
        related = sum(amount_of(e) for e in expenses
                      if (e.get('transactionId') and e.get('transactionId') == t.get('id'))
                      or (e.get('vehicleId') and e.get('vehicleId') == t.get('vehicleId')))
        rows.append({
            'id': t.get('id'),
            'date': t.get('createdAt'),
            'customerName': t.get('customerName') or 'Unknown',
            'vehicleName': t.get('vehicleName') or 'Unknown',
            'amount': amount_of(t),
            'paymentStatus': t.get('paymentStatus') or 'unpaid',
            'driverName': t.get('driverName'),
            'orderSource': t.get('orderSource') or 'Direct',
            'profit': amount_of(t) - related,
            'expenses': related,
        })
    return rows


def expense_report(period: Period, expenses: list, driver_expenses: list) -> list:
    labelled = [dict(e, category=e.get('type') or 'operational') for e in expenses]
    labelled += [dict(e, category='driver_expense', approvedBy=e.get('reviewedBy'))
                 for e in driver_expenses if e.get('status') == 'approved']

    return [{
        'id': e.get('id'),
        'date': e.get('date') or e.get('submittedAt'),
        'category': e['category'],
        'description': e.get('description') or e.get('type') or 'No description',
        'amount': amount_of(e),
        'vehicleName': e.get('vehicleName'),
        'driverName': e.get('driverName'),
        'approvedBy': e.get('approvedBy') or 'System',
    } for e in filter_by_period(labelled, period, *EXPENSE_DATE_FIELDS)]


def outstanding_status(end: datetime, now: datetime) -> tuple:
    """Overdue days and status (overdue / due_soon / pending) for an end date."""
    overdue_days = max(0, math.ceil((now - end).total_seconds() / 86400))
    if overdue_days > 0:
        return overdue_days, 'overdue'
    if end <= now + timedelta(days=DUE_SOON_DAYS):
        return overdue_days, 'due_soon'
    return overdue_days, 'pending'


def outstanding_rentals(now: datetime, transactions: list, customers: list) -> list:
    contacts = {c.get('name'): c for c in customers}
    rows = []
    for t in transactions:
        if t.get('paymentStatus') == 'paid':
            continue
        paid = paid_amount(t)
        end = date_of(t, 'endDate', 'createdAt') or now
        overdue_days, status = outstanding_status(end, now)
        customer = contacts.get(t.get('customerName')) or {}
        rows.append({
            'id': t.get('id'),
            'customerName': t.get('customerName') or 'Unknown',
            'vehicleName': t.get('vehicleName') or 'Unknown',
            'startDate': t.get('startDate') or t.get('createdAt'),
            'endDate': t.get('endDate') or t.get('createdAt'),
            'totalAmount': amount_of(t),
            'paidAmount': paid,
            'outstandingAmount': amount_of(t) - paid,
            'overdueDays': overdue_days,
            'contactInfo': customer.get('phone') or customer.get('email') or 'No contact',
            'status': status,
        })
    rows.sort(key=lambda r: r['overdueDays'], reverse=True)
    return rows


def driver_report(period: Period, drivers: list, assignments: list, driver_expenses: list) -> list:
    trips = filter_by_period(assignments, period, 'startTime', 'createdAt')
    approved = [e for e in driver_expenses if e.get('status') == 'approved']

    rows = []
    for driver in drivers:
        own_trips = [a for a in trips if a.get('driverId') == driver.get('id')]
        own_expenses = [e for e in approved if e.get('driverId') == driver.get('id')]
        earnings = sum(a.get('earnings') or 0 for a in own_trips)
        spent = sum(amount_of(e) for e in own_expenses)
        rows.append({
            'driverId': driver.get('id'),
            'driverName': driver.get('name'),
            'totalTrips': len(own_trips),
            'totalEarnings': earnings,
            'totalExpenses': spent,
            'netEarnings': earnings - spent,
            'averageRating': driver.get('rating') or 0,
            'totalDistance': sum(a.get('distance') or 0 for a in own_trips),
            'fuelCost': sum(amount_of(e) for e in own_expenses if e.get('type') == 'fuel'),
            'maintenanceCost': sum(amount_of(e) for e in own_expenses if e.get('type') == 'maintenance'),
        })
    return rows


def customer_value(total_spent: float, total_rentals: int) -> str:
    if total_spent > 5000000:
        return 'vip'
    if total_spent > 2000000:
        return 'premium'
    if total_rentals > 5:
        return 'loyal'
    if total_rentals > 0:
        return 'regular'
    return 'new'


def customer_analysis(period: Period, customers: list, transactions: list) -> list:
    by_name = defaultdict(list)
    for t in filter_by_period(transactions, period):
        by_name[t.get('customerName')].append(t)

    rows = []
    for customer in customers:
        rentals = by_name.get(customer.get('name'), [])
        spent = sum(amount_of(t) for t in rentals)
        vehicles = Counter(t['vehicleName'] for t in rentals if t.get('vehicleName'))
        latest = max(rentals, key=lambda t: date_of(t, 'createdAt') or datetime.min, default=None)
        rows.append({
            'customerId': customer.get('id'),
            'customerName': customer.get('name'),
            'totalRentals': len(rentals),
            'totalSpent': spent,
            'averageRentalValue': safe_ratio(spent, len(rentals)),
            'lastRentalDate': latest.get('createdAt') if latest else customer.get('createdAt'),
            'preferredVehicles': [name for name, _ in vehicles.most_common(3)],
            'paymentReliability': safe_ratio(
                sum(1 for t in rentals if t.get('paymentStatus') == 'paid'), len(rentals)),
            'customerValue': customer_value(spent, len(rentals)),
        })
    rows.sort(key=lambda r: r['totalSpent'], reverse=True)
    return rows


def order_sources(period: Period, transactions: list) -> list:
    groups = defaultdict(list)
    for t in filter_by_period(transactions, period):
        groups[t.get('orderSource') or 'Direct'].append(t)

    rows = []
    for source, orders in groups.items():
        revenue = sum(amount_of(t) for t in orders)
        average = safe_ratio(revenue, len(orders))
        acquisition_cost = average * CUSTOMER_ACQUISITION_SHARE
        rows.append({
            'source': source,
            'totalOrders': len(orders),
            'totalRevenue': revenue,
            'averageOrderValue': average,
            'conversionRate': safe_ratio(sum(1 for t in orders if t.get('paymentStatus') == 'paid'),
                                         len(orders)),
            'customerAcquisitionCost': acquisition_cost,
            'profitability': revenue * ORDER_MARGIN - len(orders) * acquisition_cost,
        })
    rows.sort(key=lambda r: r['totalRevenue'], reverse=True)
    return rows
