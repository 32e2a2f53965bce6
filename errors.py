"""Error kinds raised by the booking and reporting layers.

Every error carries the HTTP status it maps to so the Flask error handlers
in ``app.py`` can turn it into the ``{success: false, error}`` envelope
without a lookup table.
"""


class FleetDeskError(Exception):
    status_code = 500
    message = 'Internal server error'

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


# ---------------------------------------------------------------------------
# 404

class NotFound(FleetDeskError):
    status_code = 404
    message = 'Not found'


class BookingNotFound(NotFound):
    message = 'Booking not found'


class ReminderNotFound(NotFound):
    message = 'Reminder not found'


class VehicleNotFound(NotFound):
    message = 'Vehicle not found'


class RecordNotFound(NotFound):
    message = 'Record not found'


# ---------------------------------------------------------------------------
# 409

class Conflict(FleetDeskError):
    status_code = 409
    message = 'Conflict'


class VehicleUnavailable(Conflict):
    message = 'Vehicle not available'


class VehicleInUse(Conflict):
    message = 'Vehicle status is held by an open booking'


class InvalidTransition(Conflict):

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change booking status from {current} to {requested}")
        self.current = current
        self.requested = requested


# ---------------------------------------------------------------------------
# 400 / 500

class ValidationError(FleetDeskError):
    status_code = 400
    message = 'Invalid request'


class StoreFailure(FleetDeskError):
    """Underlying store read/write error.  Always reported generically."""
    status_code = 500
    message = 'Storage error'
