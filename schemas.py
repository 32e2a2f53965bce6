from typing import Annotated, Literal, Optional

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from errors import ValidationError
from periods import parse_instant


BOOKING_STATUSES = Literal['pending', 'confirmed', 'active', 'completed', 'cancelled', 'overdue']


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_instant(value: str) -> str:
    if parse_instant(value) is None:
        raise ValueError('must be an ISO date or datetime')
    return value


Instant = Annotated[str, AfterValidator(_check_instant)]


# -------------------
# BOOKINGS
# -------------------
class BookingCreate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')

    vehicle_id: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=1)
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    start_date: Instant
    end_date: Instant
    pickup_location: str = ''
    dropoff_location: str = ''
    total_price: float = Field(ge=0)
    notes: Optional[str] = None
    status: Literal['pending', 'confirmed', 'active'] = 'pending'
    delivery_scheduled: bool = False
    delivery_time: Optional[str] = None
    pickup_scheduled: bool = False
    pickup_time: Optional[str] = None

    @model_validator(mode='after')
    def end_after_start(self):
        if parse_instant(self.end_date) < parse_instant(self.start_date):
            raise ValueError('endDate must not be before startDate')
        return self


class BookingUpdate(CamelModel):
    """Editable booking fields.  Identity and audit fields are rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='forbid')

    customer_name: Optional[str] = Field(default=None, min_length=1)
    customer_phone: Optional[str] = Field(default=None, min_length=1)
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    start_date: Optional[Instant] = None
    end_date: Optional[Instant] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    total_price: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    status: Optional[BOOKING_STATUSES] = None
    delivery_scheduled: Optional[bool] = None
    delivery_time: Optional[str] = None
    pickup_scheduled: Optional[bool] = None
    pickup_time: Optional[str] = None


# -------------------
# REMINDERS
# -------------------
class ReminderUpdate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='forbid')

    acknowledged: Optional[bool] = None
    message: Optional[str] = None
    due_date: Optional[Instant] = None


# -------------------
# PAYMENTS
# -------------------
class PaymentCreate(CamelModel):
    amount: float = Field(gt=0)
    method: Literal['cash', 'transfer', 'dp', 'credit'] = 'cash'
    reference: Optional[str] = None
    notes: Optional[str] = None


def parse_payload(schema, data, partial: bool = False) -> dict:
    """Validate ``data`` against ``schema`` and return camelCase fields.

    With ``partial`` only the fields the caller actually sent are returned.
    """
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    try:
        model = schema.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        where = '.'.join(str(part) for part in first['loc'])
        message = f"{where}: {first['msg']}" if where else first['msg']
        raise ValidationError(message) from exc
    if partial:
        return model.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    return model.model_dump(by_alias=True, exclude_none=True)
