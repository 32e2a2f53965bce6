"""Key/value entity store and the typed repositories built on top of it.

All records live in one ``entries`` table as JSON values under string keys
such as ``booking:<id>``.  The key column is the primary key, so a prefix
scan is an indexed range query rather than a full table walk.  Each entry
carries a ``version`` counter that is bumped on every write; this is what
``compare_and_set`` uses to make the vehicle reservation atomic.
"""

import copy
import logging
import uuid

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError

from errors import StoreFailure, VehicleNotFound, VehicleUnavailable


logger = logging.getLogger(__name__)

db = SQLAlchemy()


class Entry(db.Model):
    __tablename__ = 'entries'

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.JSON, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<Entry {self.key} v{self.version}>"


def new_id() -> str:
    return uuid.uuid4().hex


class EntityStore:
    """get / set / delete / prefix-scan over the ``entries`` table.

    Every write commits immediately: there is no transaction spanning
    several calls.  Any SQLAlchemy error is rolled back and re-raised as
    ``StoreFailure``.
    """

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    def _fail(self, action: str, key: str, exc: Exception):
        self.session.rollback()
        logger.exception('Store %s failed for %s', action, key)
        raise StoreFailure() from exc

    def get(self, key: str):
        try:
            entry = self.session.get(Entry, key)
        except SQLAlchemyError as exc:
            self._fail('get', key, exc)
        if entry is None:
            return None
        return copy.deepcopy(entry.value)

    def get_versioned(self, key: str):
        """Return ``(value, version)`` or ``(None, None)`` when absent."""
        try:
            entry = self.session.get(Entry, key)
        except SQLAlchemyError as exc:
            self._fail('get', key, exc)
        if entry is None:
            return None, None
        return copy.deepcopy(entry.value), entry.version

    def set(self, key: str, value: dict) -> None:
        try:
            entry = self.session.get(Entry, key)
            if entry is None:
                self.session.add(Entry(key=key, value=value, version=1))
            else:
                entry.value = value
                entry.version = entry.version + 1
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail('set', key, exc)

    def delete(self, key: str) -> None:
        try:
            self.session.query(Entry).filter(Entry.key == key).delete(synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail('delete', key, exc)

    def get_by_prefix(self, prefix: str) -> list:
        try:
            entries = (self.session.query(Entry)
                       .filter(Entry.key.startswith(prefix, autoescape=True))
                       .order_by(Entry.key.asc())
                       .all())
        except SQLAlchemyError as exc:
            self._fail('scan', prefix, exc)
        return [copy.deepcopy(e.value) for e in entries]

    def compare_and_set(self, key: str, expected_version: int, value: dict) -> bool:
        """Write ``value`` only if the entry is still at ``expected_version``."""
        try:
            updated = (self.session.query(Entry)
                       .filter(Entry.key == key, Entry.version == expected_version)
                       .update({'value': value, 'version': expected_version + 1},
                               synchronize_session=False))
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail('compare_and_set', key, exc)
        return updated == 1


# ---------------------------------------------------------------------------
# Repositories

class Repository:
    """Records of one entity type, stored under ``<prefix>:<id>``."""

    def __init__(self, store: EntityStore, prefix: str):
        self.store = store
        self.prefix = prefix

    def key(self, record_id: str) -> str:
        return f"{self.prefix}:{record_id}"

    def get(self, record_id: str):
        return self.store.get(self.key(record_id))

    def get_versioned(self, record_id: str):
        return self.store.get_versioned(self.key(record_id))

    def exists(self, record_id: str) -> bool:
        return self.get(record_id) is not None

    def list(self) -> list:
        return self.store.get_by_prefix(f"{self.prefix}:")

    def save(self, record: dict) -> dict:
        self.store.set(self.key(record['id']), record)
        return record

    def compare_and_set(self, record_id: str, expected_version: int, record: dict) -> bool:
        return self.store.compare_and_set(self.key(record_id), expected_version, record)

    def delete(self, record_id: str) -> None:
        self.store.delete(self.key(record_id))


class VehicleRepository(Repository):

    def reserve(self, vehicle_id: str, booking_id: str, stamp: str) -> dict:
        """Flip an available vehicle to ``booked`` for ``booking_id``.

        The write is conditional on the version read, so of two callers
        racing for the same vehicle only one succeeds.
        """
        vehicle, version = self.get_versioned(vehicle_id)
        if vehicle is None:
            raise VehicleNotFound()
        if vehicle.get('status') != 'available':
            raise VehicleUnavailable()
        vehicle.update({'status': 'booked', 'lastBooking': booking_id, 'updatedAt': stamp})
        if not self.compare_and_set(vehicle_id, version, vehicle):
            logger.warning('Lost reservation race for vehicle %s', vehicle_id)
            raise VehicleUnavailable()
        return vehicle


class Repositories:
    """One repository per entity, sharing a single store."""

    def __init__(self, store: EntityStore = None):
        self.store = store if store is not None else EntityStore()
        self.vehicles = VehicleRepository(self.store, 'vehicle')
        self.bookings = Repository(self.store, 'booking')
        self.reminders = Repository(self.store, 'reminder')
        self.transactions = Repository(self.store, 'transaction')
        self.expenses = Repository(self.store, 'expense')
        self.drivers = Repository(self.store, 'driver')
        self.driver_expenses = Repository(self.store, 'driver_expense')
        self.assignments = Repository(self.store, 'driver_assignment')
        self.customers = Repository(self.store, 'customer')
        self.notifications = Repository(self.store, 'notification')

    def collection(self, name: str):
        """Look up a repository by its attribute name, or None."""
        repo = getattr(self, name, None)
        return repo if isinstance(repo, Repository) else None
