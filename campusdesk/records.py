"""Collection-style CRUD over the application tables.

Every call returns a ``StoreResult``; database failures are rolled back and
reported through ``result.error`` instead of being raised, so callers check
the error after every call.
"""
import logging
from datetime import date, datetime

from sqlalchemy import Date, DateTime
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from campusdesk import db
from campusdesk.models import Attendance, Faculty, Profile, Student

logger = logging.getLogger(__name__)

# Error code for inserts rejected by a table constraint (duplicate key, null)
CONFLICT = 'conflict'

COLLECTIONS = {
    'profiles': Profile,
    'students': Student,
    'faculty': Faculty,
    'attendance': Attendance,
}


class StoreError:

    def __init__(self, message, code=None):
        self.message = message
        self.code = code

    def __repr__(self):
        return f"StoreError({self.code!r}, {self.message!r})"

    def __str__(self):
        return self.message


class StoreResult:

    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error

    def __iter__(self):
        yield self.data
        yield self.error


class Between:
    """Inclusive range filter value."""

    def __init__(self, low, high):
        self.low = low
        self.high = high


def maybe_single(result):
    if result.error or not result.data:
        return None
    return result.data[0]


class RecordStore:

    def __init__(self, session=None):
        self.session = session or db.session

    def _model(self, collection):
        model = COLLECTIONS.get(collection)
        if model is None:
            raise KeyError(collection)
        return model

    def _column(self, model, name):
        column = model.__table__.columns.get(name)
        if column is None:
            raise KeyError(f"{model.__tablename__}.{name}")
        return column

    def _coerce(self, column, value):
        if isinstance(value, str):
            if isinstance(column.type, DateTime):
                return datetime.fromisoformat(value)
            if isinstance(column.type, Date):
                return date.fromisoformat(value)
        return value

    def _to_dict(self, obj, columns=None):
        names = columns or [c.name for c in obj.__table__.columns]
        return {name: getattr(obj, name) for name in names}

    def select(self, collection, filter=None, columns=None, order_by=None):
        try:
            model = self._model(collection)
            query = self.session.query(model)
            for name, value in (filter or {}).items():
                column = self._column(model, name)
                if isinstance(value, Between):
                    query = query.filter(column.between(self._coerce(column, value.low),
                                                        self._coerce(column, value.high)))
                elif isinstance(value, (list, tuple, set, frozenset)):
                    query = query.filter(column.in_([self._coerce(column, v) for v in value]))
                elif value is None:
                    query = query.filter(column.is_(None))
                else:
                    query = query.filter(column == self._coerce(column, value))
            if columns:
                for name in columns:
                    self._column(model, name)
            for name in ([order_by] if isinstance(order_by, str) else (order_by or [])):
                query = query.order_by(self._column(model, name))
            return StoreResult([self._to_dict(obj, columns) for obj in query.all()])
        except KeyError as exc:
            return StoreResult(None, StoreError(f"Unknown collection or column: {exc}", 'bad_request'))
        except (SQLAlchemyError, ValueError) as exc:
            self.session.rollback()
            logger.exception("Select from %s failed", collection)
            return StoreResult(None, StoreError(str(exc), 'db_error'))

    def insert(self, collection, row):
        try:
            model = self._model(collection)
            values = {}
            for name, value in row.items():
                values[name] = self._coerce(self._column(model, name), value)
            obj = model(**values)
            self.session.add(obj)
            self.session.commit()
            return StoreResult(self._to_dict(obj))
        except KeyError as exc:
            return StoreResult(None, StoreError(f"Unknown collection or column: {exc}", 'bad_request'))
        except IntegrityError as exc:
            self.session.rollback()
            logger.info("Insert into %s conflicts with an existing row: %s", collection, exc.orig)
            return StoreResult(None, StoreError(str(exc.orig), CONFLICT))
        except (SQLAlchemyError, ValueError) as exc:
            self.session.rollback()
            logger.warning("Insert into %s failed: %s", collection, exc)
            return StoreResult(None, StoreError(str(exc), 'db_error'))

    def update(self, collection, id, patch):
        try:
            model = self._model(collection)
            obj = self.session.get(model, id)
            if obj is None:
                return StoreResult(None, StoreError(f"No {collection} row with id {id}", 'not_found'))
            for name, value in patch.items():
                setattr(obj, name, self._coerce(self._column(model, name), value))
            self.session.commit()
            return StoreResult(self._to_dict(obj))
        except KeyError as exc:
            self.session.rollback()
            return StoreResult(None, StoreError(f"Unknown collection or column: {exc}", 'bad_request'))
        except (SQLAlchemyError, ValueError) as exc:
            self.session.rollback()
            logger.warning("Update of %s %s failed: %s", collection, id, exc)
            return StoreResult(None, StoreError(str(exc), 'db_error'))
