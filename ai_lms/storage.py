"""
Persistent store adapter.

Wraps a key/value string store with JSON (de)serialization and optional
expiry metadata. Loads fail soft (the default comes back and a corrupted
entry is cleared) and saves never raise: the in-memory state stays
authoritative for the session even when a write is lost.
"""
import json
import logging
import time
from datetime import datetime

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TIMESTAMP_FIELDS = ("submittedAt",)


class MemoryStore:
    """Dict-backed string store."""

    def __init__(self, items=None):
        self.items = dict(items or {})

    def get_item(self, key):
        return self.items.get(key)

    def set_item(self, key, value):
        self.items[key] = value

    def remove_item(self, key):
        self.items.pop(key, None)


class DatabaseStore:
    """String store over the stored_item table, scoped to one namespace."""

    def __init__(self, namespace):
        self.namespace = namespace

    def _row(self, key):
        from ai_lms.models import StoredItem
        return StoredItem.query.filter_by(namespace=self.namespace, key=key).first()

    def get_item(self, key):
        row = self._row(key)
        return row.value if row else None

    def set_item(self, key, value):
        from ai_lms import db
        from ai_lms.models import StoredItem
        try:
            row = self._row(key)
            if row:
                row.value = value
            else:
                db.session.add(StoredItem(namespace=self.namespace, key=key, value=value))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def remove_item(self, key):
        from ai_lms import db
        try:
            row = self._row(key)
            if row:
                db.session.delete(row)
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def _encode(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, BaseModel):
        return obj.model_dump(by_alias=True)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _revive_timestamps(obj):
    for field in TIMESTAMP_FIELDS:
        value = obj.get(field)
        if isinstance(value, str):
            try:
                obj[field] = datetime.fromisoformat(value)
            except ValueError:
                pass
    return obj


def dumps(value):
    return json.dumps(value, default=_encode)


def loads(text):
    return json.loads(text, object_hook=_revive_timestamps)


class PersistentStore:

    def __init__(self, backend, clock=time.time):
        self.backend = backend
        self.clock = clock

    def now_ms(self):
        return int(self.clock() * 1000)

    def load(self, key, default, expiry_ms=None):
        return self.load_entry(key, default, expiry_ms)[0]

    def load_entry(self, key, default, expiry_ms=None):
        """Like load, but returns (value, expiry). expiry is None for plain entries and defaults."""
        try:
            raw = self.backend.get_item(key)
        except Exception as e:
            logger.error(f"Error reading storage key {key}: {e}")
            return default, None
        if raw is None:
            return default, None

        try:
            item = loads(raw)
        except ValueError as e:
            logger.error(f"Malformed value under storage key {key}, clearing it: {e}")
            self.remove(key)
            return default, None

        if expiry_ms:
            if not (isinstance(item, dict) and "value" in item and "expiry" in item):
                logger.warning(f"Storage key {key} has no expiry wrapper, clearing it")
                self.remove(key)
                return default, None
            expiry = item["expiry"]
            if isinstance(expiry, bool) or not isinstance(expiry, (int, float)):
                logger.warning(f"Storage key {key} has a malformed expiry, clearing it")
                self.remove(key)
                return default, None
            if self.now_ms() > expiry:
                logger.info(f"Storage key {key} expired")
                self.remove(key)
                return default, None
            return item["value"], expiry
        return item, None

    def save(self, key, value, expiry_ms=None):
        """Returns the expiry stamped on the entry, or None for plain entries."""
        expiry = None
        if expiry_ms:
            expiry = self.now_ms() + expiry_ms
            value = {"value": value, "expiry": expiry}
        try:
            self.backend.set_item(key, dumps(value))
        except Exception as e:
            logger.error(f"Error setting storage key {key}: {e}")
        return expiry

    def remove(self, key):
        try:
            self.backend.remove_item(key)
        except Exception as e:
            logger.error(f"Error removing storage key {key}: {e}")
