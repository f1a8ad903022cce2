from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import Column, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

MOOD_ENTRIES_KEY = "mood_entries"
CRISIS_ALERTS_KEY = "crisis_alerts"
NOTIFICATION_PREFERENCES_KEY = "notification_preferences"
NOTIFICATION_HISTORY_KEY = "notification_history"
NOTIFICATION_ANALYTICS_KEY = "notification_analytics"
SAFETY_PLAN_KEY = "safety_plan"

Base = declarative_base()


class StorageError(Exception):
    """Raised when the backing store cannot be read or written."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class KeyValueRecord(Base):
    __tablename__ = "kv_store"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


class SqlKeyValueStore:
    """Key-value store kept in a single SQLite table.

    Every value is written as a whole; there are no partial updates.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def get(self, key: str) -> Optional[str]:
        session = self.SessionLocal()
        try:
            record = session.get(KeyValueRecord, key)
            return record.value if record else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read {key}") from exc
        finally:
            session.close()

    def set(self, key: str, value: str) -> None:
        session = self.SessionLocal()
        try:
            record = session.get(KeyValueRecord, key)
            if record is None:
                session.add(KeyValueRecord(key=key, value=value))
            else:
                record.value = value
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Could not write {key}") from exc
        finally:
            session.close()

    def remove(self, key: str) -> None:
        session = self.SessionLocal()
        try:
            session.query(KeyValueRecord).filter(KeyValueRecord.key == key).delete()
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Could not remove {key}") from exc
        finally:
            session.close()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.exec_driver_sql("SELECT 1")
        except SQLAlchemyError:
            return False
        return True


def load_json(store: KeyValueStore, key: str, default_factory: Callable[[], Any]) -> Any:
    """Read and decode a stored value, falling back to the default on any failure."""
    try:
        raw = store.get(key)
    except StorageError:
        logger.exception("Error loading %s", key)
        return default_factory()
    if raw is None:
        return default_factory()
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Stored value for %s is not valid JSON; using defaults", key)
        return default_factory()


def save_json(store: KeyValueStore, key: str, value: Any) -> bool:
    try:
        store.set(key, json.dumps(value))
    except StorageError:
        logger.exception("Error saving %s", key)
        return False
    return True


def remove_key(store: KeyValueStore, key: str) -> bool:
    try:
        store.remove(key)
    except StorageError:
        logger.exception("Error removing %s", key)
        return False
    return True

