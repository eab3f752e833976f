from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scout_api.db.models import StorageEntry

logger = logging.getLogger(__name__)

STAMP_FIELDS = ("savedAt", "createdAt")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_stamp(val: Any) -> datetime | None:
    if not isinstance(val, str):
        return None
    s = val[:-1] + "+00:00" if val.endswith("Z") else val
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _age_hours(stamp: datetime, now: datetime) -> float:
    return (now - stamp).total_seconds() / 3600.0


class LocalStore:
    """Namespaced key/value string storage.

    Writes are best-effort: a database error is logged and reported as a
    failed write, a failed read looks like a missing key.
    """

    def __init__(self, db: Session, namespace: str):
        self.db = db
        self.namespace = namespace

    def _entry(self, key: str) -> StorageEntry | None:
        q = select(StorageEntry).where(StorageEntry.namespace == self.namespace, StorageEntry.key == key)
        return self.db.execute(q).scalar_one_or_none()

    def get_item(self, key: str) -> str | None:
        try:
            entry = self._entry(key)
        except SQLAlchemyError as exc:
            logger.error("Failed to read %s/%s: %s", self.namespace, key, exc)
            return None
        return entry.value if entry is not None else None

    def set_item(self, key: str, value: str) -> bool:
        try:
            entry = self._entry(key)
            if entry is None:
                self.db.add(StorageEntry(namespace=self.namespace, key=key, value=value))
            else:
                entry.value = value
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to write %s/%s: %s", self.namespace, key, exc)
            return False
        return True

    def remove_item(self, key: str) -> bool:
        try:
            res = self.db.execute(
                delete(StorageEntry).where(StorageEntry.namespace == self.namespace, StorageEntry.key == key)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to remove %s/%s: %s", self.namespace, key, exc)
            return False
        return bool(res.rowcount)

    def keys(self) -> list[str]:
        try:
            q = select(StorageEntry.key).where(StorageEntry.namespace == self.namespace).order_by(StorageEntry.key)
            return list(self.db.execute(q).scalars())
        except SQLAlchemyError as exc:
            logger.error("Failed to list %s: %s", self.namespace, exc)
            return []

    def save_json(self, key: str, payload: dict[str, Any], stamp: str = "savedAt") -> bool:
        data = {**payload, stamp: _now().isoformat()}
        return self.set_item(key, json.dumps(data, default=str))

    def load_json(self, key: str, expiration_hours: float | None = None) -> dict[str, Any] | None:
        """Read a JSON object, dropping it when corrupted or older than ``expiration_hours``."""
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupted entry %s/%s", self.namespace, key)
            self.remove_item(key)
            return None
        if not isinstance(data, dict):
            logger.warning("Discarding non-object entry %s/%s", self.namespace, key)
            self.remove_item(key)
            return None
        if expiration_hours is not None:
            stamp = next((_parse_stamp(data.get(f)) for f in STAMP_FIELDS if f in data), None)
            if stamp is not None and _age_hours(stamp, _now()) > expiration_hours:
                self.remove_item(key)
                return None
        return data


def cleanup(db: Session, max_age_hours: float, now: datetime | None = None) -> dict[str, int]:
    """Drop every stamped entry older than ``max_age_hours`` and every unparsable one."""
    now = now or _now()
    cleaned = 0
    try:
        entries = list(db.execute(select(StorageEntry)).scalars())
        for entry in entries:
            try:
                data = json.loads(entry.value)
            except ValueError:
                db.delete(entry)
                cleaned += 1
                continue
            if not isinstance(data, dict):
                continue
            stamp = next((_parse_stamp(data.get(f)) for f in STAMP_FIELDS if f in data), None)
            if stamp is not None and _age_hours(stamp, now) > max_age_hours:
                db.delete(entry)
                cleaned += 1
        db.commit()
        remaining = db.execute(select(func.count()).select_from(StorageEntry)).scalar_one()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Storage cleanup failed: %s", exc)
        return {"cleaned": 0, "remaining": 0}
    logger.info("Storage cleanup removed %d entries, %d remain", cleaned, remaining)
    return {"cleaned": cleaned, "remaining": int(remaining)}
