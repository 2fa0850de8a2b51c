from __future__ import annotations
from datetime import timedelta
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from .models import KeyValueEntry, db, utcnow


class KeyValueStore:
    """Expiring keys in the relational store, used for cooldowns."""

    def set_if_absent(self, key: str, value: str, ttl: timedelta) -> bool:
        now = utcnow()
        entry = db.session.get(KeyValueEntry, key)
        if entry is not None and entry.expires_at > now:
            return False

        if entry is None:
            db.session.add(KeyValueEntry(key=key, value=value, expires_at=now + ttl))
        else:
            entry.value = value
            entry.expires_at = now + ttl

        try:
            db.session.commit()
        except IntegrityError:
            # another request inserted the key first
            db.session.rollback()
            return False
        return True

    def ttl(self, key: str) -> Optional[timedelta]:
        entry = db.session.get(KeyValueEntry, key)
        if entry is None:
            return None
        remaining = entry.expires_at - utcnow()
        return remaining if remaining > timedelta(0) else None


def get_kv() -> KeyValueStore:
    return current_app.extensions["ticketdash.kv"]
