from __future__ import annotations
import threading
import time
from typing import Any, Callable, Hashable, Optional

from .concurrency import gather_bounded
from .errors import RestError

_MISSING = object()


class TTLCache:
    """Read-through cache with one fixed expiry for every entry."""

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._lock = threading.Lock()
        self._data: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default=None):
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return default
            expires, value = hit
            if expires < time.monotonic():
                del self._data[key]
                return default
            return value

    def set(self, key: Hashable, value: Any):
        with self._lock:
            self._data[key] = (time.monotonic() + self.ttl, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]):
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = loader()
            self.set(key, value)
        return value


class GuildCache:
    """Role / channel / member / user metadata, cached per app."""

    def __init__(self, role_ttl: float = 60, user_ttl: float = 300, concurrency: int = 10):
        self.guilds = TTLCache(role_ttl)
        self.roles = TTLCache(role_ttl)
        self.channels = TTLCache(role_ttl)
        self.members = TTLCache(role_ttl)
        self.users = TTLCache(user_ttl)
        self.concurrency = concurrency

    def get_guild(self, rest, guild_id: int) -> dict:
        return self.guilds.get_or_load(guild_id, lambda: rest.get_guild(guild_id))

    def get_roles(self, rest, guild_id: int) -> list[dict]:
        return self.roles.get_or_load(guild_id, lambda: rest.get_guild_roles(guild_id))

    def get_channels(self, rest, guild_id: int) -> list[dict]:
        return self.channels.get_or_load(guild_id, lambda: rest.get_guild_channels(guild_id))

    def get_member(self, rest, guild_id: int, user_id: int) -> Optional[dict]:
        def load():
            try:
                return rest.get_guild_member(guild_id, user_id)
            except RestError as e:
                if e.status_code == 404:
                    return None
                raise
        return self.members.get_or_load((guild_id, user_id), load)

    def get_user(self, rest, user_id: int) -> Optional[dict]:
        def load():
            try:
                return rest.get_user(user_id)
            except RestError as e:
                if e.status_code == 404:
                    return None
                raise
        return self.users.get_or_load(user_id, load)

    def get_users(self, rest, user_ids) -> dict[int, dict]:
        """Resolve many users concurrently; unknown users are left out."""
        ids = list(dict.fromkeys(int(u) for u in user_ids))
        users = gather_bounded(lambda uid: self.get_user(rest, uid), ids, self.concurrency)
        return {uid: u for uid, u in zip(ids, users) if u is not None}
