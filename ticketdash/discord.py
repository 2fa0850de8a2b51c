"""Thin Discord REST client used for everything the dashboard does on the
bot's behalf: panel messages, slash commands, webhooks and guild lookups.

Every non-2xx response, and every request that got no response at all, is
raised as :class:`RestError` so callers can decide which failures are
tolerable (a message that is already gone) and which abort the request.
429s are waited out and retried a few times before surfacing.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Any, Optional

import requests

from .errors import RestError

log = logging.getLogger(__name__)

# Guild channel types
CHANNEL_TEXT = 0
CHANNEL_CATEGORY = 4
CHANNEL_ANNOUNCEMENT = 5

PERMISSION_ADMINISTRATOR = 0x8

# Status used for RestError when no response arrived
TRANSPORT_ERROR = 0

MAX_RATE_LIMIT_RETRIES = 3


class RateLimiter:
    """Per-route limiter fed by the X-RateLimit-* response headers.

    Shared by every client using the same bot token; a route that reported
    zero remaining requests blocks until its reset window has passed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reset_at: dict[str, float] = {}

    def wait(self, route: str):
        with self._lock:
            reset_at = self._reset_at.get(route, 0.0)
        delay = reset_at - time.monotonic()
        if delay > 0:
            log.debug("Rate limited on %s, sleeping %.2fs", route, delay)
            time.sleep(delay)

    def update(self, route: str, headers) -> None:
        remaining = headers.get("X-RateLimit-Remaining")
        reset_after = headers.get("X-RateLimit-Reset-After") or headers.get("Retry-After")
        with self._lock:
            if remaining == "0" and reset_after:
                try:
                    self._reset_at[route] = time.monotonic() + float(reset_after)
                except ValueError:
                    self._reset_at.pop(route, None)
            else:
                self._reset_at.pop(route, None)

    def block(self, route: str, seconds: float) -> None:
        with self._lock:
            self._reset_at[route] = max(self._reset_at.get(route, 0.0), time.monotonic() + seconds)


def _retry_after(r) -> float:
    """Seconds to wait after a 429, from the Retry-After header or the JSON body."""
    raw = r.headers.get("Retry-After")
    if raw is None:
        try:
            body = r.json()
        except ValueError:
            body = None
        raw = body.get("retry_after") if isinstance(body, dict) else None
    try:
        return max(float(raw), 0.0)
    except (TypeError, ValueError):
        return 1.0


class DiscordRest:
    def __init__(self, token: str, *, api_base: str = "https://discord.com/api/v10",
                 limiter: Optional[RateLimiter] = None, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.limiter = limiter or RateLimiter()
        self.timeout = timeout
        self.http = session or requests.Session()

    def _headers(self, auth: bool = True) -> dict:
        if not auth:
            return {}
        if not self.token:
            raise RuntimeError("Missing Discord bot token")
        return {"Authorization": f"Bot {self.token}"}

    def request(self, method: str, path: str, *, json: Any = None, params: dict | None = None,
                auth: bool = True, route: str | None = None) -> Any:
        route = route or f"{method} {path}"
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            self.limiter.wait(route)
            try:
                r = self.http.request(
                    method, f"{self.api_base}{path}",
                    headers=self._headers(auth), json=json, params=params, timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise RestError(TRANSPORT_ERROR, str(e)) from e
            self.limiter.update(route, r.headers)

            if r.status_code == 429 and attempt < MAX_RATE_LIMIT_RETRIES:
                retry_after = _retry_after(r)
                log.warning("429 on %s, retrying in %.2fs", route, retry_after)
                self.limiter.block(route, retry_after)
                continue
            break

        if r.status_code >= 400:
            message, code = "", 0
            try:
                body = r.json()
                message = body.get("message", "") if isinstance(body, dict) else ""
                code = body.get("code", 0) if isinstance(body, dict) else 0
            except ValueError:
                message = r.text[:200]
            raise RestError(r.status_code, message, code)

        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    # Messages
    def send_message(self, channel_id: int, data: dict) -> dict:
        return self.request("POST", f"/channels/{channel_id}/messages", json=data)

    def delete_message(self, channel_id: int, message_id: int) -> None:
        self.request("DELETE", f"/channels/{channel_id}/messages/{message_id}",
                     route=f"DELETE /channels/{channel_id}/messages")

    # Application commands
    def create_guild_command(self, application_id: int, guild_id: int, data: dict) -> dict:
        return self.request("POST", f"/applications/{application_id}/guilds/{guild_id}/commands", json=data)

    def delete_guild_command(self, application_id: int, guild_id: int, command_id: int) -> None:
        self.request("DELETE", f"/applications/{application_id}/guilds/{guild_id}/commands/{command_id}",
                     route=f"DELETE /applications/{application_id}/guilds/{guild_id}/commands")

    def create_global_command(self, application_id: int, data: dict) -> dict:
        return self.request("POST", f"/applications/{application_id}/commands", json=data)

    # Webhooks (token in the URL, no bot auth)
    def execute_webhook(self, webhook_id: str, webhook_token: str, data: dict, wait: bool = True) -> Any:
        return self.request("POST", f"/webhooks/{webhook_id}/{webhook_token}", json=data,
                            params={"wait": "true" if wait else "false"}, auth=False,
                            route=f"POST /webhooks/{webhook_id}")

    # Lookups
    def get_guild(self, guild_id: int) -> dict:
        return self.request("GET", f"/guilds/{guild_id}")

    def get_guild_channels(self, guild_id: int) -> list[dict]:
        return self.request("GET", f"/guilds/{guild_id}/channels")

    def get_guild_roles(self, guild_id: int) -> list[dict]:
        return self.request("GET", f"/guilds/{guild_id}/roles")

    def get_guild_emojis(self, guild_id: int) -> list[dict]:
        return self.request("GET", f"/guilds/{guild_id}/emojis")

    def get_guild_member(self, guild_id: int, user_id: int) -> dict:
        return self.request("GET", f"/guilds/{guild_id}/members/{user_id}",
                            route=f"GET /guilds/{guild_id}/members")

    def get_user(self, user_id: int) -> dict:
        return self.request("GET", f"/users/{user_id}", route="GET /users")

    def get_current_user(self) -> dict:
        return self.request("GET", "/users/@me")
