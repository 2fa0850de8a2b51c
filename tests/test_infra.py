import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import requests

from ticketdash.cache import GuildCache, TTLCache
from ticketdash.concurrency import gather_bounded
from ticketdash.discord import DiscordRest, RateLimiter
from ticketdash.errors import RestError
from ticketdash.kvstore import get_kv
from ticketdash.models import KeyValueEntry, db, utcnow

# ─────────────────────────────────────────────────────────────────────────────
# Fan-out
# ─────────────────────────────────────────────────────────────────────────────
def test_gather_keeps_input_order():
    def slow_square(n):
        time.sleep(0.01 * (5 - n))
        return n * n
    assert gather_bounded(slow_square, range(5), max_workers=5) == [0, 1, 4, 9, 16]


def test_gather_bounds_concurrency():
    lock = threading.Lock()
    in_flight = peak = 0

    def work(_):
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.01)
        with lock:
            in_flight -= 1

    gather_bounded(work, range(20), max_workers=3)
    assert peak <= 3


def test_gather_reraises_first_error():
    def boom(n):
        if n == 2:
            raise RestError(500, "Internal")
        return n

    with pytest.raises(RestError):
        gather_bounded(boom, range(4))


def test_gather_empty():
    assert gather_bounded(lambda n: n, []) == []

# ─────────────────────────────────────────────────────────────────────────────
# Caches
# ─────────────────────────────────────────────────────────────────────────────
def test_ttl_cache_expiry(monkeypatch):
    now = [100.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])

    cache = TTLCache(ttl=10)
    cache.set("k", "v")
    assert cache.get("k") == "v"
    now[0] = 111.0
    assert cache.get("k") is None


def test_ttl_cache_loads_once():
    cache = TTLCache(ttl=60)
    loader = MagicMock(return_value=[1, 2])
    assert cache.get_or_load("roles", loader) == [1, 2]
    assert cache.get_or_load("roles", loader) == [1, 2]
    loader.assert_called_once()


def test_ttl_cache_caches_none():
    cache = TTLCache(ttl=60)
    loader = MagicMock(return_value=None)
    cache.get_or_load("missing", loader)
    cache.get_or_load("missing", loader)
    loader.assert_called_once()


def test_guild_cache_user_lookup():
    rest = MagicMock()

    def get_user(user_id):
        if user_id == 2:
            raise RestError(404, "Unknown User")
        return {"id": str(user_id)}
    rest.get_user.side_effect = get_user

    users = GuildCache().get_users(rest, [1, 2, 3, 1])
    assert sorted(users) == [1, 3]
    assert rest.get_user.call_count == 3


def test_guild_cache_member_errors_propagate():
    rest = MagicMock()
    rest.get_guild_member.side_effect = RestError(500, "Internal")
    with pytest.raises(RestError):
        GuildCache().get_member(rest, 1, 2)

# ─────────────────────────────────────────────────────────────────────────────
# REST client
# ─────────────────────────────────────────────────────────────────────────────
def _response(status, body=None, headers=None):
    r = MagicMock()
    r.status_code = status
    r.headers = headers or {}
    r.content = b"" if body is None else b"{}"
    r.json.return_value = body
    r.text = ""
    return r


def _client(*responses, token="secret"):
    http = MagicMock()
    http.request.side_effect = list(responses)
    return DiscordRest(token, api_base="https://discord.test/api", session=http), http


def test_rest_sends_bot_auth():
    rest, http = _client(_response(200, {"id": "9000"}))
    assert rest.send_message(123, {"content": "hi"}) == {"id": "9000"}

    method, url = http.request.call_args.args
    assert (method, url) == ("POST", "https://discord.test/api/channels/123/messages")
    assert http.request.call_args.kwargs["headers"] == {"Authorization": "Bot secret"}
    assert http.request.call_args.kwargs["json"] == {"content": "hi"}


def test_rest_no_content():
    rest, _ = _client(_response(204))
    assert rest.delete_message(123, 456) is None


def test_rest_client_error():
    rest, _ = _client(_response(403, {"message": "Missing Permissions", "code": 50013}))
    with pytest.raises(RestError) as exc:
        rest.send_message(123, {})
    assert exc.value.status_code == 403
    assert exc.value.code == 50013
    assert exc.value.is_client_error


def test_rest_webhooks_skip_bot_auth():
    rest, http = _client(_response(200, {"id": "1"}), token="")
    rest.execute_webhook("1", "hook-token", {"content": "x"})
    assert http.request.call_args.kwargs["headers"] == {}
    assert http.request.call_args.kwargs["params"] == {"wait": "true"}


def test_rest_requires_token():
    rest, _ = _client(token="")
    with pytest.raises(RuntimeError):
        rest.get_guild(1)


def _rate_limited(retry_after="0.5"):
    return _response(429, {"message": "You are being rate limited.", "retry_after": 0.5},
                     headers={"Retry-After": retry_after})


def test_rest_retries_after_429(monkeypatch):
    slept = []
    monkeypatch.setattr(time, "monotonic", lambda: 0.0)
    monkeypatch.setattr(time, "sleep", slept.append)

    rest, http = _client(_rate_limited(), _response(204))
    assert rest.delete_message(123, 456) is None
    assert http.request.call_count == 2
    assert slept == [0.5]


def test_rest_gives_up_on_persistent_429(monkeypatch):
    monkeypatch.setattr(time, "monotonic", lambda: 0.0)
    monkeypatch.setattr(time, "sleep", lambda _: None)

    rest, http = _client(*[_rate_limited() for _ in range(4)])
    with pytest.raises(RestError) as exc:
        rest.delete_message(123, 456)
    assert http.request.call_count == 4
    assert exc.value.status_code == 429
    assert exc.value.is_rate_limited
    assert not exc.value.is_client_error


def test_rest_transport_error():
    rest, http = _client()
    http.request.side_effect = requests.ConnectionError("connection reset")
    with pytest.raises(RestError) as exc:
        rest.delete_message(123, 456)
    assert exc.value.status_code == 0
    assert not exc.value.is_client_error


def test_rate_limiter_waits_for_reset(monkeypatch):
    now = [0.0]
    slept = []
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    monkeypatch.setattr(time, "sleep", slept.append)

    limiter = RateLimiter()
    limiter.update("GET /users", {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset-After": "1.5"})
    limiter.wait("GET /users")
    limiter.wait("GET /guilds")
    assert slept == [1.5]

    limiter.update("GET /users", {"X-RateLimit-Remaining": "4"})
    limiter.wait("GET /users")
    assert slept == [1.5]

# ─────────────────────────────────────────────────────────────────────────────
# Key/value store
# ─────────────────────────────────────────────────────────────────────────────
def test_set_if_absent(app):
    with app.app_context():
        kv = get_kv()
        assert kv.set_if_absent("cooldown", "1", timedelta(minutes=15)) is True
        assert kv.set_if_absent("cooldown", "1", timedelta(minutes=15)) is False
        assert timedelta(minutes=14) < kv.ttl("cooldown") <= timedelta(minutes=15)
        assert kv.ttl("other") is None


def test_expired_key_can_be_set_again(app):
    with app.app_context():
        db.session.add(KeyValueEntry(key="cooldown", value="1", expires_at=utcnow() - timedelta(seconds=1)))
        db.session.commit()

        kv = get_kv()
        assert kv.ttl("cooldown") is None
        assert kv.set_if_absent("cooldown", "2", timedelta(minutes=1)) is True
        assert db.session.get(KeyValueEntry, "cooldown").value == "2"


def test_healthz(anon):
    assert anon.get("/healthz").get_json() == {"ok": True}


def test_unknown_route_is_json(anon):
    r = anon.get("/no/such/route")
    assert r.status_code == 404
    assert r.get_json()["success"] is False
