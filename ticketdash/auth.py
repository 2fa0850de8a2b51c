from __future__ import annotations
from functools import wraps
from typing import Optional

from flask import current_app, g, session

from .botcontext import context_for_guild
from .errors import Forbidden, Unauthorized
from .permissions import PermissionLevel, get_permission_level

# ─────────────────────────────────────────────────────────────────────────────
# Session (populated by the OAuth login flow that fronts the dashboard)
# ─────────────────────────────────────────────────────────────────────────────
def session_user() -> Optional[dict]:
    return session.get("discord_user")


def _bind_user():
    u = session_user()
    if not u or not u.get("id"):
        raise Unauthorized("Unauthorized")
    g.user_id = int(u["id"])


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _bind_user()
        return fn(*args, **kwargs)
    return wrapper


def guild_member_required(fn):
    """Logged in; the path's guild is bound to ``g.guild_id``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _bind_user()
        g.guild_id = kwargs["guild_id"]
        return fn(*args, **kwargs)
    return wrapper


def guild_admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _bind_user()
        g.guild_id = kwargs["guild_id"]
        level = get_permission_level(context_for_guild(g.guild_id), g.guild_id, g.user_id)
        if level < PermissionLevel.ADMIN:
            raise Forbidden("You do not have permission to manage this guild")
        return fn(*args, **kwargs)
    return wrapper


def guild_support_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _bind_user()
        g.guild_id = kwargs["guild_id"]
        level = get_permission_level(context_for_guild(g.guild_id), g.guild_id, g.user_id)
        if level < PermissionLevel.SUPPORT:
            raise Forbidden("You do not have permission to view this guild")
        return fn(*args, **kwargs)
    return wrapper


def bot_admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        _bind_user()
        if g.user_id not in current_app.config["ADMIN_USER_IDS"]:
            raise Unauthorized("Unauthorized")
        return fn(*args, **kwargs)
    return wrapper
