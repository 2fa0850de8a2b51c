from __future__ import annotations
import logging
from datetime import timedelta

from flask import Blueprint, g, jsonify

from ..auth import bot_admin_required, guild_admin_required
from ..botcontext import public_context
from ..models import BotStaff, StaffOverride, db, sid, transaction, utcnow
from ..schemas import StaffOverrideBody, parse_body

log = logging.getLogger(__name__)

bp = Blueprint("staff", __name__, url_prefix="/api")

# ─────────────────────────────────────────────────────────────────────────────
# Staff override (guild grants bot staff temporary access)
# ─────────────────────────────────────────────────────────────────────────────
@bp.post("/<int:guild_id>/staff-override")
@guild_admin_required
def create_override(guild_id: int):
    body = parse_body(StaffOverrideBody)
    expires = utcnow() + timedelta(hours=body.time_period)

    with transaction():
        override = db.session.get(StaffOverride, guild_id)
        if override is None:
            db.session.add(StaffOverride(guild_id=guild_id, expires=expires))
        else:
            override.expires = expires

    log.info("User %s granted a staff override on guild %s until %s", g.user_id, guild_id, expires)
    return "", 204


@bp.delete("/<int:guild_id>/staff-override")
@guild_admin_required
def delete_override(guild_id: int):
    with transaction():
        StaffOverride.query.filter_by(guild_id=guild_id).delete()
    return "", 204

# ─────────────────────────────────────────────────────────────────────────────
# Bot staff (bot admins only)
# ─────────────────────────────────────────────────────────────────────────────
@bp.get("/admin/botstaff")
@bot_admin_required
def list_bot_staff():
    staff = [s.user_id for s in BotStaff.query.order_by(BotStaff.user_id).all()]

    bot = public_context()
    users = bot.cache.get_users(bot.rest, staff)

    return jsonify([
        {"id": sid(user_id), "username": users[user_id]["username"] if user_id in users else "Unknown User"}
        for user_id in staff
    ])


@bp.post("/admin/botstaff/<int:user_id>")
@bot_admin_required
def add_bot_staff(user_id: int):
    with transaction():
        if db.session.get(BotStaff, user_id) is None:
            db.session.add(BotStaff(user_id=user_id))
    log.info("User %s added %s to bot staff", g.user_id, user_id)
    return "", 204


@bp.delete("/admin/botstaff/<int:user_id>")
@bot_admin_required
def remove_bot_staff(user_id: int):
    with transaction():
        BotStaff.query.filter_by(user_id=user_id).delete()
    log.info("User %s removed %s from bot staff", g.user_id, user_id)
    return "", 204
