from __future__ import annotations

from flask import Blueprint, jsonify

from ..auth import guild_admin_required, guild_member_required
from ..botcontext import context_for_guild
from ..discord import CHANNEL_ANNOUNCEMENT, CHANNEL_CATEGORY, CHANNEL_TEXT
from ..models import PremiumGuild

bp = Blueprint("guild", __name__, url_prefix="/api/<int:guild_id>")

LISTED_CHANNEL_TYPES = (CHANNEL_TEXT, CHANNEL_CATEGORY, CHANNEL_ANNOUNCEMENT)


@bp.get("/roles")
@guild_admin_required
def roles(guild_id: int):
    return jsonify({"success": True, "roles": context_for_guild(guild_id).get_roles(guild_id)})


@bp.get("/channels")
@guild_admin_required
def channels(guild_id: int):
    chans = context_for_guild(guild_id).get_channels(guild_id)
    return jsonify([c for c in chans if c.get("type") in LISTED_CHANNEL_TYPES])


@bp.get("/emojis")
@guild_admin_required
def emojis(guild_id: int):
    bot = context_for_guild(guild_id)
    return jsonify(bot.rest.get_guild_emojis(guild_id))


@bp.get("/premium")
@guild_member_required
def premium(guild_id: int):
    tier = PremiumGuild.tier_for(guild_id)
    return jsonify({"premium": tier > 0, "tier": tier})
